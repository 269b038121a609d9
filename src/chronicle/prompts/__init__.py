"""分段模板：节奏、导演指令、写作记忆三个分段的固定文案。

模板是本目录下的 .txt 文件，{field} 占位符由组装器填充。
缺字段时报出模板名与缺失的字段，而不是裸的 KeyError。
"""

from __future__ import annotations

import functools
import string
from pathlib import Path

_TEMPLATES_DIR = Path(__file__).parent

SECTION_TEMPLATES: tuple[str, ...] = ("cadence", "direction", "writing_memory")


def _path(name: str) -> Path:
    filename = name if name.endswith(".txt") else f"{name}.txt"
    return _TEMPLATES_DIR / filename


@functools.lru_cache(maxsize=len(SECTION_TEMPLATES) * 2)
def load_prompt(name: str) -> str:
    """读取模板（可省略 .txt 后缀），去掉首尾空白。

    Raises:
        FileNotFoundError: 模板文件不存在时。
    """
    path = _path(name)
    if not path.exists():
        raise FileNotFoundError(f"分段模板不存在: {path}")
    return path.read_text(encoding="utf-8").strip()


def template_fields(name: str) -> set[str]:
    """模板中出现的全部占位符名。"""
    return {
        field
        for _, field, _, _ in string.Formatter().parse(load_prompt(name))
        if field
    }


def format_prompt(name: str, **fields: object) -> str:
    """填充模板。多余的字段忽略，缺少的字段报错。

    Raises:
        ValueError: 模板需要的字段没有给出时。
    """
    missing = template_fields(name) - set(fields)
    if missing:
        raise ValueError(f"分段模板 {name} 缺少字段: {', '.join(sorted(missing))}")
    return load_prompt(name).format(**fields)


__all__ = ["SECTION_TEMPLATES", "format_prompt", "load_prompt", "template_fields"]
