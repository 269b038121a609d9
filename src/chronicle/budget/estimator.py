"""Token 估算器。

按三类字符估算 token 数，只作为预算分配的代理指标，不对齐任何具体分词器：
- 密集文字（韩文、汉字、假名）每字约 2 token
- 稀疏文字（拉丁字母等）按空格分词，每词约 1.5 token
- 标点、数字、空白每个约 0.5 token
"""

from __future__ import annotations

import json
import math
from typing import Any

DENSE_WEIGHT = 2.0
WORD_WEIGHT = 1.5
OTHER_WEIGHT = 0.5

# 密集文字的 Unicode 区间
_DENSE_RANGES: tuple[tuple[int, int], ...] = (
    (0x1100, 0x11FF),  # Hangul Jamo
    (0x3040, 0x30FF),  # Hiragana / Katakana
    (0x3130, 0x318F),  # Hangul Compatibility Jamo
    (0x3400, 0x4DBF),  # CJK Extension A
    (0x4E00, 0x9FFF),  # CJK Unified Ideographs
    (0xAC00, 0xD7AF),  # Hangul Syllables
    (0xF900, 0xFAFF),  # CJK Compatibility Ideographs
)


def is_dense(ch: str) -> bool:
    code = ord(ch)
    for lo, hi in _DENSE_RANGES:
        if lo <= code <= hi:
            return True
    return False


def estimate_tokens(text: str) -> int:
    """估算文本的 token 数。

    确定性、O(n)；空串为 0，对前缀扩展单调不减。
    """
    if not text:
        return 0

    dense = 0
    words = 0
    others = 0
    in_word = False
    for ch in text:
        if is_dense(ch):
            dense += 1
            in_word = False
        elif ch.isalpha():
            if not in_word:
                words += 1
                in_word = True
        else:
            others += 1
            in_word = False

    return (
        int(dense * DENSE_WEIGHT)
        + math.ceil(words * WORD_WEIGHT)
        + math.ceil(others * OTHER_WEIGHT)
    )


def estimate_object_tokens(obj: Any) -> int:
    """估算任意对象的 token 数：字符串直接估算，其余先序列化为紧凑 JSON。"""
    if obj is None:
        return 0
    if isinstance(obj, str):
        return estimate_tokens(obj)
    if hasattr(obj, "model_dump_json"):
        return estimate_tokens(obj.model_dump_json())
    return estimate_tokens(json.dumps(obj, ensure_ascii=False, separators=(",", ":"), default=str))
