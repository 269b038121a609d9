"""全局配置。

所有阈值与预算都是具名可调参数，默认值即线上使用的数值，可通过 YAML 覆盖。
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from chronicle.models.budget import SectionBudget

logger = logging.getLogger(__name__)


def _default_levels() -> dict[str, SectionBudget]:
    return {
        "normal": SectionBudget(),
        "reduced30": SectionBudget(
            characters=700,
            breadcrumbs=200,
            cadence=200,
            writing_memory=350,
            direction=350,
            total=6300,
        ),
        "reduced50": SectionBudget(
            recent_logs=300,
            characters=500,
            breadcrumbs=150,
            cadence=150,
            writing_memory=250,
            direction=250,
            total=4500,
        ),
        "minimum": SectionBudget(
            recent_logs=300,
            characters=300,
            breadcrumbs=100,
            cadence=100,
            writing_memory=0,
            direction=0,
            total=3000,
        ),
    }


class StalenessThresholds(BaseModel):
    """伏笔陈旧判定阈值（单位：单元数）。"""

    forgotten: int = Field(default=10, ge=1, description="距上次提及达到此数即视为被遗忘")
    too_long_hidden: int = Field(default=40, ge=1, description="当前单元超过此数仍 hidden 即警告")
    delayed: int = Field(default=5, ge=1, description="超过计划揭晓单元达到此数即视为延误")


class ContextConfig(BaseModel):
    """上下文组装配置。"""

    # ── 预算 ──
    budget_levels: dict[str, SectionBudget] = Field(
        default_factory=_default_levels,
        description="normal/reduced30/reduced50/minimum 四档的分段上限",
    )

    # ── 伏笔 ──
    staleness: StalenessThresholds = Field(default_factory=StalenessThresholds)

    # ── 角色选择 ──
    max_detailed_characters: int = Field(
        default=10, ge=0, description="详细层最多收录的角色数"
    )
    detailed_caps_by_level: dict[str, int] = Field(
        default_factory=lambda: {"normal": 10, "reduced30": 7, "reduced50": 5, "minimum": 3},
        description="降级时详细层的人数上限（不超过 max_detailed_characters）",
    )
    summary_max_tokens: int = Field(default=500, description="摘要层渲染上限")

    # ── 写作记忆 ──
    rule_similarity_threshold: float = Field(
        default=0.5, ge=0.0, le=1.0, description="反馈与已有规则的相似度阈值"
    )
    memory_render_max_chars: int = Field(default=1000, description="写作记忆渲染字符上限")

    # ── 组装 ──
    recent_log_count: int = Field(default=3, ge=0, description="拉取的最近单元日志数")
    previous_tail_chars: int = Field(default=500, ge=0, description="上一单元结尾截取字数")

    # ── 精简上下文（降级时在截断固定分段之前使用）──
    pruned_log_count: int = Field(default=1, ge=0, description="精简时保留的最近日志数")
    pruned_tension_count: int = Field(default=2, ge=0, description="精简时保留的张力条数")
    pruned_feedback_count: int = Field(default=3, ge=0, description="精简时保留的持续反馈条数")
    pruned_faction_lines: int = Field(default=2, ge=0, description="精简时势力文本保留行数")
    urgent_hidden_gap: int = Field(
        default=8, ge=1, description="hidden 伏笔搁置达到此单元数即视为需要行动"
    )

    cliffhanger_rotation: list[str] = Field(
        default_factory=lambda: [
            "crisis",
            "revelation",
            "choice",
            "reversal",
            "awakening",
            "past_connection",
            "character_entrance",
        ],
        description="断章类型轮换表",
    )
    tone_rotation: list[str] = Field(
        default_factory=lambda: ["自嘲", "观察", "冷静", "感官", "元叙事"],
        description="叙述语气轮换表",
    )


def load_config(path: str | Path | None = None) -> ContextConfig:
    """从 YAML 加载配置；路径为空或文件不存在时返回默认配置。

    YAML 中的 budget_levels 只需写出要覆盖的档位与字段，其余沿用默认值。
    """
    if not path:
        return ContextConfig()
    p = Path(path)
    if not p.exists():
        logger.warning("配置文件不存在，使用默认配置: %s", p)
        return ContextConfig()

    with open(p, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    levels = _default_levels()
    for name, overrides in (data.pop("budget_levels", None) or {}).items():
        base = levels.get(name, SectionBudget())
        levels[name] = base.model_copy(update=overrides or {})
    data["budget_levels"] = {k: v.model_dump() for k, v in levels.items()}

    config = ContextConfig.model_validate(data)
    logger.debug("已加载配置: %s", p)
    return config
