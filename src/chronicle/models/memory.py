"""写作记忆数据模型：风格规则、编辑模式、常见错误、质量样本。

写作记忆在项目生命周期内只增不减，从不裁剪。
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

FeedbackCategory = Literal[
    "style", "character", "pacing", "tone", "structure", "dialogue", "description"
]
RuleSource = Literal["feedback", "edit_analysis"]
PatternType = Literal["deletion", "replacement", "addition", "restructure"]
Severity = Literal["minor", "major"]


def _now() -> str:
    return datetime.now().isoformat()


class StyleRule(BaseModel):
    """从反馈或改稿中学到的风格规则。

    confidence 随重复出现递增：1 次 25，2 次 50，3 次 75，4 次及以上 100。
    """

    id: str = Field(description="规则唯一标识")
    category: FeedbackCategory = Field(default="style", description="规则类别")
    rule_text: str = Field(description="规则内容")
    source: RuleSource = Field(default="feedback", description="规则来源")
    confidence: int = Field(default=25, ge=0, le=100, description="置信度 0-100")
    examples: list[str] = Field(default_factory=list, description="正例")
    counter_examples: list[str] = Field(default_factory=list, description="反例")
    created_at: str = Field(default_factory=_now)
    last_applied_at: str | None = Field(default=None)


class EditExample(BaseModel):
    """编辑模式的一条样例。"""

    original: str = Field(default="")
    edited: str = Field(default="")
    unit: int = Field(default=0)


class EditPattern(BaseModel):
    """从改稿差异中挖掘出的编辑模式，按 description 归并。"""

    id: str = Field(description="模式唯一标识")
    pattern_type: PatternType = Field(description="模式类型")
    description: str = Field(description="模式描述（归并键）")
    original_pattern: str = Field(default="", description="原稿中常见的写法")
    corrected_pattern: str = Field(default="", description="改稿后的写法")
    frequency: int = Field(default=1, ge=1, description="出现次数")
    examples: list[EditExample] = Field(default_factory=list)
    created_at: str = Field(default_factory=_now)


class CommonMistake(BaseModel):
    """晋升后的编辑模式：反复出现的错误。"""

    id: str = Field(description="错误唯一标识")
    category: FeedbackCategory = Field(default="style")
    description: str = Field(description="错误描述")
    severity: Severity = Field(default="minor")
    avoidance_rule: str = Field(default="", description="规避规则")
    frequency: int = Field(default=2)
    last_occurred: int = Field(default=0, description="最近一次出现的单元")
    created_at: str = Field(default_factory=_now)


class EpisodeQuality(BaseModel):
    """单个单元的质量样本。"""

    unit: int = Field(description="单元序号")
    edit_amount: int = Field(default=0, ge=0, le=100, description="改稿量（%）")
    adopted_directly: bool = Field(default=False, description="是否直接采用")
    feedback_count: int = Field(default=0, ge=0)
    original_char_count: int = Field(default=0, ge=0)
    final_char_count: int = Field(default=0, ge=0)
    revision_count: int = Field(default=0, ge=0)
    created_at: str = Field(default_factory=_now)


class WritingMemory(BaseModel):
    """写作记忆聚合根。"""

    style_rules: list[StyleRule] = Field(default_factory=list)
    edit_patterns: list[EditPattern] = Field(default_factory=list)
    common_mistakes: list[CommonMistake] = Field(default_factory=list)
    quality_samples: list[EpisodeQuality] = Field(default_factory=list)
    total_units: int = Field(default=0)
    average_edit_amount: int = Field(default=0, description="平均改稿量（%）")
    direct_adoption_rate: int = Field(default=0, description="直接采用率（%）")
    updated_at: str = Field(default_factory=_now)
