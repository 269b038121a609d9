"""组装产物数据模型：活动上下文、伏笔警告、节奏元数据、角色选择。"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from chronicle.models.episode import EpisodeLog
from chronicle.models.world import WorldState

WarningType = Literal["delayed", "forgotten", "too_long_hidden", "overdue"]
BuildupPhase = Literal["early", "middle", "late"]


class BreadcrumbWarning(BaseModel):
    """伏笔陈旧警告。"""

    breadcrumb_name: str = Field(description="伏笔名")
    warning_type: WarningType = Field(description="警告类型")
    last_mentioned_unit: int = Field(description="最近提及的单元")
    current_unit: int = Field(description="当前单元")
    planned_reveal_unit: int | None = Field(default=None)
    message: str = Field(default="", description="人类可读的说明")
    suggested_action: str = Field(default="", description="建议动作")


class ActiveBreadcrumb(BaseModel):
    """进入上下文的未揭晓伏笔。"""

    name: str
    status: Literal["hidden", "hinted", "suspected"]
    last_mentioned: int
    next_action: str | None = Field(default=None, description="有警告时的建议动作")


class CadenceMeta(BaseModel):
    """本单元的节奏元数据（确定性计算）。"""

    unit: int
    mini_arc_position: int = Field(ge=1, le=5, description="五话小弧中的位置")
    buildup_phase: BuildupPhase
    forbidden_cliffhanger: str | None = Field(default=None, description="上一单元用过的断章类型")
    forbidden_tone: str | None = Field(default=None, description="上一单元用过的语气")
    suggested_cliffhanger: str
    suggested_tone: str
    breadcrumb_instructions: list[str] = Field(default_factory=list)


class ActiveContext(BaseModel):
    """组装完成的活动上下文。"""

    world: WorldState
    recent_logs: list[EpisodeLog] = Field(default_factory=list)
    previous_tail: str = Field(default="")
    active_breadcrumbs: list[ActiveBreadcrumb] = Field(default_factory=list)
    warnings: list[BreadcrumbWarning] = Field(default_factory=list)
    unresolved_tensions: list[str] = Field(default_factory=list)
    character_states: dict[str, str] = Field(default_factory=dict)
    cadence: CadenceMeta
    feedback_guide: list[str] = Field(default_factory=list)
    scene_type: str = Field(default="mixed", description="场景类型")
    pruned: bool = Field(default=False, description="是否为精简上下文")


class SelectionSources(BaseModel):
    """角色选择的四路证据（按优先级）。"""

    directed: list[str] = Field(default_factory=list)
    recent: list[str] = Field(default_factory=list)
    breadcrumb_related: list[str] = Field(default_factory=list)
    tension_related: list[str] = Field(default_factory=list)


class CharacterSelection(BaseModel):
    """花名册的二分结果：详细层与摘要层互斥且并集为全集。"""

    detailed: list[str] = Field(default_factory=list)
    summary: list[str] = Field(default_factory=list)
    sources: SelectionSources = Field(default_factory=SelectionSources)
