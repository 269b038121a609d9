"""项目状态聚合：一次加载、在纯函数之间传递、在单元边界保存。"""

from __future__ import annotations

from pydantic import BaseModel, Field

from chronicle.models.episode import EpisodeLog, Feedback, UnitText
from chronicle.models.memory import WritingMemory
from chronicle.models.world import WorldState

SCHEMA_VERSION = 1


class ProjectState(BaseModel):
    """带版本号的项目状态。

    revision 每次成功保存自增一次，存储层据此拒绝陈旧快照覆盖。
    """

    schema_version: int = Field(default=SCHEMA_VERSION)
    revision: int = Field(default=0, ge=0)
    title: str = Field(default="untitled")
    world: WorldState = Field(default_factory=WorldState)
    logs: list[EpisodeLog] = Field(default_factory=list)
    units: list[UnitText] = Field(default_factory=list)
    feedback: list[Feedback] = Field(default_factory=list)
    memory: WritingMemory = Field(default_factory=WritingMemory)

    @property
    def last_unit(self) -> int:
        numbers = [log.unit for log in self.logs] + [u.unit for u in self.units]
        return max(numbers, default=0)
