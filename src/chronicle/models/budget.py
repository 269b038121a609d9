"""预算相关数据模型：分段文本、分段用量、组装结果。"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from chronicle.models.context import CharacterSelection


class BudgetLevel(str, Enum):
    """降级阶梯的四个档位，按顺序逐级收紧。"""

    NORMAL = "normal"
    REDUCED30 = "reduced30"
    REDUCED50 = "reduced50"
    MINIMUM = "minimum"


FIXED_SECTIONS: tuple[str, ...] = ("system", "world", "previous_tail", "recent_logs")
DYNAMIC_SECTIONS: tuple[str, ...] = (
    "characters",
    "breadcrumbs",
    "cadence",
    "writing_memory",
    "direction",
)
SECTION_NAMES: tuple[str, ...] = FIXED_SECTIONS + DYNAMIC_SECTIONS


class SectionBudget(BaseModel):
    """一个档位下各分段的 token 上限。"""

    system: int = Field(default=3000, ge=0)
    world: int = Field(default=2000, ge=0)
    previous_tail: int = Field(default=200, ge=0)
    recent_logs: int = Field(default=900, ge=0)
    characters: int = Field(default=1000, ge=0)
    breadcrumbs: int = Field(default=300, ge=0)
    cadence: int = Field(default=300, ge=0)
    writing_memory: int = Field(default=500, ge=0)
    direction: int = Field(default=500, ge=0)
    total: int = Field(default=9000, ge=0, description="输入 token 总上限")


class PromptSections(BaseModel):
    """渲染好的各分段文本。"""

    system: str = ""
    world: str = ""
    previous_tail: str = ""
    recent_logs: str = ""
    characters: str = ""
    breadcrumbs: str = ""
    cadence: str = ""
    writing_memory: str = ""
    direction: str = ""


class TokenUsage(BaseModel):
    """各分段及总计的 token 估算。"""

    system: int = 0
    world: int = 0
    previous_tail: int = 0
    recent_logs: int = 0
    characters: int = 0
    breadcrumbs: int = 0
    cadence: int = 0
    writing_memory: int = 0
    direction: int = 0
    total: int = 0

    def section(self, name: str) -> int:
        return getattr(self, name)


class AssemblyResult(BaseModel):
    """带预算的组装结果。"""

    text: str
    level: BudgetLevel
    usage: TokenUsage
    sections: PromptSections
    selection: CharacterSelection = Field(default_factory=CharacterSelection)
    attempts: list[BudgetLevel] = Field(default_factory=list, description="依次尝试过的档位")
    pruned: bool = Field(default=False, description="是否使用了按场景精简的上下文")
    scene_type: str = Field(default="mixed", description="精简时判定的场景类型")
