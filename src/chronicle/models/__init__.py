"""Pydantic 数据模型。"""

from chronicle.models.budget import (
    AssemblyResult,
    BudgetLevel,
    PromptSections,
    SectionBudget,
    TokenUsage,
)
from chronicle.models.context import (
    ActiveBreadcrumb,
    ActiveContext,
    BreadcrumbWarning,
    CadenceMeta,
    CharacterSelection,
    SelectionSources,
)
from chronicle.models.episode import (
    BreadcrumbActivity,
    CharacterDirective,
    Direction,
    EpisodeLog,
    Feedback,
    ForcedScene,
    RelationshipChange,
    SceneLog,
    UnitText,
)
from chronicle.models.memory import (
    CommonMistake,
    EditExample,
    EditPattern,
    EpisodeQuality,
    StyleRule,
    WritingMemory,
)
from chronicle.models.project import ProjectState
from chronicle.models.world import Breadcrumb, CharacterProfile, WorldState

__all__ = [
    "ActiveBreadcrumb",
    "ActiveContext",
    "AssemblyResult",
    "Breadcrumb",
    "BreadcrumbActivity",
    "BreadcrumbWarning",
    "BudgetLevel",
    "CadenceMeta",
    "CharacterDirective",
    "CharacterProfile",
    "CharacterSelection",
    "CommonMistake",
    "Direction",
    "EditExample",
    "EditPattern",
    "EpisodeLog",
    "EpisodeQuality",
    "Feedback",
    "ForcedScene",
    "ProjectState",
    "PromptSections",
    "RelationshipChange",
    "SceneLog",
    "SectionBudget",
    "SelectionSources",
    "StyleRule",
    "TokenUsage",
    "UnitText",
    "WorldState",
    "WritingMemory",
]
