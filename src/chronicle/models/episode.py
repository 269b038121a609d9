"""单元记录相关数据模型：单元日志、正文、反馈、导演指令。"""

from __future__ import annotations

from pydantic import BaseModel, Field


class SceneLog(BaseModel):
    """单元日志中的一个场景。"""

    summary: str = Field(default="", description="场景概要")
    characters: list[str] = Field(default_factory=list, description="出场角色")


class RelationshipChange(BaseModel):
    """一条关系变化。"""

    who: str = Field(default="", description="主体角色")
    with_whom: str = Field(default="", description="对象角色")
    change: str = Field(default="", description="变化描述")


class BreadcrumbActivity(BaseModel):
    """生成后回报的伏笔动态。"""

    advanced: list[str] = Field(default_factory=list, description="推进了一个阶段的伏笔")
    hint_given: list[str] = Field(default_factory=list, description="本单元给过提示的伏笔")
    newly_planted: list[str] = Field(default_factory=list, description="本单元新埋的伏笔")


class EpisodeLog(BaseModel):
    """一个已完成单元的结构化记录（由外部汇总器生成）。"""

    unit: int = Field(description="单元序号")
    summary: str = Field(default="", description="单元概要")
    scenes: list[SceneLog] = Field(default_factory=list, description="场景列表")
    character_changes: dict[str, str] = Field(
        default_factory=dict, description="角色名 -> 状态变化"
    )
    relationship_changes: list[RelationshipChange] = Field(
        default_factory=list, description="关系变化"
    )
    cliffhanger_type: str | None = Field(default=None, description="本单元使用的断章类型")
    cliffhanger_content: str = Field(default="", description="断章内容")
    dominant_tone: str | None = Field(default=None, description="本单元的主导叙述语气")
    unresolved_tensions: list[str] = Field(default_factory=list, description="未解决的张力")
    breadcrumb_activity: BreadcrumbActivity = Field(
        default_factory=BreadcrumbActivity, description="伏笔动态"
    )


class UnitText(BaseModel):
    """一个单元的正文，操作者改稿后优先使用改稿。"""

    unit: int = Field(description="单元序号")
    content: str = Field(default="", description="生成的原始正文")
    edited_content: str | None = Field(default=None, description="操作者修订后的正文")

    @property
    def final_text(self) -> str:
        return self.edited_content if self.edited_content is not None else self.content


class Feedback(BaseModel):
    """操作者对某一单元的反馈。"""

    unit: int = Field(default=0, description="反馈针对的单元")
    type: str = Field(default="general", description="反馈类型: style/character/plot/pacing/general")
    content: str = Field(description="反馈内容")
    is_recurring: bool = Field(default=False, description="是否对后续所有单元持续生效")
    ingested: bool = Field(default=False, description="是否已被写作记忆吸收")


class CharacterDirective(BaseModel):
    """导演对某个角色的明确指令。"""

    character_name: str = Field(description="角色名")
    directive: str = Field(default="", description="指令内容")


class ForcedScene(BaseModel):
    """必须出现的场景。"""

    description: str = Field(description="场景描述")


class Direction(BaseModel):
    """操作者为下一单元提供的导演指令（可选）。"""

    character_directives: list[CharacterDirective] = Field(default_factory=list)
    forced_scenes: list[ForcedScene] = Field(default_factory=list)
    free_directives: list[str] = Field(default_factory=list, description="自由指令")
    avoid: list[str] = Field(default_factory=list, description="禁止事项")
    primary_tone: str = Field(default="", description="主基调")

    def is_empty(self) -> bool:
        return not (
            self.character_directives
            or self.forced_scenes
            or self.free_directives
            or self.avoid
            or self.primary_tone
        )
