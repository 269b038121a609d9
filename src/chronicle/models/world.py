"""世界状态数据模型：世界观快照、角色档案、伏笔。

每完成一个单元（一话）由外部汇总器更新一次，后续单元只做增量修订。
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

BreadcrumbStatus = Literal["hidden", "hinted", "suspected", "revealed"]

# 伏笔状态只能单向推进，revealed 为终态
BREADCRUMB_ORDER: tuple[str, ...] = ("hidden", "hinted", "suspected", "revealed")


class Breadcrumb(BaseModel):
    """一条埋下的伏笔（秘密），从隐藏一路追踪到揭晓。"""

    truth: str = Field(default="", description="伏笔背后的真相")
    status: BreadcrumbStatus = Field(default="hidden", description="当前揭示阶段")
    last_mentioned_unit: int = Field(default=0, description="最近一次被提及的单元")
    planned_reveal_unit: int | None = Field(
        default=None, description="计划揭晓的单元（可选）"
    )
    planted_unit: int = Field(default=0, description="埋下伏笔的单元")

    @property
    def is_revealed(self) -> bool:
        return self.status == "revealed"


class CharacterProfile(BaseModel):
    """角色档案（花名册条目）。

    除 name 外全部可选，渲染时只输出非空字段。
    """

    name: str = Field(description="角色名称")
    role: str = Field(default="", description="角色定位/一句话身份")
    core: str = Field(default="", description="核心动机")
    desire: str = Field(default="", description="欲望")
    deficiency: str = Field(default="", description="缺失")
    weakness: str = Field(default="", description="弱点")
    current_state: str = Field(default="", description="当前状态")
    personality: str = Field(default="", description="性格")
    speech_pattern: str = Field(default="", description="说话方式")
    faction: str = Field(default="", description="所属势力")
    relationships: str = Field(default="", description="关系概述")

    def one_line(self) -> str:
        """摘要层使用的一句话身份。"""
        return self.role or self.core or self.current_state or "身份未定"


class WorldState(BaseModel):
    """世界状态快照（World Bible）。"""

    world_summary: str = Field(default="", description="世界观概要")
    rules: str = Field(default="", description="世界规则文本")
    factions: str = Field(default="", description="势力格局文本")
    characters: dict[str, str] = Field(
        default_factory=dict, description="角色名 -> 当前状态"
    )
    breadcrumbs: dict[str, Breadcrumb] = Field(
        default_factory=dict, description="伏笔名 -> 伏笔"
    )
    roster: list[CharacterProfile] = Field(
        default_factory=list, description="完整角色花名册"
    )
    updated_at: str = Field(
        default_factory=lambda: datetime.now().isoformat(),
        description="最近更新时间",
    )

    def roster_names(self) -> list[str]:
        """花名册中的全部角色名（保持顺序，并补上只出现在状态表里的角色）。"""
        names = [p.name for p in self.roster]
        seen = set(names)
        for name in self.characters:
            if name not in seen:
                seen.add(name)
                names.append(name)
        return names

    def profile(self, name: str) -> CharacterProfile:
        """按名字取档案；花名册中没有时用状态表兜底构造。"""
        for p in self.roster:
            if p.name == name:
                if not p.current_state and name in self.characters:
                    return p.model_copy(update={"current_state": self.characters[name]})
                return p
        return CharacterProfile(name=name, current_state=self.characters.get(name, ""))
