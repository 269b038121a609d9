"""按场景类型精简活动上下文。

预算降级时，先走精简路径，再去截断固定分段：
1. 只保留上一单元的日志，张力只取其中前几条
2. 按场景类型精简世界规则与势力
3. 角色现状只留本单元相关角色（导演点名 + 最近日志出场）
4. 伏笔只留需要行动的，持续反馈只取前几条

花名册原样保留，角色二分不受精简影响。
"""

from __future__ import annotations

import logging
import re

from chronicle.engine.scene_rules import (
    DEFAULT_SCENE,
    LOG_SCENE_KEYWORDS,
    SCENE_KEYWORDS,
    SCENE_PRUNING,
    lookup_scene,
)
from chronicle.models.context import ActiveBreadcrumb
from chronicle.models.episode import Direction, EpisodeLog
from chronicle.models.world import WorldState

logger = logging.getLogger(__name__)

ELLIPSIS_LINE = "..."

_SENTENCE_END = re.compile(r"[.!?。！？]")


def direction_text(direction: Direction | None) -> str:
    """导演指令中描述场景的文字：主基调、自由指令、必须出现的场景。"""
    if direction is None:
        return ""
    parts = [direction.primary_tone, *direction.free_directives]
    parts.extend(s.description for s in direction.forced_scenes)
    return " ".join(p for p in parts if p)


def detect_scene_type(
    direction: Direction | None = None,
    recent_logs: list[EpisodeLog] | None = None,
) -> str:
    """判断本单元的场景类型：先查导演指令，未命中再查最近一条日志的概要。"""
    text = direction_text(direction)
    if text:
        scene = lookup_scene(text, SCENE_KEYWORDS)
        if scene != DEFAULT_SCENE:
            return scene
    if recent_logs:
        return lookup_scene(recent_logs[-1].summary, LOG_SCENE_KEYWORDS)
    return DEFAULT_SCENE


def first_sentence(text: str) -> str:
    m = _SENTENCE_END.search(text)
    return text[: m.end()] if m else text


def head_lines(text: str, count: int) -> str:
    """保留前 count 个非空行，有删减时追加一行省略号。"""
    lines = [ln for ln in text.splitlines() if ln.strip()]
    if len(lines) <= count:
        return "\n".join(lines)
    return "\n".join(lines[:count] + [ELLIPSIS_LINE])


def prune_world(
    world: WorldState,
    scene_type: str,
    max_faction_lines: int | None = None,
) -> WorldState:
    """按场景类型精简世界观，返回新副本。

    max_faction_lines 对所有场景生效，与场景表里的行数取较小者。
    """
    first_only, faction_lines = SCENE_PRUNING.get(scene_type, (False, None))
    if max_faction_lines is not None:
        faction_lines = (
            max_faction_lines if faction_lines is None else min(faction_lines, max_faction_lines)
        )

    pruned = world.model_copy(deep=True)
    if first_only and pruned.rules:
        pruned.rules = first_sentence(pruned.rules)
    if faction_lines is not None and pruned.factions:
        pruned.factions = head_lines(pruned.factions, faction_lines)
    logger.debug("场景 %s: 规则只留首句=%s，势力保留 %s 行", scene_type, first_only, faction_lines)
    return pruned


def urgent_breadcrumbs(
    active: list[ActiveBreadcrumb],
    current_unit: int,
    hidden_gap: int = 8,
) -> list[ActiveBreadcrumb]:
    """需要行动的伏笔：带建议动作的，或 hidden 状态下已搁置 hidden_gap 个单元以上的。"""
    return [
        bc
        for bc in active
        if bc.next_action
        or (bc.status == "hidden" and current_unit - bc.last_mentioned >= hidden_gap)
    ]
