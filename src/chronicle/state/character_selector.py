"""角色相关度选择：把完整花名册分成详细层与摘要层。

判定依据（按优先级）：
1. 导演指令中明确点名的角色
2. 最近几个单元日志里出现过的角色
3. 与未揭晓伏笔相关的角色
4. 与未解决张力相关的角色

名字匹配是字面子串包含，不做语义匹配。
"""

from __future__ import annotations

import logging

from chronicle.budget.estimator import estimate_tokens
from chronicle.budget.ledger import truncate_to_token_limit
from chronicle.models.context import CharacterSelection, SelectionSources
from chronicle.models.episode import Direction, EpisodeLog
from chronicle.models.world import CharacterProfile, WorldState

logger = logging.getLogger(__name__)

SUMMARY_NAME_LIMIT = 20
TIER_SEPARATOR = "\n\n"


def _dedupe(names: list[str]) -> list[str]:
    return [n for n in dict.fromkeys(names) if n]


# ──────────────────────────────────────────
# 证据提取
# ──────────────────────────────────────────


def directed_names(direction: Direction | None) -> list[str]:
    """导演指令里点名的角色。"""
    if direction is None:
        return []
    return _dedupe([d.character_name for d in direction.character_directives])


def recent_names(logs: list[EpisodeLog]) -> list[str]:
    """最近日志里出现的角色：场景出场、状态变化、关系变化双方。"""
    names: list[str] = []
    for log in logs:
        for scene in log.scenes:
            names.extend(scene.characters)
        names.extend(log.character_changes.keys())
        for rc in log.relationship_changes:
            names.extend([rc.who, rc.with_whom])
    return _dedupe(names)


def breadcrumb_names(world: WorldState) -> list[str]:
    """与未揭晓伏笔相关的角色：伏笔名本身是角色名，或真相文本里提到角色名。"""
    roster = world.roster_names()
    roster_set = set(roster)
    names: list[str] = []
    for name, bc in world.breadcrumbs.items():
        if bc.is_revealed:
            continue
        if name in roster_set:
            names.append(name)
        if bc.truth:
            names.extend(c for c in roster if c in bc.truth)
    return _dedupe(names)


def tension_names(tensions: list[str], roster: list[str]) -> list[str]:
    """未解决张力文本中提到的角色。"""
    names: list[str] = []
    for tension in tensions:
        names.extend(c for c in roster if c in tension)
    return _dedupe(names)


def select_characters(
    roster: list[str],
    *,
    direction: Direction | None = None,
    recent_logs: list[EpisodeLog] | None = None,
    world: WorldState | None = None,
    tensions: list[str] | None = None,
    max_detailed: int = 10,
) -> CharacterSelection:
    """按优先级拼接证据、保序去重，前 max_detailed 个进入详细层，其余为摘要层。

    只有花名册里的名字会进入详细层，因此两层互斥且并集恰为花名册。
    """
    roster = _dedupe(list(roster))
    roster_set = set(roster)

    sources = SelectionSources(
        directed=directed_names(direction),
        recent=recent_names(recent_logs or []),
        breadcrumb_related=breadcrumb_names(world) if world else [],
        tension_related=tension_names(tensions or [], roster),
    )

    ordered = _dedupe(
        sources.directed
        + sources.recent
        + sources.breadcrumb_related
        + sources.tension_related
    )
    unknown = [n for n in ordered if n not in roster_set]
    if unknown:
        logger.debug("忽略花名册外的角色: %s", ", ".join(unknown))

    detailed = [n for n in ordered if n in roster_set][: max(max_detailed, 0)]
    detailed_set = set(detailed)
    summary = [n for n in roster if n not in detailed_set]

    return CharacterSelection(detailed=detailed, summary=summary, sources=sources)


# ──────────────────────────────────────────
# 渲染
# ──────────────────────────────────────────

_FULL_FIELDS: tuple[tuple[str, str], ...] = (
    ("role", "身份"),
    ("core", "核心"),
    ("desire", "欲望"),
    ("deficiency", "缺失"),
    ("weakness", "弱点"),
    ("current_state", "现状"),
    ("personality", "性格"),
    ("speech_pattern", "说话方式"),
    ("faction", "所属"),
    ("relationships", "关系"),
)
_REDUCED_FIELDS: tuple[tuple[str, str], ...] = (
    ("core", "核心"),
    ("current_state", "现状"),
    ("weakness", "弱点"),
)


def render_detailed(profiles: list[CharacterProfile], max_tokens: int) -> str:
    """详细层渲染：完整字段 → 精简字段（核心/现状/弱点）→ 硬截断。"""
    if not profiles:
        return ""

    blocks = ["=== 本单元登场角色（详细） ==="]
    for p in profiles:
        parts = [f"【{p.name}】"]
        parts.extend(f"{label}: {getattr(p, field)}" for field, label in _FULL_FIELDS if getattr(p, field))
        blocks.append("\n".join(parts))
    result = "\n\n".join(blocks)
    if estimate_tokens(result) <= max_tokens:
        return result

    lines = ["=== 本单元登场角色 ==="]
    for p in profiles:
        parts = [f"【{p.name}】"]
        parts.extend(f"{label}: {getattr(p, field)}" for field, label in _REDUCED_FIELDS if getattr(p, field))
        lines.append(" / ".join(parts))
    result = "\n".join(lines)
    if estimate_tokens(result) > max_tokens:
        logger.debug("详细角色精简后仍超限，硬截断到 %d", max_tokens)
    return truncate_to_token_limit(result, max_tokens)


def render_summary(profiles: list[CharacterProfile], max_tokens: int) -> str:
    """摘要层渲染："名字: 一句话身份"，超限时退化为名字列表。"""
    if not profiles:
        return ""

    result = "\n".join(["=== 其他人物（参考） ==="] + [f"{p.name}: {p.one_line()}" for p in profiles])
    if estimate_tokens(result) <= max_tokens:
        return result

    names = ", ".join(p.name for p in profiles[:SUMMARY_NAME_LIMIT])
    if len(profiles) > SUMMARY_NAME_LIMIT:
        names += f" 等另外 {len(profiles) - SUMMARY_NAME_LIMIT} 人"
    return truncate_to_token_limit(f"=== 其他人物 ===\n{names}", max_tokens)


def render_characters(
    world: WorldState,
    selection: CharacterSelection,
    max_tokens: int,
    summary_max_tokens: int,
) -> str:
    """两层合并渲染为 characters 分段，合计不超过 max_tokens。

    摘要层先渲染，最多占一半额度（超出时退化为名字列表）；
    详细层只用剩下的额度，摘要层的名字不会被详细层挤掉。
    """
    summary = render_summary(
        [world.profile(n) for n in selection.summary],
        min(summary_max_tokens, max_tokens // 2),
    )
    remaining = max_tokens - estimate_tokens(summary)
    if summary:
        remaining -= estimate_tokens(TIER_SEPARATOR)
    detailed = render_detailed([world.profile(n) for n in selection.detailed], max(remaining, 0))
    return TIER_SEPARATOR.join(part for part in (detailed, summary) if part)


def max_detailed_for_level(
    level: str,
    caps_by_level: dict[str, int],
    max_detailed: int = 10,
) -> int:
    """降级档位对应的详细层人数上限，不超过全局上限。"""
    return min(max_detailed, caps_by_level.get(str(getattr(level, "value", level)), max_detailed))
