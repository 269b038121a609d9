"""上下文组装器：把整个项目压成一段有上限的提示词。

流程：
1. assemble()：从世界状态、单元日志、正文与反馈中抽出本单元的活动上下文
2. serialize()：按固定顺序把活动上下文渲染成文本（不做预算）
3. assemble_with_budget()：分段渲染 → 测量 → 沿降级阶梯逐档适配
   每一档先试完整上下文，再试按场景精简的上下文，最后才截断固定分段
"""

from __future__ import annotations

import logging

from chronicle.budget.ledger import BudgetLedger, reduction_message, summarize_factions
from chronicle.config.settings import ContextConfig
from chronicle.engine.pruning import (
    detect_scene_type,
    first_sentence,
    prune_world,
    urgent_breadcrumbs,
)
from chronicle.errors import ContextOverflowError
from chronicle.memory import writing_memory
from chronicle.models.budget import (
    SECTION_NAMES,
    AssemblyResult,
    BudgetLevel,
    PromptSections,
)
from chronicle.models.context import (
    ActiveBreadcrumb,
    ActiveContext,
    CadenceMeta,
    CharacterSelection,
)
from chronicle.models.episode import Direction, EpisodeLog, Feedback, UnitText
from chronicle.models.memory import EpisodeQuality, WritingMemory
from chronicle.models.project import ProjectState
from chronicle.models.world import WorldState
from chronicle.prompts import format_prompt
from chronicle.state.breadcrumb_tracker import (
    apply_activity_to_world,
    breadcrumb_instructions,
    track_staleness,
)
from chronicle.state.character_selector import (
    directed_names,
    max_detailed_for_level,
    recent_names,
    render_characters,
    select_characters,
)

logger = logging.getLogger(__name__)

UNKNOWN_STATE = "状态未定"
TAIL_ELLIPSIS = "..."
FACTION_MAX_TOKENS = 300

_STATUS_LABELS = {"hidden": "隐藏", "hinted": "已暗示", "suspected": "被怀疑"}
_PHASE_LABELS = {"early": "铺垫", "middle": "蓄力", "late": "爆发"}


# ──────────────────────────────────────────
# 节奏元数据
# ──────────────────────────────────────────


def buildup_phase(position: int) -> str:
    if position <= 2:
        return "early"
    if position <= 4:
        return "middle"
    return "late"


def first_allowed(rotation: list[str], forbidden: str | None) -> str:
    """轮换表中第一个不等于上一单元取值的项。"""
    for value in rotation:
        if value != forbidden:
            return value
    return rotation[0] if rotation else ""


def compute_cadence(
    current_unit: int,
    previous_log: EpisodeLog | None,
    instructions: list[str],
    config: ContextConfig,
) -> CadenceMeta:
    position = (current_unit - 1) % 5 + 1
    forbidden_cliffhanger = previous_log.cliffhanger_type if previous_log else None
    forbidden_tone = previous_log.dominant_tone if previous_log else None
    return CadenceMeta(
        unit=current_unit,
        mini_arc_position=position,
        buildup_phase=buildup_phase(position),
        forbidden_cliffhanger=forbidden_cliffhanger,
        forbidden_tone=forbidden_tone,
        suggested_cliffhanger=first_allowed(config.cliffhanger_rotation, forbidden_cliffhanger),
        suggested_tone=first_allowed(config.tone_rotation, forbidden_tone),
        breadcrumb_instructions=instructions,
    )


def tail_text(text: str, max_chars: int) -> str:
    """取正文结尾；过长时以省略号开头，总长不超过 max_chars。"""
    if max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text
    keep = max(max_chars - len(TAIL_ELLIPSIS), 0)
    return TAIL_ELLIPSIS + (text[-keep:] if keep else "")


# ──────────────────────────────────────────
# 文本块
# ──────────────────────────────────────────


def _world_block(world: WorldState, faction_tokens: int | None = None) -> str:
    parts = []
    if world.world_summary:
        parts.append(world.world_summary)
    if world.rules:
        parts.append(f"世界规则：\n{world.rules}")
    if world.factions:
        factions = (
            summarize_factions(world.factions, faction_tokens)
            if faction_tokens is not None
            else world.factions
        )
        parts.append(f"势力格局：{factions}")
    if not parts:
        return ""
    return "## 世界观\n" + "\n\n".join(parts)


def _character_state_block(states: dict[str, str]) -> str:
    if not states:
        return ""
    return "## 角色现状\n" + "\n".join(f"- {name}: {state}" for name, state in states.items())


def _recent_block(logs: list[EpisodeLog]) -> str:
    lines = [f"- 第{log.unit}单元: {log.summary}" for log in logs if log.summary]
    if not lines:
        return ""
    return "## 最近单元\n" + "\n".join(lines)


def _tail_block(tail: str) -> str:
    return f"## 上一单元结尾\n{tail}" if tail else ""


def _breadcrumb_block(active: list[ActiveBreadcrumb]) -> str:
    if not active:
        return ""
    lines = []
    for bc in active:
        line = f"- {bc.name}（{_STATUS_LABELS[bc.status]}，最近提及第{bc.last_mentioned}单元）"
        if bc.next_action:
            line += f" → {bc.next_action}"
        lines.append(line)
    return "## 活动伏笔\n" + "\n".join(lines)


def _tension_block(tensions: list[str]) -> str:
    if not tensions:
        return ""
    return "## 未解决张力\n" + "\n".join(f"- {t}" for t in tensions)


def _cadence_block(cadence: CadenceMeta) -> str:
    text = format_prompt(
        "cadence",
        position=cadence.mini_arc_position,
        phase=_PHASE_LABELS[cadence.buildup_phase],
        suggested_cliffhanger=cadence.suggested_cliffhanger,
        forbidden_cliffhanger=(
            f"（禁止与上一单元相同: {cadence.forbidden_cliffhanger}）"
            if cadence.forbidden_cliffhanger
            else ""
        ),
        suggested_tone=cadence.suggested_tone,
        forbidden_tone=(
            f"（禁止与上一单元相同: {cadence.forbidden_tone}）" if cadence.forbidden_tone else ""
        ),
    )
    if cadence.breadcrumb_instructions:
        text += "\n" + "\n".join(f"- {i}" for i in cadence.breadcrumb_instructions)
    return text


def _feedback_block(guide: list[str]) -> str:
    if not guide:
        return ""
    return "## 持续反馈\n" + "\n".join(f"- {g}" for g in guide)


def _direction_block(direction: Direction | None) -> str:
    if direction is None or direction.is_empty():
        return ""
    lines = []
    if direction.primary_tone:
        lines.append(f"- 主基调：{direction.primary_tone}")
    lines.extend(f"- {d.character_name}：{d.directive}" for d in direction.character_directives)
    lines.extend(f"- 必须出现的场景：{s.description}" for s in direction.forced_scenes)
    lines.extend(f"- {d}" for d in direction.free_directives)
    lines.extend(f"- 禁止：{a}" for a in direction.avoid)
    return format_prompt("direction", body="\n".join(lines))


def _join(blocks: list[str]) -> str:
    return "\n\n".join(b for b in blocks if b)


# ──────────────────────────────────────────
# 组装器
# ──────────────────────────────────────────


class ContextAssembler:
    """按单元组装活动上下文，并在预算内渲染成提示词。"""

    def __init__(self, config: ContextConfig | None = None):
        self.config = config or ContextConfig()
        self.ledger = BudgetLedger(self.config)

    def assemble(
        self,
        world: WorldState,
        logs: list[EpisodeLog],
        units: list[UnitText],
        feedback_history: list[Feedback],
        current_unit: int,
        direction: Direction | None = None,
    ) -> ActiveContext:
        """抽取本单元的活动上下文。纯函数，不修改任何入参。

        导演指令给出主基调时，覆盖轮换表建议的语气。
        """
        cfg = self.config
        prior = sorted((log for log in logs if log.unit < current_unit), key=lambda log: log.unit)
        recent = prior[-cfg.recent_log_count:] if cfg.recent_log_count > 0 else []
        previous_log = next((log for log in prior if log.unit == current_unit - 1), None)

        previous_unit = next((u for u in units if u.unit == current_unit - 1), None)
        previous_tail = (
            tail_text(previous_unit.final_text, cfg.previous_tail_chars) if previous_unit else ""
        )

        warnings = track_staleness(world.breadcrumbs, current_unit, cfg.staleness)
        first_action: dict[str, str] = {}
        for w in warnings:
            first_action.setdefault(w.breadcrumb_name, w.suggested_action)
        active = [
            ActiveBreadcrumb(
                name=name,
                status=bc.status,
                last_mentioned=bc.last_mentioned_unit,
                next_action=first_action.get(name),
            )
            for name, bc in world.breadcrumbs.items()
            if not bc.is_revealed
        ]

        tensions = list(dict.fromkeys(t for log in recent for t in log.unresolved_tensions))
        states = {name: world.characters.get(name) or UNKNOWN_STATE for name in world.roster_names()}

        cadence = compute_cadence(current_unit, previous_log, breadcrumb_instructions(warnings), cfg)
        if direction is not None and direction.primary_tone:
            cadence.suggested_tone = direction.primary_tone

        guide = list(
            dict.fromkeys(f"[{f.type}] {f.content}" for f in feedback_history if f.is_recurring)
        )

        logger.debug(
            "第 %d 单元上下文: %d 条日志, %d 条活动伏笔, %d 条警告",
            current_unit,
            len(recent),
            len(active),
            len(warnings),
        )
        return ActiveContext(
            world=world.model_copy(deep=True),
            recent_logs=[log.model_copy(deep=True) for log in recent],
            previous_tail=previous_tail,
            active_breadcrumbs=active,
            warnings=warnings,
            unresolved_tensions=tensions,
            character_states=states,
            cadence=cadence,
            feedback_guide=guide,
        )

    def prune(self, context: ActiveContext, direction: Direction | None = None) -> ActiveContext:
        """按场景类型精简活动上下文，返回新副本。节奏元数据与伏笔警告原样保留。"""
        cfg = self.config
        recent = context.recent_logs[-cfg.pruned_log_count:] if cfg.pruned_log_count > 0 else []
        scene = detect_scene_type(direction, recent)

        relevant = set(directed_names(direction) + recent_names(recent))
        states = (
            {n: s for n, s in context.character_states.items() if n in relevant}
            if relevant
            else dict(context.character_states)
        )
        tensions = list(dict.fromkeys(t for log in recent for t in log.unresolved_tensions))

        logger.debug("第 %d 单元按场景 %s 精简上下文", context.cadence.unit, scene)
        return context.model_copy(
            deep=True,
            update={
                "world": prune_world(context.world, scene, cfg.pruned_faction_lines),
                "recent_logs": [log.model_copy(deep=True) for log in recent],
                "active_breadcrumbs": [
                    bc.model_copy()
                    for bc in urgent_breadcrumbs(
                        context.active_breadcrumbs, context.cadence.unit, cfg.urgent_hidden_gap
                    )
                ],
                "unresolved_tensions": tensions[: cfg.pruned_tension_count],
                "character_states": states,
                "feedback_guide": context.feedback_guide[: cfg.pruned_feedback_count],
                "scene_type": scene,
                "pruned": True,
            },
        )

    def assemble_pruned(
        self,
        world: WorldState,
        logs: list[EpisodeLog],
        units: list[UnitText],
        feedback_history: list[Feedback],
        current_unit: int,
        direction: Direction | None = None,
    ) -> ActiveContext:
        """精简版 assemble：只留上一单元日志、需要行动的伏笔和按场景精简的世界观。"""
        context = self.assemble(world, logs, units, feedback_history, current_unit, direction)
        return self.prune(context, direction)

    # ────────────────────────────────────────────
    # 分段渲染
    # ────────────────────────────────────────────

    def select(
        self,
        context: ActiveContext,
        direction: Direction | None = None,
        level: BudgetLevel = BudgetLevel.NORMAL,
    ) -> CharacterSelection:
        cap = max_detailed_for_level(
            level, self.config.detailed_caps_by_level, self.config.max_detailed_characters
        )
        return select_characters(
            context.world.roster_names(),
            direction=direction,
            recent_logs=context.recent_logs,
            world=context.world,
            tensions=context.unresolved_tensions,
            max_detailed=cap,
        )

    def render_sections(
        self,
        context: ActiveContext,
        *,
        system: str = "",
        direction: Direction | None = None,
        memory: WritingMemory | None = None,
        level: BudgetLevel = BudgetLevel.NORMAL,
    ) -> tuple[PromptSections, CharacterSelection]:
        """把活动上下文渲染成九个分段（未截断）。角色分段按档位决定详细层人数。"""
        budget = self.ledger.budget(level)
        selection = self.select(context, direction, level)

        memory_text = (
            writing_memory.render(memory, self.config.memory_render_max_chars) if memory else ""
        )
        memory_block = (
            format_prompt("writing_memory", body=memory_text) if memory_text else ""
        )

        sections = PromptSections(
            system=system.strip(),
            world=_world_block(context.world, FACTION_MAX_TOKENS),
            previous_tail=_tail_block(context.previous_tail),
            recent_logs=_join(
                [_recent_block(context.recent_logs), _tension_block(context.unresolved_tensions)]
            ),
            characters=render_characters(
                context.world,
                selection,
                budget.characters,
                self.config.summary_max_tokens,
            ),
            breadcrumbs=_breadcrumb_block(context.active_breadcrumbs),
            cadence=_cadence_block(context.cadence),
            writing_memory=_join([memory_block, _feedback_block(context.feedback_guide)]),
            direction=_direction_block(direction),
        )
        return sections, selection

    @staticmethod
    def join_sections(sections: PromptSections) -> str:
        return _join([getattr(sections, name) for name in SECTION_NAMES])

    def assemble_with_budget(
        self,
        world: WorldState,
        logs: list[EpisodeLog],
        units: list[UnitText],
        feedback_history: list[Feedback],
        current_unit: int,
        direction: Direction | None = None,
        memory: WritingMemory | None = None,
        system: str = "",
    ) -> AssemblyResult:
        """带预算组装。

        未截断的分段总量先与 normal 档比较：不超限时只按 normal 的分段上限截断；
        超限时从 reduced30 起逐档重渲染并适配，返回第一个不超限的结果。
        每一档依次尝试：
        1. 完整上下文，只截动态分段
        2. 按场景精简的上下文，只截动态分段
        3. 精简上下文，再截固定分段
        minimum 仍超限时抛出 ContextOverflowError。
        """
        context = self.assemble(world, logs, units, feedback_history, current_unit, direction)
        render = dict(system=system, direction=direction, memory=memory)

        level = BudgetLevel.NORMAL
        attempts = [level]
        raw, selection = self.render_sections(context, level=level, **render)
        raw_usage = self.ledger.usage(raw)
        if not self.ledger.is_over_budget(raw_usage, level):
            fitted = self.ledger.fit_to_budget(raw, level)
            return self._result(fitted, level, selection, attempts, context)

        logger.info(
            "第 %d 单元上下文超出 %s 档（%d > %d），开始降级",
            current_unit,
            level.value,
            raw_usage.total,
            self.ledger.budget(level).total,
        )

        pruned: ActiveContext | None = None
        usage = raw_usage
        while (nxt := self.ledger.next_level(level)) is not None:
            level = nxt
            attempts.append(level)
            logger.info("%s（%s 档）", reduction_message(level), level.value)

            sections, selection = self.render_sections(context, level=level, **render)
            trimmed = self.ledger.trim_dynamic(sections, level)
            usage = self.ledger.usage(trimmed)
            if not self.ledger.is_over_budget(usage, level):
                logger.info("在 %s 档完成组装（%d token）", level.value, usage.total)
                return self._result(trimmed, level, selection, attempts, context)

            if pruned is None:
                pruned = self.prune(context, direction)
            sections, selection = self.render_sections(pruned, level=level, **render)
            fitted = self.ledger.fit_to_budget(sections, level)
            usage = self.ledger.usage(fitted)
            if not self.ledger.is_over_budget(usage, level):
                logger.info(
                    "在 %s 档以精简上下文完成组装（场景: %s，%d token）",
                    level.value,
                    pruned.scene_type,
                    usage.total,
                )
                return self._result(fitted, level, selection, attempts, pruned)
            logger.info(
                "%s 档仍超限（%d > %d）",
                level.value,
                usage.total,
                self.ledger.budget(level).total,
            )

        section = self.ledger.dominant_section(usage)
        hint = self.ledger.remediation_hint(section)
        logger.warning("第 %d 单元上下文无法压入最低档，最大分段: %s", current_unit, section)
        raise ContextOverflowError(section, usage, hint)

    def _result(
        self,
        sections: PromptSections,
        level: BudgetLevel,
        selection: CharacterSelection,
        attempts: list[BudgetLevel],
        context: ActiveContext,
    ) -> AssemblyResult:
        return AssemblyResult(
            text=self.join_sections(sections),
            level=level,
            usage=self.ledger.usage(sections),
            sections=sections,
            selection=selection,
            attempts=attempts,
            pruned=context.pruned,
            scene_type=context.scene_type,
        )


def serialize(context: ActiveContext) -> str:
    """按固定顺序渲染活动上下文，空分段整体省略。

    顺序：世界观 → 角色现状 → 最近单元 → 上一单元结尾 → 活动伏笔 → 未解决张力 → 节奏 → 持续反馈。
    输出只取决于 context，相同输入得到逐字节相同的文本。
    """
    return _join(
        [
            _world_block(context.world),
            _character_state_block(context.character_states),
            _recent_block(context.recent_logs),
            _tail_block(context.previous_tail),
            _breadcrumb_block(context.active_breadcrumbs),
            _tension_block(context.unresolved_tensions),
            _cadence_block(context.cadence),
            _feedback_block(context.feedback_guide),
        ]
    )


def serialize_compact(context: ActiveContext) -> str:
    """压缩版渲染：每类信息一行，只保留最必要的部分。"""
    world = context.world
    cadence = context.cadence
    lines = [
        f"[世界] {world.world_summary}",
        f"[规则] {first_sentence(world.rules) if world.rules else '未定'}",
    ]
    if context.character_states:
        states = list(context.character_states.items())[:5]
        lines.append("[角色] " + " | ".join(f"{n}:{s[:30]}" for n, s in states))
    if context.recent_logs:
        last = context.recent_logs[-1]
        lines.append(
            f"[上一单元 第{last.unit}单元] {last.summary[:100]} → {last.cliffhanger_content[:50]}"
        )
    if context.previous_tail:
        lines.append(f"[接续] ...{context.previous_tail[-200:]}")
    actionable = [bc for bc in context.active_breadcrumbs if bc.next_action]
    if actionable:
        lines.append("[伏笔] " + " | ".join(f"{bc.name}→{bc.next_action}" for bc in actionable))
    if context.unresolved_tensions:
        lines.append("[张力] " + " | ".join(context.unresolved_tensions[:3]))
    lines.append(
        f"[节奏] 第{cadence.unit}单元 小弧{cadence.mini_arc_position}/5 "
        f"{_PHASE_LABELS[cadence.buildup_phase]} | "
        f"语气:{cadence.suggested_tone} 断章:{cadence.suggested_cliffhanger}"
    )
    if context.feedback_guide:
        lines.append("[反馈] " + " | ".join(context.feedback_guide[:3]))
    return "\n".join(lines)


# ──────────────────────────────────────────
# 单元收尾
# ──────────────────────────────────────────


def _upsert(items: list, item, key) -> list:
    kept = [i for i in items if key(i) != key(item)]
    kept.append(item)
    return sorted(kept, key=key)


def _same_feedback(a: Feedback, b: Feedback) -> bool:
    return (a.unit, a.type, a.content) == (b.unit, b.type, b.content)


def finalize_unit(
    state: ProjectState,
    log: EpisodeLog,
    unit_text: UnitText,
    feedback: list[Feedback] | None = None,
    config: ContextConfig | None = None,
) -> ProjectState:
    """单元完成后的一次性写回：日志、正文、伏笔、角色状态、反馈、改稿、质量。

    反馈无论是否持续生效都会被写作记忆吸收，吸收后标记 ingested，不会重复吸收；
    已登记在 state.feedback 里的同一条反馈原地更新，不重复追加。
    改稿与质量样本仍按调用累计，同一单元只应调用一次。
    """
    cfg = config or ContextConfig()
    pending = [fb for fb in (feedback or []) if not fb.ingested]
    updated = state.model_copy(deep=True)

    updated.logs = _upsert(updated.logs, log.model_copy(deep=True), key=lambda x: x.unit)
    updated.units = _upsert(updated.units, unit_text.model_copy(), key=lambda x: x.unit)

    world = apply_activity_to_world(updated.world, log.breadcrumb_activity, log.unit)
    world.characters = {**world.characters, **log.character_changes}
    updated.world = world

    memory = updated.memory
    for fb in pending:
        memory = writing_memory.ingest_feedback(
            memory, fb.content, fb.unit or log.unit, cfg.rule_similarity_threshold
        )
        done = fb.model_copy(update={"ingested": True})
        idx = next(
            (i for i, f in enumerate(updated.feedback) if not f.ingested and _same_feedback(f, fb)),
            None,
        )
        if idx is None:
            updated.feedback.append(done)
        else:
            updated.feedback[idx] = done

    original = unit_text.content
    final = unit_text.final_text
    edited = unit_text.edited_content is not None and final != original
    if edited:
        memory = writing_memory.ingest_edit(memory, original, final, unit_text.unit)
    memory = writing_memory.promote(memory)
    memory = writing_memory.update_quality(
        memory,
        EpisodeQuality(
            unit=unit_text.unit,
            edit_amount=writing_memory.edit_amount(original, final),
            adopted_directly=not edited,
            feedback_count=len(pending),
            original_char_count=len(original),
            final_char_count=len(final),
            revision_count=1 if edited else 0,
        ),
    )
    updated.memory = memory

    logger.info(
        "第 %d 单元已写回（反馈 %d 条，%s）",
        log.unit,
        len(pending),
        "有改稿" if edited else "直接采用",
    )
    return updated
