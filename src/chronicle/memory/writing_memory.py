"""自我进化的写作记忆。

从两类信号中学习：
1. 操作者的文字反馈 → 风格规则（相似反馈反复出现时提升置信度）
2. 原稿与改稿的差异 → 编辑模式 → 常见错误 / 风格规则（频次 ≥2 时晋升）

另外按单元记录质量样本，维护平均改稿量与直接采用率。
所有函数都返回新的 WritingMemory，不修改入参。
"""

from __future__ import annotations

import logging
import math
import re
import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from chronicle.memory.rule_tables import (
    CATEGORY_KEYWORDS,
    DELETION_SMELLS,
    PATTERN_CATEGORY_KEYWORDS,
    REPLACEMENT_FAMILIES,
    STOP_WORDS,
    lookup_category,
)
from chronicle.models.memory import (
    CommonMistake,
    EditExample,
    EditPattern,
    EpisodeQuality,
    StyleRule,
    WritingMemory,
)

logger = logging.getLogger(__name__)

INITIAL_CONFIDENCE = 25
CONFIDENCE_STEP = 25
MAX_CONFIDENCE = 100
SURFACE_CONFIDENCE = 50
PROMOTE_FREQUENCY = 2
MAJOR_FREQUENCY = 3
MAX_MINED_PER_KIND = 3
KEPT_EXAMPLES = 3
OMITTED_MARKER = "\n…(已省略)"

_TOKEN_SPLIT = re.compile(r"[\s,.!?;:，。！？；：、\"'“”‘’()（）\[\]【】「」]+")
_HAN_RUN = re.compile(r"^[一-鿿]+$")
_SENTENCE_SPLIT = re.compile(r"[.!?。！？]\s*")


def _now() -> str:
    return datetime.now().isoformat()


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ──────────────────────────────────────────
# 反馈 → 风格规则
# ──────────────────────────────────────────


def classify(feedback: str) -> str:
    """把反馈归入封闭类别集合，无法归类时为 style。"""
    return lookup_category(feedback, CATEGORY_KEYWORDS)


def extract_keywords(text: str) -> set[str]:
    """切词并去掉停用词与单字。连续汉字按二元组切分。"""
    keywords: set[str] = set()
    for token in _TOKEN_SPLIT.split(text.lower()):
        if len(token) <= 1:
            continue
        if _HAN_RUN.match(token) and len(token) > 2:
            grams = {token[i:i + 2] for i in range(len(token) - 1)}
        else:
            grams = {token}
        keywords.update(g for g in grams if g not in STOP_WORDS)
    return keywords


def normalize_text(text: str) -> str:
    return " ".join(text.lower().split())


def similarity(a: str, b: str) -> float:
    """关键词集合重叠度：交集 / 较大集合的大小。

    规范化后完全相同的文本记为 1.0，只含单字或停用词的反馈也能收敛。
    """
    na = normalize_text(a)
    if na and na == normalize_text(b):
        return 1.0
    ka, kb = extract_keywords(a), extract_keywords(b)
    if not ka or not kb:
        return 0.0
    return len(ka & kb) / max(len(ka), len(kb))


def find_similar_rule(
    feedback: str,
    rules: list[StyleRule],
    threshold: float = 0.5,
) -> StyleRule | None:
    """找出与反馈最相似且达到阈值的规则；并列时取最早的。"""
    best: StyleRule | None = None
    best_score = 0.0
    for rule in rules:
        score = similarity(feedback, rule.rule_text)
        if score >= threshold and score > best_score:
            best, best_score = rule, score
    return best


def ingest_feedback(
    memory: WritingMemory,
    feedback: str,
    unit: int,
    threshold: float = 0.5,
) -> WritingMemory:
    """吸收一条反馈：命中相似规则则置信度 +25（封顶 100），否则新建 25 分规则。"""
    updated = memory.model_copy(deep=True)
    text = feedback.strip()
    if not text:
        return updated

    existing = find_similar_rule(text, updated.style_rules, threshold)
    if existing is not None:
        for rule in updated.style_rules:
            if rule.id == existing.id:
                rule.confidence = min(MAX_CONFIDENCE, rule.confidence + CONFIDENCE_STEP)
                rule.last_applied_at = _now()
                logger.info("强化风格规则 [%s] → %d: %s", rule.category, rule.confidence, rule.rule_text)
                break
    else:
        rule = StyleRule(
            id=f"rule-{uuid.uuid4().hex[:8]}",
            category=classify(text),
            rule_text=text,
            source="feedback",
            confidence=INITIAL_CONFIDENCE,
        )
        updated.style_rules.append(rule)
        logger.info("新风格规则 [%s]（第 %d 单元）: %s", rule.category, unit, text)

    updated.updated_at = _now()
    return updated


# ──────────────────────────────────────────
# 改稿 → 编辑模式
# ──────────────────────────────────────────


class EditAnalysis(BaseModel):
    """一次改稿分析的结果。"""

    edit_amount: int = Field(ge=0, le=100, description="改稿量（%）")
    patterns: list[EditPattern] = Field(default_factory=list)


def edit_amount(original: str, edited: str) -> int:
    """按位置逐字比对的改稿量代理指标，范围 [0, 100]。

    开头附近插入或删除会使后续字符全部错位，从而高估改稿量。
    """
    longest = max(len(original), len(edited))
    if longest == 0:
        return 0
    same = sum(1 for a, b in zip(original, edited) if a == b)
    return _round_half_up((1 - same / longest) * 100)


def find_deleted_sentences(original: str, edited: str) -> list[str]:
    """原稿中有、改稿中找不到开头 20 字的句子。"""
    edited_lower = edited.lower()
    deleted: list[str] = []
    for sentence in _SENTENCE_SPLIT.split(original):
        sentence = sentence.strip()
        if len(sentence) <= 10:
            continue
        if sentence.lower()[:20] not in edited_lower:
            deleted.append(sentence[:50] + ("..." if len(sentence) > 50 else ""))
    return deleted


def infer_deletion_reason(phrase: str) -> str | None:
    lowered = phrase.lower()
    for pattern, description, max_len in DELETION_SMELLS:
        if pattern.search(lowered) and (max_len is None or len(phrase) < max_len):
            return description
    return None


def find_replacements(original: str, edited: str) -> list[tuple[str, str, str]]:
    """原稿命中、改稿不再命中的替换族，返回 (原写法, 改后写法, 描述)。"""
    found: list[tuple[str, str, str]] = []
    for pattern, description, corrected in REPLACEMENT_FAMILIES:
        match = pattern.search(original)
        if match and not pattern.search(edited):
            found.append((match.group(0), corrected, description))
    return found[:MAX_MINED_PER_KIND]


def analyze_edit(original: str, edited: str, unit: int) -> EditAnalysis:
    """比对原稿与改稿：计算改稿量，挖掘至多 3 条删除模式与 3 条替换模式。"""
    patterns: list[EditPattern] = []

    deletions = 0
    for phrase in find_deleted_sentences(original, edited):
        if deletions >= MAX_MINED_PER_KIND:
            break
        description = infer_deletion_reason(phrase)
        if description is None:
            continue
        deletions += 1
        patterns.append(
            EditPattern(
                id=f"pattern-{uuid.uuid4().hex[:8]}",
                pattern_type="deletion",
                description=description,
                original_pattern=phrase,
                corrected_pattern="",
                examples=[EditExample(original=phrase, edited="", unit=unit)],
            )
        )

    for before, after, description in find_replacements(original, edited):
        patterns.append(
            EditPattern(
                id=f"pattern-{uuid.uuid4().hex[:8]}",
                pattern_type="replacement",
                description=description,
                original_pattern=before,
                corrected_pattern=after,
                examples=[EditExample(original=before, edited=after, unit=unit)],
            )
        )

    return EditAnalysis(edit_amount=edit_amount(original, edited), patterns=patterns)


def merge_patterns(memory: WritingMemory, patterns: list[EditPattern]) -> WritingMemory:
    """按 description 归并编辑模式：已有则频次 +1 并保留最近 3 条样例。"""
    updated = memory.model_copy(deep=True)
    by_description = {p.description: p for p in updated.edit_patterns}

    for incoming in patterns:
        existing = by_description.get(incoming.description)
        if existing is not None:
            existing.frequency += 1
            existing.examples = (existing.examples + incoming.examples)[-KEPT_EXAMPLES:]
            logger.debug("编辑模式 %s 频次 → %d", existing.description, existing.frequency)
        else:
            added = incoming.model_copy(deep=True)
            updated.edit_patterns.append(added)
            by_description[added.description] = added

    updated.updated_at = _now()
    return updated


def ingest_edit(memory: WritingMemory, original: str, edited: str, unit: int) -> WritingMemory:
    """分析一次改稿并把挖到的模式并入记忆。"""
    analysis = analyze_edit(original, edited, unit)
    logger.info(
        "第 %d 单元改稿量 %d%%，挖掘到 %d 条编辑模式",
        unit,
        analysis.edit_amount,
        len(analysis.patterns),
    )
    return merge_patterns(memory, analysis.patterns)


# ──────────────────────────────────────────
# 晋升
# ──────────────────────────────────────────


def _pattern_category(pattern: EditPattern) -> str:
    return lookup_category(pattern.description, PATTERN_CATEGORY_KEYWORDS)


def _edit_rule_text(pattern: EditPattern) -> str:
    return f"避免{pattern.description}"


def promote(memory: WritingMemory) -> WritingMemory:
    """把频次 ≥2 的编辑模式晋升为常见错误与风格规则。

    已有镜像时只同步频次等派生字段，重复调用不会产生重复条目。
    """
    updated = memory.model_copy(deep=True)
    mistakes = {m.description: m for m in updated.common_mistakes}

    for pattern in updated.edit_patterns:
        if pattern.frequency < PROMOTE_FREQUENCY:
            continue

        severity = "major" if pattern.frequency >= MAJOR_FREQUENCY else "minor"
        last_unit = pattern.examples[-1].unit if pattern.examples else 0
        mistake = mistakes.get(pattern.description)
        if mistake is None:
            mistake = CommonMistake(
                id=f"mistake-{uuid.uuid4().hex[:8]}",
                category=_pattern_category(pattern),
                description=pattern.description,
                severity=severity,
                avoidance_rule=(
                    f"禁止{pattern.description}。"
                    f"用{pattern.corrected_pattern or '其他表达'}代替「{pattern.original_pattern}」。"
                ),
                frequency=pattern.frequency,
                last_occurred=last_unit,
            )
            updated.common_mistakes.append(mistake)
            mistakes[mistake.description] = mistake
            logger.info("编辑模式晋升为常见错误: %s（%s）", pattern.description, severity)
        else:
            mistake.frequency = max(mistake.frequency, pattern.frequency)
            mistake.severity = "major" if mistake.frequency >= MAJOR_FREQUENCY else "minor"
            mistake.last_occurred = max(mistake.last_occurred, last_unit)

        confidence = min(MAX_CONFIDENCE, INITIAL_CONFIDENCE + CONFIDENCE_STEP * pattern.frequency)
        rule = next(
            (
                r
                for r in updated.style_rules
                if r.source == "edit_analysis" and pattern.description in r.rule_text
            ),
            None,
        )
        if rule is None:
            updated.style_rules.append(
                StyleRule(
                    id=f"rule-edit-{uuid.uuid4().hex[:8]}",
                    category=_pattern_category(pattern),
                    rule_text=_edit_rule_text(pattern),
                    source="edit_analysis",
                    confidence=confidence,
                    examples=[e.edited for e in pattern.examples if e.edited],
                    counter_examples=[e.original for e in pattern.examples],
                )
            )
        else:
            rule.confidence = max(rule.confidence, confidence)

    updated.updated_at = _now()
    return updated


# ──────────────────────────────────────────
# 质量追踪
# ──────────────────────────────────────────


def update_quality(memory: WritingMemory, sample: EpisodeQuality) -> WritingMemory:
    """按单元号插入或覆盖质量样本，并重新计算平均改稿量与直接采用率。"""
    updated = memory.model_copy(deep=True)
    samples = [q for q in updated.quality_samples if q.unit != sample.unit]
    samples.append(sample.model_copy())
    samples.sort(key=lambda q: q.unit)

    total = len(samples)
    updated.quality_samples = samples
    updated.total_units = total
    updated.average_edit_amount = (
        _round_half_up(sum(q.edit_amount for q in samples) / total) if total else 0
    )
    updated.direct_adoption_rate = (
        _round_half_up(sum(1 for q in samples if q.adopted_directly) / total * 100) if total else 0
    )
    updated.updated_at = _now()
    return updated


def memory_stats(memory: WritingMemory) -> dict:
    """统计摘要；趋势比较最近 5 个样本与之前 5 个样本的平均改稿量。"""
    recent = memory.quality_samples[-5:]
    older = memory.quality_samples[-10:-5]

    trend = "stable"
    if len(recent) >= 3 and len(older) >= 3:
        recent_avg = sum(q.edit_amount for q in recent) / len(recent)
        older_avg = sum(q.edit_amount for q in older) / len(older)
        if recent_avg < older_avg - 5:
            trend = "improving"
        elif recent_avg > older_avg + 5:
            trend = "declining"

    return {
        "total_rules": len(memory.style_rules),
        "high_confidence_rules": sum(1 for r in memory.style_rules if r.confidence >= 75),
        "total_patterns": len(memory.edit_patterns),
        "total_mistakes": len(memory.common_mistakes),
        "direct_adoption_rate": memory.direct_adoption_rate,
        "average_edit_amount": memory.average_edit_amount,
        "recent_trend": trend,
    }


# ──────────────────────────────────────────
# 渲染
# ──────────────────────────────────────────


def render(memory: WritingMemory, max_chars: int = 1000) -> str:
    """渲染写作记忆提示。

    固定顺序：高置信规则（≤5）→ 常见错误（≤3）→ 编辑模式（≤3）→ 质量现状（≥3 个样本时）。
    超出 max_chars 时硬截断并显式标注省略。
    """
    sections: list[str] = []

    rules = sorted(
        (r for r in memory.style_rules if r.confidence >= SURFACE_CONFIDENCE),
        key=lambda r: r.confidence,
        reverse=True,
    )[:5]
    if rules:
        sections.append(
            "### 必守风格规则（操作者反复要求）\n" + "\n".join(f"- {r.rule_text}" for r in rules)
        )

    mistakes = sorted(
        (m for m in memory.common_mistakes if m.frequency >= PROMOTE_FREQUENCY),
        key=lambda m: m.frequency,
        reverse=True,
    )[:3]
    if mistakes:
        sections.append(
            "### 注意：常见错误（绝对禁止）\n" + "\n".join(f"- {m.avoidance_rule}" for m in mistakes)
        )

    patterns = sorted(
        (p for p in memory.edit_patterns if p.frequency >= PROMOTE_FREQUENCY),
        key=lambda p: p.frequency,
        reverse=True,
    )[:3]
    if patterns:
        sections.append(
            "### 改稿中常被修改的写法\n"
            + "\n".join(
                f"- 不写「{p.original_pattern}」，改为「{p.corrected_pattern or '其他表达'}」"
                for p in patterns
            )
        )

    if len(memory.quality_samples) >= 3:
        if memory.average_edit_amount > 30:
            trend = "改稿量偏高，请写出更精炼的初稿。"
        elif memory.direct_adoption_rate > 70:
            trend = "质量保持良好。"
        else:
            trend = "处于平均水平。"
        sections.append(
            f"### 质量现状\n- 直接采用率 {memory.direct_adoption_rate}%，"
            f"平均改稿量 {memory.average_edit_amount}%。{trend}"
        )

    result = "\n\n".join(sections)
    if len(result) > max_chars:
        return result[:max_chars] + OMITTED_MARKER
    return result
