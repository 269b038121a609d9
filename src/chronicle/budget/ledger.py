"""Token 预算账本：分段上限、用量测量与降级阶梯。

世界观再庞大也不让提示词爆掉：信息不删，只做选择。分段按优先级排列：
① system ② world ③ previous_tail ④ recent_logs（以上为固定分段）
⑤ characters ⑥ breadcrumbs ⑦ cadence ⑧ writing_memory ⑨ direction（动态分段）
超限时从优先级最低的 ⑨ 开始收缩，固定分段只在最后才动。
"""

from __future__ import annotations

import bisect
import logging
import re

from chronicle.budget.estimator import estimate_tokens
from chronicle.config.settings import ContextConfig
from chronicle.models.budget import (
    DYNAMIC_SECTIONS,
    FIXED_SECTIONS,
    SECTION_NAMES,
    BudgetLevel,
    PromptSections,
    SectionBudget,
    TokenUsage,
)

logger = logging.getLogger(__name__)

LADDER: tuple[BudgetLevel, ...] = (
    BudgetLevel.NORMAL,
    BudgetLevel.REDUCED30,
    BudgetLevel.REDUCED50,
    BudgetLevel.MINIMUM,
)

# 低优先级在前
DYNAMIC_TRIM_ORDER: tuple[str, ...] = (
    "direction",
    "writing_memory",
    "cadence",
    "breadcrumbs",
    "characters",
)
FIXED_TRIM_ORDER: tuple[str, ...] = ("recent_logs", "previous_tail", "world", "system")

TRUNCATION_MARKER = "…(省略)"

_SENTENCE_END = re.compile(r"[.!?。！？]")

REMEDIATION_HINTS: dict[str, str] = {
    "system": "系统提示过长，请精简人设与写作规范。",
    "world": "世界观概要过大，请压缩世界观或减少固定角色。",
    "previous_tail": "上一单元结尾截取过长，请调小 previous_tail_chars。",
    "recent_logs": "最近单元日志过长，请精简单元概要或减少拉取数量。",
    "characters": "角色过多，请在导演指令中只指定本单元需要的核心角色。",
    "breadcrumbs": "活动伏笔过多，请回收或合并部分伏笔。",
    "cadence": "节奏指令过长，请减少伏笔警告。",
    "writing_memory": "写作记忆过长，请清理低价值规则。",
    "direction": "导演指令过长，请只保留本单元必须执行的指令。",
}


REDUCTION_MESSAGES: dict[str, str] = {
    "reduced30": "上下文缩减 30% 后重试",
    "reduced50": "上下文缩减 50% 后重试",
    "minimum": "以最小上下文重试",
}


def reduction_message(level: BudgetLevel | str) -> str:
    """降级到某一档时的进度说明；normal 档为空串。"""
    return REDUCTION_MESSAGES.get(str(getattr(level, "value", level)), "")


def truncate_to_token_limit(text: str, max_tokens: int) -> str:
    """把文本截到 max_tokens 以内，优先在句子边界截断，截断处附省略标记。"""
    if not text or max_tokens <= 0:
        return ""
    if estimate_tokens(text) <= max_tokens:
        return text

    marker = TRUNCATION_MARKER if estimate_tokens(TRUNCATION_MARKER) < max_tokens else ""

    # 最长的、加上标记后仍不超限的前缀
    limit = bisect.bisect_right(
        range(len(text) + 1),
        max_tokens,
        key=lambda n: estimate_tokens(text[:n] + marker),
    ) - 1
    limit = max(limit, 0)

    # 句子边界截断不能比硬截断短一半以上
    cut = 0
    for m in _SENTENCE_END.finditer(text, 0, limit):
        cut = m.end()
    if cut < limit * 0.5:
        cut = limit

    return text[:cut].rstrip() + marker


def summarize_factions(factions: str, max_tokens: int = 300) -> str:
    """把逐行的势力文本压成一行对阵；仍超限时只留前三个势力名。"""
    lines = [ln.strip() for ln in factions.splitlines() if ln.strip()]
    if not lines:
        return ""
    result = " vs ".join(lines)
    if estimate_tokens(result) <= max_tokens:
        return result

    names = [re.split(r"[:：]", ln, maxsplit=1)[0].strip() for ln in lines]
    result = " vs ".join(names[:3])
    if len(names) > 3:
        result += f"（另有 {len(names) - 3} 个势力）"
    return truncate_to_token_limit(result, max_tokens)


class BudgetLedger:
    """按档位管理分段上限并测量、适配内容。"""

    def __init__(self, config: ContextConfig | None = None):
        self.config = config or ContextConfig()
        self.levels: dict[BudgetLevel, SectionBudget] = {}
        for level in LADDER:
            if level.value not in self.config.budget_levels:
                raise ValueError(f"缺少预算档位: {level.value}")
            self.levels[level] = self.config.budget_levels[level.value]
        self._validate()

    def _validate(self) -> None:
        """各分段上限沿阶梯不得上升，minimum 必须清零写作记忆与导演指令。"""
        for prev, cur in zip(LADDER, LADDER[1:]):
            for name in SECTION_NAMES + ("total",):
                if getattr(self.levels[cur], name) > getattr(self.levels[prev], name):
                    raise ValueError(
                        f"预算档位 {cur.value} 的 {name} 上限高于 {prev.value}"
                    )
        minimum = self.levels[BudgetLevel.MINIMUM]
        if minimum.writing_memory != 0 or minimum.direction != 0:
            raise ValueError("minimum 档的 writing_memory 与 direction 上限必须为 0")

    def budget(self, level: BudgetLevel) -> SectionBudget:
        return self.levels[BudgetLevel(level)]

    # ────────────────────────────────────────────
    # 测量
    # ────────────────────────────────────────────

    def usage(self, sections: PromptSections) -> TokenUsage:
        """逐段估算 token，并汇总总计。"""
        counts = {name: estimate_tokens(getattr(sections, name)) for name in SECTION_NAMES}
        return TokenUsage(**counts, total=sum(counts.values()))

    def is_over_budget(self, usage: TokenUsage, level: BudgetLevel = BudgetLevel.NORMAL) -> bool:
        return usage.total > self.budget(level).total

    def over_budget_sections(
        self, usage: TokenUsage, level: BudgetLevel = BudgetLevel.NORMAL
    ) -> list[str]:
        """超出自身上限的动态分段，低优先级在前。"""
        budget = self.budget(level)
        return [
            name
            for name in DYNAMIC_TRIM_ORDER
            if usage.section(name) > getattr(budget, name)
        ]

    def dominant_section(self, usage: TokenUsage) -> str:
        """占用最多的分段；并列时取优先级更高者。"""
        return max(SECTION_NAMES, key=lambda name: (usage.section(name), -SECTION_NAMES.index(name)))

    @staticmethod
    def remediation_hint(section: str) -> str:
        return REMEDIATION_HINTS.get(section, "请精简本单元需要的上下文。")

    # ────────────────────────────────────────────
    # 适配
    # ────────────────────────────────────────────

    def trim_dynamic(
        self, sections: PromptSections, level: BudgetLevel = BudgetLevel.NORMAL
    ) -> PromptSections:
        """只把动态分段截到各自上限，固定分段原样保留。"""
        budget = self.budget(level)
        trimmed = sections.model_copy()
        for name in DYNAMIC_TRIM_ORDER:
            self._trim(trimmed, name, getattr(budget, name))
        return trimmed

    def fit_to_budget(
        self, sections: PromptSections, level: BudgetLevel = BudgetLevel.NORMAL
    ) -> PromptSections:
        """按档位截断各分段。

        先按低优先级顺序把动态分段截到上限；总量仍超限时才截固定分段。
        system 与 world 只会被截到上限，不会被整体丢弃。
        """
        budget = self.budget(level)
        fitted = self.trim_dynamic(sections, level)

        if self.is_over_budget(self.usage(fitted), level):
            for name in FIXED_TRIM_ORDER:
                self._trim(fitted, name, getattr(budget, name))
                if not self.is_over_budget(self.usage(fitted), level):
                    break

        return fitted

    @staticmethod
    def _trim(sections: PromptSections, name: str, ceiling: int) -> None:
        text = getattr(sections, name)
        trimmed = truncate_to_token_limit(text, ceiling)
        if trimmed != text:
            logger.debug("分段 %s 超过上限 %d，已截断", name, ceiling)
            setattr(sections, name, trimmed)

    @staticmethod
    def next_level(level: BudgetLevel) -> BudgetLevel | None:
        """阶梯上的下一档；已在 minimum 时返回 None。"""
        idx = LADDER.index(BudgetLevel(level))
        return LADDER[idx + 1] if idx + 1 < len(LADDER) else None


__all__ = [
    "BudgetLedger",
    "DYNAMIC_SECTIONS",
    "DYNAMIC_TRIM_ORDER",
    "FIXED_SECTIONS",
    "LADDER",
    "REDUCTION_MESSAGES",
    "TRUNCATION_MARKER",
    "reduction_message",
    "summarize_factions",
    "truncate_to_token_limit",
]
