"""测试 token 估算与预算账本。"""

import pytest

from chronicle.budget import (
    BudgetLedger,
    LADDER,
    estimate_object_tokens,
    estimate_tokens,
    summarize_factions,
    truncate_to_token_limit,
)
from chronicle.budget.ledger import TRUNCATION_MARKER, reduction_message
from chronicle.config import ContextConfig, load_config
from chronicle.models import BudgetLevel, PromptSections, SectionBudget
from chronicle.models.budget import DYNAMIC_SECTIONS, SECTION_NAMES


def test_estimate_basic_weights():
    """密集文字每字 2，拉丁单词每词 1.5，其余字符每个 0.5。"""
    assert estimate_tokens("") == 0
    assert estimate_tokens("你好") == 4
    assert estimate_tokens("안녕") == 4
    assert estimate_tokens("hello world") == 4
    assert estimate_tokens("a, b") == 4


def test_estimate_monotonic_under_prefix():
    text = "林远推开门。He said: 'wait', 3 times… 그리고 떠났다。"
    previous = 0
    for n in range(len(text) + 1):
        current = estimate_tokens(text[:n])
        assert current >= previous
        assert current >= 0
        previous = current


def test_estimate_object_tokens():
    assert estimate_object_tokens(None) == 0
    assert estimate_object_tokens("你好") == 4
    assert estimate_object_tokens({"a": 1}) > 0
    assert estimate_object_tokens(SectionBudget()) > 0


def test_truncate_prefers_sentence_boundary():
    text = "第一句话。第二句话。第三句话。"
    result = truncate_to_token_limit(text, 20)
    assert result == "第一句话。" + TRUNCATION_MARKER
    assert estimate_tokens(result) <= 20


def test_truncate_edge_cases():
    assert truncate_to_token_limit("", 10) == ""
    assert truncate_to_token_limit("任何文本", 0) == ""
    assert truncate_to_token_limit("短文本", 100) == "短文本"

    long_text = "字" * 500
    result = truncate_to_token_limit(long_text, 50)
    assert estimate_tokens(result) <= 50
    assert result.endswith(TRUNCATION_MARKER)


def test_summarize_factions():
    assert summarize_factions("北境：铁血王朝\n南方：商会联盟") == "北境：铁血王朝 vs 南方：商会联盟"
    assert summarize_factions("") == ""

    factions = "\n".join(f"势力{i}：" + "很长的势力介绍" * 20 for i in range(6))
    result = summarize_factions(factions, max_tokens=60)
    assert result.startswith("势力0 vs 势力1 vs 势力2")
    assert "另有 3 个势力" in result
    assert estimate_tokens(result) <= 60


def test_ladder_ceilings_non_increasing():
    """相邻档位的每个分段上限都不上升，minimum 清零写作记忆与导演指令。"""
    ledger = BudgetLedger()
    for prev, cur in zip(LADDER, LADDER[1:]):
        for name in SECTION_NAMES + ("total",):
            assert getattr(ledger.budget(cur), name) <= getattr(ledger.budget(prev), name)

    minimum = ledger.budget(BudgetLevel.MINIMUM)
    assert minimum.writing_memory == 0
    assert minimum.direction == 0
    assert ledger.budget(BudgetLevel.NORMAL).total == 9000


def test_ledger_rejects_increasing_ceiling():
    config = ContextConfig()
    config.budget_levels["reduced30"] = config.budget_levels["reduced30"].model_copy(
        update={"characters": 2000}
    )
    with pytest.raises(ValueError):
        BudgetLedger(config)


def test_ledger_rejects_minimum_with_memory():
    config = ContextConfig()
    config.budget_levels["minimum"] = config.budget_levels["minimum"].model_copy(
        update={"writing_memory": 50}
    )
    with pytest.raises(ValueError):
        BudgetLedger(config)


def test_next_level():
    assert BudgetLedger.next_level(BudgetLevel.NORMAL) == BudgetLevel.REDUCED30
    assert BudgetLedger.next_level(BudgetLevel.REDUCED50) == BudgetLevel.MINIMUM
    assert BudgetLedger.next_level(BudgetLevel.MINIMUM) is None


def test_usage_and_over_budget_sections():
    ledger = BudgetLedger()
    sections = PromptSections(system="设定", direction="务" * 300, cadence="节奏")
    usage = ledger.usage(sections)
    assert usage.system == 4
    assert usage.direction == 600
    assert usage.total == sum(usage.section(n) for n in SECTION_NAMES)
    assert ledger.over_budget_sections(usage) == ["direction"]
    assert not ledger.is_over_budget(usage)
    assert ledger.dominant_section(usage) == "direction"
    assert ledger.remediation_hint("direction")


def test_fit_trims_dynamic_sections_only_when_total_fits():
    ledger = BudgetLedger()
    sections = PromptSections(
        system="设" * 1000,
        world="世" * 1500,
        characters="角" * 800,
        direction="务" * 400,
    )
    fitted = ledger.fit_to_budget(sections)
    usage = ledger.usage(fitted)

    assert fitted.system == sections.system
    assert fitted.world == "世" * 1500
    assert usage.characters <= 1000
    assert usage.direction <= 500
    for name in DYNAMIC_SECTIONS:
        assert usage.section(name) <= getattr(ledger.budget(BudgetLevel.NORMAL), name)


def test_trim_dynamic_leaves_fixed_sections():
    ledger = BudgetLedger()
    sections = PromptSections(
        system="设" * 2000,
        recent_logs="日" * 1000,
        breadcrumbs="伏" * 400,
    )
    trimmed = ledger.trim_dynamic(sections, BudgetLevel.MINIMUM)

    assert trimmed.system == sections.system
    assert trimmed.recent_logs == sections.recent_logs
    assert estimate_tokens(trimmed.breadcrumbs) <= 100
    assert sections.breadcrumbs == "伏" * 400


def test_reduction_messages():
    assert reduction_message(BudgetLevel.NORMAL) == ""
    assert "30%" in reduction_message(BudgetLevel.REDUCED30)
    assert "50%" in reduction_message("reduced50")
    assert reduction_message(BudgetLevel.MINIMUM)


def test_fit_trims_fixed_sections_but_never_drops_system_or_world():
    ledger = BudgetLedger()
    sections = PromptSections(
        system="设" * 2000,
        world="世" * 2000,
        recent_logs="日" * 1000,
        previous_tail="尾" * 300,
    )
    fitted = ledger.fit_to_budget(sections, BudgetLevel.MINIMUM)
    usage = ledger.usage(fitted)

    assert usage.recent_logs <= 300
    assert usage.previous_tail <= 200
    assert usage.world <= 2000
    assert usage.system <= 3000
    assert fitted.system
    assert fitted.world


def test_load_config_merges_budget_overrides(tmp_path):
    path = tmp_path / "chronicle.yaml"
    path.write_text(
        "budget_levels:\n"
        "  reduced30:\n"
        "    characters: 600\n"
        "max_detailed_characters: 8\n"
        "staleness:\n"
        "  forgotten: 6\n",
        encoding="utf-8",
    )
    config = load_config(path)

    assert config.budget_levels["reduced30"].characters == 600
    assert config.budget_levels["reduced30"].total == 6300
    assert config.budget_levels["normal"].characters == 1000
    assert config.max_detailed_characters == 8
    assert config.staleness.forgotten == 6
    assert config.staleness.delayed == 5
    BudgetLedger(config)


def test_load_config_missing_file_uses_defaults(tmp_path):
    config = load_config(tmp_path / "missing.yaml")
    assert config == ContextConfig()
    assert load_config(None) == ContextConfig()
