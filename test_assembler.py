"""测试上下文组装、带预算降级、单元写回与项目存储。"""

import sys

import pytest

from chronicle.budget.ledger import TRUNCATION_MARKER
from chronicle.config import ContextConfig
from chronicle.engine import ContextAssembler, finalize_unit, serialize, serialize_compact
from chronicle.errors import ContextOverflowError, StaleSnapshotError
from chronicle.models import (
    BreadcrumbActivity,
    BudgetLevel,
    CharacterDirective,
    Direction,
    EpisodeLog,
    Feedback,
    ProjectState,
    SceneLog,
    UnitText,
    WorldState,
)
from chronicle.models.world import Breadcrumb, CharacterProfile
from chronicle.main import main
from chronicle.output import ProjectStore
from chronicle.prompts import SECTION_TEMPLATES, format_prompt, load_prompt, template_fields


def _world(summary: str = "大陆被雾海分割，七座浮城靠灯塔维系航路。") -> WorldState:
    return WorldState(
        world_summary=summary,
        rules="雾中不可点火。",
        factions="灯塔会：掌控航路\n浮城议会：名义统治者",
        characters={"林远": "刚刚失去船只"},
        roster=[
            CharacterProfile(name="林远", role="落魄船长"),
            CharacterProfile(name="苏晴", role="灯塔会学徒"),
            CharacterProfile(name="陈默", role="走私商人"),
        ],
        breadcrumbs={
            "黑色灯芯": Breadcrumb(truth="苏晴偷走了灯芯", last_mentioned_unit=1),
            "旧航图": Breadcrumb(status="revealed", last_mentioned_unit=2),
        },
    )


def _logs() -> list[EpisodeLog]:
    tones = ["冷静", "观察", "自嘲"]
    return [
        EpisodeLog(
            unit=unit,
            summary=f"第{unit}单元的概要",
            scenes=[SceneLog(characters=["林远"])],
            cliffhanger_type="crisis",
            dominant_tone=tones[unit - 2] if unit >= 2 else None,
            unresolved_tensions=["灯塔会在追查林远", f"张力{unit}"] if unit > 1 else [],
        )
        for unit in range(1, 5)
    ]


def _units() -> list[UnitText]:
    return [
        UnitText(unit=3, content="第三单元正文。"),
        UnitText(unit=4, content="原稿" * 10, edited_content="改" * 600),
    ]


def _feedback() -> list[Feedback]:
    return [
        Feedback(unit=2, type="style", content="少用比喻", is_recurring=True),
        Feedback(unit=3, type="plot", content="这一话节奏可以", is_recurring=False),
    ]


def test_assemble_pulls_recent_context():
    ctx = ContextAssembler().assemble(_world(), _logs(), _units(), _feedback(), current_unit=5)

    assert [log.unit for log in ctx.recent_logs] == [2, 3, 4]
    assert ctx.previous_tail.startswith("...")
    assert len(ctx.previous_tail) == 500
    assert ctx.previous_tail.endswith("改")
    assert ctx.unresolved_tensions == ["灯塔会在追查林远", "张力2", "张力3", "张力4"]
    assert ctx.character_states == {"林远": "刚刚失去船只", "苏晴": "状态未定", "陈默": "状态未定"}
    assert [b.name for b in ctx.active_breadcrumbs] == ["黑色灯芯"]
    assert ctx.feedback_guide == ["[style] 少用比喻"]


def test_cadence_rotation_avoids_previous_unit():
    assembler = ContextAssembler()
    ctx = assembler.assemble(_world(), _logs(), [], [], current_unit=5)
    cadence = ctx.cadence

    assert cadence.mini_arc_position == 5
    assert cadence.buildup_phase == "late"
    assert cadence.forbidden_cliffhanger == "crisis"
    assert cadence.suggested_cliffhanger == "revelation"
    assert cadence.forbidden_tone == "自嘲"
    assert cadence.suggested_tone == "观察"

    first = assembler.assemble(_world(), [], [], [], current_unit=1).cadence
    assert first.mini_arc_position == 1
    assert first.buildup_phase == "early"
    assert first.forbidden_cliffhanger is None
    assert first.suggested_cliffhanger == "crisis"


def test_forgotten_breadcrumb_carries_next_action():
    ctx = ContextAssembler().assemble(_world(), _logs(), [], [], current_unit=12)
    active = ctx.active_breadcrumbs[0]
    assert active.next_action
    assert ctx.cadence.breadcrumb_instructions == [active.next_action]


def test_assemble_does_not_mutate_inputs():
    world, logs = _world(), _logs()
    before = (world.model_dump(), [log.model_dump() for log in logs])
    ContextAssembler().assemble(world, logs, _units(), _feedback(), current_unit=5)
    assert (world.model_dump(), [log.model_dump() for log in logs]) == before


def test_serialize_fixed_order_and_round_trip():
    assembler = ContextAssembler()
    args = (_world(), _logs(), _units(), _feedback(), 5)

    first = serialize(assembler.assemble(*args))
    second = serialize(assembler.assemble(*args))
    assert first == second

    headers = ["## 世界观", "## 角色现状", "## 最近单元", "## 上一单元结尾",
               "## 活动伏笔", "## 未解决张力", "## 节奏", "## 持续反馈"]
    positions = [first.index(h) for h in headers]
    assert positions == sorted(positions)


def test_serialize_omits_empty_sections():
    ctx = ContextAssembler().assemble(WorldState(), [], [], [], current_unit=1)
    text = serialize(ctx)
    assert "## 世界观" not in text
    assert "## 持续反馈" not in text
    assert "## 上一单元结尾" not in text
    assert text.startswith("## 节奏")


def test_assemble_with_budget_within_normal():
    direction = Direction(
        character_directives=[CharacterDirective(character_name="陈默", directive="出卖林远")]
    )
    result = ContextAssembler().assemble_with_budget(
        _world(), _logs(), _units(), _feedback(), 5,
        direction=direction, system="你是一名连载小说作者。",
    )

    assert result.level == BudgetLevel.NORMAL
    assert result.attempts == [BudgetLevel.NORMAL]
    assert result.selection.detailed[0] == "陈默"
    assert result.text.startswith("你是一名连载小说作者。")
    assert "出卖林远" in result.text
    assert result.usage.total <= 9000


def test_overflow_steps_down_the_ladder():
    """分段合计超过 normal 的 9000 上限：降到 reduced30 或更低档，system 与 world 保留。"""
    assembler = ContextAssembler()
    world = _world(summary="世" * 2000)
    direction = Direction(free_directives=["务" * 800])
    system = "设" * 1500

    ctx = assembler.assemble(world, _logs(), _units(), _feedback(), 5, direction)
    raw, _ = assembler.render_sections(ctx, system=system, direction=direction)
    assert assembler.ledger.usage(raw).total > 9000

    result = assembler.assemble_with_budget(
        world, _logs(), _units(), _feedback(), 5, direction=direction, system=system
    )
    assert result.level != BudgetLevel.NORMAL
    assert result.attempts[0] == BudgetLevel.NORMAL
    assert result.usage.total <= assembler.ledger.budget(result.level).total
    assert result.sections.system
    assert result.sections.world.startswith("## 世界观")


def test_overflow_at_minimum_is_terminal():
    config = ContextConfig()
    totals = {"normal": 1000, "reduced30": 900, "reduced50": 800, "minimum": 700}
    config.budget_levels = {
        name: budget.model_copy(update={"total": totals[name]})
        for name, budget in config.budget_levels.items()
    }
    assembler = ContextAssembler(config)

    with pytest.raises(ContextOverflowError) as excinfo:
        assembler.assemble_with_budget(
            _world(), _logs(), _units(), [], 5, system="设" * 1500
        )
    err = excinfo.value
    assert err.section == "system"
    assert err.hint
    assert err.usage.total > 700


def test_finalize_unit_updates_state():
    state = ProjectState(title="雾海", world=_world())
    log = EpisodeLog(
        unit=2,
        summary="林远潜入灯塔",
        character_changes={"苏晴": "开始怀疑林远"},
        breadcrumb_activity=BreadcrumbActivity(advanced=["黑色灯芯"], newly_planted=["灯塔钥匙"]),
    )
    text = UnitText(
        unit=2,
        content="他走进房间。他感到非常伤心，整个人都沉默了下来。窗外在下雨。",
        edited_content="他走进房间。窗外在下雨。",
    )
    feedback = [Feedback(unit=2, type="style", content="少用比喻")]

    updated = finalize_unit(state, log, text, feedback)

    assert [log.unit for log in updated.logs] == [2]
    assert updated.units[0].final_text == "他走进房间。窗外在下雨。"
    assert updated.world.breadcrumbs["黑色灯芯"].status == "hinted"
    assert updated.world.breadcrumbs["灯塔钥匙"].status == "hidden"
    assert updated.world.characters["苏晴"] == "开始怀疑林远"
    assert len(updated.memory.style_rules) == 1
    assert updated.memory.edit_patterns
    assert updated.memory.quality_samples[0].adopted_directly is False
    assert updated.memory.quality_samples[0].feedback_count == 1
    assert updated.feedback[-1].content == "少用比喻"

    assert state.logs == []
    assert state.world.breadcrumbs["黑色灯芯"].status == "hidden"


def test_store_round_trip_and_stale_snapshot(tmp_path):
    store = ProjectStore(tmp_path)
    state = store.init("wuhai", "雾海")
    assert state.revision == 0
    assert store.exists("wuhai")

    with pytest.raises(FileExistsError):
        store.init("wuhai")

    stale = store.load("wuhai")
    state.world = _world()
    saved = store.save("wuhai", state)
    assert saved.revision == 1

    loaded = store.load("wuhai")
    assert loaded.revision == 1
    assert loaded.world.breadcrumbs["黑色灯芯"].truth == "苏晴偷走了灯芯"

    with pytest.raises(StaleSnapshotError) as excinfo:
        store.save("wuhai", stale)
    assert excinfo.value.expected == 0
    assert excinfo.value.found == 1

    path = store.save_prompt("wuhai", 3, "提示词")
    assert path.name == "unit_003.txt"
    assert path.read_text(encoding="utf-8") == "提示词"


def test_store_missing_project(tmp_path):
    with pytest.raises(FileNotFoundError):
        ProjectStore(tmp_path).load("nope")


def test_finalize_ingests_recurring_feedback_once():
    """持续生效的反馈同样进入写作记忆，且同一条只吸收一次。"""
    recurring = Feedback(unit=1, type="style", content="对话太多了，减少对白", is_recurring=True)
    state = ProjectState(title="雾海", world=_world(), feedback=[recurring])
    log = EpisodeLog(unit=1, summary="林远出海")
    text = UnitText(unit=1, content="林远出海了。")

    pending = [f for f in state.feedback if f.unit == 1 and not f.ingested]
    updated = finalize_unit(state, log, text, pending)

    assert [r.rule_text for r in updated.memory.style_rules] == ["对话太多了，减少对白"]
    assert updated.memory.style_rules[0].confidence == 25
    assert len(updated.feedback) == 1
    assert updated.feedback[0].ingested
    assert updated.feedback[0].is_recurring
    assert state.feedback[0].ingested is False

    again = finalize_unit(updated, log, text, updated.feedback)
    assert again.memory.style_rules[0].confidence == 25
    assert len(again.feedback) == 1

    ctx = ContextAssembler().assemble(again.world, again.logs, again.units, again.feedback, 2)
    assert ctx.feedback_guide == ["[style] 对话太多了，减少对白"]


def test_cli_recurring_feedback_reaches_memory(tmp_path, monkeypatch):
    monkeypatch.delenv("CHRONICLE_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    root = tmp_path / "projects"
    log_path = tmp_path / "log.yaml"
    log_path.write_text("unit: 1\nsummary: 林远出海\n", encoding="utf-8")
    text_path = tmp_path / "unit1.txt"
    text_path.write_text("林远出海了。", encoding="utf-8")

    def run(*argv):
        monkeypatch.setattr(sys, "argv", ["chronicle", "--root", str(root), *argv])
        main()

    run("init", "wuhai")
    run("feedback", "wuhai", "对话太多了，减少对白", "--unit", "1", "--recurring")
    run("finalize", "wuhai", "--log", str(log_path), "--text", str(text_path))

    state = ProjectStore(root).load("wuhai")
    assert [r.rule_text for r in state.memory.style_rules] == ["对话太多了，减少对白"]
    assert state.feedback[0].ingested

    run("finalize", "wuhai", "--log", str(log_path), "--text", str(text_path))
    state = ProjectStore(root).load("wuhai")
    assert len(state.memory.style_rules) == 1
    assert state.memory.style_rules[0].confidence == 25
    assert len(state.feedback) == 1


def test_summary_tier_survives_large_detailed_tier():
    """10 个点名角色字段很长，摘要层的 2 人仍完整出现在提示词里。"""
    names = [f"角色{i:02d}" for i in range(12)]
    world = WorldState(
        roster=[
            CharacterProfile(
                name=n,
                role="护卫",
                core="守护",
                current_state="戒备",
                weakness="弱点" * 60,
                personality="沉默" * 40,
            )
            for n in names
        ]
    )
    direction = Direction(
        character_directives=[CharacterDirective(character_name=n, directive="登场") for n in names[:10]]
    )
    result = ContextAssembler().assemble_with_budget(world, [], [], [], 1, direction=direction)

    assert result.level == BudgetLevel.NORMAL
    assert result.selection.summary == ["角色10", "角色11"]
    for name in result.selection.summary:
        assert name in result.sections.characters
        assert name in result.text
    assert result.sections.characters.count(TRUNCATION_MARKER) == 1
    assert result.usage.characters <= 1000


def _romance_overflow():
    world = _world().model_copy(
        update={
            "world_summary": "世" * 500,
            "rules": "雾中不可点火。" + "灯塔之光可以驱散迷雾。" * 100,
        }
    )
    logs = [
        EpisodeLog(unit=u, summary="事" * 300, unresolved_tensions=[f"张力{u}"])
        for u in range(2, 5)
    ]
    direction = Direction(primary_tone="恋爱", free_directives=["务" * 900])
    return world, logs, direction


def test_ladder_prunes_before_cutting_fixed_sections():
    """完整上下文在 reduced30 放不下时先按场景精简，固定分段不被截断。"""
    world, logs, direction = _romance_overflow()
    result = ContextAssembler().assemble_with_budget(
        world, logs, [], [], 5, direction=direction, system="设" * 1250
    )

    assert result.attempts == [BudgetLevel.NORMAL, BudgetLevel.REDUCED30]
    assert result.level == BudgetLevel.REDUCED30
    assert result.pruned
    assert result.scene_type == "romance"
    assert "雾中不可点火" in result.text
    assert "灯塔之光" not in result.text
    assert "- 第4单元: " in result.text
    assert "- 第2单元: " not in result.text
    for name in ("system", "world", "recent_logs"):
        assert TRUNCATION_MARKER not in getattr(result.sections, name)
    assert result.usage.total <= 6300


def test_assemble_pruned_keeps_roster_and_cadence():
    world, logs, direction = _romance_overflow()
    assembler = ContextAssembler()
    full = assembler.assemble(world, logs, _units(), _feedback(), 5, direction)
    pruned = assembler.assemble_pruned(world, logs, _units(), _feedback(), 5, direction)

    assert pruned.pruned and not full.pruned
    assert [log.unit for log in pruned.recent_logs] == [4]
    assert pruned.unresolved_tensions == ["张力4"]
    assert pruned.world.rules == "雾中不可点火。"
    assert pruned.world.roster == full.world.roster
    assert pruned.cadence == full.cadence
    assert pruned.active_breadcrumbs == []
    assert pruned.character_states == full.character_states
    assert full.world.rules == world.rules


def test_serialize_compact():
    ctx = ContextAssembler().assemble(_world(), _logs(), _units(), _feedback(), current_unit=12)
    text = serialize_compact(ctx)
    lines = text.splitlines()

    assert lines[0].startswith("[世界] 大陆被雾海分割")
    assert lines[1] == "[规则] 雾中不可点火。"
    assert lines[2].startswith("[角色] 林远:刚刚失去船只")
    assert "[伏笔] 黑色灯芯→" in text
    assert "[节奏] 第12单元 小弧2/5 铺垫" in text
    assert lines[-1] == "[反馈] [style] 少用比喻"
    assert text == serialize_compact(ctx)


def test_section_templates_declare_fields():
    assert template_fields("cadence") == {
        "position",
        "phase",
        "suggested_cliffhanger",
        "forbidden_cliffhanger",
        "suggested_tone",
        "forbidden_tone",
    }
    for name in SECTION_TEMPLATES:
        assert load_prompt(name)
    assert format_prompt("direction", body="- 出卖林远").endswith("- 出卖林远")
    with pytest.raises(ValueError, match="body"):
        format_prompt("writing_memory")
