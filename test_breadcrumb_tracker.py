"""测试伏笔状态机与陈旧度警告。"""

from chronicle.config import StalenessThresholds
from chronicle.models import BreadcrumbActivity, WorldState
from chronicle.models.world import BREADCRUMB_ORDER, Breadcrumb
from chronicle.state import (
    advance_breadcrumbs,
    apply_activity_to_world,
    breadcrumb_dashboard,
    breadcrumb_instructions,
    next_status,
    plant_breadcrumbs,
    summarize_breadcrumb_status,
    track_staleness,
)


def test_next_status():
    assert next_status("hidden") == "hinted"
    assert next_status("hinted") == "suspected"
    assert next_status("suspected") == "revealed"
    assert next_status("revealed") == "revealed"


def test_status_never_regresses():
    """任意次推进后状态只进不退，revealed 为终态。"""
    breadcrumbs = {"身世": Breadcrumb(truth="林远是王族后裔")}
    activity = BreadcrumbActivity(advanced=["身世"])
    previous = BREADCRUMB_ORDER.index("hidden")

    for unit in range(1, 8):
        breadcrumbs = advance_breadcrumbs(breadcrumbs, activity, unit)
        current = BREADCRUMB_ORDER.index(breadcrumbs["身世"].status)
        assert current >= previous
        previous = current

    assert breadcrumbs["身世"].status == "revealed"
    assert breadcrumbs["身世"].last_mentioned_unit == 7


def test_duplicate_advance_steps_once():
    breadcrumbs = {"密信": Breadcrumb()}
    updated = advance_breadcrumbs(
        breadcrumbs, BreadcrumbActivity(advanced=["密信", "密信"]), 3
    )
    assert updated["密信"].status == "hinted"


def test_hint_refreshes_mention_without_advancing():
    breadcrumbs = {"密信": Breadcrumb(status="hinted", last_mentioned_unit=2)}
    updated = advance_breadcrumbs(breadcrumbs, BreadcrumbActivity(hint_given=["密信"]), 9)
    assert updated["密信"].status == "hinted"
    assert updated["密信"].last_mentioned_unit == 9


def test_unknown_names_ignored_and_input_untouched():
    breadcrumbs = {"密信": Breadcrumb()}
    updated = advance_breadcrumbs(
        breadcrumbs, BreadcrumbActivity(advanced=["不存在"], hint_given=["也不存在"]), 4
    )
    assert set(updated) == {"密信"}
    assert updated["密信"].status == "hidden"

    advance_breadcrumbs(breadcrumbs, BreadcrumbActivity(advanced=["密信"]), 4)
    assert breadcrumbs["密信"].status == "hidden"
    assert breadcrumbs["密信"].last_mentioned_unit == 0


def test_forgotten_scenario():
    """第 5 单元最后提及，第 16 单元检查：恰好一条 forgotten，没有 too_long_hidden。"""
    breadcrumbs = {"戒指": Breadcrumb(status="hidden", last_mentioned_unit=5)}
    warnings = track_staleness(breadcrumbs, 16)

    assert [w.warning_type for w in warnings] == ["forgotten"]
    assert warnings[0].breadcrumb_name == "戒指"
    assert warnings[0].last_mentioned_unit == 5
    assert warnings[0].message
    assert warnings[0].suggested_action


def test_revealed_produces_no_warnings():
    breadcrumbs = {
        "真相": Breadcrumb(status="revealed", last_mentioned_unit=1, planned_reveal_unit=3)
    }
    assert track_staleness(breadcrumbs, 99) == []


def test_too_long_hidden_and_delay_kinds():
    breadcrumbs = {
        "旧案": Breadcrumb(status="hinted", last_mentioned_unit=44, planned_reveal_unit=47),
        "地图": Breadcrumb(status="hidden", last_mentioned_unit=45),
        "名单": Breadcrumb(status="suspected", last_mentioned_unit=40, planned_reveal_unit=44),
    }
    warnings = track_staleness(breadcrumbs, 50)
    kinds = [(w.breadcrumb_name, w.warning_type) for w in warnings]

    # delayed > forgotten > too_long_hidden > overdue
    assert kinds == [
        ("名单", "delayed"),
        ("名单", "forgotten"),
        ("地图", "too_long_hidden"),
        ("旧案", "overdue"),
    ]
    assert breadcrumb_instructions(warnings) == [w.suggested_action for w in warnings]


def test_custom_thresholds():
    breadcrumbs = {"戒指": Breadcrumb(last_mentioned_unit=5)}
    thresholds = StalenessThresholds(forgotten=3)
    assert [w.warning_type for w in track_staleness(breadcrumbs, 8, thresholds)] == ["forgotten"]
    assert track_staleness(breadcrumbs, 7, thresholds) == []


def test_staleness_deterministic():
    breadcrumbs = {
        f"伏笔{i}": Breadcrumb(last_mentioned_unit=i, planned_reveal_unit=i + 2)
        for i in range(10)
    }
    first = track_staleness(breadcrumbs, 30)
    second = track_staleness(breadcrumbs, 30)
    assert first == second
    assert [w.breadcrumb_name for w in first if w.warning_type == "delayed"] == [
        f"伏笔{i}" for i in range(10)
    ]


def test_plant_keeps_existing():
    breadcrumbs = {"密信": Breadcrumb(status="suspected", last_mentioned_unit=3)}
    updated = plant_breadcrumbs(breadcrumbs, ["密信", "面具"], 6, truths={"面具": "面具下是苏晴"})
    assert updated["密信"].status == "suspected"
    assert updated["面具"].status == "hidden"
    assert updated["面具"].planted_unit == 6
    assert updated["面具"].truth == "面具下是苏晴"
    assert "面具" not in breadcrumbs


def test_apply_activity_to_world():
    world = WorldState(breadcrumbs={"密信": Breadcrumb()})
    activity = BreadcrumbActivity(advanced=["密信"], newly_planted=["面具"])
    updated = apply_activity_to_world(world, activity, 4)

    assert updated.breadcrumbs["密信"].status == "hinted"
    assert updated.breadcrumbs["面具"].status == "hidden"
    assert world.breadcrumbs["密信"].status == "hidden"


def test_status_summary_and_dashboard():
    breadcrumbs = {
        "新": Breadcrumb(last_mentioned_unit=19),
        "旧": Breadcrumb(status="hinted", last_mentioned_unit=2),
        "完": Breadcrumb(status="revealed", last_mentioned_unit=1),
    }
    summary = summarize_breadcrumb_status(breadcrumbs)
    assert summary == {"hidden": 1, "hinted": 1, "suspected": 0, "revealed": 1, "total": 3}

    rows = breadcrumb_dashboard(breadcrumbs, 20)
    assert rows[0]["name"] == "旧"
    assert rows[0]["warning_type"] == "forgotten"
    assert [r["name"] for r in rows[1:]] == ["完", "新"]
