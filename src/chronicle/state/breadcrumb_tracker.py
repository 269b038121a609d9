"""伏笔追踪：每条伏笔一个单向状态机，外加陈旧度警告。

状态只能向前：hidden → hinted → suspected → revealed，revealed 为终态。
"""

from __future__ import annotations

import logging
from datetime import datetime

from chronicle.config.settings import StalenessThresholds
from chronicle.models.context import BreadcrumbWarning
from chronicle.models.episode import BreadcrumbActivity
from chronicle.models.world import BREADCRUMB_ORDER, Breadcrumb, WorldState

logger = logging.getLogger(__name__)

# 警告排序：delayed > forgotten > too_long_hidden > overdue
WARNING_PRIORITY: dict[str, int] = {
    "delayed": 0,
    "forgotten": 1,
    "too_long_hidden": 2,
    "overdue": 3,
}


# ──────────────────────────────────────────
# 状态机
# ──────────────────────────────────────────


def next_status(status: str) -> str:
    """向前推进一个阶段；revealed 保持不变。"""
    idx = BREADCRUMB_ORDER.index(status)
    return BREADCRUMB_ORDER[min(idx + 1, len(BREADCRUMB_ORDER) - 1)]


def advance_breadcrumbs(
    breadcrumbs: dict[str, Breadcrumb],
    activity: BreadcrumbActivity,
    current_unit: int,
) -> dict[str, Breadcrumb]:
    """按单元回报的伏笔动态更新状态，返回新字典，不修改入参。

    advanced 中的伏笔各推进一步并刷新提及单元；hint_given 中的只刷新提及单元。
    未知名字直接忽略。同一名字在 advanced 中重复出现也只推进一步。
    """
    updated = {name: bc.model_copy() for name, bc in breadcrumbs.items()}

    for name in dict.fromkeys(activity.advanced):
        bc = updated.get(name)
        if bc is None:
            logger.debug("忽略未知伏笔: %s", name)
            continue
        new_status = next_status(bc.status)
        if new_status != bc.status:
            logger.info("伏笔推进: %s %s → %s", name, bc.status, new_status)
        bc.status = new_status
        bc.last_mentioned_unit = max(bc.last_mentioned_unit, current_unit)

    for name in activity.hint_given:
        bc = updated.get(name)
        if bc is None:
            logger.debug("忽略未知伏笔: %s", name)
            continue
        bc.last_mentioned_unit = max(bc.last_mentioned_unit, current_unit)

    return updated


def plant_breadcrumbs(
    breadcrumbs: dict[str, Breadcrumb],
    names: list[str],
    current_unit: int,
    truths: dict[str, str] | None = None,
) -> dict[str, Breadcrumb]:
    """登记新埋下的伏笔（hidden）；已存在的名字保持原样。"""
    updated = dict(breadcrumbs)
    truths = truths or {}
    for name in names:
        if not name or name in updated:
            continue
        updated[name] = Breadcrumb(
            truth=truths.get(name, ""),
            status="hidden",
            last_mentioned_unit=current_unit,
            planted_unit=current_unit,
        )
        logger.info("新伏笔: %s（第 %d 单元）", name, current_unit)
    return updated


def apply_activity_to_world(
    world: WorldState,
    activity: BreadcrumbActivity,
    current_unit: int,
) -> WorldState:
    """把一个单元的伏笔动态写回世界状态。"""
    breadcrumbs = plant_breadcrumbs(world.breadcrumbs, activity.newly_planted, current_unit)
    breadcrumbs = advance_breadcrumbs(breadcrumbs, activity, current_unit)
    return world.model_copy(
        update={"breadcrumbs": breadcrumbs, "updated_at": datetime.now().isoformat()}
    )


# ──────────────────────────────────────────
# 陈旧度警告
# ──────────────────────────────────────────


def track_staleness(
    breadcrumbs: dict[str, Breadcrumb],
    current_unit: int,
    thresholds: StalenessThresholds | None = None,
) -> list[BreadcrumbWarning]:
    """检查所有未揭晓伏笔，生成按优先级排序的警告。

    同一优先级内保持伏笔的原始顺序（稳定排序）。
    """
    t = thresholds or StalenessThresholds()
    warnings: list[BreadcrumbWarning] = []

    for name, bc in breadcrumbs.items():
        if bc.is_revealed:
            continue

        since_mention = current_unit - bc.last_mentioned_unit
        if since_mention >= t.forgotten:
            warnings.append(
                BreadcrumbWarning(
                    breadcrumb_name=name,
                    warning_type="forgotten",
                    last_mentioned_unit=bc.last_mentioned_unit,
                    current_unit=current_unit,
                    planned_reveal_unit=bc.planned_reveal_unit,
                    message=f"伏笔「{name}」已有 {since_mention} 个单元未被提及。",
                    suggested_action=f"本单元需要给出「{name}」的提示。",
                )
            )

        if bc.status == "hidden" and current_unit > t.too_long_hidden:
            warnings.append(
                BreadcrumbWarning(
                    breadcrumb_name=name,
                    warning_type="too_long_hidden",
                    last_mentioned_unit=bc.last_mentioned_unit,
                    current_unit=current_unit,
                    planned_reveal_unit=bc.planned_reveal_unit,
                    message=f"伏笔「{name}」到第 {current_unit} 单元仍处于 hidden。",
                    suggested_action=f"是时候把「{name}」推进到 hinted 了。",
                )
            )

        if bc.planned_reveal_unit is not None:
            delayed_by = current_unit - bc.planned_reveal_unit
            if delayed_by >= t.delayed:
                warnings.append(
                    BreadcrumbWarning(
                        breadcrumb_name=name,
                        warning_type="delayed",
                        last_mentioned_unit=bc.last_mentioned_unit,
                        current_unit=current_unit,
                        planned_reveal_unit=bc.planned_reveal_unit,
                        message=(
                            f"伏笔「{name}」已超过计划揭晓单元"
                            f"（第 {bc.planned_reveal_unit} 单元）{delayed_by} 个单元。"
                        ),
                        suggested_action=f"本单元必须回收或推进「{name}」。",
                    )
                )
            elif 0 < delayed_by:
                warnings.append(
                    BreadcrumbWarning(
                        breadcrumb_name=name,
                        warning_type="overdue",
                        last_mentioned_unit=bc.last_mentioned_unit,
                        current_unit=current_unit,
                        planned_reveal_unit=bc.planned_reveal_unit,
                        message=(
                            f"伏笔「{name}」已过计划揭晓单元（第 {bc.planned_reveal_unit} 单元）。"
                        ),
                        suggested_action=f"考虑回收「{name}」。",
                    )
                )

    warnings.sort(key=lambda w: WARNING_PRIORITY[w.warning_type])
    return warnings


def breadcrumb_instructions(warnings: list[BreadcrumbWarning]) -> list[str]:
    """把警告转成节奏元数据里的伏笔指令。"""
    return [w.suggested_action for w in warnings]


# ──────────────────────────────────────────
# 统计
# ──────────────────────────────────────────


def summarize_breadcrumb_status(breadcrumbs: dict[str, Breadcrumb]) -> dict[str, int]:
    summary = {status: 0 for status in BREADCRUMB_ORDER}
    for bc in breadcrumbs.values():
        summary[bc.status] += 1
    summary["total"] = len(breadcrumbs)
    return summary


def breadcrumb_dashboard(
    breadcrumbs: dict[str, Breadcrumb],
    current_unit: int,
    thresholds: StalenessThresholds | None = None,
) -> list[dict]:
    """面板数据：有警告的在前，其次按最近提及由早到晚。"""
    first_warning: dict[str, BreadcrumbWarning] = {}
    for w in track_staleness(breadcrumbs, current_unit, thresholds):
        first_warning.setdefault(w.breadcrumb_name, w)

    rows = []
    for name, bc in breadcrumbs.items():
        w = first_warning.get(name)
        rows.append({
            "name": name,
            "truth": bc.truth,
            "status": bc.status,
            "last_mentioned": bc.last_mentioned_unit,
            "planned_reveal": bc.planned_reveal_unit,
            "warning_type": w.warning_type if w else None,
        })
    rows.sort(key=lambda r: (r["warning_type"] is None, r["last_mentioned"]))
    return rows
