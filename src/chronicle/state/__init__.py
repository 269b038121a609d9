"""伏笔状态机与角色选择。"""

from chronicle.state.breadcrumb_tracker import (
    advance_breadcrumbs,
    apply_activity_to_world,
    breadcrumb_dashboard,
    breadcrumb_instructions,
    next_status,
    plant_breadcrumbs,
    summarize_breadcrumb_status,
    track_staleness,
)
from chronicle.state.character_selector import (
    breadcrumb_names,
    directed_names,
    max_detailed_for_level,
    recent_names,
    render_characters,
    render_detailed,
    render_summary,
    select_characters,
    tension_names,
)

__all__ = [
    "advance_breadcrumbs",
    "apply_activity_to_world",
    "breadcrumb_dashboard",
    "breadcrumb_instructions",
    "breadcrumb_names",
    "directed_names",
    "max_detailed_for_level",
    "next_status",
    "plant_breadcrumbs",
    "recent_names",
    "render_characters",
    "render_detailed",
    "render_summary",
    "select_characters",
    "summarize_breadcrumb_status",
    "tension_names",
]
