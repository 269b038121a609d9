"""写作记忆：从反馈与改稿中学习风格规则。"""

from chronicle.memory.writing_memory import (
    EditAnalysis,
    analyze_edit,
    classify,
    edit_amount,
    find_similar_rule,
    ingest_edit,
    ingest_feedback,
    memory_stats,
    merge_patterns,
    promote,
    render,
    similarity,
    update_quality,
)

__all__ = [
    "EditAnalysis",
    "analyze_edit",
    "classify",
    "edit_amount",
    "find_similar_rule",
    "ingest_edit",
    "ingest_feedback",
    "memory_stats",
    "merge_patterns",
    "promote",
    "render",
    "similarity",
    "update_quality",
]
