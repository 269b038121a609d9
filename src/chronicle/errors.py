"""异常定义。

单段超限与整体超限都在内部通过截断和降级消化，只有最低档仍超限时才抛出。
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chronicle.models.budget import TokenUsage


class ChronicleError(Exception):
    """本包所有异常的基类。"""


class ContextOverflowError(ChronicleError):
    """降级到 minimum 仍超出总上限。

    Attributes:
        section: 占用最大的分段名。
        usage: 最后一次尝试的分段用量。
        hint: 可操作的处理建议。
    """

    def __init__(self, section: str, usage: TokenUsage, hint: str):
        self.section = section
        self.usage = usage
        self.hint = hint
        super().__init__(
            f"上下文在 minimum 档仍超限（总计 {usage.total}），最大分段: {section}。{hint}"
        )


class StaleSnapshotError(ChronicleError):
    """写回的项目快照比磁盘上的旧，拒绝覆盖。"""

    def __init__(self, expected: int, found: int):
        self.expected = expected
        self.found = found
        super().__init__(f"快照已过期：加载时 revision={expected}，磁盘上为 {found}")
