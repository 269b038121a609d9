"""ProjectStore：项目状态的加载与保存。

目录结构：
<root>/<project>/
├── state.json                 # ProjectState 快照（带 revision）
└── prompts/                   # 组装好的提示词存档
    ├── unit_001.txt
    └── ...
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from chronicle.errors import StaleSnapshotError
from chronicle.models.project import ProjectState

logger = logging.getLogger(__name__)


class ProjectStore:
    """在单元边界加载、保存项目状态。

    保存时比较磁盘上的 revision：与调用方加载时的不一致即拒绝覆盖。
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def project_dir(self, project: str) -> Path:
        return self.root / project

    def state_path(self, project: str) -> Path:
        return self.project_dir(project) / "state.json"

    def prompts_dir(self, project: str) -> Path:
        return self.project_dir(project) / "prompts"

    def exists(self, project: str) -> bool:
        return self.state_path(project).exists()

    # ────────────────────────────────────────────
    # 状态
    # ────────────────────────────────────────────

    def init(self, project: str, title: str | None = None) -> ProjectState:
        """新建项目；已存在时抛出 FileExistsError。"""
        if self.exists(project):
            raise FileExistsError(f"项目已存在: {self.state_path(project)}")
        self.prompts_dir(project).mkdir(parents=True, exist_ok=True)
        state = ProjectState(title=title or project)
        self._write_json(self.state_path(project), state.model_dump(mode="json"))
        logger.info("📁 新建项目: %s", self.project_dir(project))
        return state

    def load(self, project: str) -> ProjectState:
        path = self.state_path(project)
        if not path.exists():
            raise FileNotFoundError(f"项目不存在: {path}")
        state = ProjectState.model_validate_json(path.read_text(encoding="utf-8"))
        logger.debug("已加载项目 %s（revision=%d）", project, state.revision)
        return state

    def disk_revision(self, project: str) -> int:
        path = self.state_path(project)
        if not path.exists():
            return 0
        data = json.loads(path.read_text(encoding="utf-8"))
        return int(data.get("revision", 0))

    def save(self, project: str, state: ProjectState) -> ProjectState:
        """写回项目状态，返回 revision 自增后的快照。

        Raises:
            StaleSnapshotError: 磁盘上的 revision 与 state.revision 不一致时。
        """
        found = self.disk_revision(project)
        if found != state.revision:
            raise StaleSnapshotError(expected=state.revision, found=found)

        saved = state.model_copy(update={"revision": state.revision + 1})
        self.project_dir(project).mkdir(parents=True, exist_ok=True)
        self._write_json(self.state_path(project), saved.model_dump(mode="json"))
        logger.info("💾 项目 %s 已保存（revision=%d）", project, saved.revision)
        return saved

    # ────────────────────────────────────────────
    # 提示词存档
    # ────────────────────────────────────────────

    def save_prompt(self, project: str, unit: int, text: str) -> Path:
        """保存某一单元组装好的提示词。"""
        directory = self.prompts_dir(project)
        directory.mkdir(parents=True, exist_ok=True)
        filepath = directory / f"unit_{unit:03d}.txt"
        filepath.write_text(text, encoding="utf-8")
        logger.info("📄 提示词已写入: %s", filepath.name)
        return filepath

    def _write_json(self, filepath: Path, data: Any) -> None:
        filepath.write_text(
            json.dumps(data, ensure_ascii=False, indent=2, default=str),
            encoding="utf-8",
        )
