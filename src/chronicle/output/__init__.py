"""项目状态存储。

目录结构：
<root>/<project>/
├── state.json
└── prompts/
    └── unit_NNN.txt
"""

from chronicle.output.store import ProjectStore

__all__ = ["ProjectStore"]
