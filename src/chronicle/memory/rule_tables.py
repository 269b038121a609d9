"""写作记忆的规则表。

分类与嗅探逻辑全部以声明式表格给出，可单独审阅、替换和测试，编排代码只负责查表。
关键词同时覆盖韩文、中文与英文。
"""

from __future__ import annotations

import re

# ──────────────────────────────────────────
# 反馈分类：按顺序匹配，首个命中即为类别，全部未命中为 style
# ──────────────────────────────────────────

CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("structure", (
        "구조", "장면", "전환", "흐름", "배치", "순서",
        "结构", "场景", "转场", "衔接", "顺序", "布局",
        "structure", "scene", "transition", "order",
    )),
    ("dialogue", (
        "대사", "대화", "핑퐁", "화법",
        "台词", "对话", "对白",
        "dialogue", "dialog",
    )),
    ("description", (
        "묘사", "설명", "서술", "감각", "풍경",
        "描写", "描述", "叙述", "感官", "景物",
        "describe", "description", "exposition",
    )),
    ("tone", (
        "톤", "분위기", "무드", "밝", "어두", "무거", "가벼",
        "语气", "基调", "氛围", "阴暗", "沉重", "轻松",
        "tone", "mood", "atmosphere",
    )),
    ("pacing", (
        "속도", "빠르", "느리", "페이스", "템포",
        "节奏", "太快", "太慢", "拖沓", "推进",
        "pace", "pacing", "tempo", "too slow", "too fast",
    )),
    ("character", (
        "캐릭터", "인물", "성격", "말투", "행동", "반응",
        "角色", "人物", "性格", "口吻", "反应",
        "character", "personality", "motivation",
    )),
)
DEFAULT_CATEGORY = "style"

# ──────────────────────────────────────────
# 相似度计算用停用词
# ──────────────────────────────────────────

STOP_WORDS: frozenset[str] = frozenset({
    # 韩文助词与程度副词
    "이", "가", "을", "를", "의", "에", "에서", "으로", "로", "와", "과", "도", "는", "은",
    "해", "해줘", "좀", "더", "너무", "많이", "적게",
    # 中文虚词（按二元切分后的常见组合）
    "一点", "一些", "不要", "请把", "这个", "那个", "还是", "有点", "太多", "的话",
    # 英文
    "the", "a", "an", "is", "are", "be", "to", "of", "and", "or", "in", "on", "at",
    "too", "very", "more", "less", "please", "it", "this", "that", "so", "just",
})

# ──────────────────────────────────────────
# 删除嗅探：被删句子命中哪条，就归因为哪种编辑模式
# (正则, 模式描述, 句长上限；None 表示不限)
# ──────────────────────────────────────────

DELETION_SMELLS: tuple[tuple[re.Pattern[str], str, int | None], ...] = (
    (
        re.compile(r"슬펐다|기뻤다|느꼈다|생각했다|感到|觉得|心想|伤心极了|高兴极了|\bfelt\b|\bthought\b|\bsad\b|\bhappy\b"),
        "直接陈述情绪",
        None,
    ),
    (
        re.compile(r"그리고|그래서|그러나|하지만|然后|所以|但是|于是|\band then\b|\bhowever\b|\btherefore\b"),
        "多余的连接词",
        20,
    ),
    (
        re.compile(r"매우|정말|너무|아주|굉장히|非常|十分|极其|无比|\bvery\b|\breally\b|\bextremely\b"),
        "过度修饰",
        None,
    ),
)

# ──────────────────────────────────────────
# 替换族：原稿命中而改稿不再命中，即视为一次替换
# (正则, 模式描述, 改后写法)
# ──────────────────────────────────────────

REPLACEMENT_FAMILIES: tuple[tuple[re.Pattern[str], str, str], ...] = (
    (
        re.compile(r"슬펐다|기뻤다|화가 났다|두려웠다|행복했다|很难过|很高兴|很生气|很害怕|很幸福|was sad|was happy|was angry|was afraid"),
        "直接情绪陈述改为动作/感官描写",
        "（动作/感官描写）",
    ),
    (
        re.compile(r"그는 느꼈다|그녀는 생각했다|他感到|她感到|他觉得|她觉得|he felt|she felt|she thought|he thought"),
        "过滤词叙述改为直接呈现",
        "（直接呈现）",
    ),
)

# ──────────────────────────────────────────
# 编辑模式 → 规则类别
# ──────────────────────────────────────────

PATTERN_CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("dialogue", ("台词", "对话", "대사", "대화", "dialogue")),
    ("description", ("描写", "叙述", "情绪", "呈现", "묘사", "서술", "감정", "description")),
    ("structure", ("结构", "场景", "转场", "구조", "장면", "전환", "structure")),
    ("tone", ("语气", "氛围", "톤", "분위기", "tone")),
)


def lookup_category(text: str, table: tuple[tuple[str, tuple[str, ...]], ...]) -> str:
    """按表顺序查找首个命中关键词的类别。"""
    lowered = text.lower()
    for category, keywords in table:
        if any(k in lowered for k in keywords):
            return category
    return DEFAULT_CATEGORY
