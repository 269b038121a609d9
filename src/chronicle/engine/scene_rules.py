"""场景类型规则表。

场景类型决定精简上下文时世界观保留哪些部分。判定全部以声明式表格给出，
按顺序匹配，首个命中即为类型，全部未命中为 mixed。关键词覆盖韩文、中文与英文。
"""

from __future__ import annotations

DEFAULT_SCENE = "mixed"

SCENE_TYPES: tuple[str, ...] = (
    "battle",
    "romance",
    "mystery",
    "political",
    "daily",
    "growth",
    "exploration",
    DEFAULT_SCENE,
)

# ──────────────────────────────────────────
# 导演指令关键词
# ──────────────────────────────────────────

SCENE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("battle", (
        "전투", "싸움", "격투", "대결", "공격", "방어", "무기",
        "战斗", "打斗", "交手", "对决", "决战", "进攻", "防守", "兵器", "厮杀",
        "battle", "fight", "duel", "attack", "weapon",
    )),
    ("romance", (
        "로맨스", "사랑", "연애", "고백", "키스", "데이트",
        "恋爱", "爱情", "告白", "表白", "亲吻", "约会", "心动",
        "romance", "love", "confess", "kiss",
    )),
    ("mystery", (
        "미스터리", "비밀", "진실", "떡밥", "복선", "의문", "수수께끼",
        "悬疑", "秘密", "真相", "伏笔", "谜团", "疑点",
        "mystery", "secret", "truth", "clue",
    )),
    ("political", (
        "정치", "음모", "세력", "파벌", "동맹", "배신", "권력",
        "政治", "阴谋", "势力", "派系", "结盟", "背叛", "权力",
        "politic", "conspiracy", "faction", "alliance", "betray",
    )),
    ("daily", (
        "일상", "휴식", "식사", "수면", "잡담",
        "日常", "休息", "吃饭", "睡觉", "闲聊",
        "everyday", "meal", "slice of life",
    )),
    ("growth", (
        "성장", "수련", "훈련", "각성", "능력", "깨달음",
        "成长", "修炼", "训练", "觉醒", "突破", "顿悟",
        "training", "awaken", "growth",
    )),
    ("exploration", (
        "탐험", "여행", "이동", "지역", "장소", "던전",
        "探险", "旅行", "赶路", "秘境", "远行",
        "explore", "journey", "travel", "dungeon",
    )),
)

# ──────────────────────────────────────────
# 没有导演指令时，只看上一单元概要
# ──────────────────────────────────────────

LOG_SCENE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("battle", ("전투", "대결", "싸움", "战斗", "对决", "打斗", "battle", "fight")),
    ("romance", ("감정", "관계", "사랑", "感情", "关系", "爱情", "love")),
    ("mystery", ("비밀", "발견", "진실", "秘密", "发现", "真相", "secret", "truth")),
)

# ──────────────────────────────────────────
# 精简方式：(世界规则是否只留首句, 势力保留行数；None 表示不动)
# ──────────────────────────────────────────

SCENE_PRUNING: dict[str, tuple[bool, int | None]] = {
    "battle": (False, None),
    "growth": (False, None),
    "romance": (True, 2),
    "daily": (True, 2),
    "political": (True, None),
    "mystery": (False, None),
    "exploration": (False, None),
    DEFAULT_SCENE: (False, None),
}


def lookup_scene(text: str, table: tuple[tuple[str, tuple[str, ...]], ...]) -> str:
    """按表顺序查找首个命中关键词的场景类型。"""
    lowered = text.lower()
    for scene, keywords in table:
        if any(k in lowered for k in keywords):
            return scene
    return DEFAULT_SCENE
