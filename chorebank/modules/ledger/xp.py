from dataclasses import dataclass

MAX_LEVEL = 50
XP_RATE_PERCENT = 15

# (first level, last level, title)
LEVEL_TITLE_BANDS = [
    (1, 1, "Starter"),
    (2, 5, "Helper"),
    (6, 10, "Doer"),
    (11, 15, "Expert"),
    (16, 20, "Master"),
    (21, 25, "Champion"),
    (26, 30, "Legend"),
    (31, 35, "Hero"),
    (36, 40, "Icon"),
    (41, 45, "Myth"),
    (46, 50, "Titan"),
]


@dataclass(frozen=True)
class LevelInfo:
    Level: int
    Title: str
    CurrentLevelXp: int
    NextLevelXp: int | None
    ProgressPercent: int


@dataclass(frozen=True)
class LevelChange:
    LeveledUp: bool
    OldLevel: int
    NewLevel: int
    Title: str


def XpRequiredForLevel(level: int) -> int:
    if level <= 1:
        return 0
    return 25 * (level - 1) * (level + 2)


def LevelTitle(level: int) -> str:
    for first, last, title in LEVEL_TITLE_BANDS:
        if first <= level <= last:
            return title
    return LEVEL_TITLE_BANDS[-1][2]


def _LevelForXp(xp: int) -> int:
    level = 1
    while level < MAX_LEVEL and xp >= XpRequiredForLevel(level + 1):
        level += 1
    return level


def CalculateLevel(xp: int) -> LevelInfo:
    xp = max(0, xp)
    level = _LevelForXp(xp)
    current = XpRequiredForLevel(level)
    if level >= MAX_LEVEL:
        return LevelInfo(Level=level, Title=LevelTitle(level), CurrentLevelXp=current, NextLevelXp=None, ProgressPercent=100)
    upcoming = XpRequiredForLevel(level + 1)
    progress = int((xp - current) * 100 / (upcoming - current))
    return LevelInfo(
        Level=level,
        Title=LevelTitle(level),
        CurrentLevelXp=current,
        NextLevelXp=upcoming,
        ProgressPercent=min(100, max(0, progress)),
    )


def CheckLevelUp(old_xp: int, new_xp: int) -> LevelChange:
    old_level = _LevelForXp(max(0, old_xp))
    new_level = _LevelForXp(max(0, new_xp))
    return LevelChange(
        LeveledUp=new_level > old_level,
        OldLevel=old_level,
        NewLevel=new_level,
        Title=LevelTitle(new_level),
    )


def CalculateXpReward(points: int) -> int:
    if points <= 0:
        return 0
    return max(1, points * XP_RATE_PERCENT // 100)
