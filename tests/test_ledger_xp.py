import pytest

from chorebank.modules.ledger.xp import (
    MAX_LEVEL,
    CalculateLevel,
    CalculateXpReward,
    CheckLevelUp,
    LevelTitle,
    XpRequiredForLevel,
)


@pytest.mark.parametrize(
    "level, expected",
    [(0, 0), (1, 0), (2, 100), (3, 250), (4, 450), (5, 700), (50, 63700)],
)
def test_xp_required_for_level(level, expected):
    assert XpRequiredForLevel(level) == expected


def test_level_one_has_no_progress():
    info = CalculateLevel(0)
    assert info.Level == 1
    assert info.Title == "Starter"
    assert info.CurrentLevelXp == 0
    assert info.NextLevelXp == 100
    assert info.ProgressPercent == 0


def test_progress_is_relative_to_current_band():
    info = CalculateLevel(175)
    assert info.Level == 2
    assert info.Title == "Helper"
    assert info.NextLevelXp == 250
    assert info.ProgressPercent == 50


def test_level_is_capped():
    info = CalculateLevel(10_000_000)
    assert info.Level == MAX_LEVEL
    assert info.Title == "Titan"
    assert info.NextLevelXp is None
    assert info.ProgressPercent == 100


def test_titles_follow_bands():
    assert LevelTitle(6) == "Doer"
    assert LevelTitle(10) == "Doer"
    assert LevelTitle(11) == "Expert"
    assert LevelTitle(46) == "Titan"


@pytest.mark.parametrize("points, expected", [(0, 0), (-5, 0), (1, 1), (7, 1), (20, 3), (100, 15)])
def test_xp_reward_is_fifteen_percent_with_floor_of_one(points, expected):
    assert CalculateXpReward(points) == expected


def test_check_level_up_reports_new_title():
    change = CheckLevelUp(90, 110)
    assert change.LeveledUp
    assert change.OldLevel == 1
    assert change.NewLevel == 2
    assert change.Title == "Helper"
    assert not CheckLevelUp(110, 120).LeveledUp
