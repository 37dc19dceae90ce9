import pytest

from tactics.config import BattleRules, DEFAULT_RULES_PATH


def test_bundled_rules_match_builtin_defaults():
    loaded = BattleRules.load(DEFAULT_RULES_PATH)
    builtin = BattleRules()
    assert loaded.map_width == builtin.map_width == 20
    assert loaded.map_height == builtin.map_height == 12
    assert loaded.distance_penalties == builtin.distance_penalties
    assert loaded.advantage_bands == builtin.advantage_bands
    assert loaded.terrain == builtin.terrain
    assert loaded.postures == builtin.postures
    assert loaded.cards == builtin.cards
    assert loaded.difficulty == builtin.difficulty


def test_missing_file_falls_back_to_defaults(tmp_path):
    rules = BattleRules.load(tmp_path / "nope.yaml")
    assert rules.morale_threshold == 10
    assert "forest" in rules.terrain


def test_partial_file_overrides_only_named_values(tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text("routing:\n  morale_threshold: 14\nphases:\n  auto_skip_empty_phases: false\n")
    rules = BattleRules.load(path)
    assert rules.morale_threshold == 14
    assert rules.auto_skip_empty_phases is False
    assert rules.max_hits_before_rout == 6


@pytest.mark.parametrize("distance,penalty", [(2, 0), (4, 0), (5, -1), (8, -1), (9, -2), (13, -4)])
def test_distance_penalty(distance, penalty):
    assert BattleRules().distance_penalty(distance) == penalty


@pytest.mark.parametrize("difference,advantage", [(0, 0), (1, 1), (3, 1), (4, 2), (6, 2), (7, 3), (9, 3), (10, 4), (19, 4)])
def test_advantage_bands(difference, advantage):
    assert BattleRules().advantage_for(difference) == advantage


def test_unknown_terrain_and_posture_are_neutral():
    rules = BattleRules()
    assert rules.terrain_for("lava").movement_cost == 1
    assert rules.posture_for("dancing").attack == 0
