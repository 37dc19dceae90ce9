import pytest

from tactics import Phase, Player, check_invariants
from tactics.combat import (
    AttackAngle, CombatResult, Damage, MeleeCombat, MoraleResolver, RangedCombat, attack_angle,
)
from tactics.hexgrid import HexCoord, Facing, bearing, neighbors
from tactics.state import Terrain
from tests.helpers import ScriptedRandom, make_battle, make_commander, make_unit, quiet_rules

P1, P2 = Player.PLAYER1, Player.PLAYER2


def test_rear_attack_scenario():
    defender = make_unit("a", P2, 0, 0, facing=Facing.S, defense=5)
    attacker = make_unit("b", P1, 0, 1, attack=5)
    engine, state = make_battle([defender, attacker])
    a, b = state.units["a"], state.units["b"]

    angle = attack_angle(b.position, a)
    assert angle == AttackAngle.REAR
    assert engine.melee.effective_attack(state, b, angle) == 9
    assert engine.melee.effective_defense(state, a, angle) == 5 - 4


def test_rear_attack_resolution_uses_modifiers():
    defender = make_unit("a", P2, 0, 0, facing=Facing.S, defense=5)
    attacker = make_unit("b", P1, 0, 1, attack=5)
    rules = quiet_rules()
    _, state = make_battle([defender, attacker], rules=rules)
    melee = MeleeCombat(rules, ScriptedRandom([10, 10]))

    report = melee.resolve(state, state.units["b"], state.units["a"])
    assert report.angle == AttackAngle.REAR
    assert report.attacker_total - report.attacker_roll == 9
    assert report.defender_total - report.defender_roll == 1
    assert report.result == CombatResult.VICTORY
    assert state.units["a"].current_health == 9


def test_front_flank_boundary_favours_attacker():
    defender = make_unit("d", P2, 5, 3, facing=Facing.N)
    attacker_pos = HexCoord(6, 3)  # exactly 60 degrees off the facing
    assert abs(bearing(defender.position, attacker_pos) - 60.0) < 1e-6
    assert attack_angle(attacker_pos, defender) == AttackAngle.FLANK


def test_flank_rear_boundary_favours_attacker():
    defender = make_unit("d", P2, 5, 3, facing=Facing.N)
    attacker_pos = HexCoord(6, 2)  # exactly 120 degrees off the facing
    assert attack_angle(attacker_pos, defender) == AttackAngle.REAR


def test_arcs_around_a_unit():
    defender = make_unit("d", P2, 5, 3, facing=Facing.N)
    angles = [attack_angle(n, defender) for n in neighbors(defender.position)]
    assert angles.count(AttackAngle.FRONT) == 1
    assert angles.count(AttackAngle.FLANK) == 2
    assert angles.count(AttackAngle.REAR) == 3
    assert attack_angle(HexCoord(5, 6), defender) == AttackAngle.FRONT


@pytest.mark.parametrize("margin,result,attacker,defender", [
    (12, CombatResult.CRUSHING_VICTORY, Damage(), Damage(hits=1, pressure=2)),
    (10, CombatResult.CRUSHING_VICTORY, Damage(), Damage(hits=1, pressure=2)),
    (5, CombatResult.VICTORY, Damage(), Damage(hits=1)),
    (1, CombatResult.MARGINAL, Damage(), Damage(pressure=1)),
    (0, CombatResult.STALEMATE, Damage(pressure=1), Damage(pressure=1)),
    (-4, CombatResult.REPULSED, Damage(pressure=1), Damage()),
    (-5, CombatResult.HEAVY_REPULSE, Damage(pressure=2), Damage()),
    (-10, CombatResult.CRUSHING_DEFEAT, Damage(hits=1, pressure=1), Damage()),
])
def test_melee_result_table(margin, result, attacker, defender):
    assert MeleeCombat(quiet_rules()).classify(margin) == (result, attacker, defender)


def test_support_counts_adjacent_allies():
    target = make_unit("t", P2, 5, 3, facing=Facing.S)
    attacker = make_unit("x", P1, 5, 4)
    ally1 = make_unit("y", P1, 4, 4)
    ally2 = make_unit("z", P1, 6, 3)
    ally3 = make_unit("w", P1, 5, 5)
    rules = quiet_rules()
    _, state = make_battle([target, attacker, ally1, ally2, ally3], rules=rules)
    melee = MeleeCombat(rules, ScriptedRandom([10, 10]))

    report = melee.resolve(state, state.units["x"], state.units["t"])
    # three neighbours, capped at two, plus the rear bonus
    assert report.attacker_total - report.attacker_roll == 5 + 2 + 4


def test_terrain_modifies_defense():
    defender = make_unit("d", P2, 5, 3, facing=Facing.N, defense=4)
    _, state = make_battle([defender], terrain={HexCoord(5, 3): Terrain.FORTIFICATION})
    melee = MeleeCombat(quiet_rules())
    assert melee.effective_defense(state, state.units["d"]) == 6


def test_hits_degrade_stats_and_force_rout():
    unit = make_unit("u", P1, 2, 2, attack=5, defense=5, morale=5)
    for _ in range(5):
        unit.take_hits(1)
    assert not unit.is_routing
    assert unit.current.attack == 2
    assert unit.current.defense == 3
    assert unit.base.attack == 5
    unit.take_hits(1)
    assert unit.is_routing
    assert unit.current_health == 4


def test_pressure_exhaustion_routs_at_phase_boundary():
    unit = make_unit("u", P1, 2, 2, pressure=3)
    unit.add_pressure(10)
    assert unit.current_pressure == 3
    assert unit.rout_pending
    assert not unit.is_routing

    _, state = make_battle([unit])
    routed = MoraleResolver(quiet_rules()).apply_pending_routs(state)
    assert routed == ["u"]
    assert state.units["u"].is_routing


def test_killing_blow_clears_hex_and_detaches_commander():
    victim = make_unit("v", P2, 3, 3, health=1)
    other = make_unit("o", P2, 8, 3)
    killer = make_unit("k", P1, 3, 4)
    commander = make_commander("cmd", P2, unit_id="v")
    rules = quiet_rules()
    _, state = make_battle([victim, other, killer], [commander], rules=rules)

    melee = MeleeCombat(rules)
    died = melee.apply_damage(state, state.units["v"], Damage(hits=1))
    assert died
    assert state.tile(HexCoord(3, 3)).unit_id is None
    assert state.units["v"].commander_id is None
    assert not state.commanders["cmd"].is_embedded
    assert state.commanders["cmd"].position == HexCoord(3, 3)
    assert check_invariants(state, rules) == []


def test_crushing_victory_applies_hit_and_pressure():
    defender = make_unit("d", P2, 5, 3, facing=Facing.N)
    attacker = make_unit("a", P1, 5, 4)
    rules = quiet_rules()
    _, state = make_battle([defender, attacker], rules=rules)
    report = MeleeCombat(rules, ScriptedRandom([20, 1])).resolve(
        state, state.units["a"], state.units["d"])

    assert report.result == CombatResult.CRUSHING_VICTORY
    assert state.units["d"].current_health == 9
    assert state.units["d"].current_pressure == 2
    assert state.units["a"].current_pressure == 0


def test_ranged_hit_only_inflicts_pressure():
    shooter = make_unit("s", P1, 0, 0, ranged=6)
    target = make_unit("t", P2, 0, 4)
    rules = quiet_rules()
    _, state = make_battle([shooter, target], rules=rules)
    report = RangedCombat(rules, ScriptedRandom([20, 1])).resolve(
        state, state.units["s"], state.units["t"])

    assert report.result == CombatResult.VICTORY
    assert state.units["t"].current_pressure == 2
    assert state.units["t"].current_health == 10


def test_ranged_fumble_hits_friendly_unit_next_to_target():
    shooter = make_unit("s", P1, 0, 0, ranged=6)
    target = make_unit("t", P2, 0, 4)
    friend = make_unit("f", P1, 1, 3)
    rules = quiet_rules()
    _, state = make_battle([shooter, target, friend], rules=rules)
    report = RangedCombat(rules, ScriptedRandom([1, 20])).resolve(
        state, state.units["s"], state.units["t"])

    assert report.result == CombatResult.REPULSED
    assert report.friendly_fire_unit_id == "f"
    assert state.units["f"].current_pressure == 1
    assert state.units["t"].current_pressure == 0


def test_ranged_cover_and_distance():
    shooter = make_unit("s", P1, 0, 0, ranged=6)
    target = make_unit("t", P2, 0, 6, facing=Facing.S)
    rules = quiet_rules()
    _, state = make_battle([shooter, target], rules=rules,
                           terrain={HexCoord(0, 6): Terrain.FOREST})
    report = RangedCombat(rules, ScriptedRandom([10, 10])).resolve(
        state, state.units["s"], state.units["t"])
    # distance 6 costs 1, shooting from the front; forest cover adds 1
    assert report.attacker_total == 10 + 6 - 1
    assert report.defender_total == 10 + 5 + 1


def test_morale_check_counts_casualties():
    rules = quiet_rules()
    unit = make_unit("u", P1, 2, 2, morale=5)
    unit.casualties_this_turn = 3
    check = MoraleResolver(rules, ScriptedRandom([7])).morale_check(unit)
    assert check.total == 7 + 5 - 3
    assert not check.passed
    check = MoraleResolver(rules, ScriptedRandom([8])).morale_check(unit)
    assert check.passed


def test_morale_checks_only_test_units_with_casualties():
    steady = make_unit("a", P1, 2, 2)
    shaken = make_unit("b", P1, 6, 2, morale=0)
    shaken.casualties_this_turn = 5
    rules = quiet_rules()
    _, state = make_battle([steady, shaken], rules=rules)
    state.phase = Phase.ROUT
    checks = MoraleResolver(rules, ScriptedRandom([1])).run_morale_checks(state)

    assert [c.unit_id for c in checks] == ["b"]
    assert state.units["b"].is_routing
    assert not state.units["a"].is_routing


def test_rally_relieves_pressure():
    rules = quiet_rules()
    unit = make_unit("u", P1, 2, 2, pressure=10)
    unit.current_pressure = 10
    unit.is_routing = True
    _, state = make_battle([unit], rules=rules)
    MoraleResolver(rules).rally(state, state.units["u"])
    assert not state.units["u"].is_routing
    assert state.units["u"].current_pressure == 8
