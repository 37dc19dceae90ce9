from tactics import BattleRules, Phase, Player
from tactics.actions import Action, ActionType
from tactics.hexgrid import HexCoord
from tactics.units import Posture
from tests.helpers import ScriptedRandom, at_phase, make_battle, make_commander, make_unit

P1, P2 = Player.PLAYER1, Player.PLAYER2


def _armies(movement: int = 2):
    return [
        make_unit("a1", P1, 2, 2, movement=movement),
        make_unit("a2", P1, 2, 4, movement=movement),
        make_unit("b1", P2, 15, -5, movement=movement),
        make_unit("b2", P2, 15, -3, movement=movement),
    ]


def test_battle_starts_in_setup():
    _, state = make_battle(_armies())
    assert state.phase == Phase.SETUP
    assert state.turn == 1
    assert not state.is_finished


def test_phase_cycle_is_strict(rules):
    engine, state = make_battle(_armies(), rules=rules)
    state = engine.end_phase(state)
    assert state.phase == Phase.INITIATIVE

    visited = []
    for _ in range(7):
        state = engine.end_phase(state)
        visited.append(state.phase)

    assert visited == [
        Phase.MOVEMENT, Phase.SHOOTING, Phase.CHARGE, Phase.MELEE,
        Phase.ROUT, Phase.REORGANIZATION, Phase.INITIATIVE,
    ]
    assert state.turn == 2
    kinds = [t.kind for t in state.phase_transitions]
    assert "auto_skip" not in kinds
    assert kinds.count("end_turn") == 1


def test_empty_phases_are_skipped_and_logged():
    rules = BattleRules()
    engine, state = make_battle(_armies(movement=0), rules=rules)
    state = engine.end_phase(state)
    state = engine.roll_initiative(state, {"player1": 10, "player2": 3})

    assert state.phase == Phase.INITIATIVE
    assert state.turn == 2
    skipped = [t for t in state.phase_transitions if t.kind == "auto_skip"]
    assert [t.from_phase for t in skipped] == [
        "movement", "shooting", "charge", "melee", "rout", "reorganization",
    ]
    assert all(t.reason for t in skipped)


def test_auto_skip_stops_at_phase_with_actions():
    rules = BattleRules()
    engine, state = make_battle(_armies(), rules=rules)
    state = engine.end_phase(state)
    state = engine.roll_initiative(state, {"player1": 10, "player2": 3})
    assert state.phase == Phase.MOVEMENT


def test_initiative_winner_and_advantage(rules):
    engine, state = make_battle(_armies(), rules=rules)
    state = engine.end_phase(state)
    state = engine.roll_initiative(state, {"player1": 5, "player2": 12})

    assert state.initiative_winner == P2
    assert state.initiative_advantage == 3
    assert state.active_player == P2
    assert state.phase == Phase.MOVEMENT


def test_initiative_tie_goes_to_player1(rules):
    engine, state = make_battle(_armies(), rules=rules)
    state = engine.end_phase(state)
    state = engine.roll_initiative(state, {"player1": 8, "player2": 8})
    assert state.initiative_winner == P1
    assert state.initiative_advantage == 0


def test_commander_strategy_adds_to_initiative(rules):
    commanders = [make_commander("c1", P1, unit_id="a1", strategy=4)]
    engine, state = make_battle(_armies(), commanders, rules=rules)
    state = engine.end_phase(state)
    state = engine.roll_initiative(state, {"player1": 6, "player2": 9})
    assert state.initiative_rolls == {"player1": 10, "player2": 9}
    assert state.initiative_winner == P1
    assert state.initiative_advantage == 1


def test_turn_alternates_after_advantage_is_spent(rules):
    engine, state = make_battle(_armies(), rules=rules)
    state = at_phase(state, Phase.MOVEMENT, active=P1, advantage=1)

    state = engine.execute_action(state, P1, Action(ActionType.MOVE, unit_id="a1",
                                                    target_hex=HexCoord(3, 2)))
    assert state.active_player == P1
    state = engine.execute_action(state, P1, Action(ActionType.MOVE, unit_id="a2",
                                                    target_hex=HexCoord(3, 4)))
    assert state.active_player == P2
    state = engine.execute_action(state, P2, Action(ActionType.MOVE, unit_id="b1",
                                                    target_hex=HexCoord(14, -5)))
    assert state.active_player == P2  # player1 has nobody left to move


def test_two_passes_end_the_phase(rules):
    engine, state = make_battle(_armies(), rules=rules)
    state = at_phase(state, Phase.MOVEMENT)

    state = engine.execute_action(state, P1, Action(ActionType.PASS))
    assert state.phase == Phase.MOVEMENT
    assert state.active_player == P2
    state = engine.execute_action(state, P2, Action(ActionType.PASS))
    assert state.phase == Phase.SHOOTING


def test_phase_boundary_resets_unit_flags(rules):
    engine, state = make_battle(_armies(), rules=rules)
    state = at_phase(state, Phase.MOVEMENT)
    state = engine.execute_action(state, P1, Action(ActionType.MOVE, unit_id="a1",
                                                    target_hex=HexCoord(3, 2)))
    assert state.units["a1"].has_acted_this_turn

    state = engine.end_phase(state)
    assert state.phase == Phase.SHOOTING
    assert not state.units["a1"].has_acted_this_turn
    assert state.units_acted_this_phase == 0


def test_end_of_turn_resets_commanders_and_charge_posture(rules):
    commanders = [make_commander("c1", P1, unit_id="a1")]
    engine, state = make_battle(_armies(), commanders, rules=rules)
    state = at_phase(state, Phase.REORGANIZATION)
    state.commanders["c1"].has_acted_this_turn = True
    state.units["a2"].posture = Posture.CHARGE
    state.units["a2"].casualties_this_turn = 2

    state = engine.end_phase(state)
    assert state.phase == Phase.INITIATIVE
    assert state.turn == 2
    assert not state.commanders["c1"].has_acted_this_turn
    assert state.units["a2"].posture == Posture.STEADY
    assert state.units["a2"].casualties_this_turn == 0
    assert state.initiative_winner is None


def test_pending_rout_applies_at_next_boundary(rules):
    engine, state = make_battle(_armies(), rules=rules)
    state = at_phase(state, Phase.SHOOTING)
    state.units["a1"].add_pressure(10)
    assert not state.units["a1"].is_routing

    state = engine.end_phase(state)
    assert state.phase == Phase.CHARGE
    assert state.units["a1"].is_routing
    assert not state.units["a1"].rout_pending


def test_idle_side_hands_over(rules):
    units = [
        make_unit("a1", P1, 2, 2, movement=0),
        make_unit("b1", P2, 15, -5),
    ]
    engine, state = make_battle(units, rules=rules)
    state = engine.end_phase(state)
    state = engine.roll_initiative(state, {"player1": 15, "player2": 1})
    assert state.initiative_winner == P1
    assert state.active_player == P2


def _last_stand(rng):
    units = [
        make_unit("a", P1, 5, 3, morale=0),
        make_unit("b", P2, 5, 4),
    ]
    engine, state = make_battle(units, rules=BattleRules(), rng=rng)
    state = at_phase(state, Phase.MELEE)
    state.units["a"].casualties_this_turn = 3
    return engine, state


def test_deciding_blow_wins_before_later_phases_run():
    # melee 20 vs 1 kills b; a would fail morale on a 1 if the rout phase began
    engine, state = _last_stand(ScriptedRandom([20, 1, 1]))
    state.units["b"].current_health = 1

    state = engine.execute_action(state, P1, Action(ActionType.ATTACK, unit_id="a",
                                                    target_unit_id="b"))
    assert state.is_finished
    assert state.winner == P1
    assert state.phase == Phase.MELEE
    assert not state.units["a"].is_routing
    assert not any(t.kind == "auto_skip" for t in state.phase_transitions)


def test_boundary_rout_ends_the_battle_before_morale_checks():
    engine, state = _last_stand(ScriptedRandom([1]))
    state.units["b"].rout_pending = True

    state = engine.end_phase(state)
    assert state.is_finished
    assert state.winner == P1
    assert state.units["b"].is_routing
    assert not state.units["a"].is_routing
