import asyncio
import random

import pytest

from bots import (
    Aggression, Combatant, EnemyBehavior, HexBot, PreferredRange, SkirmishState,
    TargetPriority, ThinkingDelay, decide_bot_action, decide_enemy_action, schedule,
    select_posture, should_seek_cover, thinking_delay,
)
from bots.hexbot import BOT_NAMES, bot_name
from bots.skirmish import BASIC_CARDS, FLEE_CARD, PASS_CARD, select_card, select_target
from tactics import Phase, Player, board
from tactics.actions import ActionType
from tactics.hexgrid import Facing, HexCoord
from tests.helpers import at_phase, make_battle, make_unit, quiet_rules

P1, P2 = Player.PLAYER1, Player.PLAYER2


def fighter(cid, team="enemy", vitality=10, max_vitality=10, **kwargs):
    return Combatant(id=cid, name=cid.title(), team=team, vitality=vitality,
                     max_vitality=max_vitality, **kwargs)


# Skirmish AI
@pytest.mark.parametrize("priority", list(TargetPriority))
def test_badly_hurt_combatant_flees(priority):
    me = fighter("orc", vitality=2)
    state = SkirmishState([me, fighter("hero", team="player")])
    behavior = EnemyBehavior(target_priority=priority, flee_threshold=0.3)

    decision = decide_enemy_action(me, state, behavior, random.Random(0))
    assert decision.card == FLEE_CARD
    assert decision.should_flee
    assert decision.action == "action_flee"


def test_no_opponents_means_pass():
    me = fighter("orc")
    state = SkirmishState([me, fighter("hero", team="player", is_down=True)])
    decision = decide_enemy_action(me, state)
    assert decision.card == PASS_CARD
    assert decision.target_ids == []


def test_flee_threshold_zero_never_flees():
    me = fighter("orc", vitality=1)
    state = SkirmishState([me, fighter("hero", team="player")])
    decision = decide_enemy_action(me, state, EnemyBehavior(flee_threshold=0))
    assert not decision.should_flee
    assert decision.target_ids == ["hero"]


@pytest.mark.parametrize("priority", [TargetPriority.WEAKEST, TargetPriority.NEAREST])
def test_weakest_and_nearest_pick_lowest_vitality(priority):
    candidates = [fighter("a", vitality=7), fighter("b", vitality=3), fighter("c", vitality=9)]
    chosen = select_target(candidates, EnemyBehavior(target_priority=priority), random.Random(0))
    assert chosen.id == "b"


def test_strongest_uses_threat():
    candidates = [
        fighter("brute", vitality=8, weapon_damage=1),
        fighter("duelist", vitality=5, weapon_damage=3, evasion=2),
    ]
    behavior = EnemyBehavior(target_priority=TargetPriority.STRONGEST)
    assert select_target(candidates, behavior, random.Random(0)).id == "duelist"


def test_random_priority_is_reproducible():
    candidates = [fighter(str(i), vitality=i + 1) for i in range(5)]
    behavior = EnemyBehavior(target_priority=TargetPriority.RANDOM)
    first = select_target(candidates, behavior, random.Random(9))
    second = select_target(candidates, behavior, random.Random(9))
    assert first is second


def test_card_choice():
    me = fighter("orc", available_cards=["standard_attack", "powerful_strike", "aimed_shot"])
    aggressive = EnemyBehavior(aggression=Aggression.AGGRESSIVE)
    assert select_card(me, 1, aggressive).id == "powerful_strike"
    assert select_card(me, 4, aggressive).id == "standard_attack"
    assert select_card(me, 1, EnemyBehavior(aggression=Aggression.PASSIVE)) == \
        BASIC_CARDS["total_defense"]
    assert select_card(me, 7, EnemyBehavior(preferred_range=PreferredRange.RANGED)).id == \
        "aimed_shot"
    assert select_card(me, 3, EnemyBehavior(preferred_range=PreferredRange.MELEE)).id == \
        "quick_attack"


def test_decision_uses_positions_for_distance():
    me = fighter("orc", position=HexCoord(0, 0), available_cards=["powerful_strike"])
    hero = fighter("hero", team="player", position=HexCoord(1, 0))
    behavior = EnemyBehavior(aggression=Aggression.AGGRESSIVE)
    decision = decide_enemy_action(me, SkirmishState([me, hero]), behavior)
    assert decision.card.id == "powerful_strike"
    assert decision.target_ids == ["hero"]


def test_posture_selection():
    assert select_posture(fighter("orc")) is None
    postures = EnemyBehavior(uses_postures=True, aggression=Aggression.AGGRESSIVE)
    assert select_posture(fighter("orc", vitality=2, behavior=postures)) == "posture_high_guard"
    assert select_posture(fighter("orc", vitality=9, behavior=postures)) == "posture_aggressive"
    careful = EnemyBehavior(uses_postures=True, uses_cover=True)
    assert select_posture(fighter("orc", vitality=5, behavior=careful)) == "posture_cover"
    assert select_posture(fighter("orc", vitality=9, behavior=careful)) is None


def test_cover_seeking():
    assert not should_seek_cover(fighter("orc", vitality=1))
    cover = EnemyBehavior(uses_cover=True)
    assert should_seek_cover(fighter("orc", vitality=4, behavior=cover))
    assert not should_seek_cover(fighter("orc", vitality=9, behavior=cover))
    archer = EnemyBehavior(uses_cover=True, preferred_range=PreferredRange.RANGED)
    assert should_seek_cover(fighter("orc", vitality=9, behavior=archer))


# Hex bot
def _field(movement=2):
    return [
        make_unit("a1", P1, 4, 2, movement=movement),
        make_unit("a2", P1, 4, 3, movement=movement, ranged=5, unit_type="archers"),
        make_unit("b1", P2, 9, 0, movement=movement),
        make_unit("b2", P2, 9, 1, movement=movement, unit_type="cavalry"),
    ]


def test_shared_phases():
    _, state = make_battle(_field())
    bot = HexBot(P2, rng_seed=1)
    assert bot.decide(state).type == ActionType.END_PHASE
    state.phase = Phase.INITIATIVE
    assert bot.decide(state).type == ActionType.ROLL_INITIATIVE
    assert len(bot.decisions) == 2
    bot.reset()
    assert bot.decisions == []


def test_waits_for_its_turn():
    _, state = make_battle(_field())
    state = at_phase(state, Phase.MOVEMENT, active=P2)
    decision = HexBot(P1, rng_seed=1).choose(state)
    assert decision.waiting
    assert decision.action is None
    assert decision.type is None


def test_finished_battle_means_waiting():
    _, state = make_battle(_field())
    state = at_phase(state, Phase.MELEE, active=P1)
    state.is_finished = True
    assert HexBot(P1, rng_seed=1).choose(state).waiting


def test_ends_phase_when_nobody_can_act():
    _, state = make_battle(_field(movement=0))
    state = at_phase(state, Phase.MOVEMENT, active=P1)
    assert HexBot(P1, rng_seed=1).choose(state).type == ActionType.END_PHASE


def test_moves_toward_the_enemy():
    rules = quiet_rules()
    rules.difficulty["medium"].random_factor = 0
    engine, state = make_battle(_field(), rules=rules)
    state = at_phase(state, Phase.MOVEMENT, active=P1)
    decision = HexBot(P1, rules=rules, rng_seed=1).choose(state)
    assert decision.type == ActionType.MOVE
    # the chosen move is legal
    engine.execute_action(state, P1, decision.action)


def test_melee_prefers_the_exposed_rear():
    rules = quiet_rules()
    rules.difficulty["medium"].random_factor = 0
    units = [
        make_unit("a", P1, 5, 3),
        make_unit("front", P2, 5, 4, facing=Facing.S),
        make_unit("rear", P2, 5, 2, facing=Facing.S),
    ]
    _, state = make_battle(units, rules=rules)
    state = at_phase(state, Phase.MELEE, active=P1)

    decision = HexBot(P1, rules=rules, rng_seed=1).choose(state)
    assert decision.type == ActionType.ATTACK
    assert decision.action.target_unit_id == "rear"


def test_rout_phase_rallies_when_possible():
    rules = quiet_rules()
    rules.difficulty["medium"].random_factor = 0
    units = [make_unit("r", P1, 5, 2), make_unit("n", P1, 5, 3), make_unit("e", P2, 15, -5)]
    _, state = make_battle(units, rules=rules)
    state = at_phase(state, Phase.ROUT, active=P1)
    state.units["r"].is_routing = True

    decision = HexBot(P1, rules=rules, rng_seed=1).choose(state)
    assert decision.type == ActionType.RALLY
    assert decision.action.unit_id == "r"


def test_random_factor_draws_from_every_legal_option():
    rules = quiet_rules()
    rules.difficulty["medium"].random_factor = 1
    engine, state = make_battle(_field(), rules=rules)
    state = at_phase(state, Phase.MOVEMENT, active=P1)

    bot = HexBot(P1, rules=rules, rng_seed=5)
    options = bot.options(state)
    legal = sum(len(board.valid_moves(state, state.units[uid], rules)) for uid in ("a1", "a2"))
    assert len(options) == legal
    # moves that lose ground are still on the table
    assert any(score <= 0 for _, _, score in options)

    mirror = random.Random(5)
    bot_name("medium", mirror)
    mirror.random()
    expected = mirror.choice(options)[0]

    decision = bot.choose(state)
    assert decision.reason.startswith("Improvised")
    assert decision.action == expected
    assert HexBot(P1, rules=rules, rng_seed=5).choose(state).action == expected
    engine.execute_action(state, P1, decision.action)


def _rear_and_front():
    return [
        make_unit("a", P1, 5, 3),
        make_unit("front", P2, 5, 4, facing=Facing.S),
        make_unit("rear", P2, 5, 2, facing=Facing.S),
    ]


def test_easy_bot_ignores_flank_and_rear():
    rules = quiet_rules()
    _, state = make_battle(_rear_and_front(), rules=rules)
    attacker, front, rear = (state.units[uid] for uid in ("a", "front", "rear"))

    easy = HexBot(P1, "easy", rules=rules, rng_seed=1)
    assert easy.evaluate_melee_target(state, attacker, rear, attacker.position) == \
        easy.evaluate_melee_target(state, attacker, front, attacker.position)

    medium = HexBot(P1, "medium", rules=rules, rng_seed=1)
    assert medium.evaluate_melee_target(state, attacker, rear, attacker.position) == \
        medium.evaluate_melee_target(state, attacker, front, attacker.position) + 20


def test_hard_bot_relieves_weak_friendlies():
    rules = quiet_rules()
    units = [
        make_unit("a", P1, 5, 3),
        make_unit("w", P1, 6, 3),
        make_unit("t", P2, 5, 4),
        make_unit("o", P2, 5, 2),
    ]
    _, state = make_battle(units, rules=rules)
    state.units["w"].current_health = 3
    attacker = state.units["a"]

    hard = HexBot(P1, "hard", rules=rules, rng_seed=1)
    medium = HexBot(P1, "medium", rules=rules, rng_seed=1)
    for uid, bonus in (("t", 20), ("o", 0)):
        target = state.units[uid]
        assert hard.evaluate_melee_target(state, attacker, target, attacker.position) == \
            medium.evaluate_melee_target(state, attacker, target, attacker.position) + bonus


def test_same_seed_same_decisions():
    _, state = make_battle(_field())
    state = at_phase(state, Phase.MOVEMENT, active=P1)
    first = HexBot(P1, "easy", rng_seed=42)
    second = HexBot(P1, "easy", rng_seed=42)
    assert first.name == second.name
    assert first.choose(state).action == second.choose(state).action


def test_names_and_delays_follow_difficulty(rules, rng):
    for difficulty in ("easy", "medium", "hard"):
        bot = HexBot(P2, difficulty, rules=rules, rng=rng)
        assert bot.name in BOT_NAMES[difficulty]
        low, high = rules.difficulty[difficulty].thinking_delay_ms
        assert low <= bot.thinking_delay() <= high
        assert low <= thinking_delay(difficulty, rng, rules) <= high


def test_unknown_difficulty():
    _, state = make_battle(_field())
    with pytest.raises(ValueError):
        decide_bot_action(state, P1, "nightmare")


# Pacing
def test_cancelled_delay_never_fires():
    fired = []

    async def scenario():
        delay = schedule(20, lambda: fired.append("move"))
        assert delay.cancel()
        result = await delay.wait()
        await asyncio.sleep(0.05)
        return result

    assert asyncio.run(scenario()) is False
    assert fired == []


def test_delay_fires_once():
    fired = []

    async def scenario():
        delay = schedule(1, lambda: fired.append("move"))
        result = await delay.wait()
        return result, delay.cancel()

    assert asyncio.run(scenario()) == (True, False)
    assert fired == ["move"]


def test_wait_requires_start():
    delay = ThinkingDelay(10, lambda: None)
    with pytest.raises(RuntimeError):
        asyncio.run(delay.wait())


def test_failing_callback_is_logged_not_raised(caplog):
    def explode():
        raise RuntimeError("engine offline")

    async def scenario():
        delay = schedule(1, explode)
        return delay, await delay.wait()

    delay, result = asyncio.run(scenario())
    assert result is False
    assert isinstance(delay.error, RuntimeError)
    assert delay.fired
    assert "Delayed bot action failed" in caplog.text
