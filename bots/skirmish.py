"""
Skirmish AI: decisions for individual combatants in small-scale fights.

Each combatant carries an EnemyBehavior describing how it picks targets, when
it flees and which cards it favours. The decisions are applied through
tactics.skirmish.SkirmishEngine.
"""

import random
from typing import Optional

from tactics.hexgrid import hex_distance
from tactics.skirmish import (
    AIDecision, Aggression, BASIC_CARDS, CombatCard, Combatant, EnemyBehavior, FLEE_CARD,
    PASS_CARD, PreferredRange, SkirmishEngine, SkirmishState, TargetPriority, get_card,
)

# Assumed distance when either side has no map position
DEFAULT_DISTANCE = 5


def calculate_threat(combatant: Combatant) -> int:
    return combatant.weapon_damage * 2 + combatant.vitality + combatant.evasion


def estimate_distance(a: Combatant, b: Combatant) -> int:
    if a.position is not None and b.position is not None:
        return hex_distance(a.position, b.position)
    return DEFAULT_DISTANCE


def select_target(candidates: list[Combatant], behavior: EnemyBehavior,
                  rng: random.Random) -> Combatant:
    """Pick a target by priority.

    NEAREST resolves to the lowest vitality, like WEAKEST: the skirmish view
    has no reliable positions to measure from.
    """
    priority = behavior.target_priority
    if priority in (TargetPriority.NEAREST, TargetPriority.WEAKEST):
        return min(candidates, key=lambda c: c.vitality)
    if priority == TargetPriority.STRONGEST:
        return max(candidates, key=calculate_threat)
    return rng.choice(candidates)


def select_card(combatant: Combatant, distance: int, behavior: EnemyBehavior) -> CombatCard:
    cards = combatant.available_cards

    if behavior.aggression == Aggression.AGGRESSIVE and distance <= 2:
        for card_id in cards:
            if "powerful" in card_id or "precise" in card_id:
                card = get_card(card_id)
                if card:
                    return card

    if behavior.aggression == Aggression.PASSIVE or \
            combatant.vitality < combatant.max_vitality * 0.3:
        return BASIC_CARDS["total_defense"]

    if behavior.preferred_range == PreferredRange.RANGED and distance > 5:
        for card_id in cards:
            if "shot" in card_id:
                card = get_card(card_id)
                if card:
                    return card

    if behavior.preferred_range == PreferredRange.MELEE and distance > 2:
        return BASIC_CARDS["quick_attack"]

    return BASIC_CARDS["standard_attack"]


def decide_enemy_action(combatant: Combatant, state: SkirmishState,
                        behavior: Optional[EnemyBehavior] = None,
                        rng: Optional[random.Random] = None) -> AIDecision:
    """Decide a combatant's action. Returns a pass when nobody is left to fight."""
    rng = rng or random.Random()
    behavior = behavior or combatant.behavior or EnemyBehavior()

    opponents = [c for c in state.combatants
                 if c.team != combatant.team and c.is_standing]
    if not opponents:
        return AIDecision(card=PASS_CARD)

    if behavior.flee_threshold > 0 and combatant.hp_ratio <= behavior.flee_threshold:
        return AIDecision(card=FLEE_CARD, should_flee=True)

    target = select_target(opponents, behavior, rng)
    distance = estimate_distance(combatant, target)
    card = select_card(combatant, distance, behavior)
    return AIDecision(card=card, target_ids=[target.id])


def should_seek_cover(combatant: Combatant, behavior: Optional[EnemyBehavior] = None) -> bool:
    behavior = behavior or combatant.behavior
    if behavior is None or not behavior.uses_cover:
        return False
    if combatant.hp_ratio < 0.5:
        return True
    return behavior.preferred_range == PreferredRange.RANGED


def select_posture(combatant: Combatant,
                   behavior: Optional[EnemyBehavior] = None) -> Optional[str]:
    """Posture card id to adopt, or None to keep the current one."""
    behavior = behavior or combatant.behavior
    if behavior is None or not behavior.uses_postures:
        return None

    ratio = combatant.hp_ratio
    if ratio < 0.3:
        return "posture_high_guard"
    if behavior.aggression == Aggression.AGGRESSIVE and ratio > 0.5:
        return "posture_aggressive"
    if behavior.uses_cover and ratio < 0.6:
        return "posture_cover"
    return None


def choose_enemy_cards(engine: SkirmishEngine, state: SkirmishState,
                       rng: Optional[random.Random] = None) -> SkirmishState:
    """Let every enemy still waiting on a card decide and commit."""
    for combatant in state.combatants:
        if state.is_finished:
            break
        current = state.combatant(combatant.id)
        if current.team != "enemy" or not current.is_standing or \
                not current.pending_card_choice:
            continue
        decision = decide_enemy_action(current, state, rng=rng)
        state = engine.apply_decision(state, current.id, decision)
    return state
