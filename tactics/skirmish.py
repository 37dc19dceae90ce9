"""
Individual skirmish combat on a tick timeline.

Every combatant picks a card at the start; the card's speed plus weapon speed
and armor penalty set the tick at which the action resolves. The combatant with
the lowest tick acts next. Attacks roll 2d6 + attribute + skill + modifiers
against the defender's guard; a natural 12 is a critical (double damage) and a
natural 2 a fumble (automatic miss). Damage above the weapon's base scales with
the margin by a ratio that depends on the weapon type.
"""

import copy
import logging
import random
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .hexgrid import HexCoord
from .state import DRAW

logger = logging.getLogger(__name__)

# Ticks per round; movement allowances refresh when a new round starts
TICKS_PER_ROUND = 10


class Aggression(Enum):
    PASSIVE = "passive"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


class TargetPriority(Enum):
    NEAREST = "nearest"
    WEAKEST = "weakest"
    STRONGEST = "strongest"
    RANDOM = "random"


class PreferredRange(Enum):
    MELEE = "melee"
    RANGED = "ranged"
    ANY = "any"


@dataclass
class EnemyBehavior:
    """How a computer-controlled combatant fights."""
    aggression: Aggression = Aggression.BALANCED
    target_priority: TargetPriority = TargetPriority.NEAREST
    flee_threshold: float = 0.1  # fraction of max vitality
    preferred_range: PreferredRange = PreferredRange.ANY
    uses_postures: bool = False
    uses_cover: bool = False


class WeaponType(Enum):
    BALLISTIC = "ballistic"
    ENERGY = "energy"
    MELEE = "melee"
    EXPLOSIVE = "explosive"


# Margin multiplier per weapon type
DAMAGE_RATIOS = {
    WeaponType.BALLISTIC: 1.0,
    WeaponType.ENERGY: 1.0,
    WeaponType.MELEE: 0.5,
    WeaponType.EXPLOSIVE: 2.0,
}


class VitalityState(Enum):
    HEALTHY = "healthy"
    WOUNDED = "wounded"
    SEVERELY_WOUNDED = "severely_wounded"
    DEAD = "dead"


def vitality_state(current: int, maximum: int) -> tuple[VitalityState, int]:
    """Wound state and the attack penalty it carries."""
    if current <= 0:
        return VitalityState.DEAD, 0
    percentage = current / maximum * 100 if maximum else 0
    if percentage > 50:
        return VitalityState.HEALTHY, 0
    if percentage > 25:
        return VitalityState.WOUNDED, -1
    return VitalityState.SEVERELY_WOUNDED, -2


# Environment modifiers
DISTANCE_MODIFIERS = {  # (attack, guard)
    "point_blank": (2, -2),
    "short": (1, 0),
    "medium": (0, 0),
    "long": (-2, 0),
    "extreme": (-4, 0),
}
LIGHTING_MODIFIERS = {"normal": 0, "dim": -2, "darkness": -4}
COVER_GUARD_BONUS = {"none": 0, "partial": 2, "substantial": 4, "almost_total": 6}
TARGET_MOVEMENT_MODIFIERS = {"stationary": 2, "normal": 0, "running": -2, "sprint": -4}
POSITION_MODIFIERS = {
    "none": 0,
    "elevated": 2,
    "lowground": -2,
    "flanking": 2,
    "rear": 4,
    "surprise": 0,
}


@dataclass
class CombatModifiers:
    """Situational modifiers for one attack."""
    distance: Optional[str] = None
    lighting: Optional[str] = None
    cover: Optional[str] = None  # "total" makes the attack impossible
    target_movement: Optional[str] = None
    position: Optional[str] = None  # "surprise" denies the defender its dodge

    def attack_bonus(self) -> int:
        total = 0
        if self.distance:
            total += DISTANCE_MODIFIERS[self.distance][0]
        if self.lighting:
            total += LIGHTING_MODIFIERS[self.lighting]
        if self.target_movement:
            total += TARGET_MOVEMENT_MODIFIERS[self.target_movement]
        if self.position:
            total += POSITION_MODIFIERS[self.position]
        return total

    def guard_bonus(self) -> int:
        total = 0
        if self.cover:
            total += COVER_GUARD_BONUS[self.cover]
        if self.distance:
            total += DISTANCE_MODIFIERS[self.distance][1]
        return total


@dataclass
class CombatCard:
    """A maneuver a combatant can play; speed is the number of ticks it takes."""
    id: str
    name: str
    card_type: str = "basic"
    speed_modifier: int = 0
    attack_modifier: int = 0
    movement_modifier: int = 0
    defense_bonus: int = 0
    effect: str = ""

    @property
    def is_attack(self) -> bool:
        return self.defense_bonus == 0 and self.id not in (FLEE_ID, PASS_ID)


FLEE_ID = "action_flee"
PASS_ID = "action_pass"

BASIC_CARDS = {
    "standard_attack": CombatCard("standard_attack", "Standard Attack", speed_modifier=1,
                                  movement_modifier=-2),
    "quick_attack": CombatCard("quick_attack", "Quick Attack", attack_modifier=-2,
                               movement_modifier=-2),
    "precise_attack": CombatCard("precise_attack", "Precise Attack", speed_modifier=4,
                                 attack_modifier=3, movement_modifier=-1),
    "total_defense": CombatCard("total_defense", "Total Defense", speed_modifier=3,
                                movement_modifier=-1, defense_bonus=3,
                                effect="+3 guard until the next action"),
}

SPECIAL_CARDS = {
    "powerful_strike": CombatCard("powerful_strike", "Powerful Strike", "special",
                                  speed_modifier=4, attack_modifier=3, movement_modifier=-2),
    "precise_thrust": CombatCard("precise_thrust", "Precise Thrust", "tactical",
                                 speed_modifier=3, attack_modifier=1, movement_modifier=-4),
    "aimed_shot": CombatCard("aimed_shot", "Aimed Shot", "special",
                             speed_modifier=3, attack_modifier=2, movement_modifier=-1),
    "quick_shot": CombatCard("quick_shot", "Quick Shot", "tactical",
                             speed_modifier=1, attack_modifier=-2, movement_modifier=-2),
}

FLEE_CARD = CombatCard(FLEE_ID, "Flee", movement_modifier=10, effect="Leaves the fight")
PASS_CARD = CombatCard(PASS_ID, "Pass", effect="Does nothing this turn")


def get_card(card_id: str) -> Optional[CombatCard]:
    if card_id == FLEE_ID:
        return FLEE_CARD
    if card_id == PASS_ID:
        return PASS_CARD
    return BASIC_CARDS.get(card_id) or SPECIAL_CARDS.get(card_id)


@dataclass
class Combatant:
    """One fighter in a skirmish."""
    id: str
    name: str
    team: str  # "player" or "enemy"
    vitality: int
    max_vitality: int
    evasion: int = 0
    guard: int = 8
    reflexes: int = 2
    coordination: int = 2
    melee_skill: int = 1
    shooting_skill: int = 0
    weapon_type: WeaponType = WeaponType.MELEE
    weapon_damage: int = 1
    weapon_attack: int = 0
    weapon_speed: int = 0
    armor_guard: int = 0
    damage_reduction: int = 0
    armor_speed_penalty: int = 0
    movement: int = 6
    position: Optional[HexCoord] = None
    available_cards: list[str] = field(default_factory=list)
    behavior: Optional[EnemyBehavior] = None
    is_down: bool = False
    has_fled: bool = False

    # Timeline
    current_tick: int = 0
    current_movement: Optional[int] = None
    pending_card_choice: bool = True
    chosen_card_id: Optional[str] = None
    chosen_target_id: Optional[str] = None
    defending_bonus: int = 0

    def __post_init__(self):
        if self.current_movement is None:
            self.current_movement = self.movement

    @property
    def hp_ratio(self) -> float:
        return self.vitality / self.max_vitality if self.max_vitality else 0.0

    @property
    def is_standing(self) -> bool:
        return not self.is_down and not self.has_fled


@dataclass
class AIDecision:
    """What a combatant does this turn."""
    card: CombatCard
    target_ids: list[str] = field(default_factory=list)
    should_flee: bool = False
    movement: Optional[list[HexCoord]] = None

    @property
    def action(self) -> str:
        return self.card.id


class SkirmishPhase(Enum):
    CHOOSING = "choosing"
    COMBAT = "combat"
    FINISHED = "finished"


@dataclass
class AttackResult:
    """Outcome of one attack roll."""
    success: bool
    message: str
    attack_total: Optional[int] = None
    target_guard: Optional[int] = None
    margin: Optional[int] = None
    dice: Optional[tuple[int, int]] = None
    base_damage: int = 0
    bonus_damage: int = 0
    total_damage: int = 0
    damage_reduction: int = 0
    final_damage: int = 0
    is_critical: bool = False
    is_fumble: bool = False
    effect: str = ""


@dataclass
class SkirmishLogEntry:
    tick: int
    round: int
    message: str
    kind: str = "action"
    combatant_id: Optional[str] = None


@dataclass
class SkirmishState:
    combatants: list[Combatant] = field(default_factory=list)
    round: int = 1
    id: str = ""
    current_tick: int = 0
    phase: SkirmishPhase = SkirmishPhase.CHOOSING
    winner: Optional[str] = None  # team, DRAW, or None while fighting
    log: list[SkirmishLogEntry] = field(default_factory=list)
    resolved: list[AttackResult] = field(default_factory=list)

    def combatant(self, combatant_id: str) -> Optional[Combatant]:
        for c in self.combatants:
            if c.id == combatant_id:
                return c
        return None

    def standing(self, team: Optional[str] = None) -> list[Combatant]:
        return [c for c in self.combatants
                if c.is_standing and (team is None or c.team == team)]

    def record(self, message: str, kind: str = "action", combatant_id: Optional[str] = None):
        self.log.append(SkirmishLogEntry(self.current_tick, self.round, message, kind,
                                         combatant_id))

    @property
    def is_finished(self) -> bool:
        return self.phase == SkirmishPhase.FINISHED

    def copy(self) -> "SkirmishState":
        return copy.deepcopy(self)


class SkirmishError(ValueError):
    """A skirmish command that cannot be applied."""


def action_tick(current_tick: int, card: CombatCard, combatant: Combatant) -> int:
    """Tick at which an action resolves. Always at least one tick ahead."""
    delta = card.speed_modifier + combatant.weapon_speed + combatant.armor_speed_penalty
    return current_tick + max(1, delta)


def check_victory_condition(state: SkirmishState):
    """Winning team, DRAW when nobody is left standing, or None."""
    player_alive = bool(state.standing("player"))
    enemy_alive = bool(state.standing("enemy"))
    if not player_alive and not enemy_alive:
        return DRAW
    if not player_alive:
        return "enemy"
    if not enemy_alive:
        return "player"
    return None


def get_next_combatant(state: SkirmishState) -> Optional[Combatant]:
    """Standing combatant with the lowest tick; ties keep roster order."""
    return min(state.standing(), key=lambda c: c.current_tick, default=None)


class SkirmishEngine:
    """Runs an individual skirmish. Every operation returns a new state."""

    def __init__(self, rng: Optional[random.Random] = None, rng_seed: Optional[int] = None):
        self.rng = rng or random.Random(rng_seed)

    # Setup
    def initialize_battle(self, combatants: list[Combatant],
                          deploy: bool = True) -> SkirmishState:
        """Everyone starts at tick 0 with a card to choose.

        With deploy, players line up at q=1 and enemies at q=8 from r=2 down.
        """
        if not combatants:
            raise SkirmishError("Cannot start a skirmish without combatants")

        fighters = [copy.deepcopy(c) for c in combatants]
        placed = {"player": 0, "enemy": 0}
        for c in fighters:
            c.current_tick = 0
            c.current_movement = c.movement
            c.pending_card_choice = True
            c.chosen_card_id = None
            c.chosen_target_id = None
            if deploy:
                col = 1 if c.team == "player" else 8
                c.position = HexCoord(col, 2 + placed.get(c.team, 0))
                placed[c.team] = placed.get(c.team, 0) + 1

        state = SkirmishState(combatants=fighters, id=uuid.uuid4().hex[:12])
        state.record("Combat begins: choose your cards", "system")
        logger.info("Skirmish %s started with %d combatants", state.id, len(fighters))
        return state

    # Dice
    def roll_2d6(self) -> tuple[int, tuple[int, int]]:
        dice = (self.rng.randint(1, 6), self.rng.randint(1, 6))
        return sum(dice), dice

    # Choosing
    def choose_card(self, state: SkirmishState, combatant_id: str, card_id: str,
                    target_id: Optional[str] = None) -> SkirmishState:
        """Commit a combatant to a card; its action tick follows from the card speed."""
        new_state = state.copy()
        combatant = self._pending(new_state, combatant_id)
        card = get_card(card_id)
        if card is None:
            raise SkirmishError(f"Unknown card {card_id}")
        if card.is_attack:
            target = new_state.combatant(target_id) if target_id else None
            if target is None or not target.is_standing or target.team == combatant.team:
                raise SkirmishError(f"{combatant.name} needs a standing enemy to attack")

        combatant.current_tick = action_tick(new_state.current_tick, card, combatant)
        combatant.pending_card_choice = False
        combatant.chosen_card_id = card.id
        combatant.chosen_target_id = target_id if card.is_attack else None
        logger.debug("%s chooses %s, acts at tick %d", combatant.name, card.id,
                     combatant.current_tick)

        self._start_combat_when_ready(new_state)
        return new_state

    def apply_decision(self, state: SkirmishState, combatant_id: str,
                       decision: AIDecision) -> SkirmishState:
        """Apply a computer-controlled combatant's decision."""
        if not decision.should_flee:
            target_id = decision.target_ids[0] if decision.target_ids else None
            return self.choose_card(state, combatant_id, decision.card.id, target_id)

        new_state = state.copy()
        combatant = self._pending(new_state, combatant_id)
        combatant.has_fled = True
        combatant.pending_card_choice = False
        new_state.record(f"{combatant.name} flees the fight", "action", combatant.id)
        logger.info("%s flees", combatant.name)
        if not self._finish_if_decided(new_state):
            self._start_combat_when_ready(new_state)
        return new_state

    def _pending(self, state: SkirmishState, combatant_id: str) -> Combatant:
        combatant = state.combatant(combatant_id)
        if combatant is None:
            raise SkirmishError(f"Unknown combatant {combatant_id}")
        if state.is_finished:
            raise SkirmishError("The skirmish is over")
        if not combatant.is_standing:
            raise SkirmishError(f"{combatant.name} is out of the fight")
        if not combatant.pending_card_choice:
            raise SkirmishError(f"{combatant.name} has already chosen")
        return combatant

    def _start_combat_when_ready(self, state: SkirmishState):
        if state.phase == SkirmishPhase.CHOOSING and \
                all(not c.pending_card_choice for c in state.standing()):
            state.phase = SkirmishPhase.COMBAT
            state.record("Everyone has chosen: resolving actions", "system")

    # Resolution
    def resolve_attack(self, attacker: Combatant, defender: Combatant, card: CombatCard,
                       modifiers: Optional[CombatModifiers] = None) -> AttackResult:
        """Roll one attack. Does not touch either combatant."""
        modifiers = modifiers or CombatModifiers()
        if modifiers.cover == "total":
            return AttackResult(False, f"{attacker.name} cannot reach {defender.name}: total cover")

        if attacker.weapon_type == WeaponType.MELEE:
            attribute, skill = attacker.reflexes, attacker.melee_skill
        else:
            attribute, skill = attacker.coordination, attacker.shooting_skill
        _, wound_penalty = vitality_state(attacker.vitality, attacker.max_vitality)

        roll, dice = self.roll_2d6()
        critical = roll == 12
        if roll == 2:
            return AttackResult(False, f"Fumble! {attacker.name} misses completely",
                                attack_total=roll, dice=dice, is_fumble=True)

        attack_total = (roll + attribute + skill + card.attack_modifier + attacker.weapon_attack
                        + modifiers.attack_bonus() + wound_penalty)
        if modifiers.position == "surprise":
            guard = defender.reflexes * 2 + defender.armor_guard
        else:
            guard = defender.guard
        guard += modifiers.guard_bonus() + defender.defending_bonus

        margin = attack_total - guard
        if margin <= 0 and not critical:
            return AttackResult(False, f"{attacker.name} misses {defender.name} "
                                       f"({attack_total} vs {guard})",
                                attack_total=attack_total, target_guard=guard,
                                margin=margin, dice=dice)

        ratio = DAMAGE_RATIOS[attacker.weapon_type]
        base = attacker.weapon_damage or 1
        bonus = int(max(0, margin) * ratio)
        total = base + bonus
        if critical:
            total *= 2
        final = max(1, total - defender.damage_reduction)

        prefix = "Critical! " if critical else ""
        return AttackResult(
            True,
            f"{prefix}{attacker.name} hits {defender.name} for {final} "
            f"({attack_total} vs {guard})",
            attack_total=attack_total, target_guard=guard, margin=margin, dice=dice,
            base_damage=base, bonus_damage=bonus, total_damage=total,
            damage_reduction=defender.damage_reduction, final_damage=final,
            is_critical=critical, effect=card.effect,
        )

    def apply_action_result(self, state: SkirmishState, attacker_id: str,
                            target_id: Optional[str], result: AttackResult) -> SkirmishState:
        """Deal the result's damage to the target and log it."""
        new_state = state.copy()
        target = new_state.combatant(target_id) if target_id else None
        if result.success and target is not None:
            target.vitality = max(0, target.vitality - result.final_damage)
            if target.vitality <= 0:
                target.is_down = True
                logger.info("%s is down", target.name)
        new_state.resolved.append(result)
        new_state.record(result.message, "damage" if result.success else "action", attacker_id)
        return new_state

    def resolve_next_action(self, state: SkirmishState,
                            modifiers: Optional[CombatModifiers] = None) -> SkirmishState:
        """Resolve the action of whoever is next on the timeline."""
        if state.is_finished:
            raise SkirmishError("The skirmish is over")
        actor = get_next_combatant(state)
        if actor is None:
            raise SkirmishError("Nobody is left to act")
        if actor.pending_card_choice:
            raise SkirmishError(f"{actor.name} has not chosen a card yet")

        card = get_card(actor.chosen_card_id)
        target_id = actor.chosen_target_id
        new_state = state
        if card.is_attack:
            target = state.combatant(target_id)
            if target is not None and target.is_standing:
                result = self.resolve_attack(actor, target, card, modifiers)
                new_state = self.apply_action_result(state, actor.id, target_id, result)
            else:
                new_state = state.copy()
                new_state.record(f"{actor.name}'s target is gone", "action", actor.id)
        else:
            new_state = state.copy()
            new_state.record(f"{actor.name} plays {card.name}", "action", actor.id)

        actor = new_state.combatant(actor.id)
        new_state.current_tick = actor.current_tick
        actor.defending_bonus = card.defense_bonus
        actor.current_movement = max(0, actor.current_movement + card.movement_modifier)
        actor.pending_card_choice = True
        actor.chosen_card_id = None
        actor.chosen_target_id = None

        if not self._finish_if_decided(new_state):
            new_state.phase = SkirmishPhase.CHOOSING
        return new_state

    def _finish_if_decided(self, state: SkirmishState) -> bool:
        result = check_victory_condition(state)
        if result is None:
            return False
        state.phase = SkirmishPhase.FINISHED
        state.winner = result
        message = {"player": "Victory!", "enemy": "Defeat!"}.get(result, "Draw!")
        state.record(message, "system")
        logger.info("Skirmish %s finished: %s", state.id, result)
        return True

    # Timeline
    def advance_to_next_tick(self, state: SkirmishState) -> SkirmishState:
        """Move the clock to the next combatant's tick, refreshing movement each round."""
        actor = get_next_combatant(state)
        if actor is None:
            return state
        new_state = state.copy()
        new_state.current_tick = actor.current_tick
        new_round = actor.current_tick // TICKS_PER_ROUND + 1
        if new_round > new_state.round:
            for c in new_state.combatants:
                c.current_movement = c.movement
            new_state.record(f"Round {new_round} begins", "system")
        new_state.round = new_round
        return new_state
