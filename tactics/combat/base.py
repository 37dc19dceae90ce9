"""
Base combat resolution system with common mechanics.

Dice rolls, attack angles and the effective attack/defense values shared by
melee and ranged resolution.
"""

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..config import BattleRules, default_rules
from ..hexgrid import HexCoord, ANGLE_EPSILON, bearing, angle_difference
from ..state import TacticalGameState
from ..units import BattleUnit


class AttackAngle(Enum):
    FRONT = "front"
    FLANK = "flank"
    REAR = "rear"


# (attacker attack bonus, defender defense modifier)
ANGLE_MODIFIERS = {
    AttackAngle.FRONT: (0, 0),
    AttackAngle.FLANK: (2, -2),
    AttackAngle.REAR: (4, -4),
}


class CombatResult(Enum):
    CRUSHING_VICTORY = "crushing_victory"
    VICTORY = "victory"
    MARGINAL = "marginal"
    STALEMATE = "stalemate"
    REPULSED = "repulsed"
    HEAVY_REPULSE = "heavy_repulse"
    CRUSHING_DEFEAT = "crushing_defeat"


@dataclass
class Damage:
    """Hits and pressure dealt to one side of an engagement."""
    hits: int = 0
    pressure: int = 0


@dataclass
class CombatReport:
    """Report of a combat engagement."""
    attacker_id: str
    defender_id: str
    turn: int
    phase: str
    result: CombatResult
    angle: AttackAngle = AttackAngle.FRONT
    attacker_roll: int = 0
    defender_roll: int = 0
    attacker_total: int = 0
    defender_total: int = 0
    attacker_damage: Damage = field(default_factory=Damage)
    defender_damage: Damage = field(default_factory=Damage)
    attacker_routed: bool = False
    defender_routed: bool = False
    defender_killed: bool = False
    attacker_killed: bool = False
    friendly_fire_unit_id: Optional[str] = None
    notes: list[str] = field(default_factory=list)

    @property
    def margin(self) -> int:
        return self.attacker_total - self.defender_total

    def to_dict(self) -> dict:
        return {
            "attacker_id": self.attacker_id,
            "defender_id": self.defender_id,
            "result": self.result.value,
            "angle": self.angle.value,
            "attacker_roll": self.attacker_roll,
            "defender_roll": self.defender_roll,
            "attacker_total": self.attacker_total,
            "defender_total": self.defender_total,
            "attacker_damage": vars(self.attacker_damage).copy(),
            "defender_damage": vars(self.defender_damage).copy(),
            "friendly_fire_unit_id": self.friendly_fire_unit_id,
        }


def attack_angle(attacker_position: HexCoord, defender: BattleUnit) -> AttackAngle:
    """Which arc of the defender the attack comes from.

    Angles within ANGLE_EPSILON of an arc boundary fall into the stricter arc.
    """
    incoming = bearing(defender.position, attacker_position)
    diff = angle_difference(incoming, defender.facing.angle)
    if diff >= 120.0 - ANGLE_EPSILON:
        return AttackAngle.REAR
    if diff >= 60.0 - ANGLE_EPSILON:
        return AttackAngle.FLANK
    return AttackAngle.FRONT


class CombatResolver:
    """Base class for combat resolution."""

    def __init__(self, rules: Optional[BattleRules] = None,
                 rng: Optional[random.Random] = None, rng_seed: Optional[int] = None):
        self.rules = rules or default_rules()
        self.rng = rng or random.Random(rng_seed)

    def roll(self) -> int:
        """Roll one die (d20 by default)."""
        return self.rng.randint(1, self.rules.dice_sides)

    def card_modifier(self, unit: BattleUnit, stat: str) -> int:
        if not unit.active_card:
            return 0
        card = self.rules.cards.get(unit.active_card)
        return getattr(card, stat) if card else 0

    def terrain_modifier(self, state: TacticalGameState, unit: BattleUnit, stat: str) -> int:
        tile = state.tile(unit.position)
        if tile is None:
            return 0
        return getattr(self.rules.terrain_for(tile.terrain.value), stat)

    def posture_modifier(self, unit: BattleUnit, stat: str) -> int:
        return getattr(self.rules.posture_for(unit.posture.value), stat)

    def effective_attack(self, state: TacticalGameState, unit: BattleUnit,
                         angle: AttackAngle = AttackAngle.FRONT, support: int = 0) -> int:
        return (unit.current.attack
                + self.posture_modifier(unit, "attack")
                + self.card_modifier(unit, "attack")
                + self.terrain_modifier(state, unit, "attack")
                + support
                + ANGLE_MODIFIERS[angle][0])

    def effective_defense(self, state: TacticalGameState, unit: BattleUnit,
                          angle: AttackAngle = AttackAngle.FRONT, support: int = 0) -> int:
        return (unit.current.defense
                + self.posture_modifier(unit, "defense")
                + self.card_modifier(unit, "defense")
                + self.terrain_modifier(state, unit, "defense")
                + support
                + ANGLE_MODIFIERS[angle][1])

    def apply_damage(self, state: TacticalGameState, unit: BattleUnit, damage: Damage) -> bool:
        """Apply hits then pressure. Returns True if the unit died."""
        if damage.hits:
            unit.take_hits(damage.hits, self.rules.max_hits_before_rout)
        if damage.pressure and unit.is_alive:
            unit.add_pressure(damage.pressure)
        if not unit.is_alive:
            state.remove_dead_unit(unit)
            return True
        return False
