"""
Ranged combat resolution.

Shooting only ever inflicts pressure. A badly missed volley (natural 1 or 2)
can land on a friendly unit standing next to the target.
"""

import logging

from ..board import adjacent_units
from ..hexgrid import hex_distance
from ..state import TacticalGameState
from ..units import BattleUnit
from .base import (
    CombatResolver, CombatReport, CombatResult, Damage, ANGLE_MODIFIERS, attack_angle,
)

logger = logging.getLogger(__name__)


class RangedCombat(CombatResolver):
    """Resolves shooting between units at range."""

    def resolve(self, state: TacticalGameState, shooter: BattleUnit,
                target: BattleUnit) -> CombatReport:
        distance = hex_distance(shooter.position, target.position)
        angle = attack_angle(shooter.position, target)
        angle_attack, angle_defense = ANGLE_MODIFIERS[angle]

        shoot_value = (shooter.current.ranged
                       + self.card_modifier(shooter, "ranged")
                       + self.rules.distance_penalty(distance)
                       + angle_attack)
        tile = state.tile(target.position)
        cover = self.rules.terrain_for(tile.terrain.value).cover if tile else 0
        defense_value = (target.current.defense
                         + self.posture_modifier(target, "defense")
                         + self.card_modifier(target, "defense")
                         + cover
                         + angle_defense)

        shooter_roll = self.roll()
        target_roll = self.roll()
        shooter_total = shooter_roll + shoot_value
        target_total = target_roll + defense_value
        margin = shooter_total - target_total

        if margin >= self.rules.lethal_margin:
            result, damage = CombatResult.VICTORY, Damage(pressure=2)
        elif margin > 0:
            result, damage = CombatResult.MARGINAL, Damage(pressure=1)
        else:
            result, damage = CombatResult.REPULSED, Damage()

        report = CombatReport(
            attacker_id=shooter.id,
            defender_id=target.id,
            turn=state.turn,
            phase=state.phase.value,
            result=result,
            angle=angle,
            attacker_roll=shooter_roll,
            defender_roll=target_roll,
            attacker_total=shooter_total,
            defender_total=target_total,
            defender_damage=damage,
        )

        was_routing = target.is_routing
        self.apply_damage(state, target, damage)
        report.defender_routed = target.is_routing and not was_routing
        report.notes.append(
            f"{shooter.name} shoots {target.name} at {distance} hexes "
            f"({shooter_total} vs {target_total}): {result.value}"
        )

        if margin <= 0 and shooter_roll <= self.rules.friendly_fire_natural:
            victim = self._friendly_fire_victim(state, shooter, target)
            if victim is not None:
                victim.add_pressure(1)
                report.friendly_fire_unit_id = victim.id
                report.notes.append(f"Friendly fire hits {victim.name}")

        logger.debug("; ".join(report.notes))
        return report

    def _friendly_fire_victim(self, state: TacticalGameState, shooter: BattleUnit,
                              target: BattleUnit):
        candidates = sorted(
            (u for u in adjacent_units(state, target.position)
             if u.owner == shooter.owner and u.id != shooter.id),
            key=lambda u: u.id,
        )
        return self.rng.choice(candidates) if candidates else None
