"""
Melee combat resolution between adjacent units.

Both sides roll a d20 and add their effective value; the margin picks a row
of the result table.
"""

import logging
from typing import Optional

from ..board import support_count
from ..hexgrid import HexCoord
from ..state import TacticalGameState
from ..units import BattleUnit
from .base import CombatResolver, CombatReport, CombatResult, Damage, attack_angle

logger = logging.getLogger(__name__)


class MeleeCombat(CombatResolver):
    """Resolves close combat between adjacent units."""

    def classify(self, margin: int) -> tuple[CombatResult, Damage, Damage]:
        """Map a roll margin to (result, attacker damage, defender damage)."""
        crushing = self.rules.crushing_margin
        lethal = self.rules.lethal_margin

        if margin >= crushing:
            return CombatResult.CRUSHING_VICTORY, Damage(), Damage(hits=1, pressure=2)
        if margin >= lethal:
            return CombatResult.VICTORY, Damage(), Damage(hits=1)
        if margin > 0:
            return CombatResult.MARGINAL, Damage(), Damage(pressure=1)
        if margin == 0:
            return CombatResult.STALEMATE, Damage(pressure=1), Damage(pressure=1)
        if -margin >= crushing:
            return CombatResult.CRUSHING_DEFEAT, Damage(hits=1, pressure=1), Damage()
        if -margin >= lethal:
            return CombatResult.HEAVY_REPULSE, Damage(pressure=2), Damage()
        return CombatResult.REPULSED, Damage(pressure=1), Damage()

    def resolve(self, state: TacticalGameState, attacker: BattleUnit, defender: BattleUnit,
                attacker_position: Optional[HexCoord] = None) -> CombatReport:
        """Resolve one melee exchange and apply its damage to both units."""
        angle = attack_angle(attacker_position or attacker.position, defender)

        attack_value = self.effective_attack(
            state, attacker, angle, support_count(state, attacker, self.rules))
        defense_value = self.effective_defense(
            state, defender, angle, support_count(state, defender, self.rules))

        attacker_roll = self.roll()
        defender_roll = self.roll()
        attacker_total = attacker_roll + attack_value
        defender_total = defender_roll + defense_value

        result, attacker_damage, defender_damage = self.classify(attacker_total - defender_total)

        report = CombatReport(
            attacker_id=attacker.id,
            defender_id=defender.id,
            turn=state.turn,
            phase=state.phase.value,
            result=result,
            angle=angle,
            attacker_roll=attacker_roll,
            defender_roll=defender_roll,
            attacker_total=attacker_total,
            defender_total=defender_total,
            attacker_damage=attacker_damage,
            defender_damage=defender_damage,
        )

        was_routing = defender.is_routing
        report.defender_killed = self.apply_damage(state, defender, defender_damage)
        report.defender_routed = defender.is_alive and defender.is_routing and not was_routing

        was_routing = attacker.is_routing
        report.attacker_killed = self.apply_damage(state, attacker, attacker_damage)
        report.attacker_routed = attacker.is_alive and attacker.is_routing and not was_routing

        report.notes.append(
            f"{attacker.name} ({attacker_roll}+{attack_value}={attacker_total}) vs "
            f"{defender.name} ({defender_roll}+{defense_value}={defender_total}), "
            f"{angle.value} attack: {result.value}"
        )
        logger.debug(report.notes[-1])
        return report
