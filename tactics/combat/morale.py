"""
Morale, routing and rallying.

Pressure exhaustion marks a unit rout_pending; the rout takes effect at the next
phase boundary. Units that took casualties this turn test morale when the rout
phase begins.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..state import TacticalGameState
from ..units import BattleUnit, BattleCommander
from .base import CombatResolver

logger = logging.getLogger(__name__)


@dataclass
class MoraleCheck:
    """Outcome of one morale test."""
    unit_id: str
    roll: int
    total: int
    threshold: int
    passed: bool


class MoraleResolver(CombatResolver):
    """Applies routing and rallying rules."""

    def apply_pending_routs(self, state: TacticalGameState) -> list[str]:
        """Rout every unit whose pressure ran out. Returns routed unit ids."""
        routed = []
        for unit in state.units.values():
            if not unit.rout_pending:
                continue
            unit.rout_pending = False
            if unit.is_alive and not unit.is_routing:
                unit.is_routing = True
                routed.append(unit.id)
                state.log("rout", f"{unit.name} breaks and routs (pressure exhausted)",
                          unit_id=unit.id)
        if routed:
            logger.info("Units routed at phase boundary: %s", ", ".join(routed))
        return routed

    def morale_check(self, unit: BattleUnit) -> MoraleCheck:
        """d20 + morale - casualty penalty against the configured threshold."""
        roll = self.roll()
        total = (roll + unit.current.morale
                 - unit.casualties_this_turn * self.rules.casualty_morale_penalty)
        return MoraleCheck(
            unit_id=unit.id,
            roll=roll,
            total=total,
            threshold=self.rules.morale_threshold,
            passed=total >= self.rules.morale_threshold,
        )

    def run_morale_checks(self, state: TacticalGameState) -> list[MoraleCheck]:
        """Test every steady unit that took casualties this turn."""
        checks = []
        for unit_id in sorted(state.units):
            unit = state.units[unit_id]
            if not unit.is_alive or unit.is_routing or unit.casualties_this_turn <= 0:
                continue
            check = self.morale_check(unit)
            checks.append(check)
            if not check.passed:
                unit.is_routing = True
                unit.rout_pending = False
                state.log("rout",
                          f"{unit.name} fails morale ({check.total} < {check.threshold}) and routs",
                          unit_id=unit.id, roll=check.roll)
        return checks

    def rally(self, state: TacticalGameState, unit: BattleUnit,
              commander: Optional[BattleCommander] = None):
        """Clear routing and relieve pressure; a rallying commander spends its turn."""
        unit.is_routing = False
        unit.rout_pending = False
        recovered = unit.current_pressure - self.rules.rally_pressure_recovery
        unit.current_pressure = max(0, min(recovered, unit.max_pressure - 1))
        unit.has_acted_this_turn = True

        if commander is not None:
            commander.has_acted_this_turn = True
            state.log("rally", f"{commander.name} rallies {unit.name}",
                      unit_id=unit.id, commander_id=commander.id)
        else:
            state.log("rally", f"{unit.name} rallies on its neighbours", unit_id=unit.id)
