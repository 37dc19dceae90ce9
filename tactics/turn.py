"""
Phase sequencing for the tactical battle.

Orchestrates phases: setup → initiative → movement → shooting → charge → melee → rout → reorganization
end_turn is transient: it bumps the turn counter and lands on initiative.
"""

import logging
import random
from typing import Optional, Union

from .board import player_has_actions
from .combat import MoraleResolver
from .config import BattleRules, default_rules
from .state import TacticalGameState, Phase, PhaseTransition, DRAW
from .units import Player, Posture

logger = logging.getLogger(__name__)


def check_victory_condition(state: TacticalGameState) -> Union[Player, str, None]:
    """Winner, DRAW on mutual elimination, or None while both sides can fight."""
    if state.is_finished:
        return state.winner or DRAW
    p1_alive = bool(state.effective_units(Player.PLAYER1))
    p2_alive = bool(state.effective_units(Player.PLAYER2))
    if p1_alive and p2_alive:
        return None
    if not p1_alive and not p2_alive:
        return DRAW
    return Player.PLAYER1 if p1_alive else Player.PLAYER2


class TurnManager:
    """Manages phase transitions, initiative and turn ownership.

    Methods mutate the state they are given; BattleEngine hands them a copy.
    """

    PHASES = [
        Phase.SETUP,
        Phase.INITIATIVE,
        Phase.MOVEMENT,
        Phase.SHOOTING,
        Phase.CHARGE,
        Phase.MELEE,
        Phase.ROUT,
        Phase.REORGANIZATION,
        Phase.END_TURN,
    ]

    # Phases that advance on their own when nobody has anything to do
    SKIPPABLE = (
        Phase.MOVEMENT,
        Phase.SHOOTING,
        Phase.CHARGE,
        Phase.MELEE,
        Phase.ROUT,
        Phase.REORGANIZATION,
    )

    def __init__(self, rules: Optional[BattleRules] = None,
                 rng: Optional[random.Random] = None):
        self.rules = rules or default_rules()
        self.rng = rng or random.Random()
        self.morale = MoraleResolver(self.rules, self.rng)

    def next_phase(self, phase: Phase) -> Phase:
        if phase == Phase.END_TURN:
            return Phase.INITIATIVE
        return self.PHASES[self.PHASES.index(phase) + 1]

    # Initiative
    def roll_initiative(self, state: TacticalGameState,
                        rolls: Optional[dict[Player, int]] = None):
        """Resolve initiative and move on to the movement phase."""
        rolls = rolls or {}
        totals = {}
        for player in Player:
            die = rolls.get(player)
            if die is None:
                die = self.rng.randint(1, self.rules.dice_sides)
            strategy = max((c.strategy for c in state.commanders_of(player)), default=0)
            totals[player] = die + strategy
            state.initiative_rolls[player.value] = totals[player]

        p1, p2 = totals[Player.PLAYER1], totals[Player.PLAYER2]
        winner = Player.PLAYER1 if p1 >= p2 else Player.PLAYER2
        state.initiative_winner = winner
        state.initiative_advantage = self.rules.advantage_for(abs(p1 - p2))

        message = (f"Initiative: {state.player1_name} {p1} vs {state.player2_name} {p2}, "
                   f"{state.player_name(winner)} wins (advantage {state.initiative_advantage})")
        state.log("system", message, rolls=dict(state.initiative_rolls))
        logger.info(message)

        self._transition(state, Phase.MOVEMENT, "initiative")
        self.auto_skip(state)

    # Phase advancement
    def end_phase(self, state: TacticalGameState, reason: str = ""):
        """Advance past the current phase. In initiative this rolls first."""
        if state.phase == Phase.INITIATIVE:
            self.roll_initiative(state)
            return

        target = self.next_phase(state.phase)
        if target == Phase.END_TURN:
            self._end_turn(state)
        else:
            self._transition(state, target, "end_phase", reason)
            self.auto_skip(state)

    def auto_skip(self, state: TacticalGameState):
        """Skip forward while neither side has a substantive action."""
        if not self.rules.auto_skip_empty_phases:
            return
        while not state.is_finished and state.phase in self.SKIPPABLE:
            if any(player_has_actions(state, p, state.phase, self.rules) for p in Player):
                return
            target = self.next_phase(state.phase)
            reason = f"no legal actions in {state.phase.value}"
            if target == Phase.END_TURN:
                self._end_turn(state, "auto_skip", reason)
                return
            self._transition(state, target, "auto_skip", reason)

    def _end_turn(self, state: TacticalGameState, kind: str = "end_phase", reason: str = ""):
        self._record(state, state.phase, Phase.END_TURN, kind, reason)
        state.phase = Phase.END_TURN

        for unit in state.units.values():
            unit.casualties_this_turn = 0
            if unit.posture == Posture.CHARGE:
                unit.posture = Posture.STEADY
        for commander in state.commanders.values():
            commander.has_acted_this_turn = False

        state.turn += 1
        state.initiative_winner = None
        state.initiative_advantage = 0
        state.initiative_rolls = {}
        logger.info("Turn %d begins", state.turn)
        self._transition(state, Phase.INITIATIVE, "end_turn")

    def _transition(self, state: TacticalGameState, target: Phase, kind: str, reason: str = ""):
        self._record(state, state.phase, target, kind, reason)
        state.phase = target
        self._on_phase_start(state)

    def _record(self, state: TacticalGameState, source: Phase, target: Phase,
                kind: str, reason: str = ""):
        state.phase_transitions.append(PhaseTransition(
            turn=state.turn, from_phase=source.value, to_phase=target.value,
            kind=kind, reason=reason,
        ))
        if kind == "auto_skip":
            logger.info("Turn %d: auto-skipping %s (%s)", state.turn, source.value, reason)
        else:
            logger.debug("Turn %d: %s -> %s (%s)", state.turn, source.value, target.value, kind)

    def _on_phase_start(self, state: TacticalGameState):
        """Boundary effects applied every time a phase begins."""
        for unit in state.units.values():
            unit.has_acted_this_turn = False
            unit.active_card = None
        state.units_acted_this_phase = 0
        state.consecutive_passes = 0
        state.active_player = state.initiative_winner or Player.PLAYER1

        self.morale.apply_pending_routs(state)
        if self.apply_victory(state):
            return
        if state.phase == Phase.ROUT:
            self.morale.run_morale_checks(state)
            if self.apply_victory(state):
                return

        self.hand_over_if_idle(state)

    # Victory
    def apply_victory(self, state: TacticalGameState) -> bool:
        """Finish the battle once a side is broken. Returns True when it is over."""
        if state.is_finished:
            return True
        if state.phase == Phase.SETUP:
            return False
        result = check_victory_condition(state)
        if result is None:
            return False

        state.is_finished = True
        if result == DRAW:
            state.winner = None
            state.log("system", "Both armies are broken: the battle is a draw")
            logger.info("Battle %s ends in a draw", state.match_id)
        else:
            state.winner = result
            state.log("system", f"{state.player_name(result)} wins the battle",
                      winner=result.value)
            logger.info("Battle %s won by %s", state.match_id, result.value)
        return True

    # Turn ownership
    def after_action(self, state: TacticalGameState):
        """Pass the turn along after a unit action, honouring initiative advantage."""
        state.consecutive_passes = 0
        state.units_acted_this_phase += 1
        if state.units_acted_this_phase > state.initiative_advantage:
            state.active_player = state.active_player.opponent()
        if self.apply_victory(state):
            return
        self.hand_over_if_idle(state)
        self.auto_skip(state)

    def pass_turn(self, state: TacticalGameState):
        """Hand the turn over; two passes in a row close the phase."""
        state.consecutive_passes += 1
        if state.consecutive_passes >= 2 and state.phase in self.SKIPPABLE:
            self.end_phase(state, reason="both sides passed")
            return
        state.active_player = state.active_player.opponent()
        self.hand_over_if_idle(state)

    def hand_over_if_idle(self, state: TacticalGameState):
        """Give the turn to the other side when the active side has nothing to do."""
        if state.phase not in self.SKIPPABLE:
            return
        active = state.active_player
        if player_has_actions(state, active, state.phase, self.rules):
            return
        if player_has_actions(state, active.opponent(), state.phase, self.rules):
            state.active_player = active.opponent()
