"""
Phase-gated action API for the tactical battle.

BattleEngine is the only writer of TacticalGameState. Every call works on a deep
copy and returns it; a rejected action raises InvalidAction and leaves the
caller's state untouched.
"""

import logging
import random
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from . import board
from .combat import MeleeCombat, RangedCombat, MoraleResolver
from .config import BattleRules, default_rules
from .hexgrid import (
    HexCoord, Facing, facing_toward, generate_map_coords, hex_distance, hex_key,
    is_valid_hex, offset_to_axial,
)
from .state import TacticalGameState, HexTile, Phase, Terrain
from .turn import TurnManager
from .units import BattleUnit, BattleCommander, Player, Posture

logger = logging.getLogger(__name__)


class ActionType(Enum):
    SET_FACING = "set_facing"
    ROLL_INITIATIVE = "roll_initiative"
    MOVE = "move"
    MOVE_COMMANDER = "move_commander"
    SET_POSTURE = "set_posture"
    SHOOT = "shoot"
    CHARGE = "charge"
    ATTACK = "attack"
    USE_CARD = "use_card"
    RALLY = "rally"
    RETREAT = "retreat"
    REORGANIZE = "reorganize"
    PASS = "pass"
    END_PHASE = "end_phase"
    SURRENDER = "surrender"


ANY_PHASE = frozenset(p for p in Phase if p != Phase.END_TURN)

PHASE_GATE = {
    ActionType.SET_FACING: {Phase.SETUP, Phase.MOVEMENT, Phase.REORGANIZATION},
    ActionType.ROLL_INITIATIVE: {Phase.INITIATIVE},
    ActionType.MOVE: {Phase.MOVEMENT},
    ActionType.MOVE_COMMANDER: {Phase.MOVEMENT},
    ActionType.SET_POSTURE: {Phase.MOVEMENT, Phase.REORGANIZATION},
    ActionType.SHOOT: {Phase.SHOOTING},
    ActionType.CHARGE: {Phase.CHARGE},
    ActionType.ATTACK: {Phase.MELEE},
    ActionType.USE_CARD: {Phase.SHOOTING, Phase.CHARGE, Phase.MELEE},
    ActionType.RALLY: {Phase.ROUT},
    ActionType.RETREAT: {Phase.ROUT},
    ActionType.REORGANIZE: {Phase.REORGANIZATION},
    ActionType.PASS: ANY_PHASE,
    ActionType.END_PHASE: ANY_PHASE,
    ActionType.SURRENDER: ANY_PHASE,
}

# Phases where neither side holds the turn yet
SHARED_PHASES = {Phase.SETUP, Phase.INITIATIVE}


class InvalidAction(Exception):
    """An action rejected by the phase gate or the rules."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message

    def to_dict(self) -> dict:
        return {"reason": self.reason, "message": self.message}


class BattleSetupError(ValueError):
    """The battle cannot be built from the given entities."""


ID_FIELDS = ("unit_id", "commander_id", "target_unit_id", "card_id")


def parse_rolls(raw) -> Optional[dict[str, int]]:
    """Initiative dice keyed by player value, or None when absent."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise InvalidAction("malformed", "Malformed action: rolls must be an object")
    players = {p.value for p in Player}
    rolls = {}
    for key, value in raw.items():
        if key not in players:
            raise InvalidAction("malformed", f"Malformed action: no player called {key!r}")
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidAction("malformed", f"Malformed action: roll for {key} must be an integer")
        rolls[key] = value
    return rolls


@dataclass
class Action:
    """A player (or bot) command submitted to the engine."""
    type: ActionType
    unit_id: Optional[str] = None
    commander_id: Optional[str] = None
    target_hex: Optional[HexCoord] = None
    target_unit_id: Optional[str] = None
    posture: Optional[Posture] = None
    card_id: Optional[str] = None
    facing: Optional[Facing] = None
    rolls: Optional[dict[str, int]] = None  # injected initiative dice

    def to_dict(self) -> dict:
        data = {"type": self.type.value}
        if self.unit_id:
            data["unit_id"] = self.unit_id
        if self.commander_id:
            data["commander_id"] = self.commander_id
        if self.target_hex is not None:
            data["target_hex"] = self.target_hex.to_dict()
        if self.target_unit_id:
            data["target_unit_id"] = self.target_unit_id
        if self.posture is not None:
            data["posture"] = self.posture.value
        if self.card_id:
            data["card_id"] = self.card_id
        if self.facing is not None:
            data["facing"] = self.facing.value
        if self.rolls:
            data["rolls"] = dict(self.rolls)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Action":
        if not isinstance(data, dict):
            raise InvalidAction("malformed", "Malformed action: expected an object")
        for key in ID_FIELDS:
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise InvalidAction("malformed", f"Malformed action: {key} must be a string")
        try:
            return cls(
                type=ActionType(data["type"]),
                unit_id=data.get("unit_id"),
                commander_id=data.get("commander_id"),
                target_hex=HexCoord.from_dict(data["target_hex"]) if data.get("target_hex") else None,
                target_unit_id=data.get("target_unit_id"),
                posture=Posture(data["posture"]) if data.get("posture") else None,
                card_id=data.get("card_id"),
                facing=Facing(data["facing"]) if data.get("facing") else None,
                rolls=parse_rolls(data.get("rolls")),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise InvalidAction("malformed", f"Malformed action: {e}") from e

    def __str__(self) -> str:
        parts = [self.type.value]
        if self.unit_id:
            parts.append(self.unit_id)
        if self.target_unit_id:
            parts.append(f"-> {self.target_unit_id}")
        elif self.target_hex is not None:
            parts.append(f"-> {self.target_hex}")
        return " ".join(parts)


def generate_hexes(rules: Optional[BattleRules] = None,
                   terrain: Optional[dict[HexCoord, Terrain]] = None) -> dict[str, HexTile]:
    """Tiles for the whole rectangular board, plains unless overridden."""
    terrain = terrain or {}
    return {
        hex_key(coord): HexTile(coord=coord, terrain=terrain.get(coord, Terrain.PLAINS))
        for coord in generate_map_coords(rules)
    }


def deploy(units: list[BattleUnit], player: Player,
           rules: Optional[BattleRules] = None) -> list[BattleUnit]:
    """Place units in deployment columns on their side of the board.

    Ten units per column starting at row 1, player1 from the west edge and
    player2 from the east edge, each facing the opposite edge.
    """
    rules = rules or default_rules()
    for i, unit in enumerate(units):
        col = i // 10
        row = i % 10 + 1
        if player == Player.PLAYER2:
            col = rules.map_width - 1 - col
        unit.owner = player
        unit.position = offset_to_axial(col, row)
        unit.facing = facing_toward(unit.position,
                                    offset_to_axial(rules.map_width - 1 - col, row))
    return units


class BattleEngine:
    """Validates and applies actions to a tactical battle."""

    def __init__(self, rules: Optional[BattleRules] = None,
                 rng: Optional[random.Random] = None, rng_seed: Optional[int] = None):
        self.rules = rules or default_rules()
        self.rng = rng or random.Random(rng_seed)
        self.turns = TurnManager(self.rules, self.rng)
        self.melee = MeleeCombat(self.rules, self.rng)
        self.ranged = RangedCombat(self.rules, self.rng)
        self.morale = MoraleResolver(self.rules, self.rng)

        self._handlers = {
            ActionType.SET_FACING: self._set_facing,
            ActionType.ROLL_INITIATIVE: self._roll_initiative,
            ActionType.MOVE: self._move,
            ActionType.MOVE_COMMANDER: self._move_commander,
            ActionType.SET_POSTURE: self._set_posture,
            ActionType.SHOOT: self._shoot,
            ActionType.CHARGE: self._charge,
            ActionType.ATTACK: self._attack,
            ActionType.USE_CARD: self._use_card,
            ActionType.RALLY: self._rally,
            ActionType.RETREAT: self._retreat,
            ActionType.REORGANIZE: self._reorganize,
            ActionType.PASS: self._pass,
            ActionType.END_PHASE: self._end_phase,
            ActionType.SURRENDER: self._surrender,
        }

    # Setup
    def initialize_battle(self, units: list[BattleUnit],
                          commanders: Optional[list[BattleCommander]] = None,
                          hexes: Optional[dict[str, HexTile]] = None,
                          player1_name: str = "Player 1", player2_name: str = "Player 2",
                          match_id: Optional[str] = None) -> TacticalGameState:
        """Build the initial state, in the setup phase of turn 1."""
        if not units:
            raise BattleSetupError("Cannot start a battle without combatants")

        state = TacticalGameState(
            match_id=match_id or uuid.uuid4().hex[:12],
            player1_name=player1_name,
            player2_name=player2_name,
            hexes=hexes if hexes is not None else generate_hexes(self.rules),
        )

        for unit in units:
            if unit.id in state.units:
                raise BattleSetupError(f"Duplicate unit id {unit.id}")
            tile = state.tile(unit.position)
            if tile is None or not is_valid_hex(unit.position, self.rules):
                raise BattleSetupError(f"{unit.id} placed off the board at {unit.position}")
            if tile.unit_id is not None:
                raise BattleSetupError(f"{unit.id} and {tile.unit_id} share {unit.position}")
            state.units[unit.id] = unit
            tile.unit_id = unit.id

        for commander in commanders or []:
            if commander.is_embedded:
                host = state.units.get(commander.unit_id) if commander.unit_id else None
                if host is None or host.owner != commander.owner:
                    raise BattleSetupError(f"Commander {commander.id} embedded in unknown unit")
                host.commander_id = commander.id
                commander.position = host.position
            state.commanders[commander.id] = commander

        state.log("system", f"Battle {state.match_id}: {player1_name} vs {player2_name}",
                  units=len(state.units), commanders=len(state.commanders))
        logger.info("Initialized battle %s with %d units", state.match_id, len(state.units))
        return state

    # Public operations
    def execute_action(self, state: TacticalGameState, player: Player,
                       action: Action) -> TacticalGameState:
        """Validate an action, apply it to a copy of state, and return the copy."""
        self._check_gate(state, player, action)

        new_state = state.copy()
        self._handlers[action.type](new_state, player, action)

        self.turns.apply_victory(new_state)
        logger.debug("Turn %d %s: %s %s", state.turn, state.phase.value, player.value, action)
        return new_state

    def end_phase(self, state: TacticalGameState,
                  player: Optional[Player] = None) -> TacticalGameState:
        player = player or state.active_player
        return self.execute_action(state, player, Action(ActionType.END_PHASE))

    advance_to_next_tick = end_phase

    def roll_initiative(self, state: TacticalGameState,
                        rolls: Optional[dict[str, int]] = None) -> TacticalGameState:
        return self.execute_action(state, state.active_player,
                                   Action(ActionType.ROLL_INITIATIVE, rolls=rolls))

    def rally_unit(self, state: TacticalGameState, player: Player, unit_id: str,
                   commander_id: Optional[str] = None) -> TacticalGameState:
        """Rally a routing unit, commander-assisted when commander_id is given."""
        return self.execute_action(state, player, Action(
            ActionType.RALLY, unit_id=unit_id, commander_id=commander_id))

    def legal_phase(self, action_type: ActionType, phase: Phase) -> bool:
        return phase in PHASE_GATE[action_type]

    # Validation
    def _check_gate(self, state: TacticalGameState, player: Player, action: Action):
        if state.is_finished:
            raise InvalidAction("battle_finished", "The battle is over")
        if not self.legal_phase(action.type, state.phase):
            raise InvalidAction(
                "wrong_phase",
                f"{action.type.value} is not allowed during the {state.phase.value} phase")
        if action.type == ActionType.SURRENDER or state.phase in SHARED_PHASES:
            return
        if player != state.active_player:
            raise InvalidAction("not_your_turn",
                                f"It is {state.player_name(state.active_player)}'s turn")

    def _own_unit(self, state: TacticalGameState, player: Player,
                  unit_id: Optional[str]) -> BattleUnit:
        unit = state.units.get(unit_id) if unit_id else None
        if unit is None:
            raise InvalidAction("unknown_unit", f"Unknown unit {unit_id}")
        if unit.owner != player:
            raise InvalidAction("not_your_unit", f"{unit.name} belongs to the enemy")
        if not unit.is_alive:
            raise InvalidAction("unit_dead", f"{unit.name} has been destroyed")
        return unit

    def _ready_unit(self, state: TacticalGameState, player: Player,
                    unit_id: Optional[str]) -> BattleUnit:
        """A live, steady unit that has not yet acted this phase."""
        unit = self._own_unit(state, player, unit_id)
        if unit.has_acted_this_turn:
            raise InvalidAction("already_acted", f"{unit.name} has already acted")
        if unit.is_routing:
            raise InvalidAction("routing", f"{unit.name} is routing and must rally first")
        return unit

    def _enemy_unit(self, state: TacticalGameState, player: Player,
                    unit_id: Optional[str]) -> BattleUnit:
        target = state.units.get(unit_id) if unit_id else None
        if target is None:
            raise InvalidAction("unknown_unit", f"Unknown target {unit_id}")
        if target.owner == player:
            raise InvalidAction("illegal_target", f"{target.name} is a friendly unit")
        if not target.is_alive:
            raise InvalidAction("target_dead", f"{target.name} is already destroyed")
        return target

    def _require_hex(self, action: Action) -> HexCoord:
        if action.target_hex is None:
            raise InvalidAction("missing_target", f"{action.type.value} needs a target hex")
        return action.target_hex

    # Handlers
    def _set_facing(self, state: TacticalGameState, player: Player, action: Action):
        unit = self._own_unit(state, player, action.unit_id)
        if action.facing is not None:
            unit.facing = action.facing
        elif action.target_hex is not None:
            unit.facing = facing_toward(unit.position, action.target_hex)
        else:
            raise InvalidAction("missing_target", "set_facing needs a facing or target hex")
        state.log("movement", f"{unit.name} turns to face {unit.facing.name}", unit_id=unit.id)

    def _roll_initiative(self, state: TacticalGameState, player: Player, action: Action):
        rolls = None
        if action.rolls:
            rolls = {Player(k): v for k, v in parse_rolls(action.rolls).items()}
            if any(not 1 <= v <= self.rules.dice_sides for v in rolls.values()):
                raise InvalidAction("malformed",
                                    f"Initiative rolls must be between 1 and {self.rules.dice_sides}")
        self.turns.roll_initiative(state, rolls)

    def _move(self, state: TacticalGameState, player: Player, action: Action):
        unit = self._ready_unit(state, player, action.unit_id)
        target = self._require_hex(action)
        moves = board.valid_moves(state, unit, self.rules)
        if target not in moves:
            raise InvalidAction("out_of_range", f"{unit.name} cannot reach {target}")

        origin = unit.position
        state.place_unit(unit, target)
        unit.facing = action.facing or facing_toward(origin, target)
        unit.has_acted_this_turn = True
        state.log("movement", f"{unit.name} moves {origin} -> {target}",
                  unit_id=unit.id, cost=moves[target])
        self.turns.after_action(state)

    def _move_commander(self, state: TacticalGameState, player: Player, action: Action):
        commander = state.commanders.get(action.commander_id) if action.commander_id else None
        if commander is None or commander.owner != player:
            raise InvalidAction("unknown_commander", f"Unknown commander {action.commander_id}")
        if commander.is_embedded:
            raise InvalidAction("illegal_target", f"{commander.name} is embedded in a unit")
        if commander.has_acted_this_turn:
            raise InvalidAction("already_acted", f"{commander.name} has already acted")
        target = self._require_hex(action)
        if target not in board.commander_moves(state, commander, self.rules):
            raise InvalidAction("out_of_range", f"{commander.name} cannot reach {target}")

        origin = commander.position
        commander.position = target
        commander.has_acted_this_turn = True
        state.log("movement", f"{commander.name} moves {origin} -> {target}",
                  commander_id=commander.id)
        self.turns.after_action(state)

    def _set_posture(self, state: TacticalGameState, player: Player, action: Action):
        unit = self._own_unit(state, player, action.unit_id)
        if action.posture is None:
            raise InvalidAction("missing_target", "set_posture needs a posture")
        if unit.is_routing:
            raise InvalidAction("routing", f"{unit.name} is routing")
        unit.posture = action.posture
        state.log("ability", f"{unit.name} adopts {unit.posture.value} posture", unit_id=unit.id)

    def _shoot(self, state: TacticalGameState, player: Player, action: Action):
        unit = self._ready_unit(state, player, action.unit_id)
        target = self._enemy_unit(state, player, action.target_unit_id)
        if unit.current.ranged <= 0:
            raise InvalidAction("illegal_target", f"{unit.name} has no ranged attack")
        if target not in board.shooting_targets(state, unit, self.rules):
            raise InvalidAction("out_of_range", f"{target.name} is out of range or sight")

        report = self.ranged.resolve(state, unit, target)
        unit.has_acted_this_turn = True
        state.log("combat", "; ".join(report.notes), **report.to_dict())
        self.turns.after_action(state)

    def _charge(self, state: TacticalGameState, player: Player, action: Action):
        unit = self._ready_unit(state, player, action.unit_id)
        destination = self._require_hex(action)
        if destination not in board.charge_destinations(state, unit, self.rules):
            raise InvalidAction("out_of_range", f"{unit.name} cannot charge to {destination}")

        enemies = board.adjacent_enemies(state, unit, destination)
        if action.target_unit_id:
            target = self._enemy_unit(state, player, action.target_unit_id)
            if target not in enemies:
                raise InvalidAction("illegal_target",
                                    f"{target.name} is not adjacent to {destination}")
        else:
            target = min(enemies, key=lambda u: u.id)

        origin = unit.position
        state.place_unit(unit, destination)
        unit.facing = facing_toward(destination, target.position)
        unit.posture = Posture.CHARGE
        unit.has_acted_this_turn = True
        state.log("movement", f"{unit.name} charges {origin} -> {destination} at {target.name}",
                  unit_id=unit.id, target_unit_id=target.id)
        self.turns.after_action(state)

    def _attack(self, state: TacticalGameState, player: Player, action: Action):
        unit = self._ready_unit(state, player, action.unit_id)
        target = self._enemy_unit(state, player, action.target_unit_id)
        if hex_distance(unit.position, target.position) != 1:
            raise InvalidAction("out_of_range", f"{target.name} is not adjacent")

        report = self.melee.resolve(state, unit, target)
        unit.has_acted_this_turn = True
        state.log("combat", "; ".join(report.notes), **report.to_dict())
        self.turns.after_action(state)

    def _use_card(self, state: TacticalGameState, player: Player, action: Action):
        unit = self._own_unit(state, player, action.unit_id)
        if not action.card_id or action.card_id not in unit.available_cards:
            raise InvalidAction("unknown_card", f"{unit.name} does not hold {action.card_id}")
        if action.card_id not in self.rules.cards:
            raise InvalidAction("unknown_card", f"No tactical card called {action.card_id}")
        if unit.active_card:
            raise InvalidAction("card_already_played",
                                f"{unit.name} already played {unit.active_card} this phase")
        unit.available_cards.remove(action.card_id)
        unit.active_card = action.card_id
        card = self.rules.cards[action.card_id]
        state.log("tactical_card", f"{unit.name} plays {card.name}",
                  unit_id=unit.id, card_id=card.id)

    def _rally(self, state: TacticalGameState, player: Player, action: Action):
        unit = self._own_unit(state, player, action.unit_id)
        if not unit.is_routing:
            raise InvalidAction("not_routing", f"{unit.name} is not routing")
        if unit.has_acted_this_turn:
            raise InvalidAction("already_acted", f"{unit.name} has already acted")

        commander = None
        if action.commander_id:
            commander = state.commanders.get(action.commander_id)
            if commander is None or commander.owner != player:
                raise InvalidAction("unknown_commander",
                                    f"Unknown commander {action.commander_id}")
            if commander.has_acted_this_turn:
                raise InvalidAction("already_acted", f"{commander.name} has already acted")
            if hex_distance(commander.position, unit.position) > self.rules.commander_rally_distance:
                raise InvalidAction("out_of_range", f"{commander.name} is too far to rally")
        elif not board.adjacent_allies(state, unit):
            raise InvalidAction("no_rally_source",
                                f"{unit.name} has no commander or steady ally nearby")

        self.morale.rally(state, unit, commander)
        self.turns.after_action(state)

    def _retreat(self, state: TacticalGameState, player: Player, action: Action):
        unit = self._own_unit(state, player, action.unit_id)
        if not unit.is_routing:
            raise InvalidAction("not_routing", f"{unit.name} is not routing")
        if unit.has_acted_this_turn:
            raise InvalidAction("already_acted", f"{unit.name} has already acted")
        target = self._require_hex(action)
        if target not in board.retreat_destinations(state, unit, self.rules):
            raise InvalidAction("out_of_range", f"{unit.name} cannot retreat to {target}")

        origin = unit.position
        state.place_unit(unit, target)
        unit.has_acted_this_turn = True
        state.log("rout", f"{unit.name} retreats {origin} -> {target}", unit_id=unit.id)
        self.turns.after_action(state)

    def _reorganize(self, state: TacticalGameState, player: Player, action: Action):
        unit = self._ready_unit(state, player, action.unit_id)
        unit.current_pressure = max(0, unit.current_pressure - 1)
        unit.rout_pending = False
        unit.posture = Posture.REORGANIZATION
        unit.has_acted_this_turn = True
        state.log("ability", f"{unit.name} reorganizes (pressure {unit.current_pressure})",
                  unit_id=unit.id)
        self.turns.after_action(state)

    def _pass(self, state: TacticalGameState, player: Player, action: Action):
        state.log("system", f"{state.player_name(player)} passes")
        self.turns.pass_turn(state)

    def _end_phase(self, state: TacticalGameState, player: Player, action: Action):
        self.turns.end_phase(state, reason=f"ended by {player.value}")

    def _surrender(self, state: TacticalGameState, player: Player, action: Action):
        state.is_finished = True
        state.winner = player.opponent()
        state.log("system", f"{state.player_name(player)} surrenders",
                  winner=state.winner.value)
        logger.info("Battle %s: %s surrenders", state.match_id, player.value)
