"""
Aggregate battle state for the tactical hex engine.

TacticalGameState is a plain serializable value. The engine copies it before
applying an action, so callers always hold an unchanged snapshot.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .config import BattleRules, default_rules
from .hexgrid import HexCoord, hex_key, parse_hex_key, is_valid_hex
from .units import BattleUnit, BattleCommander, Player

DRAW = "draw"


class Phase(Enum):
    SETUP = "setup"
    INITIATIVE = "initiative"
    MOVEMENT = "movement"
    SHOOTING = "shooting"
    CHARGE = "charge"
    MELEE = "melee"
    ROUT = "rout"
    REORGANIZATION = "reorganization"
    END_TURN = "end_turn"


class Terrain(Enum):
    PLAINS = "plains"
    FOREST = "forest"
    HILL = "hill"
    RIVER = "river"
    FORTIFICATION = "fortification"


@dataclass
class HexTile:
    """A single hex of the battle map."""
    coord: HexCoord
    terrain: Terrain = Terrain.PLAINS
    unit_id: Optional[str] = None  # live unit standing here

    def to_dict(self) -> dict:
        return {
            "coord": self.coord.to_dict(),
            "terrain": self.terrain.value,
            "unit_id": self.unit_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HexTile":
        return cls(
            coord=HexCoord.from_dict(data["coord"]),
            terrain=Terrain(data.get("terrain", Terrain.PLAINS.value)),
            unit_id=data.get("unit_id"),
        )


@dataclass
class PhaseTransition:
    """Auditable record of a phase change."""
    turn: int
    from_phase: str
    to_phase: str
    kind: str  # "setup", "initiative", "end_phase", "auto_skip", "end_turn"
    reason: str = ""


@dataclass
class BattleLogEntry:
    """Human-readable record of an applied action."""
    turn: int
    phase: str
    type: str  # "movement", "combat", "rout", "rally", "tactical_card", "system"
    message: str
    details: dict = field(default_factory=dict)


@dataclass
class TacticalGameState:
    """Everything needed to resume a battle."""
    match_id: str = ""
    turn: int = 1
    phase: Phase = Phase.SETUP
    player1_name: str = "Player 1"
    player2_name: str = "Player 2"
    units: dict[str, BattleUnit] = field(default_factory=dict)
    commanders: dict[str, BattleCommander] = field(default_factory=dict)
    hexes: dict[str, HexTile] = field(default_factory=dict)

    active_player: Player = Player.PLAYER1
    initiative_winner: Optional[Player] = None
    initiative_advantage: int = 0
    initiative_rolls: dict[str, int] = field(default_factory=dict)
    units_acted_this_phase: int = 0
    consecutive_passes: int = 0

    is_finished: bool = False
    winner: Optional[Player] = None  # None with is_finished means draw

    phase_transitions: list[PhaseTransition] = field(default_factory=list)
    battle_log: list[BattleLogEntry] = field(default_factory=list)

    def copy(self) -> "TacticalGameState":
        return copy.deepcopy(self)

    # Queries
    def tile(self, coord: HexCoord) -> Optional[HexTile]:
        return self.hexes.get(hex_key(coord))

    def unit_at(self, coord: HexCoord) -> Optional[BattleUnit]:
        tile = self.tile(coord)
        if tile and tile.unit_id:
            return self.units.get(tile.unit_id)
        return None

    def units_of(self, player: Player, alive_only: bool = True) -> list[BattleUnit]:
        return [u for u in self.units.values()
                if u.owner == player and (u.is_alive or not alive_only)]

    def effective_units(self, player: Player) -> list[BattleUnit]:
        """Alive-and-able units: used for victory checks and targeting."""
        return [u for u in self.units.values()
                if u.owner == player and u.is_combat_effective]

    def commanders_of(self, player: Player) -> list[BattleCommander]:
        return [c for c in self.commanders.values() if c.owner == player]

    def player_name(self, player: Player) -> str:
        return self.player1_name if player is Player.PLAYER1 else self.player2_name

    @property
    def is_draw(self) -> bool:
        return self.is_finished and self.winner is None

    def log(self, entry_type: str, message: str, **details):
        self.battle_log.append(BattleLogEntry(
            turn=self.turn, phase=self.phase.value,
            type=entry_type, message=message, details=details,
        ))

    # Mutation helpers shared by the engine
    def place_unit(self, unit: BattleUnit, coord: HexCoord):
        """Move a unit to coord, keeping hex and unit links in step."""
        old = self.tile(unit.position)
        if old and old.unit_id == unit.id:
            old.unit_id = None
        unit.position = coord
        new = self.tile(coord)
        if new is not None:
            new.unit_id = unit.id
        if unit.commander_id and unit.commander_id in self.commanders:
            self.commanders[unit.commander_id].position = coord

    def remove_dead_unit(self, unit: BattleUnit):
        """Take a dead unit off the board; its commander is detached in place."""
        tile = self.tile(unit.position)
        if tile and tile.unit_id == unit.id:
            tile.unit_id = None
        if unit.commander_id and unit.commander_id in self.commanders:
            commander = self.commanders[unit.commander_id]
            commander.is_embedded = False
            commander.unit_id = None
            commander.position = unit.position
        unit.commander_id = None

    # Serialization
    def to_dict(self) -> dict:
        return {
            "match_id": self.match_id,
            "turn": self.turn,
            "phase": self.phase.value,
            "player1_name": self.player1_name,
            "player2_name": self.player2_name,
            "units": {uid: u.to_dict() for uid, u in self.units.items()},
            "commanders": {cid: c.to_dict() for cid, c in self.commanders.items()},
            "hexes": {key: t.to_dict() for key, t in self.hexes.items()},
            "active_player": self.active_player.value,
            "initiative_winner": self.initiative_winner.value if self.initiative_winner else None,
            "initiative_advantage": self.initiative_advantage,
            "initiative_rolls": dict(self.initiative_rolls),
            "units_acted_this_phase": self.units_acted_this_phase,
            "consecutive_passes": self.consecutive_passes,
            "is_finished": self.is_finished,
            "winner": self.winner.value if self.winner else None,
            "phase_transitions": [vars(t).copy() for t in self.phase_transitions],
            "battle_log": [
                {"turn": e.turn, "phase": e.phase, "type": e.type,
                 "message": e.message, "details": dict(e.details)}
                for e in self.battle_log
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TacticalGameState":
        winner = data.get("initiative_winner")
        final = data.get("winner")
        return cls(
            match_id=data.get("match_id", ""),
            turn=data.get("turn", 1),
            phase=Phase(data.get("phase", Phase.SETUP.value)),
            player1_name=data.get("player1_name", "Player 1"),
            player2_name=data.get("player2_name", "Player 2"),
            units={uid: BattleUnit.from_dict(u) for uid, u in data.get("units", {}).items()},
            commanders={cid: BattleCommander.from_dict(c)
                        for cid, c in data.get("commanders", {}).items()},
            hexes={key: HexTile.from_dict(t) for key, t in data.get("hexes", {}).items()},
            active_player=Player(data.get("active_player", Player.PLAYER1.value)),
            initiative_winner=Player(winner) if winner else None,
            initiative_advantage=data.get("initiative_advantage", 0),
            initiative_rolls=dict(data.get("initiative_rolls", {})),
            units_acted_this_phase=data.get("units_acted_this_phase", 0),
            consecutive_passes=data.get("consecutive_passes", 0),
            is_finished=data.get("is_finished", False),
            winner=Player(final) if final and final != DRAW else None,
            phase_transitions=[PhaseTransition(**t) for t in data.get("phase_transitions", [])],
            battle_log=[BattleLogEntry(**e) for e in data.get("battle_log", [])],
        )


def check_invariants(state: TacticalGameState,
                     rules: Optional[BattleRules] = None) -> list[str]:
    """Return a description of every violated state invariant (empty if sound)."""
    rules = rules or default_rules()
    problems = []

    for key, tile in state.hexes.items():
        if parse_hex_key(key) != tile.coord:
            problems.append(f"hex {key} stored under wrong key {tile.coord}")
        if not is_valid_hex(tile.coord, rules):
            problems.append(f"hex {key} outside the board")
        if tile.unit_id is None:
            continue
        unit = state.units.get(tile.unit_id)
        if unit is None:
            problems.append(f"hex {key} references unknown unit {tile.unit_id}")
        elif not unit.is_alive:
            problems.append(f"hex {key} references dead unit {unit.id}")
        elif unit.position != tile.coord:
            problems.append(f"hex {key} references {unit.id} positioned at {unit.position}")

    for unit in state.units.values():
        if not 0 <= unit.current_health <= unit.max_health:
            problems.append(f"{unit.id} health {unit.current_health}/{unit.max_health}")
        if not 0 <= unit.current_pressure <= unit.max_pressure:
            problems.append(f"{unit.id} pressure {unit.current_pressure}/{unit.max_pressure}")
        if unit.is_alive:
            tile = state.tile(unit.position)
            if tile is None:
                problems.append(f"{unit.id} stands off the map at {unit.position}")
            elif tile.unit_id != unit.id:
                problems.append(f"{unit.id} at {unit.position} not linked from its hex")
        elif unit.commander_id:
            problems.append(f"dead unit {unit.id} still carries {unit.commander_id}")

    for commander in state.commanders.values():
        if not commander.is_embedded:
            continue
        unit = state.units.get(commander.unit_id) if commander.unit_id else None
        if unit is None:
            problems.append(f"embedded commander {commander.id} has no unit")
        elif unit.position != commander.position or unit.commander_id != commander.id:
            problems.append(f"embedded commander {commander.id} not with {unit.id}")

    return problems
