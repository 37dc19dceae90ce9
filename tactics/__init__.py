"""
Turn-based hex tactical combat engine.

Core modules:
- hexgrid: Axial hex geometry, bearings and pathing
- units: Battle units and commanders
- state: Aggregate battle state and invariants
- board: Movement, line of sight and target queries
- combat/: Melee, ranged and morale resolution
- turn: Phase sequencing and initiative
- actions: Phase-gated action API (BattleEngine)
- sync: Versioned persistence and phase guard for shared matches
- skirmish: Tick-timeline individual combat (SkirmishEngine)
"""

from .config import BattleRules, DifficultyProfile, default_rules
from .hexgrid import (
    HexCoord, Facing, hex_distance, hexes_in_range, hex_line, neighbors,
    axial_to_pixel, pixel_to_axial, is_valid_hex,
)
from .units import BattleUnit, BattleCommander, UnitStats, Player, Posture
from .state import TacticalGameState, HexTile, Phase, Terrain, DRAW, check_invariants
from .turn import TurnManager, check_victory_condition
from .actions import (
    Action, ActionType, BattleEngine, BattleSetupError, InvalidAction,
    deploy, generate_hexes,
)
from .skirmish import SkirmishEngine, SkirmishError
from .sync import (
    BattleSession, JsonMatchStore, MatchStore, PersistenceConflict, StateReader,
    VersionedState, apply_phase_guard, detect_phase_inconsistency,
)

__all__ = [
    # Config
    "BattleRules", "DifficultyProfile", "default_rules",
    # Geometry
    "HexCoord", "Facing", "hex_distance", "hexes_in_range", "hex_line", "neighbors",
    "axial_to_pixel", "pixel_to_axial", "is_valid_hex",
    # Entities
    "BattleUnit", "BattleCommander", "UnitStats", "Player", "Posture",
    "TacticalGameState", "HexTile", "Phase", "Terrain", "DRAW", "check_invariants",
    # Engine
    "TurnManager", "Action", "ActionType", "BattleEngine", "BattleSetupError",
    "InvalidAction", "check_victory_condition", "deploy", "generate_hexes",
    "SkirmishEngine", "SkirmishError",
    # Sync
    "BattleSession", "JsonMatchStore", "MatchStore", "PersistenceConflict",
    "StateReader", "VersionedState", "apply_phase_guard", "detect_phase_inconsistency",
]
