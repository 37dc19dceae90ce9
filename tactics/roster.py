"""
Army rosters and battlefields loaded from data/armies.yaml.
"""

import logging
from pathlib import Path
from typing import Optional

import yaml

from .actions import BattleEngine, deploy, generate_hexes
from .config import BattleRules, default_rules
from .hexgrid import HexCoord, Facing, offset_to_axial
from .state import TacticalGameState, Terrain
from .units import BattleUnit, BattleCommander, Player, UnitStats

logger = logging.getLogger(__name__)

DEFAULT_ARMIES_PATH = Path(__file__).resolve().parent.parent / "data" / "armies.yaml"


class RosterManager:
    """Builds units and commanders for a battle from YAML rosters."""

    def __init__(self, path: Path | str | None = None, rules: Optional[BattleRules] = None):
        self.path = Path(path) if path else DEFAULT_ARMIES_PATH
        self.rules = rules or default_rules()
        self.armies: dict[str, dict] = {}
        self.battlefields: dict[str, list[dict]] = {}
        self._load()

    def _load(self):
        if not self.path.exists():
            logger.warning("Roster file %s not found", self.path)
            return
        with open(self.path) as f:
            data = yaml.safe_load(f) or {}
        self.armies = data.get("armies", {})
        self.battlefields = data.get("battlefields", {})

    def army_ids(self) -> list[str]:
        return sorted(self.armies)

    def build_army(self, army_id: str, player: Player) -> tuple[list[BattleUnit], list[BattleCommander]]:
        """Units deployed on the player's edge, commander embedded in the first unit."""
        if army_id not in self.armies:
            raise KeyError(f"Unknown army {army_id!r}")
        army = self.armies[army_id]
        prefix = "p1" if player == Player.PLAYER1 else "p2"

        units = []
        for entry in army.get("units", []):
            for i in range(entry.get("count", 1)):
                n = len(units) + 1
                units.append(BattleUnit.create(
                    id=f"{prefix}_u{n}",
                    owner=player,
                    name=f"{entry['name']} {i + 1}" if entry.get("count", 1) > 1 else entry["name"],
                    unit_type=entry.get("type", "infantry"),
                    position=HexCoord(0, 0),
                    facing=Facing.N,
                    stats=UnitStats(
                        attack=entry.get("attack", 4),
                        defense=entry.get("defense", 4),
                        ranged=entry.get("ranged", 0),
                        movement=entry.get("movement", 2),
                        morale=entry.get("morale", 5),
                    ),
                    health=entry.get("health", 10),
                    pressure=entry.get("pressure", 10),
                    cards=entry.get("cards", []),
                ))
        deploy(units, player, self.rules)

        commanders = []
        cmd = army.get("commander")
        if cmd and units:
            host = units[0]
            commanders.append(BattleCommander(
                id=f"{prefix}_{cmd.get('id', 'commander')}",
                owner=player,
                name=cmd.get("name", "Commander"),
                position=host.position,
                strategy=cmd.get("strategy", 0),
                is_embedded=True,
                unit_id=host.id,
            ))
        return units, commanders

    def terrain_for(self, battlefield: str) -> dict[HexCoord, Terrain]:
        if battlefield not in self.battlefields:
            raise KeyError(f"Unknown battlefield {battlefield!r}")
        return {
            offset_to_axial(cell["col"], cell["row"]): Terrain(cell["terrain"])
            for cell in self.battlefields[battlefield] or []
        }

    def create_battle(self, engine: BattleEngine, army1: str, army2: str,
                      battlefield: str = "open_field",
                      player1_name: str = "Player 1", player2_name: str = "Player 2",
                      match_id: Optional[str] = None) -> TacticalGameState:
        units1, commanders1 = self.build_army(army1, Player.PLAYER1)
        units2, commanders2 = self.build_army(army2, Player.PLAYER2)
        hexes = generate_hexes(self.rules, self.terrain_for(battlefield)) \
            if battlefield in self.battlefields else generate_hexes(self.rules)
        return engine.initialize_battle(
            units1 + units2, commanders1 + commanders2, hexes,
            player1_name=player1_name, player2_name=player2_name, match_id=match_id,
        )
