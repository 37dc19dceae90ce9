"""
Rule constants for the hex tactical combat engine.

Loaded from data/rules.yaml; built-in defaults are used when the file is missing
or a section is absent.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_RULES_PATH = Path(__file__).resolve().parent.parent / "data" / "rules.yaml"


@dataclass
class TerrainRules:
    """Combat and movement properties of a terrain type."""
    id: str
    attack: int = 0
    defense: int = 0
    movement_cost: int = 1
    cover: int = 0  # added to defense against ranged attacks
    blocks_los: bool = False


@dataclass
class PostureRules:
    """Additive attack/defense modifiers for a posture."""
    id: str
    attack: int = 0
    defense: int = 0


@dataclass
class CardRules:
    """A tactical card's modifiers, active for the phase it was played in."""
    id: str
    name: str
    attack: int = 0
    defense: int = 0
    ranged: int = 0
    movement: int = 0


@dataclass
class DifficultyProfile:
    """Bot tuning knobs for one difficulty level."""
    id: str
    thinking_delay_ms: tuple[int, int] = (800, 1500)
    consider_flanking: bool = True
    prefer_high_value: bool = True
    protect_weak_units: bool = False
    aggressiveness: float = 0.5
    random_factor: float = 0.2


_DEFAULT_TERRAIN = {
    "plains": (0, 0, 1, 0, False),
    "forest": (0, 1, 2, 1, True),
    "hill": (1, 1, 2, 0, True),
    "river": (-1, -1, 3, 0, False),
    "fortification": (0, 2, 1, 2, False),
}

_DEFAULT_POSTURES = {
    "steady": (0, 0),
    "offensive": (2, -1),
    "defensive": (-1, 2),
    "charge": (4, -2),
    "reorganization": (-2, 0),
}

_DEFAULT_CARDS = {
    "shield_wall": ("Shield Wall", -1, 3, 0, 0),
    "all_out_assault": ("All-out Assault", 3, -2, 0, 0),
    "volley_fire": ("Volley Fire", 0, 0, 2, 0),
    "feigned_retreat": ("Feigned Retreat", 0, 1, 0, 1),
    "hammer_blow": ("Hammer Blow", 2, 0, 0, 0),
}

_DEFAULT_DIFFICULTY = {
    "easy": ((500, 1000), False, False, False, 0.3, 0.4),
    "medium": ((800, 1500), True, True, False, 0.5, 0.2),
    "hard": ((1000, 2000), True, True, True, 0.7, 0.1),
}


@dataclass
class BattleRules:
    """All tunable constants used by the engine and the bots."""
    hex_size: float = 40.0
    padding: float = 60.0
    map_width: int = 20
    map_height: int = 12

    dice_sides: int = 20

    lethal_margin: int = 5
    crushing_margin: int = 10
    support_cap: int = 2

    ranged_min_range: int = 2
    ranged_max_range: int = 8
    # (distance over, penalty), checked in order
    distance_penalties: list[tuple[int, int]] = field(
        default_factory=lambda: [(12, -4), (8, -2), (4, -1)])
    friendly_fire_natural: int = 2

    max_hits_before_rout: int = 6
    morale_threshold: int = 10
    casualty_morale_penalty: int = 1
    rally_pressure_recovery: int = 2
    commander_rally_distance: int = 1

    commander_move_distance: int = 3

    # (minimum roll difference, advantage), checked in order
    advantage_bands: list[tuple[int, int]] = field(
        default_factory=lambda: [(10, 4), (7, 3), (4, 2), (1, 1)])

    auto_skip_empty_phases: bool = True

    terrain: dict[str, TerrainRules] = field(default_factory=dict)
    postures: dict[str, PostureRules] = field(default_factory=dict)
    cards: dict[str, CardRules] = field(default_factory=dict)
    difficulty: dict[str, DifficultyProfile] = field(default_factory=dict)

    def __post_init__(self):
        if not self.terrain:
            for tid, (att, dfn, cost, cover, blocks) in _DEFAULT_TERRAIN.items():
                self.terrain[tid] = TerrainRules(tid, att, dfn, cost, cover, blocks)
        if not self.postures:
            for pid, (att, dfn) in _DEFAULT_POSTURES.items():
                self.postures[pid] = PostureRules(pid, att, dfn)
        if not self.cards:
            for cid, (name, att, dfn, rng, mov) in _DEFAULT_CARDS.items():
                self.cards[cid] = CardRules(cid, name, att, dfn, rng, mov)
        if not self.difficulty:
            for did, values in _DEFAULT_DIFFICULTY.items():
                self.difficulty[did] = DifficultyProfile(did, *values)

    def terrain_for(self, terrain_id: str) -> TerrainRules:
        return self.terrain.get(terrain_id) or TerrainRules(terrain_id)

    def posture_for(self, posture_id: str) -> PostureRules:
        return self.postures.get(posture_id) or PostureRules(posture_id)

    def distance_penalty(self, distance: int) -> int:
        """Ranged attack penalty for shooting across `distance` hexes."""
        for over, penalty in self.distance_penalties:
            if distance > over:
                return penalty
        return 0

    def advantage_for(self, difference: int) -> int:
        """Initiative advantage for a winning roll difference."""
        for minimum, advantage in self.advantage_bands:
            if difference >= minimum:
                return advantage
        return 0

    @classmethod
    def load(cls, path: Path | str | None = None) -> "BattleRules":
        """Load rules from YAML, falling back to defaults for anything missing."""
        rules_path = Path(path) if path else DEFAULT_RULES_PATH
        if not rules_path.exists():
            logger.info("Rules file %s not found, using defaults", rules_path)
            return cls()

        with open(rules_path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "BattleRules":
        rules = cls()

        map_cfg = data.get("map", {})
        rules.hex_size = float(map_cfg.get("hex_size", rules.hex_size))
        rules.padding = float(map_cfg.get("padding", rules.padding))
        rules.map_width = map_cfg.get("width", rules.map_width)
        rules.map_height = map_cfg.get("height", rules.map_height)

        rules.dice_sides = data.get("dice", {}).get("sides", rules.dice_sides)

        melee = data.get("melee", {})
        rules.lethal_margin = melee.get("lethal_margin", rules.lethal_margin)
        rules.crushing_margin = melee.get("crushing_margin", rules.crushing_margin)
        rules.support_cap = melee.get("support_cap", rules.support_cap)

        ranged = data.get("ranged", {})
        rules.ranged_min_range = ranged.get("min_range", rules.ranged_min_range)
        rules.ranged_max_range = ranged.get("max_range", rules.ranged_max_range)
        if "distance_penalties" in ranged:
            rules.distance_penalties = sorted(
                ((p["over"], p["penalty"]) for p in ranged["distance_penalties"]),
                reverse=True,
            )
        rules.friendly_fire_natural = ranged.get("friendly_fire_natural",
                                                 rules.friendly_fire_natural)

        routing = data.get("routing", {})
        rules.max_hits_before_rout = routing.get("max_hits_before_rout",
                                                 rules.max_hits_before_rout)
        rules.morale_threshold = routing.get("morale_threshold", rules.morale_threshold)
        rules.casualty_morale_penalty = routing.get("casualty_morale_penalty",
                                                    rules.casualty_morale_penalty)
        rules.rally_pressure_recovery = routing.get("rally_pressure_recovery",
                                                    rules.rally_pressure_recovery)
        rules.commander_rally_distance = routing.get("commander_rally_distance",
                                                     rules.commander_rally_distance)

        rules.commander_move_distance = data.get("commanders", {}).get(
            "move_distance", rules.commander_move_distance)

        initiative = data.get("initiative", {})
        if "advantage_bands" in initiative:
            rules.advantage_bands = sorted(
                ((b["min"], b["advantage"]) for b in initiative["advantage_bands"]),
                reverse=True,
            )

        rules.auto_skip_empty_phases = data.get("phases", {}).get(
            "auto_skip_empty_phases", rules.auto_skip_empty_phases)

        for pid, info in data.get("postures", {}).items():
            rules.postures[pid] = PostureRules(
                id=pid,
                attack=info.get("attack", 0),
                defense=info.get("defense", 0),
            )

        for tid, info in data.get("terrain", {}).items():
            rules.terrain[tid] = TerrainRules(
                id=tid,
                attack=info.get("attack", 0),
                defense=info.get("defense", 0),
                movement_cost=info.get("movement_cost", 1),
                cover=info.get("cover", 0),
                blocks_los=info.get("blocks_los", False),
            )

        for cid, info in data.get("tactical_cards", {}).items():
            rules.cards[cid] = CardRules(
                id=cid,
                name=info.get("name", cid.replace("_", " ").title()),
                attack=info.get("attack", 0),
                defense=info.get("defense", 0),
                ranged=info.get("ranged", 0),
                movement=info.get("movement", 0),
            )

        for did, info in data.get("difficulty", {}).items():
            low, high = info.get("thinking_delay_ms", (800, 1500))
            rules.difficulty[did] = DifficultyProfile(
                id=did,
                thinking_delay_ms=(low, high),
                consider_flanking=info.get("consider_flanking", True),
                prefer_high_value=info.get("prefer_high_value", True),
                protect_weak_units=info.get("protect_weak_units", False),
                aggressiveness=info.get("aggressiveness", 0.5),
                random_factor=info.get("random_factor", 0.2),
            )

        return rules


_default_rules: Optional[BattleRules] = None


def default_rules() -> BattleRules:
    """Shared rules instance loaded from the bundled YAML."""
    global _default_rules
    if _default_rules is None:
        _default_rules = BattleRules.load()
    return _default_rules
