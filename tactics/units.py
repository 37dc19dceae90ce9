"""
Battle entities: units and commanders fielded on the tactical hex map.

Current stats start equal to base stats and are permanently degraded by hits.
Posture, card and terrain modifiers are applied per tick by the combat resolvers
and never written back into the unit.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional

from .hexgrid import HexCoord, Facing


class Player(Enum):
    PLAYER1 = "player1"
    PLAYER2 = "player2"

    def opponent(self) -> "Player":
        return Player.PLAYER2 if self is Player.PLAYER1 else Player.PLAYER1


class Posture(Enum):
    STEADY = "steady"
    OFFENSIVE = "offensive"
    DEFENSIVE = "defensive"
    CHARGE = "charge"
    REORGANIZATION = "reorganization"


# Stat loss for the 1st..6th hit received
HIT_PENALTIES = [
    {"attack": -1, "ranged": -1, "defense": 0, "morale": 0},
    {"attack": -1, "ranged": -1, "defense": 0, "morale": 0},
    {"attack": -1, "ranged": -1, "defense": 0, "morale": -1},
    {"attack": 0, "ranged": 0, "defense": -1, "morale": -1},
    {"attack": 0, "ranged": 0, "defense": -1, "morale": -1},
    {"attack": -1, "ranged": -1, "defense": -1, "morale": -1},
]


@dataclass
class UnitStats:
    """Combat statistics of a unit."""
    attack: int = 0
    defense: int = 0
    ranged: int = 0  # 0 means the unit cannot shoot
    movement: int = 0
    morale: int = 0

    def copy(self) -> "UnitStats":
        return UnitStats(**asdict(self))


@dataclass
class BattleUnit:
    """A unit on the battle map."""
    id: str
    owner: Player
    name: str
    unit_type: str
    position: HexCoord
    facing: Facing
    base: UnitStats
    current: UnitStats
    max_health: int
    current_health: int
    max_pressure: int
    current_pressure: int = 0
    posture: Posture = Posture.STEADY
    is_routing: bool = False
    has_acted_this_turn: bool = False  # reset at every phase boundary
    hits_received: int = 0
    rout_pending: bool = False  # pressure exhausted, routs at next phase boundary
    casualties_this_turn: int = 0
    available_cards: list[str] = field(default_factory=list)
    active_card: Optional[str] = None  # played this phase
    commander_id: Optional[str] = None  # embedded commander

    @classmethod
    def create(cls, id: str, owner: Player, name: str, unit_type: str,
               position: HexCoord, facing: Facing, stats: UnitStats,
               health: int = 10, pressure: int = 10,
               cards: Optional[list[str]] = None) -> "BattleUnit":
        """Build a fresh unit with current stats equal to base stats."""
        return cls(
            id=id, owner=owner, name=name, unit_type=unit_type,
            position=position, facing=facing,
            base=stats.copy(), current=stats.copy(),
            max_health=health, current_health=health,
            max_pressure=pressure,
            available_cards=list(cards or []),
        )

    @property
    def is_alive(self) -> bool:
        return self.current_health > 0

    @property
    def is_combat_effective(self) -> bool:
        """Alive and not routing: counts for victory checks and AI targeting."""
        return self.is_alive and not self.is_routing

    @property
    def can_act(self) -> bool:
        return self.is_alive and not self.has_acted_this_turn

    @property
    def health_ratio(self) -> float:
        return self.current_health / self.max_health if self.max_health else 0.0

    def add_pressure(self, amount: int) -> int:
        """Add pressure, clamped to max. Returns the amount actually applied."""
        before = self.current_pressure
        self.current_pressure = max(0, min(self.max_pressure, before + amount))
        if self.current_pressure >= self.max_pressure and not self.is_routing:
            self.rout_pending = True
        return self.current_pressure - before

    def take_hits(self, hits: int, max_hits_before_rout: int = 6) -> int:
        """Apply health hits with their stat penalties. Returns hits applied."""
        hits = min(hits, self.current_health)
        for _ in range(hits):
            if self.hits_received < len(HIT_PENALTIES):
                penalty = HIT_PENALTIES[self.hits_received]
                self.current.attack = max(0, self.current.attack + penalty["attack"])
                self.current.ranged = max(0, self.current.ranged + penalty["ranged"])
                self.current.defense = max(0, self.current.defense + penalty["defense"])
                self.current.morale = max(0, self.current.morale + penalty["morale"])
            self.hits_received += 1
            self.current_health -= 1
            self.casualties_this_turn += 1

        if self.hits_received >= max_hits_before_rout and self.is_alive:
            self.is_routing = True
            self.rout_pending = False
        return hits

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner": self.owner.value,
            "name": self.name,
            "unit_type": self.unit_type,
            "position": self.position.to_dict(),
            "facing": self.facing.value,
            "base": asdict(self.base),
            "current": asdict(self.current),
            "max_health": self.max_health,
            "current_health": self.current_health,
            "max_pressure": self.max_pressure,
            "current_pressure": self.current_pressure,
            "posture": self.posture.value,
            "is_routing": self.is_routing,
            "has_acted_this_turn": self.has_acted_this_turn,
            "hits_received": self.hits_received,
            "rout_pending": self.rout_pending,
            "casualties_this_turn": self.casualties_this_turn,
            "available_cards": list(self.available_cards),
            "active_card": self.active_card,
            "commander_id": self.commander_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BattleUnit":
        return cls(
            id=data["id"],
            owner=Player(data["owner"]),
            name=data.get("name", data["id"]),
            unit_type=data.get("unit_type", "infantry"),
            position=HexCoord.from_dict(data["position"]),
            facing=Facing(data.get("facing", Facing.N.value)),
            base=UnitStats(**data["base"]),
            current=UnitStats(**data.get("current", data["base"])),
            max_health=data["max_health"],
            current_health=data.get("current_health", data["max_health"]),
            max_pressure=data["max_pressure"],
            current_pressure=data.get("current_pressure", 0),
            posture=Posture(data.get("posture", Posture.STEADY.value)),
            is_routing=data.get("is_routing", False),
            has_acted_this_turn=data.get("has_acted_this_turn", False),
            hits_received=data.get("hits_received", 0),
            rout_pending=data.get("rout_pending", False),
            casualties_this_turn=data.get("casualties_this_turn", 0),
            available_cards=list(data.get("available_cards", [])),
            active_card=data.get("active_card"),
            commander_id=data.get("commander_id"),
        )


@dataclass
class BattleCommander:
    """A commander, either embedded in a unit or standing on its own hex."""
    id: str
    owner: Player
    name: str
    position: HexCoord
    strategy: int = 0  # added to initiative rolls
    is_embedded: bool = True
    unit_id: Optional[str] = None  # unit carrying the commander while embedded
    has_acted_this_turn: bool = False  # reset at end of turn

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner": self.owner.value,
            "name": self.name,
            "position": self.position.to_dict(),
            "strategy": self.strategy,
            "is_embedded": self.is_embedded,
            "unit_id": self.unit_id,
            "has_acted_this_turn": self.has_acted_this_turn,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BattleCommander":
        return cls(
            id=data["id"],
            owner=Player(data["owner"]),
            name=data.get("name", data["id"]),
            position=HexCoord.from_dict(data["position"]),
            strategy=data.get("strategy", 0),
            is_embedded=data.get("is_embedded", True),
            unit_id=data.get("unit_id"),
            has_acted_this_turn=data.get("has_acted_this_turn", False),
        )
