"""
Hex grid geometry for the tactical battle map.

Uses axial coordinates (q, r) with flat-top orientation. All functions are pure;
map dimensions and hex size come from BattleRules.
"""

import heapq
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .config import BattleRules, default_rules

# Axial direction vectors for flat-top hexes
DIRECTIONS = [(1, 0), (1, -1), (0, -1), (-1, 0), (-1, 1), (0, 1)]

SQRT3 = math.sqrt(3)
ANGLE_EPSILON = 1e-6
LINE_NUDGE = 1e-6


@dataclass(frozen=True, order=True)
class HexCoord:
    """Axial hex coordinate."""
    q: int
    r: int

    @property
    def s(self) -> int:
        """Third cube coordinate (q + r + s = 0)."""
        return -self.q - self.r

    def key(self) -> str:
        return hex_key(self)

    def to_dict(self) -> dict:
        return {"q": self.q, "r": self.r}

    @classmethod
    def from_dict(cls, data: dict) -> "HexCoord":
        return cls(int(data["q"]), int(data["r"]))

    def __str__(self) -> str:
        return f"({self.q},{self.r})"


class Facing(Enum):
    """The six hex directions a unit can face, clockwise from north."""
    N = "n"
    NE = "ne"
    SE = "se"
    S = "s"
    SW = "sw"
    NW = "nw"

    @property
    def angle(self) -> float:
        """Bearing in degrees, clockwise from north."""
        return _FACING_ANGLES[self]

    @property
    def offset(self) -> tuple[int, int]:
        return _FACING_OFFSETS[self]

    def opposite(self) -> "Facing":
        return _FACING_ORDER[(_FACING_ORDER.index(self) + 3) % 6]


_FACING_ORDER = [Facing.N, Facing.NE, Facing.SE, Facing.S, Facing.SW, Facing.NW]
_FACING_ANGLES = {f: i * 60.0 for i, f in enumerate(_FACING_ORDER)}
_FACING_OFFSETS = {
    Facing.N: (0, 1),
    Facing.NE: (1, 0),
    Facing.SE: (1, -1),
    Facing.S: (0, -1),
    Facing.SW: (-1, 0),
    Facing.NW: (-1, 1),
}


def hex_key(coord: HexCoord) -> str:
    """String key used for hexes in the serialized state."""
    return f"{coord.q},{coord.r}"


def parse_hex_key(key: str) -> HexCoord:
    q, r = key.split(",")
    return HexCoord(int(q), int(r))


# Pixel projection
def axial_to_pixel(coord: HexCoord, rules: Optional[BattleRules] = None) -> tuple[float, float]:
    """Center of a hex in pixel space, including the board padding."""
    rules = rules or default_rules()
    x = rules.hex_size * (3 / 2 * coord.q)
    y = rules.hex_size * (SQRT3 / 2 * coord.q + SQRT3 * coord.r)
    return (x + rules.padding, y + rules.padding)


def pixel_to_axial(x: float, y: float, rules: Optional[BattleRules] = None) -> HexCoord:
    """Hex containing a pixel point."""
    rules = rules or default_rules()
    px = x - rules.padding
    py = y - rules.padding
    q = (2 / 3 * px) / rules.hex_size
    r = (-1 / 3 * px + SQRT3 / 3 * py) / rules.hex_size
    return round_hex(q, r)


def round_hex(q: float, r: float) -> HexCoord:
    """Round fractional hex coordinates to nearest hex."""
    s = -q - r
    rq, rr, rs = round(q), round(r), round(s)

    q_diff = abs(rq - q)
    r_diff = abs(rr - r)
    s_diff = abs(rs - s)

    if q_diff > r_diff and q_diff > s_diff:
        rq = -rr - rs
    elif r_diff > s_diff:
        rr = -rq - rs

    return HexCoord(int(rq), int(rr))


# Hex operations
def hex_distance(a: HexCoord, b: HexCoord) -> int:
    """Calculate distance in hexes between two cells."""
    dq = a.q - b.q
    dr = a.r - b.r
    return (abs(dq) + abs(dq + dr) + abs(dr)) // 2


def neighbors(coord: HexCoord) -> list[HexCoord]:
    """The six adjacent coordinates, whether or not they are on the map."""
    return [HexCoord(coord.q + dq, coord.r + dr) for dq, dr in DIRECTIONS]


def is_adjacent(a: HexCoord, b: HexCoord) -> bool:
    return hex_distance(a, b) == 1


def hexes_in_range(center: HexCoord, radius: int) -> list[HexCoord]:
    """All coordinates within `radius` hexes of center, center included."""
    cells = []
    for dq in range(-radius, radius + 1):
        for dr in range(max(-radius, -dq - radius), min(radius, -dq + radius) + 1):
            cells.append(HexCoord(center.q + dq, center.r + dr))
    return cells


def hex_line(a: HexCoord, b: HexCoord) -> list[HexCoord]:
    """Get all hexes along a line between two points, both ends included."""
    n = hex_distance(a, b)
    if n == 0:
        return [a]

    # nudge both ends off hex edges so ties always round the same way
    aq, ar = a.q + LINE_NUDGE, a.r + LINE_NUDGE
    dq, dr = b.q - a.q, b.r - a.r

    results = []
    for i in range(n + 1):
        t = i / n
        results.append(round_hex(aq + dq * t, ar + dr * t))

    return results


# Rectangular map addressing
def axial_to_offset(coord: HexCoord) -> tuple[int, int]:
    """(col, row) of a hex on the rectangular board."""
    return (coord.q, coord.r + coord.q // 2)


def offset_to_axial(col: int, row: int) -> HexCoord:
    return HexCoord(col, row - col // 2)


def is_valid_hex(coord: HexCoord, rules: Optional[BattleRules] = None) -> bool:
    """Whether a coordinate falls inside the board rectangle."""
    rules = rules or default_rules()
    col, row = axial_to_offset(coord)
    return 0 <= col < rules.map_width and 0 <= row < rules.map_height


def generate_map_coords(rules: Optional[BattleRules] = None) -> list[HexCoord]:
    """Every coordinate of the rectangular board, column by column."""
    rules = rules or default_rules()
    return [offset_to_axial(col, row)
            for col in range(rules.map_width)
            for row in range(rules.map_height)]


# Bearings and facings
def bearing(origin: HexCoord, target: HexCoord) -> float:
    """Bearing in degrees [0, 360) from origin to target, clockwise from north.

    Computed on projected hex centers so the result does not depend on the
    choice of axial axes.
    """
    ox, oy = axial_to_pixel(origin)
    tx, ty = axial_to_pixel(target)
    angle = math.degrees(math.atan2(tx - ox, ty - oy))
    return angle % 360.0


def angle_difference(a: float, b: float) -> float:
    """Smallest absolute difference between two bearings, in [0, 180]."""
    diff = abs(a - b) % 360.0
    return 360.0 - diff if diff > 180.0 else diff


def direction_between(a: HexCoord, b: HexCoord) -> Optional[Facing]:
    """Facing pointing from a to an adjacent hex b, or None if not adjacent."""
    delta = (b.q - a.q, b.r - a.r)
    for facing, offset in _FACING_OFFSETS.items():
        if offset == delta:
            return facing
    return None


def facing_toward(a: HexCoord, b: HexCoord) -> Facing:
    """Facing from a that points closest to b."""
    if a == b:
        return Facing.N
    target = bearing(a, b)
    return min(_FACING_ORDER, key=lambda f: angle_difference(f.angle, target))


# Movement
def reachable(start: HexCoord, budget: float,
              step_cost: Callable[[HexCoord], Optional[float]]) -> dict[HexCoord, float]:
    """Cheapest cost to every hex reachable from start within budget.

    `step_cost` returns the cost of entering a hex, or None if impassable.
    The start hex is excluded from the result.
    """
    best = {start: 0.0}
    open_set = [(0.0, start)]

    while open_set:
        cost, current = heapq.heappop(open_set)
        if cost > best.get(current, math.inf):
            continue
        for nxt in neighbors(current):
            step = step_cost(nxt)
            if step is None:
                continue
            total = cost + step
            if total > budget:
                continue
            if total < best.get(nxt, math.inf):
                best[nxt] = total
                heapq.heappush(open_set, (total, nxt))

    del best[start]
    return best


def find_path(start: HexCoord, end: HexCoord,
              step_cost: Callable[[HexCoord], Optional[float]],
              max_cost: float = math.inf) -> list[HexCoord]:
    """Find optimal path using A* algorithm. Empty list if unreachable."""
    if start == end:
        return [start]

    open_set = [(0.0, start)]
    came_from: dict[HexCoord, HexCoord] = {}
    g_score = {start: 0.0}

    while open_set:
        _, current = heapq.heappop(open_set)

        if current == end:
            path = [current]
            while current in came_from:
                current = came_from[current]
                path.append(current)
            return list(reversed(path))

        for nxt in neighbors(current):
            move_cost = step_cost(nxt)
            if move_cost is None:
                continue

            tentative_g = g_score[current] + move_cost
            if tentative_g > max_cost:
                continue

            if nxt not in g_score or tentative_g < g_score[nxt]:
                came_from[nxt] = current
                g_score[nxt] = tentative_g
                heapq.heappush(open_set, (tentative_g + hex_distance(nxt, end), nxt))

    return []
