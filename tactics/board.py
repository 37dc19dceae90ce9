"""
Board queries: movement, line of sight, targets and per-phase availability.

Everything here reads the state without mutating it.
"""

from typing import Optional

from .config import BattleRules, default_rules
from .hexgrid import (
    HexCoord, hex_distance, hex_line, neighbors, reachable,
)
from .state import TacticalGameState, Phase
from .units import BattleUnit, BattleCommander, Player, Posture


# Movement
def movement_allowance(unit: BattleUnit, rules: Optional[BattleRules] = None) -> int:
    """Movement points for this tick after posture and card modifiers."""
    rules = rules or default_rules()
    allowance = unit.current.movement
    if unit.active_card and unit.active_card in rules.cards:
        allowance += rules.cards[unit.active_card].movement

    if unit.posture == Posture.REORGANIZATION:
        return 0
    if unit.posture == Posture.DEFENSIVE:
        return min(allowance, 1)
    if unit.posture == Posture.CHARGE:
        return allowance * 2
    return max(0, allowance)


def _step_cost(state: TacticalGameState, rules: BattleRules):
    def cost(coord: HexCoord) -> Optional[float]:
        tile = state.tile(coord)
        if tile is None or tile.unit_id is not None:
            return None
        return rules.terrain_for(tile.terrain.value).movement_cost
    return cost


def valid_moves(state: TacticalGameState, unit: BattleUnit,
                rules: Optional[BattleRules] = None,
                allowance: Optional[int] = None) -> dict[HexCoord, float]:
    """Hexes the unit can reach this tick, with their movement cost.

    Occupied hexes can neither be entered nor passed through.
    """
    rules = rules or default_rules()
    if allowance is None:
        allowance = movement_allowance(unit, rules)
    if allowance <= 0:
        return {}
    return reachable(unit.position, allowance, _step_cost(state, rules))


def commander_moves(state: TacticalGameState, commander: BattleCommander,
                    rules: Optional[BattleRules] = None) -> list[HexCoord]:
    """Free hexes an independent commander can walk to."""
    rules = rules or default_rules()
    if commander.is_embedded:
        return []
    occupied = {c.position for c in state.commanders.values()
                if not c.is_embedded and c.id != commander.id}
    return sorted(
        coord for coord in reachable(commander.position, rules.commander_move_distance,
                                     lambda c: 1 if state.tile(c) else None)
        if coord not in occupied
    )


# Line of sight
def has_line_of_sight(state: TacticalGameState, origin: HexCoord, target: HexCoord,
                      rules: Optional[BattleRules] = None) -> bool:
    """Blocking terrain strictly between the two hexes breaks line of sight."""
    rules = rules or default_rules()
    for coord in hex_line(origin, target)[1:-1]:
        tile = state.tile(coord)
        if tile and rules.terrain_for(tile.terrain.value).blocks_los:
            return False
    return True


# Neighbours and targets
def adjacent_units(state: TacticalGameState, coord: HexCoord) -> list[BattleUnit]:
    found = []
    for n in neighbors(coord):
        unit = state.unit_at(n)
        if unit and unit.is_alive:
            found.append(unit)
    return found


def adjacent_allies(state: TacticalGameState, unit: BattleUnit,
                    coord: Optional[HexCoord] = None) -> list[BattleUnit]:
    """Non-routing allies on the six neighbour hexes."""
    return [u for u in adjacent_units(state, coord or unit.position)
            if u.owner == unit.owner and u.id != unit.id and not u.is_routing]


def adjacent_enemies(state: TacticalGameState, unit: BattleUnit,
                     coord: Optional[HexCoord] = None) -> list[BattleUnit]:
    return [u for u in adjacent_units(state, coord or unit.position)
            if u.owner != unit.owner]


def support_count(state: TacticalGameState, unit: BattleUnit,
                  rules: Optional[BattleRules] = None) -> int:
    rules = rules or default_rules()
    return min(len(adjacent_allies(state, unit)), rules.support_cap)


def melee_targets(state: TacticalGameState, unit: BattleUnit) -> list[BattleUnit]:
    if not unit.is_combat_effective:
        return []
    return adjacent_enemies(state, unit)


def shooting_targets(state: TacticalGameState, unit: BattleUnit,
                     rules: Optional[BattleRules] = None) -> list[BattleUnit]:
    """Enemies within ranged band and line of sight."""
    rules = rules or default_rules()
    if not unit.is_combat_effective or unit.current.ranged <= 0:
        return []
    targets = []
    for enemy in state.units.values():
        if enemy.owner == unit.owner or not enemy.is_alive:
            continue
        distance = hex_distance(unit.position, enemy.position)
        if not rules.ranged_min_range <= distance <= rules.ranged_max_range:
            continue
        if has_line_of_sight(state, unit.position, enemy.position, rules):
            targets.append(enemy)
    return targets


def charge_destinations(state: TacticalGameState, unit: BattleUnit,
                        rules: Optional[BattleRules] = None) -> list[HexCoord]:
    """Reachable hexes, at charge speed, that end next to an enemy."""
    rules = rules or default_rules()
    if not unit.is_combat_effective:
        return []
    allowance = max(0, unit.current.movement) * 2
    moves = valid_moves(state, unit, rules, allowance=allowance)
    return sorted(c for c in moves if adjacent_enemies(state, unit, c))


def nearest_enemy_distance(state: TacticalGameState, player: Player,
                           coord: HexCoord) -> Optional[int]:
    distances = [hex_distance(coord, u.position) for u in state.units.values()
                 if u.owner != player and u.is_alive]
    return min(distances) if distances else None


def retreat_destinations(state: TacticalGameState, unit: BattleUnit,
                         rules: Optional[BattleRules] = None) -> list[HexCoord]:
    """Reachable hexes that do not bring a routing unit closer to the enemy."""
    rules = rules or default_rules()
    current = nearest_enemy_distance(state, unit.owner, unit.position)
    moves = valid_moves(state, unit, rules, allowance=max(1, unit.current.movement))
    if current is None:
        return sorted(moves)
    return sorted(c for c in moves
                  if nearest_enemy_distance(state, unit.owner, c) >= current)


def rally_commander(state: TacticalGameState, unit: BattleUnit,
                    rules: Optional[BattleRules] = None) -> Optional[BattleCommander]:
    """A same-side commander close enough to rally the unit and free to act."""
    rules = rules or default_rules()
    for commander in sorted(state.commanders_of(unit.owner), key=lambda c: c.id):
        if commander.has_acted_this_turn:
            continue
        if hex_distance(commander.position, unit.position) <= rules.commander_rally_distance:
            return commander
    return None


def can_rally(state: TacticalGameState, unit: BattleUnit,
              rules: Optional[BattleRules] = None) -> bool:
    if not unit.is_alive or not unit.is_routing:
        return False
    return bool(adjacent_allies(state, unit)) or rally_commander(state, unit, rules) is not None


# Availability
def unit_has_action(state: TacticalGameState, unit: BattleUnit, phase: Phase,
                    rules: Optional[BattleRules] = None) -> bool:
    """Whether a unit has a substantive action in the given phase.

    Free actions (facing, posture, cards) do not count.
    """
    rules = rules or default_rules()
    if not unit.can_act:
        return False

    if phase == Phase.ROUT:
        if not unit.is_routing:
            return False
        return can_rally(state, unit, rules) or bool(retreat_destinations(state, unit, rules))

    if unit.is_routing:
        return False
    if phase == Phase.MOVEMENT:
        return bool(valid_moves(state, unit, rules))
    if phase == Phase.SHOOTING:
        return bool(shooting_targets(state, unit, rules))
    if phase == Phase.CHARGE:
        return bool(charge_destinations(state, unit, rules))
    if phase == Phase.MELEE:
        return bool(melee_targets(state, unit))
    if phase == Phase.REORGANIZATION:
        return unit.current_pressure > 0
    return False


def player_has_actions(state: TacticalGameState, player: Player, phase: Phase,
                       rules: Optional[BattleRules] = None) -> bool:
    rules = rules or default_rules()
    if any(unit_has_action(state, u, phase, rules) for u in state.units_of(player)):
        return True
    if phase == Phase.MOVEMENT:
        return any(not c.has_acted_this_turn and commander_moves(state, c, rules)
                   for c in state.commanders_of(player))
    return False
