"""Factories shared by the test-suite."""

import random
from typing import Optional

from tactics import BattleEngine, BattleRules, Phase, Player, TacticalGameState
from tactics.actions import generate_hexes
from tactics.hexgrid import HexCoord, Facing
from tactics.state import Terrain
from tactics.units import BattleUnit, BattleCommander, UnitStats


class ScriptedRandom(random.Random):
    """random.Random whose randint() replays fixed values first."""

    def __init__(self, values, seed: int = 0):
        super().__init__(seed)
        self.values = list(values)

    def randint(self, a, b):
        if self.values:
            return self.values.pop(0)
        return super().randint(a, b)


def make_unit(uid: str, owner: Player, q: int, r: int, facing: Facing = Facing.N,
              attack: int = 5, defense: int = 5, ranged: int = 0, movement: int = 2,
              morale: int = 5, health: int = 10, pressure: int = 10,
              unit_type: str = "infantry", cards: Optional[list[str]] = None) -> BattleUnit:
    return BattleUnit.create(
        id=uid, owner=owner, name=uid.replace("_", " ").title(), unit_type=unit_type,
        position=HexCoord(q, r), facing=facing,
        stats=UnitStats(attack=attack, defense=defense, ranged=ranged,
                        movement=movement, morale=morale),
        health=health, pressure=pressure, cards=cards,
    )


def make_commander(cid: str, owner: Player, unit_id: Optional[str] = None,
                   position: HexCoord = HexCoord(0, 0), strategy: int = 0) -> BattleCommander:
    return BattleCommander(
        id=cid, owner=owner, name=cid.title(), position=position, strategy=strategy,
        is_embedded=unit_id is not None, unit_id=unit_id,
    )


def quiet_rules(**overrides) -> BattleRules:
    """Default rules with automatic phase skipping turned off."""
    rules = BattleRules(auto_skip_empty_phases=False)
    for key, value in overrides.items():
        setattr(rules, key, value)
    return rules


def make_battle(units: list[BattleUnit], commanders: Optional[list[BattleCommander]] = None,
                rules: Optional[BattleRules] = None, seed: int = 1,
                terrain: Optional[dict[HexCoord, Terrain]] = None,
                rng: Optional[random.Random] = None) -> tuple[BattleEngine, TacticalGameState]:
    rules = rules or quiet_rules()
    engine = BattleEngine(rules, rng=rng or random.Random(seed))
    state = engine.initialize_battle(units, commanders, generate_hexes(rules, terrain),
                                     match_id="test")
    return engine, state


def at_phase(state: TacticalGameState, phase: Phase,
             active: Player = Player.PLAYER1, advantage: int = 0) -> TacticalGameState:
    """Drop a freshly built state straight into a phase."""
    state.phase = phase
    state.active_player = active
    state.initiative_winner = active
    state.initiative_advantage = advantage
    return state
