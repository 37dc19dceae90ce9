"""
Hex bot: plays one side of a mass-combat battle against a human.

Scores every legal option for the current phase and plays the best one. The
difficulty profile gates flanking, target value and protection of weak units,
and sets how often the bot ignores the score and plays a random legal option.
"""

import logging
import random
from typing import Optional

from tactics import board
from tactics.actions import Action, ActionType
from tactics.combat import AttackAngle, attack_angle
from tactics.config import BattleRules, DifficultyProfile, default_rules
from tactics.hexgrid import HexCoord, hex_distance, facing_toward
from tactics.state import TacticalGameState, Phase, Terrain
from tactics.units import BattleUnit, Player

from .base import Bot, BotAction

logger = logging.getLogger(__name__)

BOT_NAMES = {
    "easy": ["Recruit Silva", "Novice John", "Apprentice Peter"],
    "medium": ["Captain Marcus", "Commander Ana", "Strategist Lucas"],
    "hard": ["General Victus", "Marshal Nero", "Lord Tiberius"],
}

# Preferred shooting band for ranged units
RANGED_BAND = (3, 6)

FLANK_SCORE = {AttackAngle.FRONT: 0.0, AttackAngle.FLANK: 0.5, AttackAngle.REAR: 1.0}


def difficulty_profile(difficulty: str, rules: Optional[BattleRules] = None) -> DifficultyProfile:
    rules = rules or default_rules()
    if difficulty not in rules.difficulty:
        raise ValueError(f"Unknown difficulty {difficulty!r}")
    return rules.difficulty[difficulty]


def thinking_delay(difficulty: str, rng: random.Random,
                   rules: Optional[BattleRules] = None) -> int:
    """Milliseconds the bot pretends to think before acting."""
    low, high = difficulty_profile(difficulty, rules).thinking_delay_ms
    return rng.randint(low, high)


def bot_name(difficulty: str, rng: random.Random) -> str:
    return rng.choice(BOT_NAMES.get(difficulty, BOT_NAMES["medium"]))


def is_ranged(unit: BattleUnit) -> bool:
    return unit.current.ranged > 0


class HexBot(Bot):
    """Bot for the hex tactical battle."""

    def __init__(self, player: Player, difficulty: str = "medium",
                 rules: Optional[BattleRules] = None,
                 rng: Optional[random.Random] = None, rng_seed: Optional[int] = None):
        super().__init__(player, rules, rng, rng_seed)
        self.difficulty = difficulty
        self.profile = difficulty_profile(difficulty, self.rules)
        self._name = bot_name(difficulty, self.rng)

    @property
    def name(self) -> str:
        return self._name

    def thinking_delay(self) -> int:
        return thinking_delay(self.difficulty, self.rng, self.rules)

    # Decision
    def choose(self, state: TacticalGameState) -> BotAction:
        """Next action for this bot. Waits (no action) when it does not hold the turn."""
        if state.is_finished:
            return BotAction(None, "Battle is over")

        if state.phase == Phase.SETUP:
            return BotAction(Action(ActionType.END_PHASE), "Deployment accepted")
        if state.phase == Phase.INITIATIVE:
            return BotAction(Action(ActionType.ROLL_INITIATIVE), "Rolling for initiative")

        if state.active_player != self.player:
            return BotAction(None, "Waiting for the opponent")

        options = self.options(state)
        if not options:
            return self._nothing_to_do(state)

        if self.rng.random() < self.profile.random_factor:
            action, reason, score = self.rng.choice(options)
            return BotAction(action, f"Improvised: {reason}", score)

        worthwhile = [o for o in options if self._worthwhile(state, o[2])]
        if not worthwhile:
            return self._nothing_to_do(state)
        action, reason, score = max(worthwhile, key=lambda o: o[2])
        return BotAction(action, reason, score,
                         alternatives=[str(o[0]) for o in worthwhile[:5]])

    def _worthwhile(self, state: TacticalGameState, score: float) -> bool:
        """Whether a scored option beats doing nothing this phase."""
        if state.phase == Phase.CHARGE:
            return score >= 30 * (1 - self.profile.aggressiveness)
        if state.phase in (Phase.MOVEMENT, Phase.REORGANIZATION):
            return score > 0
        return True

    def _nothing_to_do(self, state: TacticalGameState) -> BotAction:
        opponent = self.player.opponent()
        if board.player_has_actions(state, opponent, state.phase, self.rules):
            return BotAction(Action(ActionType.PASS), "No useful action, handing over")
        return BotAction(Action(ActionType.END_PHASE),
                         f"Nothing left to do in {state.phase.value}")

    def options(self, state: TacticalGameState) -> list[tuple[Action, str, float]]:
        """Every legal option for the current phase with its score."""
        phase = state.phase
        if phase == Phase.MOVEMENT:
            return self._movement_options(state)
        if phase == Phase.SHOOTING:
            return self._shooting_options(state)
        if phase == Phase.CHARGE:
            return self._charge_options(state)
        if phase == Phase.MELEE:
            return self._melee_options(state)
        if phase == Phase.ROUT:
            return self._rout_options(state)
        if phase == Phase.REORGANIZATION:
            return self._reorganization_options(state)
        return []

    def _ready_units(self, state: TacticalGameState) -> list[BattleUnit]:
        return sorted((u for u in state.units_of(self.player)
                       if u.can_act and not u.is_routing), key=lambda u: u.id)

    def _enemies(self, state: TacticalGameState) -> list[BattleUnit]:
        return [u for u in state.effective_units(self.player.opponent())]

    # Movement
    def _movement_options(self, state: TacticalGameState) -> list[tuple[Action, str, float]]:
        enemies = self._enemies(state)
        if not enemies:
            return []

        options = []
        for unit in self._ready_units(state):
            moves = board.valid_moves(state, unit, self.rules)
            if not moves:
                continue
            nearest = min(enemies, key=lambda e: (hex_distance(unit.position, e.position), e.id))
            staying = self.evaluate_move_position(state, unit, unit.position, nearest)
            for coord in sorted(moves):
                target = min(enemies, key=lambda e: (hex_distance(coord, e.position), e.id))
                score = self.evaluate_move_position(state, unit, coord, target)
                options.append((
                    Action(ActionType.MOVE, unit_id=unit.id, target_hex=coord,
                           facing=facing_toward(coord, target.position)),
                    f"{unit.name} advances on {target.name}",
                    score - staying,
                ))
        return options

    def evaluate_move_position(self, state: TacticalGameState, unit: BattleUnit,
                               coord: HexCoord, enemy: BattleUnit) -> float:
        score = 0.0
        distance = hex_distance(coord, enemy.position)

        if is_ranged(unit):
            low, high = RANGED_BAND
            if low <= distance <= high:
                score += 30
            elif distance < low:
                score -= 20
            else:
                score -= (distance - high) * 5
        else:
            score -= distance * 10
            if distance == 1:
                score += 50 * self.profile.aggressiveness

        if self.profile.consider_flanking and distance == 1:
            score += FLANK_SCORE[attack_angle(coord, enemy)] * 20

        if self.profile.protect_weak_units and unit.health_ratio >= 0.5:
            for ally in board.adjacent_allies(state, unit, coord):
                if ally.health_ratio < 0.5:
                    score += 15
                    break

        tile = state.tile(coord)
        if tile and tile.terrain in (Terrain.FOREST, Terrain.HILL):
            score += 10

        return score

    # Shooting
    def _shooting_options(self, state: TacticalGameState) -> list[tuple[Action, str, float]]:
        options = []
        for unit in self._ready_units(state):
            for target in board.shooting_targets(state, unit, self.rules):
                options.append((
                    Action(ActionType.SHOOT, unit_id=unit.id, target_unit_id=target.id),
                    f"{unit.name} shoots {target.name}",
                    self.evaluate_shoot_target(state, unit, target),
                ))
        return options

    def evaluate_shoot_target(self, state: TacticalGameState, shooter: BattleUnit,
                              target: BattleUnit) -> float:
        score = (1 - target.health_ratio) * 30
        score += target.current_pressure / target.max_pressure * 40

        if self.profile.prefer_high_value:
            if target.unit_type == "cavalry":
                score += 20
            elif is_ranged(target):
                score += 15
        if self.profile.consider_flanking:
            score += FLANK_SCORE[attack_angle(shooter.position, target)] * 10
        if target.is_routing:
            score -= 25
        return score

    # Charge
    def _charge_options(self, state: TacticalGameState) -> list[tuple[Action, str, float]]:
        options = []
        for unit in self._ready_units(state):
            # shooters with a weak melee arm would rather keep shooting
            reluctance = 50 if is_ranged(unit) and unit.current.attack <= unit.current.ranged else 0
            for coord in board.charge_destinations(state, unit, self.rules):
                for target in board.adjacent_enemies(state, unit, coord):
                    options.append((
                        Action(ActionType.CHARGE, unit_id=unit.id, target_hex=coord,
                               target_unit_id=target.id),
                        f"{unit.name} charges {target.name}",
                        self.evaluate_melee_target(state, unit, target, coord) - reluctance,
                    ))
        return options

    # Melee
    def _melee_options(self, state: TacticalGameState) -> list[tuple[Action, str, float]]:
        options = []
        for unit in self._ready_units(state):
            for target in board.melee_targets(state, unit):
                options.append((
                    Action(ActionType.ATTACK, unit_id=unit.id, target_unit_id=target.id),
                    f"{unit.name} attacks {target.name}",
                    self.evaluate_melee_target(state, unit, target, unit.position),
                ))
        return options

    def evaluate_melee_target(self, state: TacticalGameState, attacker: BattleUnit,
                              target: BattleUnit, origin: HexCoord) -> float:
        score = (1 - target.health_ratio) * 40
        score += target.current_pressure / target.max_pressure * 50

        if attacker.unit_type == "cavalry" and is_ranged(target):
            score += 30
        if attacker.unit_type == "infantry" and target.unit_type == "cavalry":
            score += 15

        if self.profile.consider_flanking:
            score += FLANK_SCORE[attack_angle(origin, target)] * 20

        if self.profile.prefer_high_value and target.commander_id:
            score += 10

        if self.profile.protect_weak_units:
            if attacker.health_ratio < 0.3 and target.health_ratio > 0.7:
                score -= 30
            # relieve a weak friendly engaged by this target
            for ally in state.units_of(self.player):
                if ally.id != attacker.id and ally.health_ratio < 0.5 \
                        and hex_distance(ally.position, target.position) == 1:
                    score += 20
                    break
        return score

    # Rout
    def _rout_options(self, state: TacticalGameState) -> list[tuple[Action, str, float]]:
        options = []
        routing = sorted((u for u in state.units_of(self.player)
                          if u.is_routing and u.can_act), key=lambda u: u.id)
        for unit in routing:
            if board.adjacent_allies(state, unit):
                options.append((
                    Action(ActionType.RALLY, unit_id=unit.id),
                    f"{unit.name} rallies on its neighbours",
                    100.0 + unit.current_health,
                ))
            commander = board.rally_commander(state, unit, self.rules)
            if commander is not None:
                options.append((
                    Action(ActionType.RALLY, unit_id=unit.id, commander_id=commander.id),
                    f"{commander.name} rallies {unit.name}",
                    90.0 + unit.current_health,
                ))
            for coord in board.retreat_destinations(state, unit, self.rules):
                distance = board.nearest_enemy_distance(state, self.player, coord) or 0
                options.append((
                    Action(ActionType.RETREAT, unit_id=unit.id, target_hex=coord),
                    f"{unit.name} falls back",
                    float(distance),
                ))
        return options

    # Reorganization
    def _reorganization_options(self, state: TacticalGameState) -> list[tuple[Action, str, float]]:
        return [
            (Action(ActionType.REORGANIZE, unit_id=unit.id),
             f"{unit.name} reorganizes",
             unit.current_pressure / unit.max_pressure * 10)
            for unit in self._ready_units(state)
        ]


def decide_bot_action(state: TacticalGameState, bot_player: Player, difficulty: str,
                      rng: Optional[random.Random] = None,
                      rules: Optional[BattleRules] = None) -> BotAction:
    """One-shot decision without keeping a bot around."""
    bot = HexBot(bot_player, difficulty, rules=rules, rng=rng or random.Random())
    return bot.choose(state)
