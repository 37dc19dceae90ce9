"""
Base class for computer-controlled players.
"""

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from tactics.actions import Action
from tactics.config import BattleRules, default_rules
from tactics.state import TacticalGameState
from tactics.units import Player


@dataclass
class BotAction:
    """A decision: the action to submit and why.

    A decision without an action means the bot is waiting and submits nothing.
    """
    action: Optional[Action]
    reason: str
    score: Optional[float] = None
    alternatives: list[str] = field(default_factory=list)

    @property
    def type(self):
        return self.action.type if self.action else None

    @property
    def waiting(self) -> bool:
        return self.action is None


class Bot(ABC):
    """Base class for bots that play one side of a battle.

    Bots only produce actions; the caller submits them to the engine. The
    random source is injected so identical seeds replay identical decisions.
    """

    def __init__(self, player: Player, rules: Optional[BattleRules] = None,
                 rng: Optional[random.Random] = None, rng_seed: Optional[int] = None):
        self.player = player
        self.rules = rules or default_rules()
        self.rng = rng or random.Random(rng_seed)
        self.decisions: list[BotAction] = []

    @property
    @abstractmethod
    def name(self) -> str:
        """Display name for logs and lobbies."""

    @abstractmethod
    def choose(self, state: TacticalGameState) -> BotAction:
        """Pick the next action for the current phase."""

    def decide(self, state: TacticalGameState) -> BotAction:
        decision = self.choose(state)
        self.decisions.append(decision)
        return decision

    def reset(self):
        """Reset bot state for a new battle."""
        self.decisions = []
