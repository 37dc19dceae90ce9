"""
Computer opponents for the tactical engine.

- hexbot: mass-combat bot with easy/medium/hard profiles
- skirmish: per-combatant AI for small fights
- pacing: cancellable thinking delay
"""

from .base import Bot, BotAction
from .hexbot import HexBot, decide_bot_action, thinking_delay, bot_name
from .skirmish import (
    AIDecision, Aggression, Combatant, EnemyBehavior, PreferredRange, SkirmishState,
    TargetPriority, choose_enemy_cards, decide_enemy_action, select_posture, should_seek_cover,
)
from .pacing import ThinkingDelay, schedule

__all__ = [
    "Bot", "BotAction",
    "HexBot", "decide_bot_action", "thinking_delay", "bot_name",
    "AIDecision", "Aggression", "Combatant", "EnemyBehavior", "PreferredRange",
    "SkirmishState", "TargetPriority", "choose_enemy_cards", "decide_enemy_action", "select_posture",
    "should_seek_cover",
    "ThinkingDelay", "schedule",
]
