"""
Combat resolution for the tactical engine.

Phase order: shooting → charge → melee → rout (morale and rallying)
"""

from .base import AttackAngle, ANGLE_MODIFIERS, CombatReport, CombatResult, Damage, attack_angle
from .melee import MeleeCombat
from .ranged import RangedCombat
from .morale import MoraleResolver, MoraleCheck

__all__ = [
    "AttackAngle",
    "ANGLE_MODIFIERS",
    "CombatReport",
    "CombatResult",
    "Damage",
    "attack_angle",
    "MeleeCombat",
    "RangedCombat",
    "MoraleResolver",
    "MoraleCheck",
]
