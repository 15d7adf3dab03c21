from .base import Base
from .error_code import ErrorCode
from .profile import Profile
from .goal import OverarchingGoal
from .practice_log import PracticeLog
from .weekly_insight import WeeklyInsight
from .ai_usage import AiLimits, AiUsage

__all__ = [
    "Base",
    "ErrorCode",
    "Profile",
    "OverarchingGoal",
    "PracticeLog",
    "WeeklyInsight",
    "AiUsage",
    "AiLimits",
]
