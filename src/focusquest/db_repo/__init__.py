from .base import BaseDatabase
from .users import UserMixin
from .profiles import InsufficientCurrency, ProfileMixin
from .tasks import TaskMixin
from .battle import BattleMixin
from .system import SystemMixin

__all__ = [
    "BaseDatabase",
    "UserMixin",
    "ProfileMixin",
    "InsufficientCurrency",
    "TaskMixin",
    "BattleMixin",
    "SystemMixin",
]
