"""
Core module initialization.
Exports configuration and clock types.
"""

from homechef.core.config import get_settings, Settings, EnvironmentMode
from homechef.core.clock import Clock, SystemClock, FrozenClock

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "Clock",
    "SystemClock",
    "FrozenClock",
]
