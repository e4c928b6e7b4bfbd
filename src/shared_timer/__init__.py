"""
Shared Timer Service

One connection creates and controls a timer, any number of other
connections join its group and receive the ticks.
"""

from .handler import ConnectionEventHandler
from .timer import DecrementingTimer, Timer, TimerState

__all__ = ["ConnectionEventHandler", "DecrementingTimer", "Timer", "TimerState"]
