"""
Core module - Configuration, observability, clocks and input validation
"""

from .config import Config
from .clock import Clock, SystemClock

__all__ = ['Config', 'Clock', 'SystemClock']
