"""Core subpackage for shared constants, types, configuration and exceptions."""

from defroster.api.core.clock import Clock, ManualClock, SystemClock
from defroster.api.core.config import DefrosterConfig, load_config, save_config


__all__ = [
    "Clock",
    "DefrosterConfig",
    "ManualClock",
    "SystemClock",
    "load_config",
    "save_config",
]
