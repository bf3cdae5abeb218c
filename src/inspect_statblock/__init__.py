"""
Inspect Statblock - visibility-gated creature statblocks for game masters.

The GM decides, fact by fact, what players may see about a creature; players
receive placeholders for everything hidden. Rule systems plug in through
handlers registered in the SystemHandlerRegistry.
"""

from .application import SessionTable, StatblockApplication
from .handler import SystemHandler, project_entity
from .models import *
from .registry import SystemHandlerRegistry, system_registry
from .settings import SettingsManager, VisibilitySettings
from .store import JsonEntityStore, MemoryEntityStore

try:
    from importlib.metadata import version as _get_version
    __version__ = _get_version("inspect-statblock")
except Exception:
    __version__ = "0.1.0"  # Fallback if metadata unavailable
__all__ = [
    "SessionTable",
    "StatblockApplication",
    "SystemHandler",
    "project_entity",
    "SystemHandlerRegistry",
    "system_registry",
    "SettingsManager",
    "VisibilitySettings",
    "JsonEntityStore",
    "MemoryEntityStore",
]
