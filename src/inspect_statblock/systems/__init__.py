"""
Rule-system handlers shipped with Inspect Statblock.

Usage:
    from inspect_statblock.systems import register_builtin_systems

    register_builtin_systems(system_registry, settings)
"""

from ..registry import SystemHandlerRegistry
from ..settings import SettingsProvider
from .dnd5e import Dnd5eHandler


def register_builtin_systems(registry: SystemHandlerRegistry, settings: SettingsProvider) -> list[str]:
    """Register every bundled handler and return their system ids."""
    handlers = [Dnd5eHandler(settings)]
    for handler in handlers:
        registry.register(handler.system_id, handler)
    return [handler.system_id for handler in handlers]


__all__ = ["Dnd5eHandler", "register_builtin_systems"]
