"""
Registry mapping rule-system ids to their handlers.

Handlers register themselves (or are registered by the host) under the
system id they serve. Lookups for unregistered systems return None; callers
treat that as a recoverable "no handler" condition.
"""

import logging
from typing import Any, Optional

logger = logging.getLogger("inspect-statblock")

REQUIRED_HANDLER_METHODS: tuple[str, ...] = ("project", "get_field_catalog")


class RegistryError(Exception):
    """Raised when a handler registration is invalid."""
    pass


class SystemHandlerRegistry:
    """
    Central lookup of system handlers.

    Attributes:
        _handlers: Maps system id -> handler instance
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._handlers: dict[str, Any] = {}

    def register(self, system_id: str, handler: Any) -> None:
        """
        Register a handler for a game system.

        A duplicate registration replaces the previous handler and logs a
        warning.

        Args:
            system_id: Game system id (e.g. "dnd5e", "pf2e")
            handler: Object implementing the handler contract

        Raises:
            RegistryError: If system_id is empty or the handler lacks a
                           mandatory operation
        """
        if not system_id or not isinstance(system_id, str):
            raise RegistryError("system_id must be a non-empty string")

        if handler is None:
            raise RegistryError(f"Handler for '{system_id}' must not be None")

        missing = [
            name for name in REQUIRED_HANDLER_METHODS
            if not callable(getattr(handler, name, None))
        ]
        if missing:
            raise RegistryError(
                f"Handler for '{system_id}' is missing required methods: {', '.join(missing)}"
            )

        if system_id in self._handlers:
            logger.warning(f"Overwriting existing handler for system '{system_id}'")

        self._handlers[system_id] = handler
        logger.info(f"Registered handler for system '{system_id}'")

    def get(self, system_id: str) -> Optional[Any]:
        """
        Get the handler for a game system.

        Args:
            system_id: Game system id

        Returns:
            The handler, or None if none is registered
        """
        if not system_id or not isinstance(system_id, str):
            logger.warning("Handler lookup with an invalid system id")
            return None

        handler = self._handlers.get(system_id)
        if handler is None:
            logger.debug(f"No handler registered for system '{system_id}'")
        return handler

    def has(self, system_id: str) -> bool:
        """Check whether a handler is registered for the system."""
        return system_id in self._handlers

    def list(self) -> list[str]:
        """Registered system ids, in registration order."""
        return list(self._handlers)

    def unregister(self, system_id: str) -> bool:
        """
        Remove a handler.

        Returns:
            True if a handler was removed, False if none was registered
        """
        if self._handlers.pop(system_id, None) is None:
            return False
        logger.info(f"Unregistered handler for system '{system_id}'")
        return True

    def all_handlers(self) -> dict[str, Any]:
        """Copy of the system id -> handler mapping."""
        return dict(self._handlers)

    @property
    def count(self) -> int:
        """Number of registered handlers."""
        return len(self._handlers)


system_registry = SystemHandlerRegistry()


__all__ = [
    "REQUIRED_HANDLER_METHODS",
    "RegistryError",
    "SystemHandlerRegistry",
    "system_registry",
]
