"""
Host-side wiring of the statblock engine.

StatblockApplication ties together the handler registry, the record store,
the visibility settings and the viewer directory, and keeps one table of
sessions keyed by view identity (viewer + instance or entity). Settings
changes refresh every open session; closed or never-opened sessions stay
silent.
"""

import logging
from typing import Any, Callable, Optional

from .permissions import ViewerDirectory
from .registry import SystemHandlerRegistry
from .session import Renderer, SessionError, ViewResult, ViewSession
from .settings import SettingsManager, VisibilitySettings
from .store import MemoryEntityStore

logger = logging.getLogger("inspect-statblock")

DEFAULT_SYSTEM_ID = "dnd5e"


class SessionTable:
    """
    Sessions keyed by ``"{viewer_id}:{instance_or_entity_id}"``.

    Attributes:
        _sessions: Maps view identity -> session
    """

    def __init__(self) -> None:
        self._sessions: dict[str, ViewSession] = {}

    def get(self, key: str) -> Optional[ViewSession]:
        return self._sessions.get(key)

    def add(self, session: ViewSession) -> None:
        """Track a session, closing any session it replaces."""
        previous = self._sessions.get(session.key)
        if previous is not None and previous is not session:
            previous.close()
        self._sessions[session.key] = session

    def remove(self, key: str) -> Optional[ViewSession]:
        return self._sessions.pop(key, None)

    def open_sessions(self) -> list[ViewSession]:
        return [s for s in self._sessions.values() if s.is_open]

    def refresh_all(self) -> int:
        """
        Re-render every open session.

        Returns:
            Number of sessions re-rendered
        """
        refreshed = 0
        for session in self.open_sessions():
            session.refresh()
            refreshed += 1
        logger.debug(f"Refreshed {refreshed} open statblocks")
        return refreshed

    def close_all(self) -> None:
        for session in list(self._sessions.values()):
            session.close()
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: str) -> bool:
        return key in self._sessions


class StatblockApplication:
    """
    Entry point used by hosts (the MCP server, tests, other front ends).

    Attributes:
        registry: Handler registry consulted when a statblock opens
        store: Record store holding entities, instances and override maps
        settings: Visibility settings manager
        viewers: Viewer role directory
        sessions: Table of sessions
        renderer: Callable receiving ``(session_key, view)`` on every render
    """

    def __init__(
        self,
        registry: SystemHandlerRegistry,
        store: MemoryEntityStore,
        settings: SettingsManager,
        viewers: Optional[ViewerDirectory] = None,
        renderer: Optional[Renderer] = None,
        default_system_id: str = DEFAULT_SYSTEM_ID,
    ) -> None:
        self.registry = registry
        self.store = store
        self.settings = settings
        self.viewers = viewers or ViewerDirectory()
        self.renderer = renderer
        self.default_system_id = default_system_id
        self.sessions = SessionTable()
        self._settings_listener: Callable[[VisibilitySettings], None] = self._on_settings_changed
        self.settings.add_listener(self._settings_listener)

    def _on_settings_changed(self, _settings: VisibilitySettings) -> None:
        self.sessions.refresh_all()

    def system_id_for(self, entity: dict[str, Any]) -> str:
        """Rule system of an entity record, falling back to the default."""
        return str(entity.get("systemId") or entity.get("system_id") or self.default_system_id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(
        self,
        viewer_id: str,
        entity_id: Optional[str] = None,
        instance_id: Optional[str] = None,
    ) -> ViewSession:
        """
        Bind (but do not open) a session for a viewer.

        Raises:
            SessionError: If the records cannot be found
        """
        if entity_id is None and instance_id is not None:
            instance = self.store.get_entity(instance_id)
            if instance is None:
                raise SessionError(f"Placed instance '{instance_id}' not found")
            entity_id = instance.get("actor_id")

        entity = self.store.get_entity(entity_id) if entity_id else None
        if entity is None:
            raise SessionError(f"Entity '{entity_id}' not found")

        system_id = self.system_id_for(entity)
        return ViewSession(
            viewer_id=viewer_id,
            is_privileged=self.viewers.is_privileged(viewer_id),
            store=self.store,
            settings=self.settings,
            handler=self.registry.get(system_id),
            system_id=system_id,
            entity_id=entity_id,
            instance_id=instance_id,
            renderer=self.renderer,
        )

    async def open_statblock(
        self,
        viewer_id: str,
        entity_id: Optional[str] = None,
        instance_id: Optional[str] = None,
    ) -> ViewResult:
        """
        Open (or re-open) a statblock for a viewer and render it.

        Re-opening an already open view re-binds it, so a changed storage
        mode takes effect.
        """
        session = self.create_session(viewer_id, entity_id, instance_id)
        self.sessions.add(session)
        try:
            return await session.open()
        except Exception:
            session.close()
            self.sessions.remove(session.key)
            raise

    def close_statblock(self, session_key: str) -> bool:
        """
        Close a statblock by view identity.

        Returns:
            True if a session was closed
        """
        session = self.sessions.remove(session_key)
        if session is None:
            return False
        session.close()
        return True

    def get_session(self, session_key: str) -> ViewSession:
        session = self.sessions.get(session_key)
        if session is None or not session.is_open:
            raise SessionError(f"No open statblock '{session_key}'")
        return session

    async def toggle_visibility(self, session_key: str, element_key: str) -> dict[str, bool]:
        return await self.get_session(session_key).toggle(element_key)

    async def show_all(self, session_key: str) -> dict[str, bool]:
        return await self.get_session(session_key).show_all()

    async def hide_all(self, session_key: str) -> dict[str, bool]:
        return await self.get_session(session_key).hide_all()

    def shutdown(self) -> None:
        """Close every session and detach from settings."""
        self.sessions.close_all()
        self.settings.remove_listener(self._settings_listener)


__all__ = ["DEFAULT_SYSTEM_ID", "SessionTable", "StatblockApplication"]
