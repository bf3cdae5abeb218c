"""
View sessions: one viewer looking at one creature.

A session binds an entity (and optionally the placed instance it was opened
from) for a single viewer. It resolves the override owner, listens to store
changes and re-renders only while it is actually open. Sessions that were
constructed but never opened, or already closed, ignore every notification.
"""

import logging
from typing import Any, Callable, Optional, Union

from .handler import Entity, SystemHandler, project_entity
from .models import ErrorView, StandardizedViewModel
from .orchestrator import ToggleOrchestrator
from .permissions import resolve_owner
from .settings import SettingsProvider
from .store import STATS_KEY, MemoryEntityStore, diff_touches_overrides

logger = logging.getLogger("inspect-statblock")

ViewResult = Union[StandardizedViewModel, ErrorView]
Renderer = Callable[[str, ViewResult], Any]


class SessionError(Exception):
    """Raised when a session cannot be bound to its records."""
    pass


class ViewSession:
    """
    One open (or openable) statblock.

    Attributes:
        viewer_id: Viewer looking at the statblock
        is_privileged: Whether the viewer is the GM
        entity_id: Record whose facts are displayed
        instance_id: Placed instance the view was opened from, if any
        owner_id: Record owning the override map, resolved at bind time
        system_id: Rule system used to project the entity
        is_constructed: True once bound and subscribed
        is_open: True between open() and close()
        view_model: Last projection result
    """

    def __init__(
        self,
        *,
        viewer_id: str,
        is_privileged: bool,
        store: MemoryEntityStore,
        settings: SettingsProvider,
        handler: Optional[SystemHandler],
        system_id: str,
        entity_id: Optional[str] = None,
        instance_id: Optional[str] = None,
        renderer: Optional[Renderer] = None,
    ) -> None:
        self.viewer_id = viewer_id
        self.is_privileged = is_privileged
        self.store = store
        self.settings = settings
        self.handler = handler
        self.system_id = system_id
        self.renderer = renderer
        self.instance_id = instance_id

        self.is_constructed = False
        self.is_open = False
        self.view_model: Optional[ViewResult] = None
        self.render_count = 0
        self._rendered_overrides: Optional[dict[str, bool]] = None

        instance = self.placed_instance
        if instance_id is not None and instance is None:
            raise SessionError(f"Placed instance '{instance_id}' not found")
        if entity_id is None and instance is not None:
            entity_id = instance.get("actor_id")
        if not entity_id:
            raise SessionError("A session needs an entity or a placed instance")
        self.entity_id = str(entity_id)

        entity = self.entity
        if entity is None:
            raise SessionError(f"Entity '{self.entity_id}' not found")

        self.owner_id = resolve_owner(entity, instance, settings.get_storage_sharing_mode())
        self.orchestrator = (
            ToggleOrchestrator(handler, store, self.owner_id, lambda: self.entity, is_privileged)
            if handler is not None else None
        )

        self._unsubscribe: Optional[Callable[[], None]] = store.subscribe(self.handle_change)
        self.is_constructed = True
        logger.debug(
            f"Session bound: viewer={viewer_id} entity={self.entity_id} owner={self.owner_id}"
        )

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    @property
    def key(self) -> str:
        """View identity used by the session table."""
        return f"{self.viewer_id}:{self.instance_id or self.entity_id}"

    @property
    def entity(self) -> Optional[Entity]:
        return self.store.get_entity(self.entity_id)

    @property
    def placed_instance(self) -> Optional[Entity]:
        return self.store.get_entity(self.instance_id) if self.instance_id else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> ViewResult:
        """
        Load the override map and render for the first time.

        Raises:
            OverrideWriteError: If the privileged first-load initialization
                                could not be written
        """
        if self.orchestrator is not None:
            await self.orchestrator.load()
        self.is_open = True
        logger.info(f"Statblock opened: {self.key}")
        return self.refresh()

    def close(self) -> None:
        """Stop listening and reject further toggles."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.orchestrator is not None:
            self.orchestrator.close()
        was_open = self.is_open
        self.is_open = False
        if was_open:
            logger.info(f"Statblock closed: {self.key}")

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def current_overrides(self) -> dict[str, bool]:
        return dict(self.store.get_overrides(self.owner_id) or {})

    def project(self) -> ViewResult:
        """Project the current records for this viewer without rendering."""
        overrides = self.current_overrides()
        entity = self.entity
        result = project_entity(
            self.handler,
            self.system_id,
            entity,
            self.placed_instance,
            overrides,
            self.is_privileged,
        )
        self._rendered_overrides = overrides
        if isinstance(result, StandardizedViewModel) and entity is not None:
            result = result.model_copy(update={"title": self._title(result, overrides)})
        return result

    def _title(self, view_model: StandardizedViewModel, overrides: dict[str, bool]) -> str:
        """Window title, noting the shared owner when the map belongs to the base entity."""
        title = view_model.header.name.text
        if self.instance_id and self.owner_id != self.instance_id and self.handler is not None:
            owner = self.store.get_entity(self.owner_id) or {}
            resolver = self.handler.build_resolver(overrides, self.is_privileged)
            owner_name = resolver.display(view_model.header.name.element_key, owner.get("name", ""))
            title = f"{title} (Shared: {owner_name})"
        return title

    def refresh(self) -> Optional[ViewResult]:
        """Re-project and hand the result to the renderer, if open."""
        if not self.is_open:
            return None
        self.view_model = self.project()
        self.render_count += 1
        if self.renderer is not None:
            self.renderer(self.key, self.view_model)
        return self.view_model

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------

    def handle_change(self, record_id: str, diff: dict[str, Any]) -> bool:
        """
        React to a store change.

        Returns:
            True if the session re-rendered
        """
        if not self.is_open:
            return False
        if record_id not in (self.entity_id, self.owner_id, self.instance_id):
            return False

        visibility_changed = (
            record_id == self.owner_id
            and diff_touches_overrides(diff)
            and self.current_overrides() != self._rendered_overrides
        )
        content_changed = record_id in (self.entity_id, self.instance_id) and _is_content_diff(diff)

        if not (visibility_changed or content_changed):
            logger.debug(f"Ignoring irrelevant change to {record_id} for {self.key}")
            return False

        self.refresh()
        return True

    # ------------------------------------------------------------------
    # Toggles
    # ------------------------------------------------------------------

    def _require_orchestrator(self) -> ToggleOrchestrator:
        if self.orchestrator is None:
            raise SessionError(f"No system handler for '{self.system_id}'")
        return self.orchestrator

    async def toggle(self, key: str) -> dict[str, bool]:
        """Toggle one fact or a whole group (when key is a group header)."""
        overrides = await self._require_orchestrator().toggle(key)
        self._refresh_if_stale()
        return overrides

    async def show_all(self) -> dict[str, bool]:
        cached = self.view_model if isinstance(self.view_model, StandardizedViewModel) else None
        overrides = await self._require_orchestrator().show_all(cached)
        self._refresh_if_stale()
        return overrides

    async def hide_all(self) -> dict[str, bool]:
        cached = self.view_model if isinstance(self.view_model, StandardizedViewModel) else None
        overrides = await self._require_orchestrator().hide_all(cached)
        self._refresh_if_stale()
        return overrides

    def _refresh_if_stale(self) -> None:
        if self.is_open and self.current_overrides() != self._rendered_overrides:
            self.refresh()


def _is_content_diff(diff: dict[str, Any]) -> bool:
    """Anything beyond bookkeeping stamps and flags changes what is displayed."""
    return bool(set(diff) - {STATS_KEY, "flags"})


__all__ = ["SessionError", "ViewSession"]
