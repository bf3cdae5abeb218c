"""
Toggle orchestration for one open statblock.

The orchestrator owns the local copy of an owner's override map and turns
privileged viewer gestures (toggle one fact, toggle a group header, show all,
hide all) into whole-map writes. Every mutation:

1. re-reads the latest persisted map,
2. computes the new map,
3. writes it in one call,
4. updates local state only after the write succeeded.

Mutations are serialized per orchestrator with an asyncio.Lock; across
orchestrators the store's last write wins.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from .handler import Entity, SystemHandler
from .models import FactKind, StandardizedViewModel
from .store import OverrideStore
from .visibility import find_catalog_entry, is_hidden

logger = logging.getLogger("inspect-statblock")


class OrchestratorState(str, Enum):
    """Lifecycle of a toggle orchestrator."""
    UNINITIALIZED = "uninitialized"
    LOADED = "loaded"
    TOGGLING = "toggling"
    CLOSED = "closed"


class ToggleError(Exception):
    """Base error for rejected toggle operations."""
    pass


class TogglePermissionError(ToggleError):
    """Raised when a restricted viewer attempts to change visibility."""
    pass


class OrchestratorClosedError(ToggleError):
    """Raised when a closed orchestrator is asked to mutate."""
    pass


class ToggleOrchestrator:
    """
    Applies visibility changes to one owner's override map.

    Attributes:
        handler: System handler supplying the catalog and key enumeration
        store: Persistence collaborator holding override maps
        owner_id: Record owning the override map
        is_privileged: Whether the viewer may mutate
        overrides: Last map known to be persisted
        state: Current lifecycle state
    """

    def __init__(
        self,
        handler: SystemHandler,
        store: OverrideStore,
        owner_id: str,
        get_entity: Callable[[], Optional[Entity]],
        is_privileged: bool,
    ) -> None:
        self.handler = handler
        self.store = store
        self.owner_id = owner_id
        self.is_privileged = is_privileged
        self.overrides: dict[str, bool] = {}
        self.state = OrchestratorState.UNINITIALIZED
        self._get_entity = get_entity
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> dict[str, bool]:
        """
        Read the owner's map, initializing it for a privileged first load.

        When the GM opens a statblock whose map is empty, the default policy
        is expanded into explicit overrides for every catalog entry (groups
        expand to their live members) and persisted once.

        Returns:
            The loaded override map

        Raises:
            OrchestratorClosedError: If the orchestrator was closed
            OverrideWriteError: If the initial map could not be written
        """
        if self.state == OrchestratorState.CLOSED:
            raise OrchestratorClosedError("Cannot load a closed statblock")

        async with self._lock:
            latest = dict(self.store.get_overrides(self.owner_id) or {})

            if self.is_privileged and not latest:
                initial = self._initial_overrides()
                if initial:
                    await self.store.set_overrides(self.owner_id, initial)
                    logger.info(
                        f"Initialized default visibility for {self.owner_id} ({len(initial)} keys)"
                    )
                    latest = initial

            self.overrides = latest
            if self.state != OrchestratorState.CLOSED:
                self.state = OrchestratorState.LOADED
            return dict(latest)

    def _initial_overrides(self) -> dict[str, bool]:
        entity = self._get_entity() or {}
        default_policy = self.handler.settings.get_default_policy()
        initial: dict[str, bool] = {}

        for entry in self.handler.get_field_catalog():
            if not entry.default_policy_key:
                continue
            hidden = not default_policy.get(entry.default_policy_key, True)
            if entry.kind == FactKind.SINGLE:
                initial[entry.key_pattern] = hidden
            else:
                for key in self.handler.enumerate_group_member_keys(entry.id, entity):
                    initial[key] = hidden
        return initial

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def toggle(self, key: str) -> dict[str, bool]:
        """Dispatch a gesture: group header keys toggle their group."""
        group = self._group_for_header(key)
        if group is not None:
            return await self.toggle_group_header(group)
        return await self.toggle_single(key)

    async def toggle_single(self, key: str) -> dict[str, bool]:
        """Flip one fact. An absent key counts as shown."""
        def flip(latest: dict[str, bool]) -> dict[str, bool]:
            latest[key] = not latest.get(key, False)
            logger.debug(f"Toggled {key} -> {'hidden' if latest[key] else 'shown'}")
            return latest

        return await self._mutate(flip)

    async def toggle_group_header(self, group_id: str) -> dict[str, bool]:
        """
        Toggle a whole group from its header.

        If any member is currently shown, every member (and the header, when
        it is trackable) becomes hidden; otherwise every member is shown. A
        group without live members flips only its trackable header.

        Args:
            group_id: Group entry id or its header key
        """
        group = self.handler.find_group(group_id)
        if group is None:
            raise ToggleError(f"Unknown group '{group_id}'")

        entity = self._get_entity() or {}
        members = self.handler.enumerate_group_member_keys(group.id, entity)
        header_key = group.header_key

        def apply(latest: dict[str, bool]) -> dict[str, bool]:
            header_trackable = bool(header_key) and self._is_trackable(header_key, latest)

            if not members:
                if header_trackable:
                    latest[header_key] = not latest.get(header_key, False)
                else:
                    logger.debug(f"Group {group.id} has no members and no trackable header")
                return latest

            catalog = self.handler.get_field_catalog()
            any_shown = any(not is_hidden(key, latest, True, catalog, {}) for key in members)
            for key in members:
                latest[key] = any_shown
            if header_trackable:
                latest[header_key] = any_shown
            logger.debug(
                f"Group {group.id}: {len(members)} members -> {'hidden' if any_shown else 'shown'}"
            )
            return latest

        return await self._mutate(apply)

    async def show_all(self, view_model: Optional[StandardizedViewModel] = None) -> dict[str, bool]:
        """Mark every currently valid key as shown in one write."""
        return await self._set_all(False, view_model)

    async def hide_all(self, view_model: Optional[StandardizedViewModel] = None) -> dict[str, bool]:
        """Mark every currently valid key as hidden in one write."""
        return await self._set_all(True, view_model)

    async def _set_all(self, hidden: bool, view_model: Optional[StandardizedViewModel]) -> dict[str, bool]:
        entity = self._get_entity() or {}
        keys = self.handler.enumerate_all_keys(entity, view_model)

        def apply(latest: dict[str, bool]) -> dict[str, bool]:
            for key in keys:
                latest[key] = hidden
            logger.debug(f"Set {len(keys)} keys to {'hidden' if hidden else 'shown'}")
            return latest

        return await self._mutate(apply)

    async def _mutate(self, change: Callable[[dict[str, bool]], dict[str, bool]]) -> dict[str, bool]:
        self._check_mutable()

        async with self._lock:
            self._check_mutable()
            self.state = OrchestratorState.TOGGLING
            try:
                latest = dict(self.store.get_overrides(self.owner_id) or {})
                updated = change(latest)
                await self.store.set_overrides(self.owner_id, updated)
            finally:
                if self.state == OrchestratorState.TOGGLING:
                    self.state = OrchestratorState.LOADED

            self.overrides = dict(updated)
            return dict(updated)

    def _check_mutable(self) -> None:
        if self.state == OrchestratorState.CLOSED:
            raise OrchestratorClosedError("Statblock is closed")
        if not self.is_privileged:
            raise TogglePermissionError("Only the GM can change visibility")
        if self.state == OrchestratorState.UNINITIALIZED:
            raise ToggleError("Statblock has not been loaded")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _group_for_header(self, key: str) -> Optional[str]:
        for entry in self.handler.get_field_catalog():
            if entry.kind == FactKind.GROUP and entry.header_key == key:
                return entry.id
        return None

    def _is_trackable(self, key: str, latest: dict[str, bool]) -> bool:
        """A header is trackable if the catalog declares it or the map already holds it."""
        if key in latest:
            return True
        entry = find_catalog_entry(key, self.handler.get_field_catalog())
        return entry is not None and entry.kind == FactKind.SINGLE

    def close(self) -> None:
        """Reject any further mutation."""
        self.state = OrchestratorState.CLOSED


__all__ = [
    "OrchestratorState",
    "ToggleError",
    "TogglePermissionError",
    "OrchestratorClosedError",
    "ToggleOrchestrator",
]
