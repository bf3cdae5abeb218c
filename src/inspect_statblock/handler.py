"""
Rule-system handler contract.

A handler turns one rule system's raw entity into a StandardizedViewModel and
describes which facts can be toggled. Handlers are registered per system id in
the SystemHandlerRegistry; the core never hard-codes a rule system.

Mandatory operations are ``project`` and ``get_field_catalog``. The key
enumeration operations have conservative fallbacks here so a minimal handler
still supports Show All / Hide All.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Union

from .models import (
    CatalogEntry,
    ErrorView,
    FactKind,
    StandardizedViewModel,
)
from .settings import SettingsProvider
from .visibility import FactResolver

logger = logging.getLogger("inspect-statblock")

Entity = Mapping[str, Any]


class SystemHandler(ABC):
    """
    Base class for rule-system adapters.

    Attributes:
        system_id: Rule system identifier (e.g. "dnd5e")
        settings: Configuration collaborator supplying default policy and
                  placeholder mode
    """

    system_id: str = ""

    def __init__(self, settings: SettingsProvider) -> None:
        self.settings = settings

    @abstractmethod
    def project(
        self,
        entity: Entity,
        placed_instance: Optional[Entity],
        overrides: Mapping[str, bool],
        is_privileged: bool,
    ) -> StandardizedViewModel:
        """
        Build the view model for one entity as seen by one viewer.

        Must resolve every fact through the visibility resolver and must not
        raise on missing optional fields.
        """

    @abstractmethod
    def get_field_catalog(self) -> list[CatalogEntry]:
        """Every toggleable fact this system knows about."""

    def enumerate_group_member_keys(self, group_id: str, entity: Entity) -> list[str]:
        """Concrete member keys of a group for the live entity."""
        return []

    def enumerate_all_keys(
        self,
        entity: Entity,
        cached_view_model: Optional[StandardizedViewModel] = None,
    ) -> list[str]:
        """
        Every key currently valid for the entity, for Show All / Hide All.

        The default collects single catalog keys, live group members and any
        key present in the last projection.
        """
        keys: dict[str, None] = {}
        for entry in self.get_field_catalog():
            if entry.kind == FactKind.SINGLE:
                keys[entry.key_pattern] = None
            else:
                if entry.header_key:
                    keys[entry.header_key] = None
                for key in self.enumerate_group_member_keys(entry.id, entity):
                    keys[key] = None

        if cached_view_model is not None:
            for key in cached_view_model.element_keys():
                keys[key] = None

        return list(keys)

    def get_default_policy_keys(self) -> list[str]:
        """Policy keys referenced by the catalog, for settings screens."""
        seen: dict[str, None] = {}
        for entry in self.get_field_catalog():
            if entry.default_policy_key:
                seen[entry.default_policy_key] = None
        return list(seen)

    def build_resolver(self, overrides: Mapping[str, bool], is_privileged: bool) -> FactResolver:
        """Bind the inputs of one projection to a resolver."""
        return FactResolver(
            overrides,
            is_privileged,
            self.get_field_catalog(),
            self.settings.get_default_policy(),
        )

    def find_group(self, group_id: str) -> Optional[CatalogEntry]:
        """Look up a group entry by id or by its header key."""
        for entry in self.get_field_catalog():
            if entry.kind != FactKind.GROUP:
                continue
            if entry.id == group_id or (entry.header_key and entry.header_key == group_id):
                return entry
        return None


def project_entity(
    handler: Optional[SystemHandler],
    system_id: str,
    entity: Optional[Entity],
    placed_instance: Optional[Entity],
    overrides: Mapping[str, bool],
    is_privileged: bool,
) -> Union[StandardizedViewModel, ErrorView]:
    """
    Project an entity, degrading every failure to a single ErrorView.

    A partially built model is never returned: either the handler completes
    or the whole view becomes the error placeholder.
    """
    entity_id = str((entity or {}).get("id", ""))

    if handler is None:
        logger.warning(f"No system handler registered for '{system_id}'")
        return ErrorView(
            system_id=system_id,
            entity_id=entity_id,
            message=f"No system handler configured for game system '{system_id}'.",
        )

    if entity is None:
        logger.warning("Projection requested without an entity")
        return ErrorView(system_id=system_id, message="No creature data to display.")

    try:
        return handler.project(entity, placed_instance, dict(overrides or {}), is_privileged)
    except Exception:
        logger.exception(f"System handler '{system_id}' failed to project entity {entity_id}")
        return ErrorView(
            system_id=system_id,
            entity_id=entity_id,
            message="Error rendering statblock.",
        )


__all__ = ["Entity", "SystemHandler", "project_entity"]
