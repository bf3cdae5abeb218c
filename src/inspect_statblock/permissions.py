"""
Viewer identity and override ownership.

There are exactly two roles: the GM (privileged, sees everything plus hidden
markers, may toggle) and players (restricted, see placeholders). Viewers
without an explicit assignment are players.

Ownership decides which record stores the override map for a placed
instance. It is recomputed every time a session binds, so changing the
storage-sharing mode takes effect on the next open.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

from .models import StorageSharingMode

logger = logging.getLogger("inspect-statblock")


class ViewerRole(str, Enum):
    """Viewer roles. GM is privileged, PLAYER is restricted."""
    PLAYER = "player"
    GM = "gm"


class ViewerAssignment(BaseModel):
    """
    Maps a viewer id to a role.

    Attributes:
        viewer_id: Unique identifier for the viewer
        role: The assigned role
        assigned_at: When the role was assigned
    """
    viewer_id: str
    role: ViewerRole = ViewerRole.PLAYER
    assigned_at: datetime = Field(default_factory=datetime.now)


class ViewerDirectory:
    """
    Identity collaborator: answers "is this viewer privileged".

    Attributes:
        _assignments: Maps viewer_id -> ViewerAssignment
    """

    def __init__(self) -> None:
        """Initialize an empty directory."""
        self._assignments: dict[str, ViewerAssignment] = {}

    def set_role(self, viewer_id: str, role: ViewerRole) -> ViewerAssignment:
        """
        Assign a role to a viewer.

        Args:
            viewer_id: Unique viewer identifier
            role: The role to assign

        Returns:
            The stored assignment
        """
        assignment = ViewerAssignment(viewer_id=viewer_id, role=ViewerRole(role))
        self._assignments[viewer_id] = assignment
        logger.debug(f"Role assigned: {viewer_id} -> {assignment.role.value}")
        return assignment

    def get_role(self, viewer_id: str) -> ViewerRole:
        """The viewer's role, PLAYER if unassigned."""
        assignment = self._assignments.get(viewer_id)
        return assignment.role if assignment else ViewerRole.PLAYER

    def remove(self, viewer_id: str) -> bool:
        """
        Remove a viewer's assignment.

        Returns:
            True if removed, False if the viewer had no assignment
        """
        return self._assignments.pop(viewer_id, None) is not None

    def is_privileged(self, viewer_id: str) -> bool:
        """Whether the viewer sees real values and may toggle."""
        return self.get_role(viewer_id) == ViewerRole.GM

    def all_assignments(self) -> dict[str, ViewerRole]:
        """Copy of viewer_id -> role."""
        return {vid: a.role for vid, a in self._assignments.items()}


def resolve_owner(
    entity: Mapping[str, Any],
    placed_instance: Optional[Mapping[str, Any]],
    mode: StorageSharingMode,
) -> str:
    """
    Decide which record owns the override map.

    - per-instance: the placed instance itself, when there is one
    - shared: the base entity the instance was placed from
      (``actor_id`` on the instance), falling back to the entity

    Args:
        entity: The entity being displayed
        placed_instance: The placed instance, if the view came from one
        mode: Current storage-sharing mode

    Returns:
        The owner record id
    """
    entity_id = str(entity.get("id", ""))

    if placed_instance is None:
        return entity_id

    if StorageSharingMode(mode) == StorageSharingMode.PER_INSTANCE:
        instance_id = placed_instance.get("id")
        if instance_id:
            return str(instance_id)
        return entity_id

    base_id = placed_instance.get("actor_id")
    if base_id:
        return str(base_id)
    return entity_id


__all__ = [
    "ViewerRole",
    "ViewerAssignment",
    "ViewerDirectory",
    "resolve_owner",
]
