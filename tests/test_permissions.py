"""
Tests for viewer roles and override ownership.
"""

import pytest

from inspect_statblock.models import StorageSharingMode
from inspect_statblock.permissions import ViewerDirectory, ViewerRole, resolve_owner


class TestViewerDirectory:
    """Test role assignment."""

    def test_unassigned_viewer_is_player(self):
        directory = ViewerDirectory()
        assert directory.get_role("alice") == ViewerRole.PLAYER
        assert directory.is_privileged("alice") is False

    def test_gm_is_privileged(self):
        directory = ViewerDirectory()
        directory.set_role("dm", ViewerRole.GM)
        assert directory.is_privileged("dm") is True
        assert directory.all_assignments() == {"dm": ViewerRole.GM}

    def test_role_from_string(self):
        directory = ViewerDirectory()
        assert directory.set_role("dm", "gm").role == ViewerRole.GM

    def test_remove(self):
        directory = ViewerDirectory()
        directory.set_role("dm", ViewerRole.GM)

        assert directory.remove("dm") is True
        assert directory.remove("dm") is False
        assert directory.is_privileged("dm") is False


class TestResolveOwner:
    """Test which record owns the override map."""

    ENTITY = {"id": "goblin"}
    INSTANCE = {"id": "tok1", "actor_id": "goblin"}

    @pytest.mark.parametrize("mode", list(StorageSharingMode))
    def test_no_instance_owner_is_entity(self, mode):
        assert resolve_owner(self.ENTITY, None, mode) == "goblin"

    def test_shared_mode(self):
        assert resolve_owner(self.ENTITY, self.INSTANCE, StorageSharingMode.SHARED) == "goblin"

    def test_per_instance_mode(self):
        assert resolve_owner(self.ENTITY, self.INSTANCE, StorageSharingMode.PER_INSTANCE) == "tok1"

    def test_mode_given_as_string(self):
        assert resolve_owner(self.ENTITY, self.INSTANCE, "per-instance") == "tok1"

    def test_shared_instance_without_base(self):
        assert resolve_owner(self.ENTITY, {"id": "tok2"}, StorageSharingMode.SHARED) == "goblin"
