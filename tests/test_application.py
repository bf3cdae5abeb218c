"""
Tests for StatblockApplication and SessionTable.
"""

import pytest

from inspect_statblock.application import SessionTable, StatblockApplication
from inspect_statblock.models import ErrorView, StandardizedViewModel, StorageSharingMode
from inspect_statblock.orchestrator import TogglePermissionError
from inspect_statblock.permissions import ViewerRole
from inspect_statblock.session import SessionError

# Configure pytest to use anyio with asyncio backend for async tests
pytestmark = pytest.mark.anyio


@pytest.fixture
def renders() -> list:
    return []


@pytest.fixture
def app(registry, store, settings, renders) -> StatblockApplication:
    application = StatblockApplication(
        registry=registry,
        store=store,
        settings=settings,
        renderer=lambda key, view: renders.append((key, view)),
    )
    application.viewers.set_role("dm", ViewerRole.GM)
    return application


class TestOpenClose:
    """Test opening and closing statblocks."""

    async def test_open_tracks_session(self, app):
        view = await app.open_statblock("dm", instance_id="tok1")

        assert isinstance(view, StandardizedViewModel)
        assert view.is_gm_view is True
        assert "dm:tok1" in app.sessions

    async def test_player_view(self, app):
        view = await app.open_statblock("alice", entity_id="goblin")
        assert view.is_gm_view is False

    async def test_reopen_replaces_session(self, app, store):
        await app.open_statblock("dm", entity_id="goblin")
        first = app.sessions.get("dm:goblin")
        await app.open_statblock("dm", entity_id="goblin")

        assert app.sessions.get("dm:goblin") is not first
        assert first.is_open is False
        assert len(app.sessions) == 1

    async def test_close(self, app, store):
        await app.open_statblock("dm", entity_id="goblin")

        assert app.close_statblock("dm:goblin") is True
        assert app.close_statblock("dm:goblin") is False
        assert store.subscriber_count == 0

    async def test_missing_entity(self, app):
        with pytest.raises(SessionError):
            await app.open_statblock("dm", entity_id="nobody")

    async def test_unregistered_system(self, app, store):
        await store.add_entity({"id": "pf", "name": "Pathfinder Goblin", "systemId": "pf2e"})
        view = await app.open_statblock("dm", entity_id="pf")
        assert isinstance(view, ErrorView)


class TestToggling:
    """Test toggles routed through the application."""

    async def test_toggle_visibility(self, app, store):
        await app.open_statblock("dm", entity_id="goblin")
        overrides = await app.toggle_visibility("dm:goblin", "section-hp")

        assert overrides["section-hp"] is True
        assert store.get_overrides("goblin")["section-hp"] is True

    async def test_toggle_requires_open_session(self, app):
        with pytest.raises(SessionError):
            await app.toggle_visibility("dm:goblin", "section-hp")

    async def test_player_toggle_rejected(self, app):
        await app.open_statblock("alice", entity_id="goblin")
        with pytest.raises(TogglePermissionError):
            await app.hide_all("alice:goblin")

    async def test_hide_all_reaches_players(self, app, renders):
        await app.open_statblock("dm", entity_id="goblin")
        await app.open_statblock("alice", entity_id="goblin")

        await app.hide_all("dm:goblin")

        player_view = [view for key, view in renders if key == "alice:goblin"][-1]
        assert player_view.header.name.text == "??"


class TestSettingsRefresh:
    """Settings changes refresh open sessions only."""

    async def test_refresh_on_settings_change(self, app, settings, renders):
        await app.open_statblock("alice", entity_id="goblin")
        app.create_session("bob", entity_id="goblin")
        renders.clear()

        settings.update(default_policy={"dnd5e.ac": False})

        assert [key for key, _ in renders] == ["alice:goblin"]
        ac = renders[-1][1].get_section("ac").items[0]
        assert ac.value == "??"

    async def test_storage_mode_applies_on_reopen(self, app, settings):
        await app.open_statblock("dm", instance_id="tok1")
        assert app.sessions.get("dm:tok1").owner_id == "goblin"

        settings.update(storage_sharing_mode=StorageSharingMode.PER_INSTANCE)
        assert app.sessions.get("dm:tok1").owner_id == "goblin"

        await app.open_statblock("dm", instance_id="tok1")
        assert app.sessions.get("dm:tok1").owner_id == "tok1"

    async def test_shutdown(self, app, settings, store):
        await app.open_statblock("dm", entity_id="goblin")
        app.shutdown()

        assert len(app.sessions) == 0
        assert store.subscriber_count == 0
        assert settings.remove_listener(app._on_settings_changed) is False


class TestSessionTable:
    """Test the session table on its own."""

    def test_empty_table(self):
        table = SessionTable()
        assert len(table) == 0
        assert table.refresh_all() == 0
        assert table.get("x") is None
