"""
Tests for ViewSession.

Tests cover:
- Owner resolution at bind time for both storage modes
- Rendering gated on the session being open
- Change classification (visibility, content, bookkeeping, foreign flags)
- Toggles re-render exactly once
- Window title with the shared-owner suffix
"""

import pytest

from inspect_statblock.models import ErrorView, StorageSharingMode
from inspect_statblock.orchestrator import TogglePermissionError
from inspect_statblock.session import SessionError, ViewSession
from inspect_statblock.settings import SettingsManager, VisibilitySettings
from inspect_statblock.store import FLAG_KEY, FLAG_SCOPE
from inspect_statblock.visibility import PLACEHOLDER_TEXT

# Configure pytest to use anyio with asyncio backend for async tests
pytestmark = pytest.mark.anyio


class RecordingRenderer:
    """Collects every render call."""

    def __init__(self) -> None:
        self.calls = []

    def __call__(self, session_key, view):
        self.calls.append((session_key, view))


@pytest.fixture
def renderer() -> RecordingRenderer:
    return RecordingRenderer()


def make_session(store, settings, handler, renderer, *, privileged=True, viewer="gm", **binding) -> ViewSession:
    return ViewSession(
        viewer_id=viewer,
        is_privileged=privileged,
        store=store,
        settings=settings,
        handler=handler,
        system_id="dnd5e",
        renderer=renderer,
        **binding,
    )


class TestBinding:
    """Test owner resolution and construction."""

    def test_shared_mode_owner_is_base_entity(self, store, settings, handler, renderer):
        session = make_session(store, settings, handler, renderer, instance_id="tok1")

        assert session.entity_id == "goblin"
        assert session.owner_id == "goblin"
        assert session.key == "gm:tok1"
        assert session.is_constructed is True
        assert session.is_open is False

    def test_per_instance_mode_owner_is_instance(self, store, handler, renderer):
        settings = SettingsManager(settings=VisibilitySettings(storage_sharing_mode=StorageSharingMode.PER_INSTANCE))
        session = make_session(store, settings, handler, renderer, instance_id="tok1")
        assert session.owner_id == "tok1"

    def test_entity_without_instance(self, store, settings, handler, renderer):
        session = make_session(store, settings, handler, renderer, entity_id="goblin")
        assert session.owner_id == "goblin"
        assert session.key == "gm:goblin"

    def test_missing_records(self, store, settings, handler, renderer):
        with pytest.raises(SessionError):
            make_session(store, settings, handler, renderer, entity_id="nobody")
        with pytest.raises(SessionError):
            make_session(store, settings, handler, renderer, instance_id="no-token")

    def test_subscribes_on_construction(self, store, settings, handler, renderer):
        make_session(store, settings, handler, renderer, entity_id="goblin")
        assert store.subscriber_count == 1


class TestRendering:
    """Test render gating."""

    async def test_unopened_session_never_renders(self, store, settings, handler, renderer):
        session = make_session(store, settings, handler, renderer, entity_id="goblin")

        await store.update_entity("goblin", {"name": "Renamed"})
        await store.set_overrides("goblin", {"section-ac": True})

        assert renderer.calls == []
        assert session.render_count == 0

    async def test_open_renders_once(self, store, settings, handler, renderer):
        session = make_session(store, settings, handler, renderer, entity_id="goblin")
        view = await session.open()

        assert session.is_open is True
        assert len(renderer.calls) == 1
        assert renderer.calls[0][1] is view

    async def test_closed_session_ignores_changes(self, store, settings, handler, renderer):
        session = make_session(store, settings, handler, renderer, entity_id="goblin")
        await session.open()
        session.close()

        await store.update_entity("goblin", {"name": "Renamed"})

        assert len(renderer.calls) == 1
        assert store.subscriber_count == 0
        assert session.handle_change("goblin", {"name": "x"}) is False

    async def test_unregistered_system_renders_error_view(self, store, settings, renderer):
        session = ViewSession(
            viewer_id="gm", is_privileged=True, store=store, settings=settings,
            handler=None, system_id="pf2e", entity_id="goblin", renderer=renderer,
        )
        view = await session.open()
        assert isinstance(view, ErrorView)


class TestChangeClassification:
    """Test which store changes trigger a re-render."""

    @pytest.fixture
    async def opened(self, store, settings, handler, renderer) -> ViewSession:
        session = make_session(store, settings, handler, renderer, instance_id="tok1")
        await session.open()
        renderer.calls.clear()
        return session

    async def test_content_change_rerenders(self, opened, store, renderer):
        await store.update_entity("goblin", {"system": {"attributes": {"ac": {"value": 19}}}})

        assert len(renderer.calls) == 1
        ac = renderer.calls[0][1].get_section("ac").items[0]
        assert ac.value == "19"

    async def test_override_change_rerenders(self, opened, store, renderer):
        latest = dict(store.get_overrides("goblin"))
        latest["section-ac"] = True
        await store.set_overrides("goblin", latest)
        assert len(renderer.calls) == 1

    async def test_unchanged_override_map_ignored(self, opened, store, renderer):
        await store.set_overrides("goblin", store.get_overrides("goblin"))
        assert renderer.calls == []

    async def test_stats_only_diff_ignored(self, opened, renderer):
        assert opened.handle_change("goblin", {"_stats": {"modified_time": "now"}}) is False
        assert renderer.calls == []

    async def test_foreign_flags_ignored(self, opened, renderer):
        assert opened.handle_change("goblin", {"flags": {"other-module": {"x": 1}}, "_stats": {}}) is False

    async def test_unrelated_record_ignored(self, opened, store, renderer):
        await store.add_entity({"id": "orc", "name": "Orc"})
        await store.update_entity("orc", {"name": "Big Orc"})
        assert renderer.calls == []

    async def test_instance_change_rerenders(self, opened, store, renderer):
        await store.update_entity("tok1", {"name": "Grik"})
        assert renderer.calls[-1][1].header.name.text == "Grik"


class TestToggles:
    """Test toggling through a session."""

    async def test_toggle_renders_once(self, store, settings, handler, renderer):
        session = make_session(store, settings, handler, renderer, entity_id="goblin")
        await session.open()
        renderer.calls.clear()

        await session.toggle("section-ac")

        assert len(renderer.calls) == 1
        assert renderer.calls[0][1].get_section("ac").items[0].is_hidden_gm is True

    async def test_player_session_sees_gm_toggle(self, store, settings, handler, renderer):
        gm = make_session(store, settings, handler, renderer, entity_id="goblin")
        player_renderer = RecordingRenderer()
        player = make_session(store, settings, handler, player_renderer, privileged=False,
                              viewer="alice", entity_id="goblin")
        await gm.open()
        await player.open()

        await gm.toggle("ability-dex")

        dex = next(i for i in player_renderer.calls[-1][1].get_section("abilities").items if i.id == "dex")
        assert dex.value == PLACEHOLDER_TEXT

    async def test_player_cannot_toggle(self, store, settings, handler, renderer):
        player = make_session(store, settings, handler, renderer, privileged=False,
                              viewer="alice", entity_id="goblin")
        await player.open()
        with pytest.raises(TogglePermissionError):
            await player.toggle("section-ac")

    async def test_hide_all_then_show_all(self, store, settings, handler, renderer):
        session = make_session(store, settings, handler, renderer, entity_id="goblin")
        await session.open()

        hidden = await session.hide_all()
        assert all(hidden.values())
        shown = await session.show_all()
        assert not any(shown.values())


class TestTitle:
    """Test the window title."""

    async def test_shared_suffix(self, store, settings, handler, renderer):
        await store.update_entity("tok1", {"name": "Grik"})
        session = make_session(store, settings, handler, renderer, instance_id="tok1")
        view = await session.open()
        assert view.title == "Grik (Shared: Goblin Boss)"

    async def test_shared_suffix_masked_for_player(self, store, settings, handler, renderer):
        await store.set_overrides("goblin", {"header-name": True})
        session = make_session(store, settings, handler, renderer, privileged=False,
                               viewer="alice", instance_id="tok1")
        view = await session.open()
        assert view.title == f"{PLACEHOLDER_TEXT} (Shared: {PLACEHOLDER_TEXT})"

    async def test_no_suffix_per_instance(self, store, handler, renderer):
        settings = SettingsManager(settings=VisibilitySettings(storage_sharing_mode=StorageSharingMode.PER_INSTANCE))
        session = make_session(store, settings, handler, renderer, instance_id="tok1")
        view = await session.open()
        assert view.title == "Goblin Boss"


def test_flag_location_constants():
    assert (FLAG_SCOPE, FLAG_KEY) == ("inspect-statblock", "hidden_elements")
