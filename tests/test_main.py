"""
Smoke tests for the MCP tools in main.py.

The server module builds its store and settings at import time, so the data
directory is pointed at a temporary folder before the import. Tools are
accessed via m.<tool>.fn().
"""

import json
import os
import tempfile

import pytest

os.environ["INSPECT_STATBLOCK_DATA_DIR"] = tempfile.mkdtemp(prefix="inspect-statblock-")

from inspect_statblock import main as m  # noqa: E402

# Configure pytest to use anyio with asyncio backend for async tests
pytestmark = pytest.mark.anyio


@pytest.fixture
async def imported(goblin):
    await m.import_creature.fn(creature_json=json.dumps(goblin))
    m.set_viewer_role.fn(viewer_id="dm", role="gm")
    yield goblin
    m.app.sessions.close_all()
    m.rendered_views.clear()


class TestRecordTools:
    """Test creature import and placement."""

    async def test_import_creature(self, imported):
        assert m.store.get_entity("goblin")["name"] == "Goblin Boss"

    async def test_import_rejects_bad_json(self):
        result = await m.import_creature.fn(creature_json="[1, 2]")
        assert result.startswith("❌")

    async def test_place_instance(self, imported):
        result = await m.place_instance.fn(instance_id="tok9", creature_id="goblin", name="Grik")
        assert "Grik" in result
        assert m.store.get_entity("tok9")["actor_id"] == "goblin"

    async def test_place_unknown_creature(self):
        result = await m.place_instance.fn(instance_id="tok9", creature_id="nobody")
        assert result.startswith("❌")


class TestStatblockTools:
    """Test opening, toggling and closing through the tools."""

    async def test_open_toggle_close(self, imported):
        opened = await m.open_statblock.fn(viewer_id="dm", creature_id="goblin")
        assert "dm:goblin" in opened

        toggled = await m.toggle_visibility.fn(session_key="dm:goblin", element_key="section-ac")
        assert "hidden" in toggled

        view = m.get_statblock.fn(session_key="dm:goblin")
        assert '"is_hidden_gm": true' in view

        assert m.close_statblock.fn(session_key="dm:goblin").startswith("🚪")

    async def test_player_cannot_hide_all(self, imported):
        await m.open_statblock.fn(viewer_id="alice", creature_id="goblin")
        result = await m.hide_all_elements.fn(session_key="alice:goblin")
        assert result.startswith("❌")

    async def test_toggle_without_open_statblock(self):
        result = await m.toggle_visibility.fn(session_key="dm:nothing", element_key="section-ac")
        assert result.startswith("❌")


class TestSettingsTools:
    """Test configuration tools."""

    def test_configure_default_visibility(self):
        result = m.configure_default_visibility.fn(policy_json='{"dnd5e.ac": false}')
        assert "Default policy" in result
        assert m.settings.get_default_policy()["dnd5e.ac"] is False
        m.settings.reset_default_policy()

    def test_configure_default_visibility_rejects_non_booleans(self):
        before = m.settings.get_default_policy()
        result = m.configure_default_visibility.fn(policy_json='{"dnd5e.ac": "false"}')
        assert "❌" in result
        assert "dnd5e.ac" in result
        assert m.settings.get_default_policy() == before

    def test_settings_write_failure_reported(self, monkeypatch, tmp_path):
        monkeypatch.setattr(m.settings, "path", tmp_path)
        mode = m.settings.get_storage_sharing_mode()

        result = m.set_storage_mode.fn(mode="per-instance")

        assert result.startswith("❌")
        assert m.settings.get_storage_sharing_mode() == mode

    def test_list_default_policy_keys(self):
        result = m.list_default_policy_keys.fn()
        assert "dnd5e.ac" in result

    def test_placeholder_mode(self):
        m.set_placeholder_mode.fn(mode="persistent-single")
        assert m.settings.get_placeholder_mode("dnd5e").value == "persistent-single"
        m.set_placeholder_mode.fn(mode="individual")

    def test_list_systems(self):
        assert "dnd5e" in m.list_systems.fn()
