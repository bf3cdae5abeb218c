"""
Inspect Statblock MCP Server
Exposes the visibility-gated statblock engine as FastMCP tools.
"""

import json
import logging
import os
from pathlib import Path
from typing import Annotated, Any, Literal

from dotenv import load_dotenv
from fastmcp import FastMCP
from pydantic import Field

from .application import StatblockApplication
from .models import PlaceholderMode, StorageSharingMode
from .orchestrator import ToggleError
from .permissions import ViewerRole
from .registry import system_registry
from .session import SessionError, ViewResult
from .settings import SETTINGS_FILENAME, SettingsManager
from .store import JsonEntityStore, OverrideStoreError
from .systems import register_builtin_systems

logger = logging.getLogger("inspect-statblock")

logging.basicConfig(
    level=logging.DEBUG,
    )

if not load_dotenv():
    logger.warning("❌ .env file invalid or not found! Using the current directory for data.")

data_path = Path(os.getenv("INSPECT_STATBLOCK_DATA_DIR", "")).resolve()
logger.debug(f"📂 Data path: {data_path}")

store = JsonEntityStore(data_dir=data_path)
settings = SettingsManager(path=data_path / SETTINGS_FILENAME)
register_builtin_systems(system_registry, settings)
logger.debug("✅ Storage and settings initialized")

# Last rendered view per session key
rendered_views: dict[str, ViewResult] = {}


def _remember_render(session_key: str, view: ViewResult) -> None:
    rendered_views[session_key] = view


app = StatblockApplication(
    registry=system_registry,
    store=store,
    settings=settings,
    renderer=_remember_render,
)

mcp = FastMCP(
    name="inspect-statblock"
)

logger.debug("✅ Server initialized, registering tools")


def _format_view(session_key: str, view: ViewResult) -> str:
    return f"**Statblock `{session_key}`**\n\n```json\n{view.model_dump_json(indent=2)}\n```"


def _parse_json_object(payload: str) -> dict[str, Any]:
    data = json.loads(payload)
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object")
    return data


# ----------------------------------------------------------------------------
# Records
# ----------------------------------------------------------------------------

@mcp.tool
async def import_creature(
    creature_json: Annotated[str, Field(description="Creature record as a JSON object; must contain an 'id'")],
) -> str:
    """Import (or replace) a creature record."""
    try:
        record = await store.add_entity(_parse_json_object(creature_json))
    except (ValueError, OverrideStoreError) as e:
        return f"❌ Could not import creature: {e}"
    return f"📥 Imported creature '{record.get('name', record['id'])}' ({record['id']})"


@mcp.tool
async def update_creature(
    creature_id: Annotated[str, Field(description="Id of the record to update")],
    changes_json: Annotated[str, Field(description="JSON object deep-merged into the record")],
) -> str:
    """Update fields of a creature or placed instance. Open statblocks re-render."""
    try:
        await store.update_entity(creature_id, _parse_json_object(changes_json))
    except (ValueError, OverrideStoreError) as e:
        return f"❌ Could not update '{creature_id}': {e}"
    return f"✏️ Updated '{creature_id}'"


@mcp.tool
async def place_instance(
    instance_id: Annotated[str, Field(description="Id for the placed instance (token)")],
    creature_id: Annotated[str, Field(description="Id of the creature it was placed from")],
    name: Annotated[str | None, Field(description="Name shown on the instance, defaults to the creature's")] = None,
    image: Annotated[str | None, Field(description="Token image path")] = None,
) -> str:
    """Place an instance of a creature on the table."""
    creature = store.get_entity(creature_id)
    if creature is None:
        return f"❌ Creature '{creature_id}' not found"
    record: dict[str, Any] = {
        "id": instance_id,
        "name": name or creature.get("name", ""),
        "actor_id": creature_id,
    }
    if image:
        record["texture"] = {"src": image}
    await store.add_entity(record)
    return f"📍 Placed '{record['name']}' as {instance_id}"


@mcp.tool
def set_viewer_role(
    viewer_id: Annotated[str, Field(description="Viewer identifier")],
    role: Annotated[Literal["gm", "player"], Field(description="Viewer role")],
) -> str:
    """Assign the GM or player role to a viewer."""
    assignment = app.viewers.set_role(viewer_id, ViewerRole(role))
    return f"👤 {viewer_id} is now {assignment.role.value.upper()}"


# ----------------------------------------------------------------------------
# Statblocks
# ----------------------------------------------------------------------------

@mcp.tool
async def open_statblock(
    viewer_id: Annotated[str, Field(description="Viewer opening the statblock")],
    creature_id: Annotated[str | None, Field(description="Creature to inspect")] = None,
    instance_id: Annotated[str | None, Field(description="Placed instance to inspect")] = None,
) -> str:
    """Open a statblock and return its view for the viewer."""
    try:
        view = await app.open_statblock(viewer_id, entity_id=creature_id, instance_id=instance_id)
    except (SessionError, OverrideStoreError) as e:
        return f"❌ Could not open statblock: {e}"
    session_key = f"{viewer_id}:{instance_id or creature_id}"
    return _format_view(session_key, view)


@mcp.tool
def close_statblock(
    session_key: Annotated[str, Field(description="Statblock identity, 'viewer:instance-or-creature'")],
) -> str:
    """Close an open statblock."""
    rendered_views.pop(session_key, None)
    if app.close_statblock(session_key):
        return f"🚪 Closed {session_key}"
    return f"❌ No statblock '{session_key}'"


@mcp.tool
def get_statblock(
    session_key: Annotated[str, Field(description="Statblock identity, 'viewer:instance-or-creature'")],
) -> str:
    """Return the last rendered view of an open statblock."""
    view = rendered_views.get(session_key)
    if view is None:
        return f"❌ No rendered statblock '{session_key}'"
    return _format_view(session_key, view)


@mcp.tool
async def toggle_visibility(
    session_key: Annotated[str, Field(description="Statblock identity of the GM's view")],
    element_key: Annotated[str, Field(description="Fact key to toggle, e.g. 'section-ac' or a group header")],
) -> str:
    """Toggle one fact (or a whole group via its header). GM only."""
    try:
        overrides = await app.toggle_visibility(session_key, element_key)
    except (SessionError, ToggleError, OverrideStoreError) as e:
        return f"❌ {e}"
    state = "hidden" if overrides.get(element_key) else "shown"
    return f"👁️ {element_key} is now {state}"


@mcp.tool
async def show_all_elements(
    session_key: Annotated[str, Field(description="Statblock identity of the GM's view")],
) -> str:
    """Reveal every fact of the statblock. GM only."""
    try:
        overrides = await app.show_all(session_key)
    except (SessionError, ToggleError, OverrideStoreError) as e:
        return f"❌ {e}"
    return f"👁️ Revealed {len(overrides)} elements"


@mcp.tool
async def hide_all_elements(
    session_key: Annotated[str, Field(description="Statblock identity of the GM's view")],
) -> str:
    """Hide every fact of the statblock. GM only."""
    try:
        overrides = await app.hide_all(session_key)
    except (SessionError, ToggleError, OverrideStoreError) as e:
        return f"❌ {e}"
    return f"🙈 Hid {sum(1 for hidden in overrides.values() if hidden)} elements"


# ----------------------------------------------------------------------------
# Settings
# ----------------------------------------------------------------------------

@mcp.tool
def configure_default_visibility(
    policy_json: Annotated[str, Field(description="JSON object of policy key -> shown by default, e.g. {\"dnd5e.ac\": false}")],
) -> str:
    """Set which facts are shown by default when the GM first opens a creature."""
    try:
        policy = _parse_json_object(policy_json)
    except ValueError as e:
        return f"❌ Invalid policy: {e}"
    invalid = sorted(str(k) for k, v in policy.items() if not isinstance(v, bool))
    if invalid:
        return f"❌ Invalid policy: values must be true or false ({', '.join(invalid)})"
    try:
        updated = settings.update(default_policy={str(k): v for k, v in policy.items()})
    except OSError as e:
        return f"❌ Could not save settings: {e}"
    return f"⚙️ Default policy now has {len(updated.default_policy)} entries"


@mcp.tool
def list_default_policy_keys(
    system_id: Annotated[str, Field(description="Game system id")] = "dnd5e",
) -> str:
    """List the default policy keys a game system understands, with current values."""
    handler = system_registry.get(system_id)
    if handler is None:
        return f"❌ No handler for '{system_id}'"
    policy = settings.get_default_policy()
    lines = [f"• {key}: {'shown' if policy.get(key, True) else 'hidden'}" for key in handler.get_default_policy_keys()]
    return f"**Default policy ({system_id}):**\n" + "\n".join(lines)


@mcp.tool
def set_storage_mode(
    mode: Annotated[Literal["shared", "per-instance"], Field(description="Who owns override maps of placed instances")],
) -> str:
    """Choose whether placed instances share their creature's visibility or keep their own."""
    try:
        settings.update(storage_sharing_mode=StorageSharingMode(mode))
    except OSError as e:
        return f"❌ Could not save settings: {e}"
    return f"⚙️ Storage mode set to {mode} (takes effect when statblocks are reopened)"


@mcp.tool
def set_placeholder_mode(
    mode: Annotated[Literal["individual", "persistent-single"], Field(description="How hidden tags appear to players")],
    system_id: Annotated[str, Field(description="Game system id")] = "dnd5e",
) -> str:
    """Choose how hidden category tags are shown to players."""
    try:
        settings.update(placeholder_modes={system_id: PlaceholderMode(mode)})
    except OSError as e:
        return f"❌ Could not save settings: {e}"
    return f"⚙️ Placeholder mode for {system_id} set to {mode}"


@mcp.tool
def list_systems() -> str:
    """List game systems with a registered handler."""
    systems = system_registry.list()
    if not systems:
        return "❌ No game systems registered"
    return "**Game systems:**\n" + "\n".join(f"• {system_id}" for system_id in systems)


def main() -> None:
    """Main entry point for the Inspect Statblock MCP Server."""
    mcp.run()

if __name__ == "__main__":
    main()
