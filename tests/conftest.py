"""
Pytest configuration and fixtures for inspect-statblock tests.
"""

import sys
from pathlib import Path
from typing import Any

import pytest

# Add src directory to Python path to allow importing inspect_statblock
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from inspect_statblock.registry import SystemHandlerRegistry
from inspect_statblock.settings import SettingsManager
from inspect_statblock.store import MemoryEntityStore
from inspect_statblock.systems.dnd5e import Dnd5eHandler


# Configure anyio to only use asyncio (not trio)
@pytest.fixture
def anyio_backend():
    return "asyncio"


def make_goblin(**overrides: Any) -> dict[str, Any]:
    """A small 5e NPC record with one of everything."""
    record: dict[str, Any] = {
        "id": "goblin",
        "name": "Goblin Boss",
        "type": "npc",
        "img": "actors/goblin-boss.webp",
        "prototype_token": {"texture": {"src": "tokens/goblin.webp"}},
        "system": {
            "abilities": {
                "str": {"value": 10, "mod": 0, "label": "Str"},
                "dex": {"value": 14, "mod": 2, "label": "Dex"},
            },
            "attributes": {
                "ac": {"value": 17},
                "hp": {"value": 21, "max": 21, "temp": 0, "tempmax": 0},
                "movement": {"walk": 30, "climb": 0},
            },
            "details": {"cr": 1, "type": {"value": "humanoid", "subtype": "goblinoid"}},
            "traits": {
                "size": "sm",
                "dr": {"value": ["fire", "cold"], "custom": ""},
                "di": {"value": [], "custom": ""},
                "dv": {"value": [], "custom": ""},
                "ci": {"value": ["frightened"], "custom": "Sleep Magic"},
            },
        },
        "items": [
            {
                "id": "nimble",
                "name": "Nimble Escape",
                "type": "feat",
                "img": "icons/nimble.webp",
                "system": {"activation": {"type": ""}, "description": {"value": "<p>Disengage or Hide.</p>"}},
            },
            {
                "id": "redirect",
                "name": "Redirect Attack",
                "type": "feat",
                "system": {"activation": {"type": "reaction"}},
            },
            {"id": "scimitar", "name": "Scimitar", "type": "weapon", "system": {}},
        ],
        "effects": [
            {"id": "bless", "name": "Bless", "img": "icons/bless.webp", "disabled": False,
             "duration": {"rounds": 10}},
            {"id": "old", "name": "Expired", "disabled": True},
        ],
    }
    record.update(overrides)
    return record


@pytest.fixture
def goblin() -> dict[str, Any]:
    return make_goblin()


@pytest.fixture
def goblin_token() -> dict[str, Any]:
    return {"id": "tok1", "name": "Goblin Boss", "actor_id": "goblin", "texture": {"src": "tokens/tok1.webp"}}


@pytest.fixture
def settings() -> SettingsManager:
    return SettingsManager()


@pytest.fixture
def handler(settings: SettingsManager) -> Dnd5eHandler:
    return Dnd5eHandler(settings)


@pytest.fixture
def registry(handler: Dnd5eHandler) -> SystemHandlerRegistry:
    registry = SystemHandlerRegistry()
    registry.register("dnd5e", handler)
    return registry


@pytest.fixture
def store(goblin: dict[str, Any], goblin_token: dict[str, Any]) -> MemoryEntityStore:
    return MemoryEntityStore([goblin, goblin_token])
