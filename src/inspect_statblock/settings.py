"""
Global visibility settings.

The GM configures, once for the whole world:

- the Default Policy Table (policy key -> shown by default)
- the storage-sharing mode (shared per entity, or per placed instance)
- the placeholder mode used by each rule system for hidden category tags

Settings are persisted as ``visibility_settings.yaml`` when a path is given and
kept in memory otherwise. Listeners are notified after every update so open
statblocks can refresh.
"""

import logging
from pathlib import Path
from typing import Callable, Optional, Protocol

import yaml
from pydantic import BaseModel, Field, ValidationError

from .models import PlaceholderMode, StorageSharingMode

logger = logging.getLogger("inspect-statblock")

SETTINGS_FILENAME = "visibility_settings.yaml"


class SettingsProvider(Protocol):
    """Configuration collaborator consumed by adapters and sessions."""

    def get_default_policy(self) -> dict[str, bool]:
        ...

    def get_storage_sharing_mode(self) -> StorageSharingMode:
        ...

    def get_placeholder_mode(self, system_id: str) -> PlaceholderMode:
        ...


class VisibilitySettings(BaseModel):
    """
    Persisted settings document.

    Attributes:
        default_policy: Policy key -> shown by default. Missing keys are shown.
        storage_sharing_mode: Owner of override maps for placed instances
        placeholder_modes: System id -> placeholder mode for category tags
    """
    default_policy: dict[str, bool] = Field(default_factory=dict)
    storage_sharing_mode: StorageSharingMode = StorageSharingMode.SHARED
    placeholder_modes: dict[str, PlaceholderMode] = Field(default_factory=dict)


SettingsListener = Callable[[VisibilitySettings], None]


class SettingsManager:
    """
    Holds the current VisibilitySettings and notifies listeners on change.

    Attributes:
        path: YAML file backing the settings, or None for in-memory use
        settings: The current settings document
    """

    def __init__(self, path: Optional[Path] = None, settings: Optional[VisibilitySettings] = None) -> None:
        self.path = Path(path) if path is not None else None
        self._listeners: list[SettingsListener] = []
        if settings is not None:
            self.settings = settings
        else:
            self.settings = self._load()

    # ------------------------------------------------------------------
    # Loading / saving
    # ------------------------------------------------------------------

    def _load(self) -> VisibilitySettings:
        """Load settings from YAML, falling back to defaults."""
        if self.path is None or not self.path.exists():
            return VisibilitySettings()

        with open(self.path) as fh:
            data = yaml.safe_load(fh)

        if not isinstance(data, dict):
            logger.warning(f"Invalid settings file {self.path}, using defaults")
            return VisibilitySettings()

        try:
            return VisibilitySettings.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Settings file {self.path} failed validation, using defaults: {e}")
            return VisibilitySettings()

    def save(self, settings: Optional[VisibilitySettings] = None) -> None:
        """
        Persist settings to YAML (no-op in memory).

        Args:
            settings: Document to write; defaults to the current settings

        Raises:
            OSError: If the file cannot be written
        """
        if self.path is None:
            return
        document = settings if settings is not None else self.settings
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as fh:
            yaml.safe_dump(
                document.model_dump(mode="json"),
                fh,
                default_flow_style=False,
                sort_keys=False,
                allow_unicode=True,
            )
        logger.debug(f"Settings saved to {self.path}")

    # ------------------------------------------------------------------
    # Provider API
    # ------------------------------------------------------------------

    def get_default_policy(self) -> dict[str, bool]:
        return dict(self.settings.default_policy)

    def get_storage_sharing_mode(self) -> StorageSharingMode:
        return self.settings.storage_sharing_mode

    def get_placeholder_mode(self, system_id: str) -> PlaceholderMode:
        return self.settings.placeholder_modes.get(system_id, PlaceholderMode.INDIVIDUAL)

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def add_listener(self, listener: SettingsListener) -> None:
        """Register a callback fired after every settings update."""
        self._listeners.append(listener)

    def remove_listener(self, listener: SettingsListener) -> bool:
        """Unregister a callback. Returns False if it was not registered."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def update(
        self,
        *,
        default_policy: Optional[dict[str, bool]] = None,
        storage_sharing_mode: Optional[StorageSharingMode] = None,
        placeholder_modes: Optional[dict[str, PlaceholderMode]] = None,
    ) -> VisibilitySettings:
        """
        Merge changes into the settings, persist and notify listeners.

        ``default_policy`` and ``placeholder_modes`` are merged key by key;
        the storage mode is replaced.

        Returns:
            The updated settings document

        Raises:
            OSError: If the settings file cannot be written; nothing changes
        """
        data = self.settings.model_copy(deep=True)
        if default_policy:
            data.default_policy.update(default_policy)
        if storage_sharing_mode is not None:
            data.storage_sharing_mode = StorageSharingMode(storage_sharing_mode)
        if placeholder_modes:
            data.placeholder_modes.update(
                {system_id: PlaceholderMode(mode) for system_id, mode in placeholder_modes.items()}
            )

        self.save(data)
        self.settings = data
        logger.info(
            f"Visibility settings updated "
            f"({len(data.default_policy)} policy entries, mode={data.storage_sharing_mode.value})"
        )
        self._notify()
        return data

    def reset_default_policy(self) -> None:
        """Drop every default policy entry (everything shown by default)."""
        data = self.settings.model_copy(deep=True)
        data.default_policy.clear()
        self.save(data)
        self.settings = data
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.settings)
            except Exception:
                logger.exception("Settings listener failed")


__all__ = [
    "SETTINGS_FILENAME",
    "SettingsProvider",
    "VisibilitySettings",
    "SettingsManager",
]
