"""
Visibility resolution for statblock facts.

Decides, for one fact key, whether the current viewer must see a placeholder
instead of the real value. Three inputs are reconciled in a fixed order:

  1. Privileged viewers only see explicit overrides (absent = visible)
  2. An explicit override in the owner's override map
  3. The default policy entry of the catalog entry matching the key
  4. Otherwise visible

Everything here is pure. Adapters call it while projecting, and the toggle
orchestrator calls it to decide which way a bulk toggle goes.
"""

from typing import Any, Iterable, Mapping, Optional

from .models import CatalogEntry, FactKind

PLACEHOLDER_TEXT = "??"


def find_catalog_entry(
    key: str,
    catalog: Iterable[CatalogEntry],
) -> Optional[CatalogEntry]:
    """
    Find the catalog entry governing a fact key.

    Exact single-entry matches win over group prefixes. Among groups the
    longest matching prefix wins, so ``def-tag-res-`` beats ``def-``.

    Args:
        key: Concrete fact key
        catalog: Catalog entries declared by the adapter

    Returns:
        The matching entry, or None if nothing governs the key
    """
    best_group: Optional[CatalogEntry] = None
    for entry in catalog:
        if entry.kind == FactKind.SINGLE:
            if entry.key_pattern == key:
                return entry
        elif entry.matches(key):
            if best_group is None or len(entry.key_pattern) > len(best_group.key_pattern):
                best_group = entry
    return best_group


def is_hidden(
    key: str,
    overrides: Mapping[str, bool],
    is_privileged: bool,
    catalog: Iterable[CatalogEntry],
    default_policy: Mapping[str, bool],
) -> bool:
    """
    Resolve whether a fact is hidden from the given viewer.

    Args:
        key: Fact key to resolve
        overrides: Persisted override map (key -> hidden)
        is_privileged: True for the GM
        catalog: Catalog entries of the adapter
        default_policy: Default Policy Table (policy key -> shown)

    Returns:
        True if the fact is hidden
    """
    if is_privileged:
        return bool(overrides.get(key, False))

    if key in overrides:
        return bool(overrides[key])

    entry = find_catalog_entry(key, catalog)
    if entry is not None and entry.default_policy_key:
        # Policy stores "shown"
        return not default_policy.get(entry.default_policy_key, True)

    return False


def mask(value: Any, hidden: bool, is_privileged: bool, placeholder: str = PLACEHOLDER_TEXT) -> Any:
    """Return the placeholder when a restricted viewer must not see value."""
    if hidden and not is_privileged:
        return placeholder
    return value


class FactResolver:
    """
    Binds the inputs of one projection so adapters can resolve keys tersely.

    A new resolver is built for every projection call; nothing is cached
    across calls.
    """

    def __init__(
        self,
        overrides: Mapping[str, bool],
        is_privileged: bool,
        catalog: Iterable[CatalogEntry],
        default_policy: Mapping[str, bool],
    ) -> None:
        self.overrides = dict(overrides or {})
        self.is_privileged = is_privileged
        self.catalog = list(catalog)
        self.default_policy = dict(default_policy or {})

    def hidden(self, key: str) -> bool:
        """Whether the fact is hidden for this viewer."""
        return is_hidden(
            key, self.overrides, self.is_privileged, self.catalog, self.default_policy
        )

    def concealed(self, key: str) -> bool:
        """True when the real value must be withheld from this viewer."""
        return not self.is_privileged and self.hidden(key)

    def gm_marker(self, key: str) -> bool:
        """The hidden marker shown to the GM; always False for players."""
        return self.is_privileged and self.hidden(key)

    def display(self, key: str, value: Any) -> Any:
        """The real value or the placeholder, depending on the viewer."""
        return mask(value, self.hidden(key), self.is_privileged)


__all__ = [
    "PLACEHOLDER_TEXT",
    "find_catalog_entry",
    "is_hidden",
    "mask",
    "FactResolver",
]
