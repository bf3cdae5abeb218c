"""
Data models for the Inspect Statblock visibility engine.

Covers the field catalog that adapters declare, the standardized view model
(header, portrait, sections, items, defense categories and their tags) that
renderers consume, and the error view returned when projection fails.
"""

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class FactKind(str, Enum):
    """Whether a catalog entry describes one fact or a dynamic group."""
    SINGLE = "single"
    GROUP = "group"


class PlaceholderMode(str, Enum):
    """
    How hidden members of a category are shown to restricted viewers.

    INDIVIDUAL: one placeholder per hidden tag, nothing for an empty category.
    PERSISTENT_SINGLE: visible tags, then exactly one placeholder, always.
    """
    INDIVIDUAL = "individual"
    PERSISTENT_SINGLE = "persistent-single"


class StorageSharingMode(str, Enum):
    """Which record owns the override map of a placed instance."""
    SHARED = "shared"
    PER_INSTANCE = "per-instance"


class CatalogEntry(BaseModel):
    """
    One toggleable fact (or family of facts) declared by an adapter.

    Attributes:
        id: Stable identifier, also used as the group id for group entries
        display_name: Human-readable name for settings screens
        kind: SINGLE (key_pattern is the key) or GROUP (key_pattern is a prefix)
        key_pattern: Exact key or key prefix
        default_policy_key: Default Policy Table entry governing this fact
        header_key: For groups, the clickable header that toggles the group
    """
    id: str
    display_name: str
    kind: FactKind = FactKind.SINGLE
    key_pattern: str
    default_policy_key: Optional[str] = None
    header_key: Optional[str] = None

    def matches(self, key: str) -> bool:
        """Check whether a concrete fact key belongs to this entry."""
        if self.kind == FactKind.SINGLE:
            return key == self.key_pattern
        return key.startswith(self.key_pattern)

    def member_key(self, member_id: str) -> str:
        """Build a group-member key from a member id."""
        return f"{self.key_pattern}{member_id}"


# ---------------------------------------------------------------------------
# Standardized view model
# ---------------------------------------------------------------------------

class HeaderField(BaseModel):
    """A single header fact (name, identifier, size, type)."""
    text: str = ""
    element_key: str
    is_hidden_gm: bool = False


class HeaderInfo(BaseModel):
    """Identity block at the top of a statblock."""
    name: HeaderField
    identifier: HeaderField
    size: Optional[HeaderField] = None
    type: HeaderField
    entity_id: str = ""


class PortraitInfo(BaseModel):
    """Image references. Restricted viewers only get the display image."""
    display_img_src: str = ""
    token_img_src: Optional[str] = None
    actor_img_src: Optional[str] = None


class StatblockItem(BaseModel):
    """One displayable fact inside a section."""
    id: str
    name: str
    element_key: str
    value: Optional[str] = None
    sub_text: str = ""
    icon: str = ""
    description_html: str = ""
    native_tooltip_text: str = ""
    uuid: Optional[str] = None
    is_hidden_gm: bool = False
    is_numeric_value: bool = False
    display_type: Optional[str] = None
    extra: dict[str, Any] = Field(default_factory=dict)


class TagItem(BaseModel):
    """A member of a category; placeholders carry a non-interactive key."""
    id: str
    name: str
    element_key: str
    is_hidden_gm: bool = False
    is_placeholder: bool = False


class CategoryItem(BaseModel):
    """A grouped fact such as damage resistances, with toggleable tags."""
    id: str
    name: str
    element_key: str
    tags: list[TagItem] = Field(default_factory=list)
    sub_text: str = ""
    is_hidden_gm: bool = False
    native_tooltip_text: str = ""


class StatblockSection(BaseModel):
    """A titled block of items or categories."""
    id: str
    title: str
    items: list[StatblockItem] = Field(default_factory=list)
    categories: list[CategoryItem] = Field(default_factory=list)
    is_empty: bool = True
    element_key: Optional[str] = None
    is_hidden_gm: bool = False
    section_classes: str = ""
    display_type: Optional[str] = None

    def element_keys(self) -> list[str]:
        """All fact keys carried by this section, header first."""
        keys: list[str] = []
        if self.element_key:
            keys.append(self.element_key)
        keys.extend(item.element_key for item in self.items)
        for category in self.categories:
            keys.append(category.element_key)
            keys.extend(tag.element_key for tag in category.tags if not tag.is_placeholder)
        return keys


class StandardizedViewModel(BaseModel):
    """
    Render-ready, rule-system agnostic projection of one entity.

    Renderers consume this as-is and never re-derive visibility.
    """
    kind: Literal["statblock"] = "statblock"
    system_id: str
    is_gm_view: bool = False
    title: str = ""
    header: HeaderInfo
    portrait: PortraitInfo = Field(default_factory=PortraitInfo)
    sections: list[StatblockSection] = Field(default_factory=list)

    def get_section(self, section_id: str) -> Optional[StatblockSection]:
        """Look up a section by id."""
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    def element_keys(self) -> list[str]:
        """Every fact key present in the model, in display order."""
        keys = [self.header.name.element_key, self.header.identifier.element_key]
        if self.header.size is not None:
            keys.append(self.header.size.element_key)
        keys.append(self.header.type.element_key)
        for section in self.sections:
            keys.extend(section.element_keys())
        return keys


class ErrorView(BaseModel):
    """The single placeholder rendered instead of a broken statblock."""
    kind: Literal["error"] = "error"
    system_id: str = ""
    entity_id: str = ""
    message: str


__all__ = [
    "FactKind",
    "PlaceholderMode",
    "StorageSharingMode",
    "CatalogEntry",
    "HeaderField",
    "HeaderInfo",
    "PortraitInfo",
    "StatblockItem",
    "TagItem",
    "CategoryItem",
    "StatblockSection",
    "StandardizedViewModel",
    "ErrorView",
]
