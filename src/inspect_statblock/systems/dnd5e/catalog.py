"""D&D 5e field catalog: every fact the GM can hide on a 5e statblock."""

from inspect_statblock.models import CatalogEntry, FactKind

SYSTEM_ID = "dnd5e"


def policy_key(entry_id: str) -> str:
    """Default Policy Table key for a 5e catalog entry."""
    return f"{SYSTEM_ID}.{entry_id}"


# (category id, display name, trait path under system.traits)
DEFENSE_CATEGORIES: list[tuple[str, str, str]] = [
    ("resistances", "Damage Resistances", "dr"),
    ("immunities", "Damage Immunities", "di"),
    ("vulnerabilities", "Damage Vulnerabilities", "dv"),
    ("conditionimmunities", "Condition Immunities", "ci"),
]

# (movement key, label, icon)
MOVEMENT_TYPES: list[tuple[str, str, str]] = [
    ("walk", "Walk", "fas fa-walking"),
    ("fly", "Fly", "fas fa-dove"),
    ("swim", "Swim", "fas fa-swimmer"),
    ("climb", "Climb", "fas fa-grip-lines"),
    ("burrow", "Burrow", "fas fa-mountain"),
]

HEADER_NAME_KEY = "header-name"
HEADER_IDENTIFIER_KEY = "header-crlevel"
HEADER_SIZE_KEY = "header-size"
HEADER_TYPE_KEY = "header-type"
AC_KEY = "section-ac"
HP_KEY = "section-hp"
ACTIVE_EFFECTS_KEY = "section-active-effects"
PASSIVE_FEATURES_KEY = "section-passive-features"

ABILITY_PREFIX = "ability-"
EFFECT_PREFIX = "effect-"
FEATURE_PREFIX = "feature-"
MOVEMENT_PREFIX = "movement-"


def defense_category_key(category_id: str) -> str:
    return f"def-{category_id}"


def defense_tag_prefix(category_id: str) -> str:
    return f"def-tag-{category_id}-"


def _single(entry_id: str, name: str, key: str) -> CatalogEntry:
    return CatalogEntry(
        id=entry_id,
        display_name=name,
        kind=FactKind.SINGLE,
        key_pattern=key,
        default_policy_key=policy_key(entry_id),
    )


def _group(entry_id: str, name: str, prefix: str, header_key: str | None, policy_id: str | None = None) -> CatalogEntry:
    return CatalogEntry(
        id=entry_id,
        display_name=name,
        kind=FactKind.GROUP,
        key_pattern=prefix,
        default_policy_key=policy_key(policy_id or entry_id),
        header_key=header_key,
    )


def _build_catalog() -> list[CatalogEntry]:
    entries = [
        _single("header_name", "Name", HEADER_NAME_KEY),
        _single("header_identifier", "CR / Level", HEADER_IDENTIFIER_KEY),
        _single("header_size", "Size", HEADER_SIZE_KEY),
        _single("header_type", "Creature Type / Class", HEADER_TYPE_KEY),
        _single("ac", "Armor Class", AC_KEY),
    ]
    for move_key, label, _icon in MOVEMENT_TYPES:
        entries.append(_single(f"movement_{move_key}", f"{label} Speed", f"{MOVEMENT_PREFIX}{move_key}"))
    entries.extend([
        _single("health", "Hit Points", HP_KEY),
        _group("abilities", "Ability Scores", ABILITY_PREFIX, None),
        _single("active_effects_section", "Active Effects Section", ACTIVE_EFFECTS_KEY),
        _group("active_effects", "Active Effects", EFFECT_PREFIX, ACTIVE_EFFECTS_KEY),
        _single("passive_features_section", "Features Section", PASSIVE_FEATURES_KEY),
        _group("passive_features", "Passive Features", FEATURE_PREFIX, PASSIVE_FEATURES_KEY),
    ])
    for category_id, name, _path in DEFENSE_CATEGORIES:
        entries.append(_single(f"defense_{category_id}", name, defense_category_key(category_id)))
        # Tags follow the policy of their category
        entries.append(_group(
            f"defense_{category_id}_tags",
            f"{name} Tags",
            defense_tag_prefix(category_id),
            defense_category_key(category_id),
            policy_id=f"defense_{category_id}",
        ))
    return entries


FIELD_CATALOG: list[CatalogEntry] = _build_catalog()
