"""
D&D 5e system handler.

Transforms a 5e creature record into the standardized view model. The record
is the host's plain mapping of an actor:

    {
        "id", "name", "type" ("npc" | "character"), "img",
        "prototype_token": {"texture": {"src"}},
        "system": {
            "abilities": {"str": {"value", "mod", "label"}, ...},
            "attributes": {"ac": {"value"}, "hp": {...}, "movement": {...}},
            "details": {"cr", "level", "type": {"value", "subtype", "custom"}},
            "traits": {"size", "dr"|"di"|"dv"|"ci": {"value": [...], "custom"}},
        },
        "items": [{"id", "name", "type", "img", "uuid", "system": {...}}],
        "effects": [{"id", "name", "img", "disabled", "duration": {...}}],
    }

Placed instances look like ``{"id", "name", "actor_id", "texture": {"src"}}``.
Every field is optional; anything missing is treated as absent or zero.
"""

import logging
from typing import Any, Mapping, Optional

from inspect_statblock.handler import Entity, SystemHandler
from inspect_statblock.models import (
    CatalogEntry,
    FactKind,
    CategoryItem,
    HeaderField,
    HeaderInfo,
    PlaceholderMode,
    PortraitInfo,
    StandardizedViewModel,
    StatblockItem,
    StatblockSection,
    TagItem,
)
from inspect_statblock.visibility import PLACEHOLDER_TEXT, FactResolver

from .catalog import (
    ABILITY_PREFIX,
    AC_KEY,
    ACTIVE_EFFECTS_KEY,
    DEFENSE_CATEGORIES,
    EFFECT_PREFIX,
    FEATURE_PREFIX,
    FIELD_CATALOG,
    HEADER_IDENTIFIER_KEY,
    HEADER_NAME_KEY,
    HEADER_SIZE_KEY,
    HEADER_TYPE_KEY,
    HP_KEY,
    MOVEMENT_PREFIX,
    MOVEMENT_TYPES,
    PASSIVE_FEATURES_KEY,
    SYSTEM_ID,
    defense_category_key,
    defense_tag_prefix,
)

logger = logging.getLogger(__name__)

DEFAULT_PORTRAIT = "icons/svg/mystery-man.svg"

SIZE_LABELS = {
    "tiny": "Tiny",
    "sm": "Small",
    "med": "Medium",
    "lg": "Large",
    "huge": "Huge",
    "grg": "Gargantuan",
}

CR_FRACTIONS = {0.125: "1/8", 0.25: "1/4", 0.5: "1/2"}

TRAIT_LABELS = {
    "acid": "Acid",
    "bludgeoning": "Bludgeoning",
    "cold": "Cold",
    "fire": "Fire",
    "force": "Force",
    "lightning": "Lightning",
    "necrotic": "Necrotic",
    "piercing": "Piercing",
    "poison": "Poison",
    "psychic": "Psychic",
    "radiant": "Radiant",
    "slashing": "Slashing",
    "thunder": "Thunder",
    "blinded": "Blinded",
    "charmed": "Charmed",
    "deafened": "Deafened",
    "exhaustion": "Exhaustion",
    "frightened": "Frightened",
    "grappled": "Grappled",
    "incapacitated": "Incapacitated",
    "invisible": "Invisible",
    "paralyzed": "Paralyzed",
    "petrified": "Petrified",
    "poisoned": "Poisoned",
    "prone": "Prone",
    "restrained": "Restrained",
    "stunned": "Stunned",
    "unconscious": "Unconscious",
}


# ---------------------------------------------------------------------------
# Record access helpers
# ---------------------------------------------------------------------------

def _get(obj: Any, path: str, default: Any = None) -> Any:
    """Read a dot-notation path from nested mappings, tolerating gaps."""
    current = obj
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return default
        current = current.get(part)
        if current is None:
            return default
    return current


def _as_number(value: Any) -> float:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, Mapping):
        return _as_number(value.get("value"))
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


def _fmt_number(value: Any) -> str:
    number = _as_number(value)
    if float(number).is_integer():
        return str(int(number))
    return str(number)


def _format_cr(cr: Any) -> str:
    if cr is None:
        return "?"
    try:
        value = float(cr)
    except (TypeError, ValueError):
        return str(cr)
    if value in CR_FRACTIONS:
        return CR_FRACTIONS[value]
    return _fmt_number(value)


def _format_size(size_key: Any) -> str:
    if not size_key:
        return ""
    key = str(size_key)
    return SIZE_LABELS.get(key.lower(), key[:1].upper() + key[1:])


def _format_mod(mod: Any) -> str:
    number = int(_as_number(mod))
    return f"+{number}" if number >= 0 else str(number)


def _sanitize(value: str) -> str:
    return "".join(c for c in value.lower() if c.isalnum())


def _trait_values(trait: Any) -> list[str]:
    """Normalize a trait's ``value`` (list, set or {type: bool}) to a list."""
    raw = trait.get("value") if isinstance(trait, Mapping) else None
    if raw is None:
        return []
    if isinstance(raw, Mapping):
        return [str(k) for k, enabled in raw.items() if enabled is True]
    if isinstance(raw, (list, tuple, set, frozenset)):
        return [str(v) for v in raw if v]
    return []


def _trait_custom(trait: Any) -> list[str]:
    custom = trait.get("custom") if isinstance(trait, Mapping) else None
    if not custom or not isinstance(custom, str):
        return []
    return [part.strip() for part in custom.split(";") if part.strip()]


def _defense_tags(entity: Entity, category_id: str, trait_path: str) -> list[tuple[str, str]]:
    """(element key, real label) for every live tag of a defense category."""
    trait = _get(entity, f"system.traits.{trait_path}", {})
    prefix = defense_tag_prefix(category_id)
    tags: dict[str, str] = {}
    for value in _trait_values(trait):
        tags.setdefault(prefix + _sanitize(value), TRAIT_LABELS.get(value, value[:1].upper() + value[1:]))
    for value in _trait_custom(trait):
        tags.setdefault(prefix + _sanitize(value), value)
    return [(key, label) for key, label in tags.items() if key != prefix]


def _enabled_effects(entity: Entity) -> list[Mapping[str, Any]]:
    effects = entity.get("effects") or []
    return [e for e in effects if isinstance(e, Mapping) and e.get("id") and not e.get("disabled")]


def _passive_feats(entity: Entity) -> list[Mapping[str, Any]]:
    items = entity.get("items") or []
    return [
        item for item in items
        if isinstance(item, Mapping)
        and item.get("id")
        and item.get("type") == "feat"
        and not _get(item, "system.activation.type")
    ]


def _abilities(entity: Entity) -> dict[str, Any]:
    abilities = _get(entity, "system.abilities", {})
    return dict(abilities) if isinstance(abilities, Mapping) else {}


class Dnd5eHandler(SystemHandler):
    """Handler for the D&D 5th Edition rule system."""

    system_id = SYSTEM_ID

    def get_field_catalog(self) -> list[CatalogEntry]:
        return list(FIELD_CATALOG)

    # ------------------------------------------------------------------
    # Key enumeration
    # ------------------------------------------------------------------

    def enumerate_group_member_keys(self, group_id: str, entity: Entity) -> list[str]:
        """
        Live member keys for a group, by group id or header key.

        Unknown groups yield an empty list.
        """
        group = self.find_group(group_id)
        if group is None:
            return []

        if group.key_pattern == ABILITY_PREFIX:
            return [f"{ABILITY_PREFIX}{key}" for key in _abilities(entity)]
        if group.key_pattern == EFFECT_PREFIX:
            return [f"{EFFECT_PREFIX}{e['id']}" for e in _enabled_effects(entity)]
        if group.key_pattern == FEATURE_PREFIX:
            return [f"{FEATURE_PREFIX}{i['id']}" for i in _passive_feats(entity)]
        for category_id, _name, trait_path in DEFENSE_CATEGORIES:
            if group.key_pattern == defense_tag_prefix(category_id):
                return [key for key, _label in _defense_tags(entity, category_id, trait_path)]
        return []

    def enumerate_all_keys(self, entity: Entity, cached_view_model: Optional[StandardizedViewModel] = None) -> list[str]:
        """Every single key plus every live group member, from the entity alone."""
        keys: list[str] = []
        for entry in FIELD_CATALOG:
            if entry.kind == FactKind.SINGLE:
                keys.append(entry.key_pattern)
            else:
                keys.extend(self.enumerate_group_member_keys(entry.id, entity))
        return keys

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def project(
        self,
        entity: Entity,
        placed_instance: Optional[Entity],
        overrides: Mapping[str, bool],
        is_privileged: bool,
    ) -> StandardizedViewModel:
        resolver = self.build_resolver(overrides, is_privileged)
        placeholder_mode = self.settings.get_placeholder_mode(SYSTEM_ID)

        header = self._header(entity, placed_instance, resolver)
        sections = [
            self._armor_class(entity, resolver),
            self._movement(entity, resolver),
            self._health(entity, resolver),
            self._ability_scores(entity, resolver),
            self._active_effects(entity, resolver),
            self._defenses(entity, resolver, placeholder_mode),
            self._passive_features(entity, resolver),
        ]

        view_model = StandardizedViewModel(
            system_id=SYSTEM_ID,
            is_gm_view=is_privileged,
            title=header.name.text,
            header=header,
            portrait=self._portrait(entity, placed_instance, is_privileged),
            sections=sections,
        )
        logger.debug(
            f"Projected {entity.get('id')} for {'GM' if is_privileged else 'player'} "
            f"({len(view_model.element_keys())} keys)"
        )
        return view_model

    def _header(self, entity: Entity, placed_instance: Optional[Entity], resolver: FactResolver) -> HeaderInfo:
        name = str(entity.get("name") or "")
        instance_name = (placed_instance or {}).get("name")
        if instance_name and instance_name != name:
            name = str(instance_name)

        size_text = _format_size(_get(entity, "system.traits.size"))

        if entity.get("type") == "character":
            class_string, total_level = self._class_string_and_level(entity)
            identifier_text = f"Level {total_level}"
            type_text = class_string
        else:
            identifier_text = f"CR {_format_cr(_get(entity, 'system.details.cr'))}"
            creature_type = str(_get(entity, "system.details.type.value", "") or "")
            type_text = creature_type[:1].upper() + creature_type[1:]
            subtype = _get(entity, "system.details.type.subtype") or _get(entity, "system.details.type.custom")
            if subtype:
                type_text = f"{type_text} ({subtype})"
            type_text = type_text.strip()

        def field(key: str, text: str) -> HeaderField:
            return HeaderField(
                text=resolver.display(key, text),
                element_key=key,
                is_hidden_gm=resolver.gm_marker(key),
            )

        return HeaderInfo(
            name=field(HEADER_NAME_KEY, name),
            identifier=field(HEADER_IDENTIFIER_KEY, identifier_text),
            size=field(HEADER_SIZE_KEY, size_text),
            type=field(HEADER_TYPE_KEY, type_text),
            entity_id=str(entity.get("id", "")),
        )

    @staticmethod
    def _class_string_and_level(entity: Entity) -> tuple[str, int]:
        classes = [
            item for item in entity.get("items") or []
            if isinstance(item, Mapping) and item.get("type") == "class"
        ]
        if classes:
            classes.sort(key=lambda c: (-int(_as_number(_get(c, "system.levels", 0))), str(c.get("name", ""))))
            class_string = " / ".join(
                f"{c.get('name', '')} {int(_as_number(_get(c, 'system.levels', 0)))}" for c in classes
            )
            total = sum(int(_as_number(_get(c, "system.levels", 0))) for c in classes)
            return class_string, total

        level = _get(entity, "system.details.level") or _get(entity, "system.attributes.level") or 0
        return "Character", int(_as_number(level))

    @staticmethod
    def _portrait(entity: Entity, placed_instance: Optional[Entity], is_privileged: bool) -> PortraitInfo:
        token_src = _get(placed_instance or {}, "texture.src") or _get(entity, "prototype_token.texture.src")
        actor_src = entity.get("img")

        if not is_privileged:
            # The token is already on the table; the actor portrait is not.
            return PortraitInfo(display_img_src=token_src or DEFAULT_PORTRAIT)

        return PortraitInfo(
            display_img_src=token_src or actor_src or DEFAULT_PORTRAIT,
            token_img_src=token_src,
            actor_img_src=actor_src,
        )

    @staticmethod
    def _armor_class(entity: Entity, resolver: FactResolver) -> StatblockSection:
        ac = _get(entity, "system.attributes.ac.value")
        value = _fmt_number(ac) if ac is not None else PLACEHOLDER_TEXT
        item = StatblockItem(
            id="ac",
            name="Armor Class",
            element_key=AC_KEY,
            value=resolver.display(AC_KEY, value),
            is_hidden_gm=resolver.gm_marker(AC_KEY),
            is_numeric_value=ac is not None and not resolver.concealed(AC_KEY),
            display_type="keyValue",
        )
        return StatblockSection(id="ac", title="Armor Class", items=[item], is_empty=False)

    @staticmethod
    def _movement(entity: Entity, resolver: FactResolver) -> StatblockSection:
        movement = _get(entity, "system.attributes.movement", {})
        items: list[StatblockItem] = []
        has_any_speed = False

        for move_key, label, icon in MOVEMENT_TYPES:
            key = f"{MOVEMENT_PREFIX}{move_key}"
            speed = _as_number(movement.get(move_key)) if isinstance(movement, Mapping) else 0
            possessed = speed > 0
            has_any_speed = has_any_speed or possessed

            if resolver.is_privileged:
                value = _fmt_number(speed) if possessed else "0"
                numeric = possessed
            elif possessed and not resolver.hidden(key):
                value = _fmt_number(speed)
                numeric = True
            else:
                # Unpossessed speeds are masked too, so players cannot tell them apart
                value = PLACEHOLDER_TEXT
                numeric = False

            items.append(StatblockItem(
                id=move_key,
                name=label,
                element_key=key,
                value=value,
                icon=icon,
                is_numeric_value=numeric,
                is_hidden_gm=resolver.gm_marker(key),
                display_type="keyValue",
            ))

        is_empty = not has_any_speed if resolver.is_privileged else False
        return StatblockSection(id="movement", title="Movement", items=items, is_empty=is_empty)

    @staticmethod
    def _health(entity: Entity, resolver: FactResolver) -> StatblockSection:
        hp = _get(entity, "system.attributes.hp", {})
        hp = hp if isinstance(hp, Mapping) else {}
        temp_max = int(_as_number(hp.get("tempmax")))

        if resolver.concealed(HP_KEY):
            fields = {
                "current": PLACEHOLDER_TEXT,
                "max": PLACEHOLDER_TEXT,
                "temp": PLACEHOLDER_TEXT,
                "temp_max": PLACEHOLDER_TEXT,
                "increased_max": False,
                "decreased_max": False,
            }
            value = PLACEHOLDER_TEXT
        else:
            fields = {
                "current": _fmt_number(hp.get("value")),
                "max": _fmt_number(hp.get("max")),
                "temp": _fmt_number(hp.get("temp")),
                "temp_max": str(temp_max),
                "increased_max": temp_max > 0,
                "decreased_max": temp_max < 0,
            }
            value = f"{fields['current']}/{fields['max']}"

        item = StatblockItem(
            id="hp",
            name="Hit Points",
            element_key=HP_KEY,
            value=value,
            is_hidden_gm=resolver.gm_marker(HP_KEY),
            display_type="health",
            extra=fields,
        )
        return StatblockSection(id="health", title="Hit Points", items=[item], is_empty=False)

    @staticmethod
    def _ability_scores(entity: Entity, resolver: FactResolver) -> StatblockSection:
        items: list[StatblockItem] = []
        for key, ability in _abilities(entity).items():
            ability = ability if isinstance(ability, Mapping) else {}
            element_key = f"{ABILITY_PREFIX}{key}"
            concealed = resolver.concealed(element_key)
            label = str(ability.get("label") or key).upper()
            items.append(StatblockItem(
                id=key,
                name=label,
                element_key=element_key,
                value=PLACEHOLDER_TEXT if concealed else _fmt_number(ability.get("value")),
                sub_text=PLACEHOLDER_TEXT if concealed else _format_mod(ability.get("mod")),
                is_hidden_gm=resolver.gm_marker(element_key),
                is_numeric_value=not concealed,
                display_type="attribute",
            ))
        return StatblockSection(id="abilities", title="Ability Scores", items=items, is_empty=not items)

    @staticmethod
    def _effect_sub_text(effect: Mapping[str, Any]) -> str:
        duration = effect.get("duration") or {}
        rounds = int(_as_number(duration.get("rounds")))
        turns = int(_as_number(duration.get("turns")))
        if rounds or turns:
            parts = []
            if rounds:
                parts.append(f"{rounds} {'Round' if rounds == 1 else 'Rounds'}")
            if turns:
                parts.append(f"{turns} {'Turn' if turns == 1 else 'Turns'}")
            return ", ".join(parts)
        if duration.get("type") == "permanent":
            return "Permanent"
        if _get(effect, "flags.dae.specialDuration"):
            return "Special"
        return ""

    def _active_effects(self, entity: Entity, resolver: FactResolver) -> StatblockSection:
        items: list[StatblockItem] = []
        for effect in _enabled_effects(entity):
            effect_id = str(effect["id"])
            element_key = f"{EFFECT_PREFIX}{effect_id}"
            name = str(effect.get("name") or "")
            if resolver.concealed(element_key):
                items.append(_concealed_item(ACTIVE_EFFECTS_KEY, len(items)))
                continue
            items.append(StatblockItem(
                id=effect_id,
                name=name,
                element_key=element_key,
                icon=str(effect.get("img") or ""),
                sub_text=self._effect_sub_text(effect),
                native_tooltip_text=name,
                uuid=effect.get("uuid") or f"Actor.{entity.get('id')}.ActiveEffect.{effect_id}",
                is_hidden_gm=resolver.gm_marker(element_key),
                extra={
                    "rounds": _get(effect, "duration.rounds"),
                    "turns": _get(effect, "duration.turns"),
                },
            ))
        return _item_section(
            "active_effects", "Active Effects", ACTIVE_EFFECTS_KEY, items, resolver,
            section_classes="active-effects-section",
        )

    def _passive_features(self, entity: Entity, resolver: FactResolver) -> StatblockSection:
        items: list[StatblockItem] = []
        for feature in _passive_feats(entity):
            feature_id = str(feature["id"])
            element_key = f"{FEATURE_PREFIX}{feature_id}"
            name = str(feature.get("name") or "")
            if resolver.concealed(element_key):
                items.append(_concealed_item(PASSIVE_FEATURES_KEY, len(items)))
                continue
            items.append(StatblockItem(
                id=feature_id,
                name=name,
                element_key=element_key,
                icon=str(feature.get("img") or ""),
                description_html=str(_get(feature, "system.description.value", "") or ""),
                native_tooltip_text=name,
                uuid=feature.get("uuid") or f"Actor.{entity.get('id')}.Item.{feature_id}",
                is_hidden_gm=resolver.gm_marker(element_key),
            ))
        return _item_section(
            "passive_features", "Features", PASSIVE_FEATURES_KEY, items, resolver,
            section_classes="passive-features-section",
        )

    @staticmethod
    def _defenses(entity: Entity, resolver: FactResolver, placeholder_mode: PlaceholderMode) -> StatblockSection:
        categories = [
            _defense_category(entity, category_id, name, trait_path, resolver, placeholder_mode)
            for category_id, name, trait_path in DEFENSE_CATEGORIES
        ]
        is_empty = all(not category.tags for category in categories)
        return StatblockSection(
            id="defenses",
            title="Defenses",
            categories=categories,
            is_empty=is_empty,
            section_classes="defenses-grid-layout",
        )


def _hidden_key(parent_key: str, position: int) -> str:
    return f"{parent_key}-hidden-{position}"


def _concealed_item(section_key: str, position: int) -> StatblockItem:
    """
    A hidden item as a restricted viewer receives it.

    Icon, tooltip, description and uuid stay blank, and the id and element key
    are derived from the section and position rather than the item itself.
    """
    key = _hidden_key(section_key, position)
    return StatblockItem(id=key, name=PLACEHOLDER_TEXT, element_key=key)


def _item_section(
    section_id: str,
    title: str,
    header_key: str,
    items: list[StatblockItem],
    resolver: FactResolver,
    section_classes: str = "",
) -> StatblockSection:
    """Wrap items in a section whose header is itself a toggleable fact."""
    if resolver.concealed(header_key):
        # The whole section collapses to one placeholder; not even the count leaks.
        items = [StatblockItem(id=header_key, name=PLACEHOLDER_TEXT, element_key=header_key)]
    return StatblockSection(
        id=section_id,
        title=title,
        items=items,
        is_empty=not items,
        element_key=header_key,
        is_hidden_gm=resolver.gm_marker(header_key),
        section_classes=section_classes,
    )


def _defense_category(
    entity: Entity,
    category_id: str,
    name: str,
    trait_path: str,
    resolver: FactResolver,
    placeholder_mode: PlaceholderMode,
) -> CategoryItem:
    """Build one defense category and its tags for the current viewer."""
    category_key = defense_category_key(category_id)
    live_tags = _defense_tags(entity, category_id, trait_path)
    tags: list[TagItem] = []
    tooltip_parts: list[str] = []

    if resolver.is_privileged:
        for key, label in live_tags:
            tags.append(TagItem(id=key, name=label, element_key=key, is_hidden_gm=resolver.hidden(key)))
            tooltip_parts.append(label)
        tooltip = f"{name}: {', '.join(tooltip_parts) or 'None'}"
        return CategoryItem(
            id=category_key,
            name=name,
            element_key=category_key,
            tags=tags,
            sub_text="None" if not tags else "",
            is_hidden_gm=resolver.hidden(category_key),
            native_tooltip_text=tooltip,
        )

    if PlaceholderMode(placeholder_mode) == PlaceholderMode.PERSISTENT_SINGLE:
        for key, label in live_tags:
            if not resolver.hidden(key):
                tags.append(TagItem(id=key, name=label, element_key=key))
                tooltip_parts.append(label)
        placeholder_key = f"{category_key}-persistent-placeholder"
        tags.append(TagItem(
            id=placeholder_key,
            name=PLACEHOLDER_TEXT,
            element_key=placeholder_key,
            is_placeholder=True,
        ))
        tooltip_parts.append(PLACEHOLDER_TEXT)
        empty_text = PLACEHOLDER_TEXT
    else:
        for position, (key, label) in enumerate(live_tags):
            if resolver.hidden(key):
                hidden_key = _hidden_key(category_key, position)
                tags.append(TagItem(id=hidden_key, name=PLACEHOLDER_TEXT, element_key=hidden_key, is_placeholder=True))
                tooltip_parts.append(PLACEHOLDER_TEXT)
            else:
                tags.append(TagItem(id=key, name=label, element_key=key))
                tooltip_parts.append(label)
        empty_text = "None"

    return CategoryItem(
        id=category_key,
        name=name,
        element_key=category_key,
        tags=tags,
        native_tooltip_text=f"{name}: {', '.join(tooltip_parts) or empty_text}",
    )


__all__ = ["Dnd5eHandler", "DEFAULT_PORTRAIT"]
