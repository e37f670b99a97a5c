"""Tolerant parsing of normalized payloads into cache records.

Every parser accepts whatever the normalizer produced and returns either a
valid record or ``None`` (for a single record) / a possibly empty list.  A
record without its identity field is dropped rather than given a synthetic
id; the one exception is the legacy quest format, where bare ids are expanded
into stub quests.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from gamesync.coercion import (
    coerce_bool,
    coerce_float,
    coerce_int,
    coerce_mapping,
    coerce_price,
    coerce_str,
    coerce_str_list,
    int_field,
    pick,
    str_field,
)
from gamesync.models import (
    AbilityScores,
    CharacterRecord,
    CharacterSummary,
    CharacterType,
    Condition,
    Currencies,
    Equipment,
    InventoryItem,
    InventorySnapshot,
    MemberRole,
    PartyContext,
    PartyDetail,
    PartyMembership,
    PartyPosition,
    PartyRecord,
    PartyStatus,
    Progress,
    Quest,
    QuestObjective,
    QuestRewards,
    QuestStatus,
    WorldState,
    WorldSummary,
)

logger = logging.getLogger(__name__)

DEFAULT_CLASS = "Adventurer"
DEFAULT_AC = 10
XP_PER_LEVEL = 1000

SAVING_THROW_PROFICIENCIES: Dict[str, List[str]] = {
    "barbarian": ["str", "con"],
    "bard": ["dex", "cha"],
    "cleric": ["wis", "cha"],
    "druid": ["int", "wis"],
    "fighter": ["str", "con"],
    "monk": ["str", "dex"],
    "paladin": ["wis", "cha"],
    "ranger": ["str", "dex"],
    "rogue": ["dex", "int"],
    "sorcerer": ["con", "cha"],
    "warlock": ["wis", "cha"],
    "wizard": ["int", "wis"],
    "hobbit": ["dex", "cha"],
    "ring-bearer": ["wis", "cha"],
    "ringbearer": ["wis", "cha"],
}
_FALLBACK_PROFICIENCIES = ["con", "wis"]

_LEGACY_QUEST_KEYS = (
    ("activeQuests", QuestStatus.ACTIVE),
    ("completedQuests", QuestStatus.COMPLETED),
    ("failedQuests", QuestStatus.FAILED),
)


def _enum_value(enum_cls, value: Any, default):
    text = coerce_str(value)
    if text:
        try:
            return enum_cls(text.strip().lower())
        except ValueError:
            logger.debug("Unknown %s value %r; using %s", enum_cls.__name__, value, default.value)
    return default


def _list_of_mappings(value: Any) -> List[Mapping]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, Mapping)]


def _build(model_cls, **fields):
    try:
        return model_cls(**fields)
    except ValidationError as exc:
        logger.warning("Dropping invalid %s: %s", model_cls.__name__, exc.errors()[:1])
        return None


def default_saving_throws(character_class: str) -> List[str]:
    return list(SAVING_THROW_PROFICIENCIES.get(character_class.lower(), _FALLBACK_PROFICIENCIES))


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------

def _parse_conditions(value: Any) -> List[Condition]:
    conditions: List[Condition] = []
    if not isinstance(value, list):
        return conditions
    for entry in value:
        if isinstance(entry, str) and entry.strip():
            conditions.append(Condition(name=entry))
        elif isinstance(entry, Mapping) and coerce_str(entry.get("name")):
            conditions.append(Condition(
                name=coerce_str(entry.get("name")),
                duration=coerce_int(entry.get("duration")),
                source=coerce_str(entry.get("source")),
            ))
    return conditions


def _parse_currencies(data: Mapping) -> Currencies:
    nested = coerce_mapping(data.get("currencies"))

    def amount(key: str) -> Optional[int]:
        return coerce_int(pick(nested, key)) if key in nested else coerce_int(pick(data, key))

    return Currencies(
        gold=amount("gold") or 0,
        silver=amount("silver") or 0,
        copper=amount("copper") or 0,
        platinum=amount("platinum"),
        electrum=amount("electrum"),
    )


def _parse_abilities(value: Any) -> AbilityScores:
    stats = coerce_mapping(value)
    return AbilityScores(
        strength=int_field(stats, "str", "strength", default=10),
        dexterity=int_field(stats, "dex", "dexterity", default=10),
        constitution=int_field(stats, "con", "constitution", default=10),
        intelligence=int_field(stats, "int", "intelligence", default=10),
        wisdom=int_field(stats, "wis", "wisdom", default=10),
        charisma=int_field(stats, "cha", "charisma", default=10),
    )


def parse_character(data: Any) -> Optional[CharacterRecord]:
    """Parse a ``list_characters`` entry into a :class:`CharacterRecord`."""

    if not isinstance(data, Mapping):
        return None
    character_id = str_field(data, "id", "characterId", "character_id")
    name = str_field(data, "name")
    if not character_id or not name:
        return None

    level = max(1, int_field(data, "level", default=1))
    character_class = str_field(data, "class", "characterClass", "character_class", default=DEFAULT_CLASS)
    current_hp = int_field(data, "hp", "currentHp", "current_hp", default=0)

    proficiencies = coerce_str_list(pick(data, "savingThrowProficiencies", "saving_throw_proficiencies"))

    return _build(
        CharacterRecord,
        id=character_id,
        name=name,
        level=level,
        character_class=character_class,
        race=str_field(data, "race"),
        hp=Progress(
            current=current_hp,
            max=int_field(data, "maxHp", "max_hp", "hp", default=0),
        ),
        xp=Progress(
            current=int_field(data, "experience", "xp", default=0),
            max=level * XP_PER_LEVEL,
        ),
        stats=_parse_abilities(data.get("stats")),
        equipment=Equipment(),
        character_type=_enum_value(
            CharacterType, pick(data, "characterType", "character_type"), CharacterType.PC
        ),
        conditions=_parse_conditions(data.get("conditions")),
        currencies=_parse_currencies(data),
        saving_throw_proficiencies=proficiencies or default_saving_throws(character_class),
        speed=int_field(data, "speed", default=30),
        armor_class=coerce_int(pick(data, "armorClass", "armor_class", "ac")),
    )


def parse_characters(payload: Any) -> List[CharacterRecord]:
    entries = payload.get("characters") if isinstance(payload, Mapping) else payload
    records = [parse_character(entry) for entry in _list_of_mappings(entries)]
    return [r for r in records if r is not None]


def parse_character_summary(data: Any) -> Optional[CharacterSummary]:
    if not isinstance(data, Mapping):
        return None
    character_id = str_field(data, "id", "characterId", "character_id")
    if not character_id:
        return None
    hp = int_field(data, "hp", default=0)
    return _build(
        CharacterSummary,
        id=character_id,
        name=str_field(data, "name", default="Unknown"),
        level=max(1, int_field(data, "level", default=1)),
        character_class=str_field(data, "class", "characterClass", "character_class", default=DEFAULT_CLASS),
        race=str_field(data, "race"),
        hp=hp,
        max_hp=int_field(data, "maxHp", "max_hp", default=hp or 1) or 1,
        ac=int_field(data, "ac", "armorClass", "armor_class", default=DEFAULT_AC),
        character_type=_enum_value(
            CharacterType, pick(data, "characterType", "character_type"), CharacterType.PC
        ),
    )


def parse_character_summaries(payload: Any) -> List[CharacterSummary]:
    entries = payload.get("characters") if isinstance(payload, Mapping) else payload
    summaries = [parse_character_summary(entry) for entry in _list_of_mappings(entries)]
    return [s for s in summaries if s is not None]


# ---------------------------------------------------------------------------
# Parties
# ---------------------------------------------------------------------------

def _party_fields(data: Mapping) -> Optional[Dict[str, Any]]:
    party_id = str_field(data, "id", "partyId", "party_id")
    if not party_id:
        return None
    return dict(
        id=party_id,
        name=str_field(data, "name", default="Unnamed Party"),
        description=str_field(data, "description"),
        world_id=str_field(data, "worldId", "world_id"),
        status=_enum_value(PartyStatus, data.get("status"), PartyStatus.ACTIVE),
        current_location=str_field(data, "currentLocation", "current_location"),
        current_quest_id=str_field(data, "currentQuestId", "current_quest_id"),
        formation=str_field(data, "formation", default="standard"),
        position_x=coerce_float(pick(data, "positionX", "position_x")),
        position_y=coerce_float(pick(data, "positionY", "position_y")),
        current_poi=str_field(data, "currentPOI", "current_poi"),
        created_at=str_field(data, "createdAt", "created_at", default=""),
        updated_at=str_field(data, "updatedAt", "updated_at", default=""),
        last_played_at=str_field(data, "lastPlayedAt", "last_played_at"),
    )


def parse_party(data: Any) -> Optional[PartyRecord]:
    if not isinstance(data, Mapping):
        return None
    fields = _party_fields(data)
    return _build(PartyRecord, **fields) if fields else None


def parse_parties(payload: Any) -> List[PartyRecord]:
    entries = payload.get("parties") if isinstance(payload, Mapping) else payload
    parties = [parse_party(entry) for entry in _list_of_mappings(entries)]
    return [p for p in parties if p is not None]


def parse_membership(data: Any, party_id: str = "") -> Optional[PartyMembership]:
    if not isinstance(data, Mapping):
        return None
    character_id = str_field(data, "characterId", "character_id")
    if not character_id:
        return None

    summary_source = data.get("character") if isinstance(data.get("character"), Mapping) else None
    if summary_source is not None and not pick(summary_source, "id"):
        summary_source = {**summary_source, "id": character_id}

    return _build(
        PartyMembership,
        id=str_field(data, "id", default=character_id),
        party_id=str_field(data, "partyId", "party_id", default=party_id),
        character_id=character_id,
        role=_enum_value(MemberRole, data.get("role"), MemberRole.MEMBER),
        is_active=bool(coerce_bool(pick(data, "isActive", "is_active"))),
        position=coerce_int(data.get("position")),
        share_percentage=coerce_float(pick(data, "sharePercentage", "share_percentage")) or 100,
        joined_at=str_field(data, "joinedAt", "joined_at", default=""),
        notes=str_field(data, "notes"),
        character=parse_character_summary(summary_source) if summary_source else None,
    )


def parse_party_detail(data: Any) -> Optional[PartyDetail]:
    """
    Parse ``get_party`` output (optionally wrapped in ``{"party": ...}``).

    Enforces the membership invariants: one membership per character id
    (first occurrence wins) and at most one active membership (first wins).
    """
    if isinstance(data, Mapping) and isinstance(data.get("party"), Mapping):
        members_source = data.get("members")
        data = dict(data["party"])
        if "members" not in data and members_source is not None:
            data["members"] = members_source
    if not isinstance(data, Mapping):
        return None
    fields = _party_fields(data)
    if not fields:
        return None

    members: List[PartyMembership] = []
    seen: set = set()
    active_seen = False
    for entry in _list_of_mappings(data.get("members")):
        member = parse_membership(entry, party_id=fields["id"])
        if member is None:
            continue
        if member.character_id in seen:
            logger.warning(
                "Duplicate membership for character %s in party %s; keeping first",
                member.character_id, fields["id"],
            )
            continue
        seen.add(member.character_id)
        if member.is_active:
            if active_seen:
                logger.warning(
                    "Party %s reports more than one active member; clearing %s",
                    fields["id"], member.character_id,
                )
                member = member.model_copy(update={"is_active": False})
            active_seen = True
        members.append(member)

    return _build(PartyDetail, members=members, **fields)


def parse_party_position(data: Any) -> Optional[PartyPosition]:
    if not isinstance(data, Mapping) or not data.get("success"):
        return None
    position = data.get("position")
    if not isinstance(position, Mapping):
        return None
    x = coerce_float(position.get("x"))
    y = coerce_float(position.get("y"))
    if x is None or y is None:
        return None
    return PartyPosition(
        x=x,
        y=y,
        location_name=str_field(position, "locationName", "location_name", default="Unknown"),
        poi_id=str_field(position, "poiId", "poi_id"),
    )


def parse_party_context(data: Any, party_id: str) -> Optional[PartyContext]:
    if not isinstance(data, Mapping):
        return None
    members = _list_of_mappings(data.get("members"))
    return PartyContext(
        party_id=str_field(data, "partyId", "party_id", default=party_id),
        party_name=str_field(data, "partyName", "name", default="Unknown Party"),
        member_count=int_field(data, "memberCount", "member_count", default=len(members)),
        leader=str_field(data, "leader"),
        active_character=str_field(data, "activeCharacter", "active_character"),
        summary=str_field(data, "summary", default=""),
        members=[dict(m) for m in members],
    )


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------

def _parse_inventory_item(entry: Mapping, index: int) -> Optional[InventoryItem]:
    # Detailed entries wrap the item definition: {"item": {...}, "quantity": 2}
    item = entry.get("item") if isinstance(entry.get("item"), Mapping) else entry
    item_id = str_field(item, "id") or str_field(entry, "id", "itemId", "item_id")
    if not item_id:
        logger.debug("Dropping inventory item without id at index %d", index)
        return None
    name = str_field(item, "name") or str_field(entry, "name")

    quantity = coerce_int(entry.get("quantity"))
    return _build(
        InventoryItem,
        id=item_id,
        name=name or "Unknown Item",
        description=str_field(item, "description", default=""),
        quantity=max(0, quantity if quantity is not None else 1),
        type=str_field(item, "type") or str_field(entry, "type", default="misc"),
        weight=coerce_float(pick(item, "weight", default=pick(entry, "weight"))),
        value=coerce_price(pick(item, "value", default=pick(entry, "value"))),
        equipped=bool(coerce_bool(entry.get("equipped")) or coerce_bool(item.get("equipped"))),
    )


def derive_equipment(items: Iterable[InventoryItem], slots: Any = None) -> Equipment:
    """Equipment from an explicit slot block, else from equipped items."""

    if isinstance(slots, Mapping):
        return Equipment(
            armor=str_field(slots, "armor", default="None"),
            weapons=[w for w in (str_field(slots, "mainhand"), str_field(slots, "offhand")) if w],
            other=[
                o for o in (
                    str_field(slots, "head"), str_field(slots, "feet"), str_field(slots, "accessory"),
                ) if o
            ],
        )

    equipped = [item for item in items if item.equipped]
    armor = next((i.name for i in equipped if i.type.lower() == "armor"), "None")
    weapons = [i.name for i in equipped if i.type.lower() == "weapon"]
    return Equipment(armor=armor, weapons=weapons)


def parse_inventory(payload: Any) -> Optional[InventorySnapshot]:
    """
    Normalize either inventory endpoint into one :class:`InventorySnapshot`.

    Returns ``None`` when the payload is not an inventory at all so the caller
    can keep its previous value.
    """
    if isinstance(payload, list):
        payload = {"items": payload}
    if not isinstance(payload, Mapping) or not isinstance(payload.get("items"), list):
        return None

    items: List[InventoryItem] = []
    for index, entry in enumerate(_list_of_mappings(payload["items"])):
        item = _parse_inventory_item(entry, index)
        if item is not None:
            items.append(item)

    slots = payload.get("equipment")
    equipment = derive_equipment(items, slots)
    return InventorySnapshot(items=items, equipment=equipment)


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------

def _quest_stub(quest_id: str, status: QuestStatus) -> Quest:
    return Quest(
        id=quest_id,
        title=f"Quest {quest_id[:8]}...",
        description="Quest details unavailable",
        status=status,
    )


def _parse_objective(data: Mapping, index: int) -> QuestObjective:
    current = int_field(data, "current", default=0)
    required = int_field(data, "required", default=1) or 1
    return QuestObjective(
        id=str_field(data, "id", default=f"obj-{index}"),
        description=str_field(data, "description", default="Unknown objective"),
        type=str_field(data, "type"),
        target=str_field(data, "target"),
        current=current,
        required=required,
        completed=bool(coerce_bool(data.get("completed"))),
        progress=str_field(data, "progress", default=f"{current}/{required}"),
    )


def _parse_quest(data: Mapping, index: int) -> Optional[Quest]:
    quest_id = str_field(data, "id")
    if not quest_id:
        logger.debug("Dropping quest without id at index %d", index)
        return None
    rewards = coerce_mapping(data.get("rewards"))
    return _build(
        Quest,
        id=quest_id,
        title=str_field(data, "title", "name", default="Untitled Quest"),
        description=str_field(data, "description", default=""),
        status=_enum_value(QuestStatus, data.get("status"), QuestStatus.ACTIVE),
        quest_giver=str_field(data, "questGiver", "giver"),
        objectives=[
            _parse_objective(obj, i) for i, obj in enumerate(_list_of_mappings(data.get("objectives")))
        ],
        rewards=QuestRewards(
            experience=int_field(rewards, "experience", default=0),
            gold=int_field(rewards, "gold", default=0),
            items=coerce_str_list(rewards.get("items")),
        ),
        prerequisites=coerce_str_list(data.get("prerequisites")),
    )


def parse_quests(payload: Any) -> List[Quest]:
    """
    Parse a quest log, supporting both the full format and the legacy
    ``activeQuests``/``completedQuests``/``failedQuests`` id lists.
    """
    if not isinstance(payload, Mapping):
        return []

    quests: List[Quest] = []
    seen: set = set()

    def add(quest: Optional[Quest]) -> None:
        if quest is not None and quest.id not in seen:
            seen.add(quest.id)
            quests.append(quest)

    entries = payload.get("quests")
    if isinstance(entries, list):
        for index, entry in enumerate(entries):
            if isinstance(entry, str) and entry.strip():
                add(_quest_stub(entry, QuestStatus.ACTIVE))
            elif isinstance(entry, Mapping):
                add(_parse_quest(entry, index))

    for key, status in _LEGACY_QUEST_KEYS:
        legacy = payload.get(key)
        if not isinstance(legacy, list):
            continue
        for quest_id in legacy:
            text = coerce_str(quest_id)
            if text and text.strip():
                add(_quest_stub(text, status))

    return quests


# ---------------------------------------------------------------------------
# Worlds
# ---------------------------------------------------------------------------

def parse_world_summaries(payload: Any) -> List[WorldSummary]:
    entries = payload.get("worlds") if isinstance(payload, Mapping) else payload
    worlds: List[WorldSummary] = []
    for entry in _list_of_mappings(entries):
        world_id = str_field(entry, "id", "worldId", "world_id")
        if not world_id:
            continue
        worlds.append(WorldSummary(
            id=world_id,
            name=str_field(entry, "name", default="Unnamed World"),
            raw=dict(entry),
        ))
    return worlds


def parse_world(data: Any) -> WorldState:
    if isinstance(data, Mapping) and isinstance(data.get("world"), Mapping):
        data = data["world"]
    if not isinstance(data, Mapping):
        return WorldState()

    def text(*aliases: str) -> str:
        value = pick(data, *aliases)
        if isinstance(value, (Mapping, list)):
            return "Unknown"
        return coerce_str(value) or "Unknown"

    return WorldState(
        location=text("name", "location"),
        time=text("time"),
        weather=text("weather"),
        date=text("date", "createdAt", "created_at"),
        environment=coerce_mapping(data.get("environment")),
        npcs=coerce_mapping(data.get("npcs")),
        events=coerce_mapping(data.get("events")),
        last_updated=str_field(data, "updatedAt", "updated_at"),
    )
