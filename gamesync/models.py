# gamesync/models.py
"""
Pydantic models for the records held by the entity caches.

Records are immutable: every refetch produces new instances that replace the
old ones wholesale, which is what lets derived views compare by identity.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CharacterType(str, Enum):
    PC = "pc"
    NPC = "npc"
    ENEMY = "enemy"
    NEUTRAL = "neutral"


class PartyStatus(str, Enum):
    ACTIVE = "active"
    DORMANT = "dormant"
    ARCHIVED = "archived"


class MemberRole(str, Enum):
    LEADER = "leader"
    MEMBER = "member"
    COMPANION = "companion"
    HIRELING = "hireling"
    PRISONER = "prisoner"
    MOUNT = "mount"


class QuestStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class Record(BaseModel):
    """Base for all cached records."""
    model_config = ConfigDict(extra="ignore", frozen=True)


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------

class Progress(Record):
    current: int = 0
    max: int = 0


class AbilityScores(Record):
    strength: int = 10
    dexterity: int = 10
    constitution: int = 10
    intelligence: int = 10
    wisdom: int = 10
    charisma: int = 10


class Equipment(Record):
    armor: str = "None"
    weapons: List[str] = Field(default_factory=list)
    other: List[str] = Field(default_factory=list)


class Condition(Record):
    name: str
    duration: Optional[int] = None  # rounds remaining, -1 for permanent
    source: Optional[str] = None


class Currencies(Record):
    gold: int = 0
    silver: int = 0
    copper: int = 0
    platinum: Optional[int] = None
    electrum: Optional[int] = None


class CharacterRecord(Record):
    id: str
    name: str
    level: int = 1
    character_class: str = "Adventurer"
    race: Optional[str] = None
    hp: Progress = Field(default_factory=Progress)
    xp: Progress = Field(default_factory=Progress)
    stats: AbilityScores = Field(default_factory=AbilityScores)
    equipment: Equipment = Field(default_factory=Equipment)
    character_type: CharacterType = CharacterType.PC
    conditions: List[Condition] = Field(default_factory=list)
    currencies: Currencies = Field(default_factory=Currencies)
    saving_throw_proficiencies: List[str] = Field(default_factory=list)
    speed: int = 30
    armor_class: Optional[int] = None


class CharacterSummary(Record):
    """Compact character view embedded in party listings."""
    id: str
    name: str = "Unknown"
    level: int = 1
    character_class: str = "Adventurer"
    race: Optional[str] = None
    hp: int = 0
    max_hp: int = 1
    ac: int = 10
    character_type: CharacterType = CharacterType.PC


# ---------------------------------------------------------------------------
# Parties
# ---------------------------------------------------------------------------

class PartyRecord(Record):
    id: str
    name: str = "Unnamed Party"
    description: Optional[str] = None
    world_id: Optional[str] = None
    status: PartyStatus = PartyStatus.ACTIVE
    current_location: Optional[str] = None
    current_quest_id: Optional[str] = None
    formation: str = "standard"
    position_x: Optional[float] = None
    position_y: Optional[float] = None
    current_poi: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    last_played_at: Optional[str] = None


class PartyMembership(Record):
    id: str
    party_id: str
    character_id: str
    role: MemberRole = MemberRole.MEMBER
    is_active: bool = False
    position: Optional[int] = None
    share_percentage: float = 100
    joined_at: str = ""
    notes: Optional[str] = None
    character: Optional[CharacterSummary] = None


class PartyDetail(PartyRecord):
    members: List[PartyMembership] = Field(default_factory=list)

    def member(self, character_id: str) -> Optional[PartyMembership]:
        for member in self.members:
            if member.character_id == character_id:
                return member
        return None

    def active_member(self) -> Optional[PartyMembership]:
        return next((m for m in self.members if m.is_active), None)

    def leader(self) -> Optional[PartyMembership]:
        return next((m for m in self.members if m.role == MemberRole.LEADER), None)

    def with_active_member(self, character_id: str) -> "PartyDetail":
        """Copy with exactly ``character_id`` flagged active, all others cleared."""
        members = [
            m.model_copy(update={"is_active": m.character_id == character_id})
            for m in self.members
        ]
        return self.model_copy(update={"members": members})


class PartyPosition(Record):
    x: float
    y: float
    location_name: str = "Unknown"
    poi_id: Optional[str] = None


class PartyContext(Record):
    party_id: str
    party_name: str = "Unknown Party"
    member_count: int = 0
    leader: Optional[str] = None
    active_character: Optional[str] = None
    summary: str = ""
    members: List[Dict[str, Any]] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Inventory, quests, world
# ---------------------------------------------------------------------------

class InventoryItem(Record):
    id: str
    name: str = "Unknown Item"
    description: str = ""
    quantity: int = Field(default=1, ge=0)
    type: str = "misc"
    weight: Optional[float] = None
    value: Optional[float] = None
    equipped: bool = False


class InventorySnapshot(Record):
    """Canonical inventory shape produced from either inventory endpoint."""
    items: List[InventoryItem] = Field(default_factory=list)
    equipment: Optional[Equipment] = None


class QuestObjective(Record):
    id: str
    description: str = "Unknown objective"
    type: Optional[str] = None
    target: Optional[str] = None
    current: int = 0
    required: int = 1
    completed: bool = False
    progress: str = ""


class QuestRewards(Record):
    experience: int = 0
    gold: int = 0
    items: List[str] = Field(default_factory=list)


class Quest(Record):
    id: str
    title: str
    description: str = ""
    status: QuestStatus = QuestStatus.ACTIVE
    quest_giver: Optional[str] = None
    objectives: List[QuestObjective] = Field(default_factory=list)
    rewards: QuestRewards = Field(default_factory=QuestRewards)
    prerequisites: List[str] = Field(default_factory=list)


class WorldSummary(Record):
    id: str
    name: str = "Unnamed World"
    raw: Dict[str, Any] = Field(default_factory=dict)


class WorldState(Record):
    location: str = "Unknown"
    time: str = "Unknown"
    weather: str = "Unknown"
    date: str = "Unknown"
    environment: Dict[str, Any] = Field(default_factory=dict)
    npcs: Dict[str, Any] = Field(default_factory=dict)
    events: Dict[str, Any] = Field(default_factory=dict)
    last_updated: Optional[str] = None
