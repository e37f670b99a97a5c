# gamesync/caches.py

"""
Entity caches for the sync layer.

Each cache exclusively owns its records and is replaced wholesale on every
fetch: records missing from the new set are dropped, never merged.  Writes
are synchronous, so any read after ``upsert_all`` returns observes the new
data.  Every cache carries a ``version`` that only advances when the visible
contents actually change; derived views key their memoization on it.
"""

import logging
from typing import Callable, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar

from gamesync.metrics import metrics
from gamesync.models import (
    CharacterRecord,
    CharacterSummary,
    Equipment,
    InventoryItem,
    InventorySnapshot,
    PartyDetail,
    PartyRecord,
    Quest,
    WorldState,
    WorldSummary,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")
Listener = Callable[["EntityCache"], None]


class EntityCache(Generic[R]):
    """Keyed, ordered, wholesale-replaced record store."""

    name = "entity"

    def __init__(self):
        self._records: Dict[str, R] = {}
        self._snapshot: Tuple[R, ...] = ()
        self._version = 0
        self._loaded = False
        self._listeners: List[Listener] = []

    # -- writes -------------------------------------------------------------

    def upsert_all(self, records: Iterable[R]) -> bool:
        """
        Replace the cache contents with ``records``.

        Records without an ``id`` are dropped; a repeated id keeps its first
        occurrence.  Returns True when the visible contents changed.
        """
        incoming: Dict[str, R] = {}
        for record in records:
            record_id = getattr(record, "id", None)
            if not record_id:
                logger.debug("%s cache: dropping record without id", self.name)
                continue
            if record_id in incoming:
                logger.debug("%s cache: duplicate id %s ignored", self.name, record_id)
                continue
            incoming[record_id] = record

        self._loaded = True
        if list(incoming.items()) == list(self._records.items()):
            return False

        # Keep the previous object for unchanged records so identities stay stable
        for record_id, record in incoming.items():
            previous = self._records.get(record_id)
            if previous is not None and previous == record:
                incoming[record_id] = previous

        self._records = incoming
        self._snapshot = tuple(incoming.values())
        self._changed()
        return True

    def clear(self) -> bool:
        return self.upsert_all(())

    def _changed(self) -> None:
        self._version += 1
        metrics().CACHE_RECORDS.labels(cache=self.name).set(len(self._records))
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("%s cache listener failed", self.name)

    # -- reads --------------------------------------------------------------

    def get_by_id(self, record_id: Optional[str]) -> Optional[R]:
        if record_id is None:
            return None
        return self._records.get(record_id)

    def list_all(self) -> Tuple[R, ...]:
        """All records in fetch order; the same tuple until the next change."""
        return self._snapshot

    def ids(self) -> List[str]:
        return list(self._records)

    @property
    def version(self) -> int:
        return self._version

    @property
    def loaded(self) -> bool:
        """True once any fetch has written to this cache."""
        return self._loaded

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


class RosterCache(EntityCache[CharacterRecord]):
    """All known characters, not scoped to any party."""

    name = "roster"


class PartyDirectory(EntityCache[PartyRecord]):
    """Party list plus per-party membership detail and unassigned characters."""

    name = "parties"

    def __init__(self):
        super().__init__()
        self._details: Dict[str, PartyDetail] = {}
        self._unassigned: Tuple[CharacterSummary, ...] = ()

    def upsert_all(self, records: Iterable[PartyRecord]) -> bool:
        changed = super().upsert_all(records)
        stale = [party_id for party_id in self._details if party_id not in self]
        for party_id in stale:
            del self._details[party_id]
        if stale and not changed:
            self._changed()
        return changed or bool(stale)

    def put_detail(self, detail: PartyDetail) -> bool:
        """Store a party's detail, replacing the previous one wholesale."""
        previous = self._details.get(detail.id)
        if previous is not None and previous == detail:
            return False
        self._details[detail.id] = detail
        self._changed()
        return True

    def get_detail(self, party_id: Optional[str]) -> Optional[PartyDetail]:
        if party_id is None:
            return None
        return self._details.get(party_id)

    def remove_party(self, party_id: str) -> bool:
        remaining = [p for p in self.list_all() if p.id != party_id]
        had_detail = self._details.pop(party_id, None) is not None
        changed = super().upsert_all(remaining)
        if had_detail and not changed:
            self._changed()
        return changed or had_detail

    def set_unassigned(self, characters: Iterable[CharacterSummary]) -> bool:
        new = tuple(characters)
        if new == self._unassigned:
            return False
        self._unassigned = new
        self._changed()
        return True

    @property
    def unassigned(self) -> Tuple[CharacterSummary, ...]:
        return self._unassigned


class InventoryCache(EntityCache[InventoryItem]):
    """Inventory of exactly one character: the active one at fetch time."""

    name = "inventory"

    def __init__(self):
        super().__init__()
        self.character_id: Optional[str] = None
        self._equipment: Optional[Equipment] = None

    def replace(self, character_id: Optional[str], snapshot: InventorySnapshot) -> bool:
        owner_changed = character_id != self.character_id
        equipment_changed = snapshot.equipment != self._equipment
        self.character_id = character_id
        self._equipment = snapshot.equipment
        changed = super().upsert_all(snapshot.items)
        if (owner_changed or equipment_changed) and not changed:
            self._changed()
        return changed or owner_changed or equipment_changed

    def clear(self) -> bool:
        return self.replace(None, InventorySnapshot())

    @property
    def equipment(self) -> Optional[Equipment]:
        return self._equipment


class QuestLog(EntityCache[Quest]):
    """Quest log of the active character."""

    name = "quests"

    def __init__(self):
        super().__init__()
        self.character_id: Optional[str] = None

    def replace(self, character_id: Optional[str], quests: Iterable[Quest]) -> bool:
        owner_changed = character_id != self.character_id
        self.character_id = character_id
        changed = super().upsert_all(quests)
        if owner_changed and not changed:
            self._changed()
        return changed or owner_changed

    def clear(self) -> bool:
        return self.replace(None, ())


class WorldCache(EntityCache[WorldSummary]):
    """Known worlds plus the environment state of the active one."""

    name = "worlds"

    def __init__(self):
        super().__init__()
        self.world_id: Optional[str] = None
        self._state = WorldState()

    def set_state(self, world_id: Optional[str], state: WorldState) -> bool:
        if world_id == self.world_id and state == self._state:
            return False
        self.world_id = world_id
        self._state = state
        self._changed()
        return True

    @property
    def state(self) -> WorldState:
        return self._state
