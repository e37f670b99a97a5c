"""
Derived views over the caches.

Views may be read on every paint tick, so each derived value is memoized
against the exact inputs it was computed from: record objects by identity,
versions and ids by value.  While the inputs are unchanged the same container
object is returned, which keeps downstream identity-based change detection
quiet.
"""

import logging
from typing import Any, Callable, FrozenSet, Optional, Tuple

from gamesync.caches import InventoryCache, PartyDirectory, RosterCache
from gamesync.coordinator import ConsistencyCoordinator
from gamesync.models import (
    CharacterRecord,
    CharacterType,
    MemberRole,
    PartyDetail,
    PartyMembership,
    PartyPosition,
)

logger = logging.getLogger(__name__)

_UNSET = object()


def _same_input(a: Any, b: Any) -> bool:
    if a is b:
        return True
    # Versions and ids compare by value; records only by identity
    if isinstance(a, (int, str)) and type(a) is type(b):
        return a == b
    return False


class _Memo:
    """Single-slot memo keyed on a tuple of inputs."""

    def __init__(self):
        self._inputs: Tuple[Any, ...] = ()
        self._value: Any = _UNSET
        self.computations = 0

    def get(self, inputs: Tuple[Any, ...], compute: Callable[[], Any]) -> Any:
        if (
            self._value is not _UNSET
            and len(inputs) == len(self._inputs)
            and all(_same_input(a, b) for a, b in zip(inputs, self._inputs))
        ):
            return self._value
        self._inputs = inputs
        self._value = compute()
        self.computations += 1
        return self._value


class DerivedViews:
    def __init__(
        self,
        coordinator: ConsistencyCoordinator,
        roster: RosterCache,
        parties: PartyDirectory,
        inventory: InventoryCache,
    ):
        self._coordinator = coordinator
        self._roster = roster
        self._parties = parties
        self._inventory = inventory

        self._member_ids = _Memo()
        self._ordered_ids = _Memo()
        self._player_characters = _Memo()
        self._active_character = _Memo()

    # -- party ----------------------------------------------------------------

    def active_party(self) -> Optional[PartyDetail]:
        return self._parties.get_detail(self._coordinator.active_party_id)

    def active_party_position(self) -> Optional[PartyPosition]:
        party = self.active_party()
        if party is None or party.position_x is None or party.position_y is None:
            return None
        return PartyPosition(
            x=party.position_x,
            y=party.position_y,
            location_name=party.current_location or "Unknown",
            poi_id=party.current_poi,
        )

    def leader(self) -> Optional[PartyMembership]:
        party = self.active_party()
        return party.leader() if party is not None else None

    def active_member(self) -> Optional[PartyMembership]:
        party = self.active_party()
        return party.active_member() if party is not None else None

    def active_party_member_ids(self) -> FrozenSet[str]:
        """Character ids in the active party; rebuilt only when its detail object changes."""
        party = self.active_party()

        def compute() -> FrozenSet[str]:
            if party is None:
                return frozenset()
            return frozenset(m.character_id for m in party.members)

        return self._member_ids.get((party,), compute)

    def ordered_active_party_character_ids(self) -> Tuple[str, ...]:
        """
        Active party members present in the roster, in display order: leader
        first, the active character second, then by position (missing = 0).
        """
        party = self.active_party()
        active_id = self._coordinator.active_character_id

        def compute() -> Tuple[str, ...]:
            if party is None:
                return ()

            def rank(member: PartyMembership):
                if member.role == MemberRole.LEADER:
                    group = 0
                elif member.character_id == active_id:
                    group = 1
                else:
                    group = 2
                return (group, member.position or 0)

            members = [m for m in party.members if m.character_id in self._roster]
            return tuple(m.character_id for m in sorted(members, key=rank))

        return self._ordered_ids.get((party, self._roster.version, active_id), compute)

    def is_guest(self, character_id: str) -> bool:
        """A character shown alongside the party but not a member of it."""
        return character_id not in self.active_party_member_ids()

    # -- roster ---------------------------------------------------------------

    def player_characters(self) -> Tuple[CharacterRecord, ...]:
        def compute() -> Tuple[CharacterRecord, ...]:
            return tuple(
                c for c in self._roster.list_all() if c.character_type == CharacterType.PC
            )

        return self._player_characters.get((self._roster.version,), compute)

    def active_character(self) -> Optional[CharacterRecord]:
        """The active roster record, with equipment taken from its inventory when loaded."""
        record = self._roster.get_by_id(self._coordinator.active_character_id)

        def compute() -> Optional[CharacterRecord]:
            if record is None:
                return None
            equipment = self._inventory.equipment
            if self._inventory.character_id != record.id or equipment is None:
                return record
            return record.model_copy(update={"equipment": equipment})

        return self._active_character.get((record, self._inventory.version), compute)
