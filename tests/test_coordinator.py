import asyncio

import pytest

from conftest import FakeToolClient
from gamesync.caches import PartyDirectory, RosterCache, WorldCache
from gamesync.coordinator import ConsistencyCoordinator
from gamesync.errors import DomainError, ErrorKind, ToolCallError
from gamesync.models import CharacterRecord, PartyDetail, PartyMembership, PartyRecord, PartyStatus, WorldSummary
from gamesync.persistence import MemorySelectionStore


def _member(party_id, character_id, **fields):
    return PartyMembership(id=f"m-{character_id}", party_id=party_id, character_id=character_id, **fields)


def _detail(party_id, *members):
    return PartyDetail(id=party_id, members=list(members))


class _Harness:
    def __init__(self, client=None, persisted_party=None):
        self.client = client or FakeToolClient({"set_active_character": {"success": True}})
        self.roster = RosterCache()
        self.parties = PartyDirectory()
        self.worlds = WorldCache()
        self.coordinator = ConsistencyCoordinator(
            self.client, self.roster, self.parties, self.worlds,
            store=MemorySelectionStore(persisted_party),
        )
        self.refreshed = []
        self.repulled = []

        async def refresh(character_id):
            self.refreshed.append(character_id)

        async def repull(party_id):
            self.repulled.append(party_id)

        self.coordinator.dependent_refresh = refresh
        self.coordinator.party_detail_refresh = repull

    def load_roster(self, *ids):
        self.roster.upsert_all([CharacterRecord(id=i, name=i) for i in ids])

    def load_party(self, detail):
        self.parties.upsert_all([PartyRecord(id=detail.id)])
        self.parties.put_detail(detail)
        self.coordinator.set_active_party(detail.id)


@pytest.mark.asyncio
async def test_active_membership_moves_pointer_and_triggers_dependent_refresh():
    h = _Harness()
    h.load_roster("a", "b")
    h.load_party(_detail("p1", _member("p1", "a"), _member("p1", "b", is_active=True)))

    assert await h.coordinator.on_membership_written("p1") is True
    assert h.coordinator.active_character_id == "b"
    assert h.refreshed == ["b"]

    # Same active member again: no change, no refetch
    assert await h.coordinator.on_membership_written("p1") is False
    assert h.refreshed == ["b"]


@pytest.mark.asyncio
async def test_membership_of_inactive_party_is_ignored():
    h = _Harness()
    h.load_roster("a")
    h.load_party(_detail("p1"))
    h.parties.put_detail(_detail("p2", _member("p2", "a", is_active=True)))

    assert await h.coordinator.on_membership_written("p2") is False
    assert h.coordinator.active_character_id is None


@pytest.mark.asyncio
async def test_stale_membership_leaves_pointer_and_records_violation():
    h = _Harness()
    h.load_roster("a")
    h.coordinator.reconcile_roster()
    h.load_party(_detail("p1", _member("p1", "ghost", is_active=True)))

    assert await h.coordinator.on_membership_written("p1") is False
    assert h.coordinator.active_character_id == "a"
    assert h.refreshed == []
    assert h.coordinator.errors.count(ErrorKind.CONSISTENCY) == 1


@pytest.mark.asyncio
async def test_membership_before_roster_loads_is_accepted_then_reconciled():
    h = _Harness()
    h.load_party(_detail("p1", _member("p1", "ghost", is_active=True)))

    assert await h.coordinator.on_membership_written("p1") is True
    assert h.coordinator.active_character_id == "ghost"

    h.load_roster("a", "b")
    assert h.coordinator.reconcile_roster() == "a"
    assert h.coordinator.active_character_id == "a"


@pytest.mark.asyncio
async def test_activate_membership_marks_exactly_one_member_active():
    h = _Harness()
    h.load_roster("a", "b", "c")
    h.load_party(_detail(
        "p1",
        _member("p1", "a", is_active=True),
        _member("p1", "b"),
        _member("p1", "c"),
    ))

    assert await h.coordinator.activate_membership("p1", "c") is True

    detail = h.parties.get_detail("p1")
    assert h.coordinator.active_character_id == "c"
    assert [m.character_id for m in detail.members if m.is_active] == ["c"]
    assert h.client.calls_to("set_active_character") == [{"partyId": "p1", "characterId": "c"}]
    assert h.repulled == ["p1"]
    assert h.refreshed == ["c"]
    assert h.coordinator.selection_locked


@pytest.mark.asyncio
async def test_activate_membership_remote_failure_changes_nothing():
    client = FakeToolClient({"set_active_character": {"error": "not a member"}})
    h = _Harness(client)
    h.load_roster("a", "b")
    h.load_party(_detail("p1", _member("p1", "a", is_active=True), _member("p1", "b")))
    before = h.parties.get_detail("p1")

    with pytest.raises(DomainError):
        await h.coordinator.activate_membership("p1", "b")

    assert h.parties.get_detail("p1") is before
    assert h.coordinator.active_character_id is None


@pytest.mark.asyncio
async def test_select_character_propagates_to_active_party():
    h = _Harness()
    h.load_roster("a", "b")
    h.load_party(_detail("p1", _member("p1", "a", is_active=True), _member("p1", "b")))

    assert await h.coordinator.select_character("b") is True

    assert h.coordinator.active_character_id == "b"
    assert [m.is_active for m in h.parties.get_detail("p1").members] == [False, True]
    assert h.repulled == ["p1"]
    assert h.refreshed == ["b"]


@pytest.mark.asyncio
async def test_select_character_outside_party_skips_remote_call():
    h = _Harness()
    h.load_roster("a", "guest")
    h.load_party(_detail("p1", _member("p1", "a", is_active=True)))

    assert await h.coordinator.select_character("guest") is True
    assert h.client.calls == []
    assert h.coordinator.active_character_id == "guest"
    assert h.refreshed == ["guest"]


@pytest.mark.asyncio
async def test_select_unknown_character_is_refused():
    h = _Harness()
    h.load_roster("a")

    assert await h.coordinator.select_character("zzz") is False
    assert h.coordinator.active_character_id is None
    assert h.coordinator.errors.count(ErrorKind.CONSISTENCY) == 1


@pytest.mark.asyncio
async def test_failed_remote_propagation_keeps_selection():
    client = FakeToolClient({"set_active_character": ToolCallError("set_active_character", "offline")})
    h = _Harness(client)
    h.load_roster("a", "b")
    h.load_party(_detail("p1", _member("p1", "a", is_active=True), _member("p1", "b")))

    assert await h.coordinator.select_character("b") is True
    assert h.coordinator.active_character_id == "b"
    assert h.repulled == []
    assert h.refreshed == ["b"]


@pytest.mark.asyncio
async def test_failed_dependent_refresh_does_not_roll_back_pointer():
    h = _Harness()
    h.load_roster("a", "b")

    async def broken(character_id):
        raise RuntimeError("inventory down")

    h.coordinator.dependent_refresh = broken
    assert await h.coordinator.select_character("b") is True
    assert h.coordinator.active_character_id == "b"


def test_reconcile_roster_keeps_valid_pointer_and_self_heals():
    h = _Harness()
    h.load_roster("a", "b")
    asyncio.run(h.coordinator.select_character("b"))
    assert h.coordinator.reconcile_roster() == "b"

    h.load_roster("c")
    assert h.coordinator.reconcile_roster() == "c"

    h.load_roster()
    assert h.coordinator.reconcile_roster() is None


def test_reconcile_parties_prefers_persisted_then_active_then_first():
    h = _Harness(persisted_party="p2")
    h.parties.upsert_all([
        PartyRecord(id="p1", status=PartyStatus.DORMANT),
        PartyRecord(id="p2", status=PartyStatus.DORMANT),
        PartyRecord(id="p3"),
    ])
    assert h.coordinator.reconcile_parties() == "p2"

    h.parties.upsert_all([PartyRecord(id="p1", status=PartyStatus.DORMANT), PartyRecord(id="p3")])
    assert h.coordinator.reconcile_parties() == "p3"

    h.parties.upsert_all([PartyRecord(id="p1", status=PartyStatus.ARCHIVED)])
    assert h.coordinator.reconcile_parties() == "p1"


def test_party_pointer_is_persisted():
    store = MemorySelectionStore()
    roster, parties = RosterCache(), PartyDirectory()
    coordinator = ConsistencyCoordinator(FakeToolClient(), roster, parties, store=store)
    parties.upsert_all([PartyRecord(id="p1")])

    assert coordinator.set_active_party("p1")
    assert store.load().active_party_id == "p1"
    assert not coordinator.set_active_party("missing")
    assert coordinator.forget_party("p1")
    assert store.load().active_party_id is None


def test_reconcile_worlds_and_explicit_selection():
    h = _Harness()
    h.worlds.upsert_all([WorldSummary(id="w1"), WorldSummary(id="w2")])
    assert h.coordinator.reconcile_worlds() == "w1"
    assert h.coordinator.select_world("w2")
    assert h.coordinator.reconcile_worlds() == "w2"
    assert not h.coordinator.select_world("w9")


def test_forget_character_clears_pointer():
    h = _Harness()
    h.load_roster("a")
    h.coordinator.reconcile_roster()
    assert h.coordinator.forget_character("a")
    assert h.coordinator.active_character_id is None
    assert not h.coordinator.forget_character("a")
