import pytest

from conftest import FakeToolClient
from gamesync.caches import PartyDirectory, RosterCache
from gamesync.coordinator import ConsistencyCoordinator
from gamesync.errors import ErrorKind, ToolCallError
from gamesync.models import CharacterRecord
from gamesync.party_sync import PartySync, _camel_case
from gamesync.persistence import MemorySelectionStore


def _party_payload(active="b"):
    return {"party": {
        "id": "p1",
        "name": "Fellowship",
        "members": [
            {"characterId": "a", "role": "leader", "isActive": active == "a"},
            {"characterId": "b", "role": "member", "isActive": active == "b"},
        ],
    }}


def _responses(**overrides):
    responses = {
        "list_parties": {"parties": [
            {"id": "p0", "name": "Old", "status": "dormant"},
            {"id": "p1", "name": "Fellowship", "status": "active"},
        ], "count": 2},
        "get_party": lambda args: _party_payload(),
        "get_unassigned_characters": {"characters": [{"id": "c", "name": "Gollum"}], "count": 1},
        "add_party_member": {"success": True},
        "remove_party_member": {"success": True},
        "update_party_member": {"success": True},
        "set_party_leader": {"success": True},
        "set_active_character": {"success": True},
    }
    responses.update(overrides)
    return responses


class _Party:
    def __init__(self, responses, persisted_party=None):
        self.client = FakeToolClient(responses)
        self.roster = RosterCache()
        self.parties = PartyDirectory()
        self.store = MemorySelectionStore(persisted_party)
        self.coordinator = ConsistencyCoordinator(self.client, self.roster, self.parties, store=self.store)
        self.sync = PartySync(self.client, self.coordinator, self.parties)
        self.coordinator.party_detail_refresh = self.sync.sync_party_details
        self.game_refreshes = 0

        async def game_refresh():
            self.game_refreshes += 1

        self.sync.game_refresh = game_refresh
        self.roster.upsert_all([CharacterRecord(id=i, name=i) for i in ("a", "b", "c")])


@pytest.mark.asyncio
async def test_sync_parties_selects_active_party_and_loads_membership():
    p = _Party(_responses())
    await p.sync.sync_parties()

    assert p.parties.ids() == ["p0", "p1"]
    assert p.coordinator.active_party_id == "p1"
    assert p.store.load().active_party_id == "p1"
    assert p.parties.get_detail("p1").active_member().character_id == "b"
    assert p.coordinator.active_character_id == "b"
    assert [c.id for c in p.parties.unassigned] == ["c"]


@pytest.mark.asyncio
async def test_persisted_party_survives_restart():
    p = _Party(_responses(), persisted_party="p0")
    await p.sync.sync_parties()
    assert p.coordinator.active_party_id == "p0"
    assert p.client.calls_to("get_party") == [{"partyId": "p0"}]


@pytest.mark.asyncio
async def test_party_list_failure_only_logs():
    p = _Party(_responses(list_parties=RuntimeError("offline")))
    await p.sync.sync_parties()

    assert not p.parties.loaded
    assert p.sync.last_error is None
    assert p.sync.errors.count(ErrorKind.TRANSPORT) == 1


@pytest.mark.asyncio
async def test_failed_mutation_sets_advisory_error():
    p = _Party(_responses(add_party_member={"error": "Character already in a party"}))
    await p.sync.sync_parties()

    assert await p.sync.add_member("p1", "c") is False
    assert p.sync.last_error == "Failed to add member"
    assert not p.sync.is_loading
    assert p.sync.errors.count(ErrorKind.DOMAIN) == 1


@pytest.mark.asyncio
async def test_successful_mutation_clears_error_and_refreshes_membership():
    responses = _responses(add_party_member=ToolCallError("add_party_member", "timeout"))
    p = _Party(responses)
    await p.sync.sync_parties()
    await p.sync.add_member("p1", "c")
    assert p.sync.last_error == "Failed to add member"

    responses["add_party_member"] = {"success": True}
    responses["get_unassigned_characters"] = {"characters": [], "count": 0}
    assert await p.sync.add_member("p1", "c", role="companion") is True
    assert p.sync.last_error is None
    assert p.client.calls_to("add_party_member")[-1] == {"partyId": "p1", "characterId": "c", "role": "companion"}
    assert p.parties.unassigned == ()


@pytest.mark.asyncio
async def test_set_active_character_goes_through_coordinator():
    state = {"active": "b"}
    responses = _responses(get_party=lambda args: _party_payload(state["active"]))

    def set_active(args):
        state["active"] = args["characterId"]
        return {"success": True}

    responses["set_active_character"] = set_active
    p = _Party(responses)
    await p.sync.sync_parties()

    assert await p.sync.set_active_character("p1", "a") is True
    detail = p.parties.get_detail("p1")
    assert [m.character_id for m in detail.members if m.is_active] == ["a"]
    assert p.coordinator.active_character_id == "a"


@pytest.mark.asyncio
async def test_create_party_returns_new_id_and_selects_it():
    parties = {"parties": [{"id": "p1"}], "count": 1}
    responses = _responses(
        list_parties=lambda args: parties,
        get_party=lambda args: {"id": args["partyId"], "members": []},
    )

    def create(args):
        parties["parties"].append({"id": "p2", "name": args["name"]})
        return {"party": {"id": "p2"}}

    responses["create_party"] = create
    p = _Party(responses)
    await p.sync.sync_parties()

    assert await p.sync.create_party("Rangers", world_id="w1") == "p2"
    assert p.client.calls_to("create_party") == [{"name": "Rangers", "worldId": "w1"}]
    assert p.coordinator.active_party_id == "p2"
    assert p.parties.get_detail("p2") is not None


@pytest.mark.asyncio
async def test_create_party_without_id_fails():
    p = _Party(_responses(create_party={"success": True}))
    assert await p.sync.create_party("Rangers") is None
    assert p.sync.last_error == "Failed to create party"
    assert p.sync.errors.count(ErrorKind.PAYLOAD) == 1


@pytest.mark.asyncio
async def test_delete_party_forgets_pointer():
    p = _Party(_responses(delete_party={"success": True}))
    await p.sync.sync_parties()

    assert await p.sync.delete_party("p1") is True
    assert "p1" not in p.parties
    assert p.coordinator.active_party_id is None
    assert p.store.load().active_party_id is None


@pytest.mark.asyncio
async def test_delete_character_refreshes_game_state():
    p = _Party(_responses(delete_character={"success": True}))
    await p.sync.sync_parties()

    assert await p.sync.delete_character("b") is True
    assert p.client.calls_to("delete_character") == [{"id": "b"}]
    assert p.game_refreshes == 1


@pytest.mark.asyncio
async def test_update_character_only_refreshes_game_for_active_character():
    p = _Party(_responses(update_character={"success": True}))
    await p.sync.sync_parties()

    await p.sync.update_character("a", name="Aragorn")
    assert p.game_refreshes == 0
    await p.sync.update_character("b", max_hp=30)
    assert p.game_refreshes == 1
    assert p.client.calls_to("update_character")[-1] == {"id": "b", "maxHp": 30}


@pytest.mark.asyncio
async def test_move_party_applies_position_locally():
    p = _Party(_responses(move_party={"success": True, "position": {"x": 5, "y": 6}}))
    await p.sync.sync_parties()

    moves = []
    p.client.responses["get_party"] = lambda args: moves.append(args) or p.parties.get_detail("p1").model_dump(mode="json")

    assert await p.sync.move_party("p1", 5, 6, location_name="Bree") is True
    detail = p.parties.get_detail("p1")
    assert (detail.position_x, detail.position_y, detail.current_location) == (5.0, 6.0, "Bree")
    assert moves == [{"partyId": "p1"}]


@pytest.mark.asyncio
async def test_move_party_without_success_is_a_failure():
    p = _Party(_responses(move_party={"success": False}))
    await p.sync.sync_parties()

    assert await p.sync.move_party("p1", 1, 1) is False
    assert p.sync.last_error == "Failed to move party"
    assert p.parties.get_detail("p1").position_x is None


@pytest.mark.asyncio
async def test_position_and_context_reads():
    p = _Party(_responses(
        get_party_position={"success": True, "position": {"x": 1, "y": 2, "locationName": "Bree"}},
        get_party_context={"name": "Fellowship", "members": [{"name": "Aria"}, {"name": "Borin"}]},
    ))
    position = await p.sync.get_party_position("p1")
    assert (position.x, position.y, position.location_name) == (1.0, 2.0, "Bree")

    context = await p.sync.get_party_context("p1", verbosity="minimal")
    assert context.member_count == 2
    assert p.client.calls_to("get_party_context") == [{"partyId": "p1", "verbosity": "minimal"}]


def test_camel_case():
    assert _camel_case({"share_percentage": 50, "role": "leader"}) == {"sharePercentage": 50, "role": "leader"}
