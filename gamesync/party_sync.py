"""
Party directory sync body and the party/character mutation helpers.

Background syncs only log their failures.  Mutations are user actions: each
returns ``True``/``False`` (or the new id) and leaves an advisory message in
``last_error`` when it fails.
"""

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from gamesync.caches import PartyDirectory
from gamesync.coordinator import ConsistencyCoordinator
from gamesync.errors import DomainError, ErrorAggregator, GameSyncError, PayloadError
from gamesync.models import PartyContext, PartyDetail, PartyPosition
from gamesync.normalizer import normalize
from gamesync.parsers import (
    parse_character_summaries,
    parse_parties,
    parse_party_context,
    parse_party_detail,
    parse_party_position,
)
from gamesync.transport import ToolClient, call_tool_checked

logger = logging.getLogger(__name__)


def mutation(failure_message: str, default: Any = False):
    """Run a user-facing mutation, turning sync-layer errors into ``last_error``."""

    def decorator(func: Callable[..., Awaitable[Any]]):
        @functools.wraps(func)
        async def wrapper(self: "PartySync", *args, **kwargs):
            self.last_error = None
            self.is_loading = True
            try:
                return await func(self, *args, **kwargs)
            except GameSyncError as exc:
                logger.error("%s: %s", failure_message, exc)
                self.errors.record_exception(exc, {"action": func.__name__})
                self.last_error = failure_message
                return default
            finally:
                self.is_loading = False

        return wrapper

    return decorator


def _camel_case(updates: Mapping[str, Any]) -> Dict[str, Any]:
    """``share_percentage`` -> ``sharePercentage``; the remote side expects camelCase."""
    converted: Dict[str, Any] = {}
    for key, value in updates.items():
        head, *rest = key.split("_")
        converted[head + "".join(part.capitalize() for part in rest)] = value
    return converted


class PartySync:
    def __init__(
        self,
        client: ToolClient,
        coordinator: ConsistencyCoordinator,
        parties: PartyDirectory,
        errors: Optional[ErrorAggregator] = None,
    ):
        self._client = client
        self._coordinator = coordinator
        self._parties = parties
        self.errors = errors if errors is not None else coordinator.errors

        self.last_error: Optional[str] = None
        self.is_loading = False

        # Wired by the session: forced game-state refresh
        self.game_refresh: Optional[Callable[[], Awaitable[Any]]] = None

    def _record(self, exc: Exception, stage: str) -> None:
        logger.warning("Party sync %s failed: %s", stage, exc)
        self.errors.record_exception(exc, {"stage": stage})

    # ------------------------------------------------------------------
    # Sync operations
    # ------------------------------------------------------------------

    async def sync_parties(self) -> None:
        """Refresh the party list, the active party's detail and unassigned characters."""
        try:
            raw = await call_tool_checked(self._client, "list_parties", {})
        except GameSyncError as exc:
            self._record(exc, "party list")
            return

        parties = parse_parties(normalize(raw, {"parties": [], "count": 0}))
        logger.info("Loaded %d parties", len(parties))
        self._parties.upsert_all(parties)

        active_party_id = self._coordinator.reconcile_parties()
        if active_party_id:
            await self.sync_party_details(active_party_id)
        await self.sync_unassigned()

    async def sync_party_details(self, party_id: Optional[str]) -> Optional[PartyDetail]:
        if not party_id:
            return None
        try:
            raw = await call_tool_checked(self._client, "get_party", {"partyId": party_id})
        except GameSyncError as exc:
            self._record(exc, "party detail")
            return None

        detail = parse_party_detail(normalize(raw, None))
        if detail is None:
            self._record(PayloadError(f"get_party returned no usable party for {party_id}"), "party detail")
            return None

        logger.debug("Loaded party %s with %d members", detail.id, len(detail.members))
        self._parties.put_detail(detail)
        await self._coordinator.on_membership_written(detail.id)
        return self._parties.get_detail(detail.id)

    async def sync_unassigned(self) -> None:
        try:
            raw = await call_tool_checked(self._client, "get_unassigned_characters", {})
        except GameSyncError as exc:
            self._record(exc, "unassigned characters")
            return

        characters = parse_character_summaries(normalize(raw, {"characters": [], "count": 0}))
        logger.debug("Found %d unassigned characters", len(characters))
        self._parties.set_unassigned(characters)

    async def _refresh_membership(self, party_id: str) -> None:
        await asyncio.gather(self.sync_party_details(party_id), self.sync_unassigned())

    # ------------------------------------------------------------------
    # Party CRUD
    # ------------------------------------------------------------------

    @mutation("Failed to create party", default=None)
    async def create_party(
        self,
        name: str,
        description: Optional[str] = None,
        world_id: Optional[str] = None,
        initial_members: Optional[List[Dict[str, Any]]] = None,
    ) -> Optional[str]:
        args: Dict[str, Any] = {"name": name}
        if description:
            args["description"] = description
        if world_id:
            args["worldId"] = world_id
        if initial_members:
            args["initialMembers"] = initial_members

        data = normalize(await call_tool_checked(self._client, "create_party", args), None)
        party_id = None
        if isinstance(data, Mapping):
            party_id = data.get("id")
            if not party_id and isinstance(data.get("party"), Mapping):
                party_id = data["party"].get("id")
        if not party_id:
            raise PayloadError("create_party returned no id")

        logger.info("Party created: %s", party_id)
        await self.sync_parties()
        self._coordinator.set_active_party(party_id)
        await self.sync_party_details(party_id)
        return party_id

    @mutation("Failed to update party")
    async def update_party(self, party_id: str, **updates: Any) -> bool:
        args = {"partyId": party_id, **_camel_case(updates)}
        data = normalize(await call_tool_checked(self._client, "update_party", args), None)
        if data is None:
            raise PayloadError("update_party returned nothing")
        await self.sync_party_details(party_id)
        return True

    @mutation("Failed to delete party")
    async def delete_party(self, party_id: str) -> bool:
        await call_tool_checked(self._client, "delete_party", {"partyId": party_id})
        self._parties.remove_party(party_id)
        self._coordinator.forget_party(party_id)
        await self.sync_unassigned()
        return True

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    @mutation("Failed to add member")
    async def add_member(self, party_id: str, character_id: str, role: str = "member") -> bool:
        await call_tool_checked(self._client, "add_party_member", {
            "partyId": party_id,
            "characterId": character_id,
            "role": role,
        })
        await self._refresh_membership(party_id)
        return True

    @mutation("Failed to remove member")
    async def remove_member(self, party_id: str, character_id: str) -> bool:
        await call_tool_checked(self._client, "remove_party_member", {
            "partyId": party_id,
            "characterId": character_id,
        })
        await self._refresh_membership(party_id)
        return True

    @mutation("Failed to update member")
    async def update_member(self, party_id: str, character_id: str, **updates: Any) -> bool:
        await call_tool_checked(self._client, "update_party_member", {
            "partyId": party_id,
            "characterId": character_id,
            **_camel_case(updates),
        })
        await self.sync_party_details(party_id)
        return True

    @mutation("Failed to set leader")
    async def set_leader(self, party_id: str, character_id: str) -> bool:
        await call_tool_checked(self._client, "set_party_leader", {
            "partyId": party_id,
            "characterId": character_id,
        })
        await self.sync_party_details(party_id)
        return True

    @mutation("Failed to set active character")
    async def set_active_character(self, party_id: str, character_id: str) -> bool:
        return await self._coordinator.activate_membership(party_id, character_id)

    # ------------------------------------------------------------------
    # Characters
    # ------------------------------------------------------------------

    async def _refresh_game_state(self) -> None:
        if self.game_refresh is not None:
            await self.game_refresh()

    @mutation("Failed to delete character")
    async def delete_character(self, character_id: str) -> bool:
        await call_tool_checked(self._client, "delete_character", {"id": character_id})
        self._coordinator.forget_character(character_id)
        active_party_id = self._coordinator.active_party_id
        if active_party_id:
            await self.sync_party_details(active_party_id)
        await self.sync_unassigned()
        await self._refresh_game_state()
        return True

    @mutation("Failed to update character")
    async def update_character(self, character_id: str, **updates: Any) -> bool:
        await call_tool_checked(self._client, "update_character", {
            "id": character_id,
            **_camel_case(updates),
        })
        active_party_id = self._coordinator.active_party_id
        if active_party_id:
            await self.sync_party_details(active_party_id)
        if self._coordinator.active_character_id == character_id:
            await self._refresh_game_state()
        return True

    # ------------------------------------------------------------------
    # Movement and context
    # ------------------------------------------------------------------

    @mutation("Failed to move party")
    async def move_party(
        self,
        party_id: str,
        target_x: float,
        target_y: float,
        location_name: Optional[str] = None,
        poi_id: Optional[str] = None,
    ) -> bool:
        raw = await call_tool_checked(self._client, "move_party", {
            "partyId": party_id,
            "targetX": target_x,
            "targetY": target_y,
            "locationName": location_name,
            "poiId": poi_id,
        })
        data = normalize(raw, None)
        if not isinstance(data, Mapping) or not data.get("success"):
            raise DomainError("move_party did not report success", {"party_id": party_id})

        detail = self._parties.get_detail(party_id)
        if detail is not None:
            self._parties.put_detail(detail.model_copy(update={
                "position_x": float(target_x),
                "position_y": float(target_y),
                "current_location": location_name,
                "current_poi": poi_id,
            }))
        await self.sync_party_details(party_id)
        return True

    async def get_party_position(self, party_id: str) -> Optional[PartyPosition]:
        try:
            raw = await call_tool_checked(self._client, "get_party_position", {"partyId": party_id})
        except GameSyncError as exc:
            self._record(exc, "party position")
            return None
        return parse_party_position(normalize(raw, None))

    async def get_party_context(self, party_id: str, verbosity: str = "standard") -> Optional[PartyContext]:
        """Compact party summary intended for an LLM prompt."""
        try:
            raw = await call_tool_checked(self._client, "get_party_context", {
                "partyId": party_id,
                "verbosity": verbosity,
            })
        except GameSyncError as exc:
            self._record(exc, "party context")
            return None
        return parse_party_context(normalize(raw, None), party_id)
