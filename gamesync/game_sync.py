"""
Game-state sync body: roster, the active character's inventory and quests,
and the world list plus the active world's state.

Each stage catches its own failures so one unreachable endpoint never
prevents the others from refreshing.  A failed fetch leaves its cache at the
previous value; only a successful fetch replaces it.
"""

import logging
from typing import Any, Mapping, Optional

from gamesync.batch import BatchToolCall, execute_batch, find_result
from gamesync.caches import InventoryCache, QuestLog, RosterCache, WorldCache
from gamesync.coordinator import ConsistencyCoordinator
from gamesync.errors import DomainError, ErrorAggregator, PayloadError, ToolCallError
from gamesync.normalizer import get_error_message, is_error_response, normalize
from gamesync.parsers import (
    parse_characters,
    parse_inventory,
    parse_quests,
    parse_world,
    parse_world_summaries,
)
from gamesync.transport import ToolClient, call_tool_checked

logger = logging.getLogger(__name__)


class GameStateSync:
    def __init__(
        self,
        client: ToolClient,
        coordinator: ConsistencyCoordinator,
        roster: RosterCache,
        inventory: InventoryCache,
        quests: QuestLog,
        worlds: WorldCache,
        errors: Optional[ErrorAggregator] = None,
    ):
        self._client = client
        self._coordinator = coordinator
        self._roster = roster
        self._inventory = inventory
        self._quests = quests
        self._worlds = worlds
        self.errors = errors if errors is not None else coordinator.errors

    def _record(self, exc: Exception, stage: str) -> None:
        logger.warning("Game sync %s failed: %s", stage, exc)
        self.errors.record_exception(exc, {"stage": stage})

    async def sync(self) -> None:
        """Full game-state refresh; installed as the game scheduler's body."""
        await self.sync_roster()

        character_id = self._coordinator.active_character_id
        if character_id:
            await self.refresh_character_data(character_id)
        else:
            logger.debug("No active character; clearing inventory and quests")
            self._inventory.clear()
            self._quests.clear()

        await self.sync_worlds()
        self._coordinator.unlock_selection()

    async def sync_roster(self) -> bool:
        try:
            raw = await call_tool_checked(self._client, "list_characters", {})
        except (ToolCallError, DomainError) as exc:
            self._record(exc, "roster")
            return False

        data = normalize(raw, {"characters": [], "count": 0})
        if isinstance(data, list):
            data = {"characters": data}
        if not isinstance(data, Mapping) or not isinstance(data.get("characters", []), list):
            self._record(PayloadError("list_characters returned an unexpected payload"), "roster")
            return False

        characters = parse_characters(data)
        logger.info("Loaded %d characters", len(characters))
        self._roster.upsert_all(characters)
        self._coordinator.reconcile_roster()
        return True

    async def refresh_character_data(self, character_id: Optional[str]) -> None:
        """
        Fetch inventory and quests for ``character_id`` in one batch.

        Results are applied only if ``character_id`` is still the active
        character when they arrive; a selection change while the batch was
        in flight discards them.
        """
        if not character_id:
            self._inventory.clear()
            self._quests.clear()
            return

        args = {"characterId": character_id}
        results = await execute_batch(self._client, [
            BatchToolCall("get_inventory_detailed", args),
            BatchToolCall("get_quest_log", args),
        ])

        if self._coordinator.active_character_id != character_id:
            logger.info(
                "Discarding inventory/quests for %s; active character is now %s",
                character_id, self._coordinator.active_character_id,
            )
            return

        inventory_result = find_result(results, "get_inventory_detailed")
        if inventory_result is not None and inventory_result.ok:
            if is_error_response(inventory_result.result):
                self._record(DomainError(get_error_message(inventory_result.result)), "inventory")
            else:
                snapshot = parse_inventory(normalize(inventory_result.result, None))
                if snapshot is not None:
                    logger.debug("Parsed %d inventory items", len(snapshot.items))
                    self._inventory.replace(character_id, snapshot)
        elif inventory_result is not None:
            self._record(ToolCallError("get_inventory_detailed", inventory_result.error), "inventory")

        quest_result = find_result(results, "get_quest_log")
        if quest_result is not None and quest_result.ok:
            if is_error_response(quest_result.result):
                self._record(DomainError(get_error_message(quest_result.result)), "quests")
            else:
                data = normalize(quest_result.result, None)
                if data is not None:
                    quests = parse_quests(data)
                    logger.debug("Parsed %d quests", len(quests))
                    self._quests.replace(character_id, quests)
        elif quest_result is not None:
            self._record(ToolCallError("get_quest_log", quest_result.error), "quests")

    async def sync_worlds(self) -> bool:
        try:
            raw = await call_tool_checked(self._client, "list_worlds", {})
        except (ToolCallError, DomainError) as exc:
            self._record(exc, "worlds")
            return False

        worlds = parse_world_summaries(normalize(raw, {"worlds": [], "count": 0}))
        self._worlds.upsert_all(worlds)
        world_id = self._coordinator.reconcile_worlds()
        if world_id is None:
            self._worlds.set_state(None, parse_world(None))
            return True

        details = await self._fetch_world(world_id)
        if details is not None:
            state = parse_world(normalize(details, details))
        else:
            summary = self._worlds.get_by_id(world_id)
            state = parse_world(summary.raw if summary is not None else None)
        self._worlds.set_state(world_id, state)
        return True

    async def _fetch_world(self, world_id: str) -> Optional[Any]:
        try:
            return await call_tool_checked(self._client, "get_world", {"id": world_id})
        except (ToolCallError, DomainError) as exc:
            logger.warning("get_world failed, trying get_world_state: %s", exc)
        try:
            return await call_tool_checked(self._client, "get_world_state", {"worldId": world_id})
        except (ToolCallError, DomainError) as exc:
            self._record(exc, "world state")
            return None
