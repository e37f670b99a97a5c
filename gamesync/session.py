# gamesync/session.py

"""
GameSession wires the caches, coordinator, sync bodies, schedulers and views
together and is the only surface views are expected to touch.
"""

import logging
from typing import Any, Dict, Optional

from gamesync.caches import InventoryCache, PartyDirectory, QuestLog, RosterCache, WorldCache
from gamesync.config import Config, get_config
from gamesync.coordinator import ConsistencyCoordinator
from gamesync.errors import ErrorAggregator
from gamesync.game_sync import GameStateSync
from gamesync.party_sync import PartySync
from gamesync.persistence import SelectionStore
from gamesync.scheduler import Debouncer, SyncScheduler, monotonic_ms
from gamesync.transport import HttpToolClient, ToolClient
from gamesync.views import DerivedViews

logger = logging.getLogger(__name__)


class GameSession:
    def __init__(
        self,
        client: ToolClient,
        *,
        store: Optional[SelectionStore] = None,
        errors: Optional[ErrorAggregator] = None,
        rate_limit_ms: Optional[float] = None,
        debounce_ms: Optional[float] = None,
        clock=monotonic_ms,
    ):
        self.client = client
        self.errors = errors if errors is not None else ErrorAggregator()

        self.roster = RosterCache()
        self.parties = PartyDirectory()
        self.inventory = InventoryCache()
        self.quests = QuestLog()
        self.worlds = WorldCache()

        self.coordinator = ConsistencyCoordinator(
            client, self.roster, self.parties, self.worlds, store=store, errors=self.errors
        )
        self.game = GameStateSync(
            client, self.coordinator, self.roster, self.inventory, self.quests, self.worlds,
            errors=self.errors,
        )
        self.party = PartySync(client, self.coordinator, self.parties, errors=self.errors)
        self.views = DerivedViews(self.coordinator, self.roster, self.parties, self.inventory)

        self.game_scheduler = SyncScheduler(
            "game", self.game.sync, rate_limit_ms=rate_limit_ms, clock=clock, errors=self.errors
        )
        self.party_scheduler = SyncScheduler(
            "party", self.party.sync_parties, rate_limit_ms=rate_limit_ms, clock=clock, errors=self.errors
        )
        self._game_debouncer = Debouncer(self.game_scheduler.request_sync, wait_ms=debounce_ms)
        self._party_debouncer = Debouncer(self.party_scheduler.request_sync, wait_ms=debounce_ms)

        self.coordinator.dependent_refresh = self.game.refresh_character_data
        self.coordinator.party_detail_refresh = self.party.sync_party_details
        self.party.game_refresh = self._force_game_sync

        self._initialized = False

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "GameSession":
        """Session talking to ``TOOL_ENDPOINT`` and persisting to ``GAMESYNC_STATE_FILE``."""
        config = config or get_config()
        client = HttpToolClient(config.TOOL_ENDPOINT, timeout=config.TOOL_TIMEOUT_SECONDS)
        return cls(
            client,
            store=SelectionStore(config.STATE_FILE),
            rate_limit_ms=config.SYNC_RATE_LIMIT_MS,
            debounce_ms=config.SYNC_DEBOUNCE_MS,
        )

    async def initialize(self) -> None:
        if self._initialized:
            logger.debug("Session already initialized")
            return
        self._initialized = True
        logger.info("Initializing game session")
        await self.party_scheduler.request_sync(force=True)
        await self.game_scheduler.request_sync(force=True)
        logger.info("Game session initialized")

    async def close(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> "GameSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -- sync triggers ------------------------------------------------------

    async def request_sync(self, force: bool = False) -> bool:
        return await self.game_scheduler.request_sync(force)

    async def request_party_sync(self, force: bool = False) -> bool:
        return await self.party_scheduler.request_sync(force)

    async def _force_game_sync(self) -> bool:
        return await self.game_scheduler.request_sync(force=True)

    def debounced_sync(self) -> None:
        self._game_debouncer.trigger()

    def debounced_party_sync(self) -> None:
        self._party_debouncer.trigger()

    async def settle(self) -> None:
        """Wait for any pending debounced sync to run to completion."""
        await self._game_debouncer.wait()
        await self._party_debouncer.wait()

    # -- selection ----------------------------------------------------------

    @property
    def active_character_id(self) -> Optional[str]:
        return self.coordinator.active_character_id

    @property
    def active_party_id(self) -> Optional[str]:
        return self.coordinator.active_party_id

    @property
    def active_world_id(self) -> Optional[str]:
        return self.coordinator.active_world_id

    async def select_character(self, character_id: Optional[str], lock: bool = True) -> bool:
        return await self.coordinator.select_character(character_id, lock=lock)

    async def select_party(self, party_id: Optional[str]) -> bool:
        if not self.coordinator.set_active_party(party_id):
            return False
        await self.party.sync_party_details(party_id)
        return True

    def select_world(self, world_id: Optional[str], lock: bool = True) -> bool:
        return self.coordinator.select_world(world_id, lock=lock)

    # -- diagnostics --------------------------------------------------------

    @property
    def last_error(self) -> Optional[str]:
        return self.party.last_error

    def error_stats(self) -> Dict[str, Any]:
        return self.errors.get_error_stats()
