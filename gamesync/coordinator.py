"""
Cross-cache consistency coordinator.

The coordinator is the only writer of the active pointers.  Sync bodies and
mutation helpers write records into the caches and then call one of the entry
points here; the coordinator decides whether a pointer moves and triggers the
dependent inventory/quest refetch when it does.

Invariant: ``active_character_id`` is ``None`` or the id of a character in
the roster.  The one exception is a pointer accepted before the roster has
ever loaded; the next roster reconciliation resolves it.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from gamesync.caches import PartyDirectory, RosterCache, WorldCache
from gamesync.errors import (
    ConsistencyError,
    DomainError,
    ErrorAggregator,
    ToolCallError,
)
from gamesync.metrics import metrics
from gamesync.models import PartyStatus
from gamesync.persistence import MemorySelectionStore, SelectionStore
from gamesync.transport import ToolClient, call_tool_checked

logger = logging.getLogger(__name__)

RefreshHook = Callable[[Optional[str]], Awaitable[Any]]


class ConsistencyCoordinator:
    """Owns the active character, party and world pointers."""

    def __init__(
        self,
        client: ToolClient,
        roster: RosterCache,
        parties: PartyDirectory,
        worlds: Optional[WorldCache] = None,
        store: Optional[SelectionStore] = None,
        errors: Optional[ErrorAggregator] = None,
    ):
        self._client = client
        self._roster = roster
        self._parties = parties
        self._worlds = worlds
        self._store = store if store is not None else MemorySelectionStore()
        self.errors = errors if errors is not None else ErrorAggregator()

        self._active_character_id: Optional[str] = None
        self._active_party_id: Optional[str] = self._store.load().active_party_id
        self._active_world_id: Optional[str] = None
        self._selection_locked = False

        # Wired by the session: inventory/quest refetch and party detail re-pull
        self.dependent_refresh: Optional[RefreshHook] = None
        self.party_detail_refresh: Optional[RefreshHook] = None

    # ------------------------------------------------------------------
    # Read-only pointer access
    # ------------------------------------------------------------------

    @property
    def active_character_id(self) -> Optional[str]:
        return self._active_character_id

    @property
    def active_party_id(self) -> Optional[str]:
        return self._active_party_id

    @property
    def active_world_id(self) -> Optional[str]:
        return self._active_world_id

    @property
    def selection_locked(self) -> bool:
        return self._selection_locked

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _report_violation(self, kind: str, message: str, **context: Any) -> None:
        logger.warning("Consistency violation (%s): %s", kind, message)
        metrics().CONSISTENCY_VIOLATIONS.labels(kind=kind).inc()
        self.errors.record_exception(ConsistencyError(message, context), {"kind": kind, **context})

    def _roster_accepts(self, character_id: str) -> bool:
        return not self._roster.loaded or character_id in self._roster

    def _move_character_pointer(self, character_id: Optional[str], reason: str) -> bool:
        if character_id == self._active_character_id:
            return False
        logger.info(
            "Active character %s -> %s (%s)", self._active_character_id, character_id, reason
        )
        self._active_character_id = character_id
        return True

    def _move_party_pointer(self, party_id: Optional[str], reason: str) -> bool:
        if party_id == self._active_party_id:
            return False
        logger.info("Active party %s -> %s (%s)", self._active_party_id, party_id, reason)
        self._active_party_id = party_id
        self._store.save_active_party_id(party_id)
        return True

    async def _run_hook(self, hook: Optional[RefreshHook], arg: Optional[str], label: str) -> None:
        if hook is None:
            return
        try:
            await hook(arg)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # The pointer stays where it is; dependent caches stay stale
            logger.warning("%s failed for %s: %s", label, arg, exc)
            self.errors.record_exception(exc, {"hook": label, "id": arg})

    async def _refresh_dependents(self, character_id: Optional[str]) -> None:
        await self._run_hook(self.dependent_refresh, character_id, "Dependent refresh")

    async def _repull_party(self, party_id: str) -> None:
        await self._run_hook(self.party_detail_refresh, party_id, "Party detail refresh")

    async def _remote_set_active(self, party_id: str, character_id: str) -> None:
        await call_tool_checked(
            self._client,
            "set_active_character",
            {"partyId": party_id, "characterId": character_id},
        )

    def _mark_active_locally(self, party_id: str, character_id: str) -> None:
        detail = self._parties.get_detail(party_id)
        if detail is not None and detail.member(character_id) is not None:
            self._parties.put_detail(detail.with_active_member(character_id))

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def on_membership_written(self, party_id: str) -> bool:
        """
        Follow the active membership of ``party_id`` after its detail was written.

        Returns True when the character pointer moved.
        """
        if party_id != self._active_party_id:
            return False
        detail = self._parties.get_detail(party_id)
        member = detail.active_member() if detail is not None else None
        if member is None:
            return False

        character_id = member.character_id
        if character_id == self._active_character_id:
            return False
        if not self._roster_accepts(character_id):
            self._report_violation(
                "stale_membership",
                f"Party {party_id} marks unknown character {character_id} active",
                party_id=party_id,
                character_id=character_id,
            )
            return False

        self._move_character_pointer(character_id, "party membership")
        self._selection_locked = True
        await self._refresh_dependents(character_id)
        return True

    async def select_character(self, character_id: Optional[str], lock: bool = True) -> bool:
        """
        Explicitly select a character.

        When the character belongs to the active party the selection is pushed
        to the remote side, exactly one membership is marked active locally and
        the party detail is re-pulled.  Returns False only when the selection
        was refused.
        """
        if character_id is not None and not self._roster_accepts(character_id):
            self._report_violation(
                "unknown_character",
                f"Cannot select unknown character {character_id}",
                character_id=character_id,
            )
            return False

        self._move_character_pointer(character_id, "explicit selection")
        if lock:
            self._selection_locked = True

        party_id = self._active_party_id
        detail = self._parties.get_detail(party_id)
        if character_id is not None and detail is not None:
            member = detail.member(character_id)
            if member is not None and not member.is_active:
                try:
                    await self._remote_set_active(party_id, character_id)
                except (ToolCallError, DomainError) as exc:
                    logger.warning("Could not propagate selection to party %s: %s", party_id, exc)
                    self.errors.record_exception(exc, {"party_id": party_id})
                else:
                    self._mark_active_locally(party_id, character_id)
                    await self._repull_party(party_id)

        await self._refresh_dependents(character_id)
        return True

    async def activate_membership(self, party_id: str, character_id: str) -> bool:
        """
        Make ``character_id`` the active member of ``party_id``.

        Raises :class:`ToolCallError` or :class:`DomainError` when the remote
        side refuses; nothing local changes in that case.
        """
        await self._remote_set_active(party_id, character_id)
        self._mark_active_locally(party_id, character_id)

        moved = False
        if self._roster_accepts(character_id):
            moved = self._move_character_pointer(character_id, "membership activated")
            self._selection_locked = True
        else:
            self._report_violation(
                "stale_membership",
                f"Activated character {character_id} is not in the roster",
                party_id=party_id,
                character_id=character_id,
            )

        await self._repull_party(party_id)
        if moved:
            await self._refresh_dependents(character_id)
        return True

    def set_active_party(self, party_id: Optional[str]) -> bool:
        """Point at ``party_id``; refused when the directory is loaded and lacks it."""
        if party_id is not None and self._parties.loaded and party_id not in self._parties:
            self._report_violation(
                "unknown_party", f"Cannot activate unknown party {party_id}", party_id=party_id
            )
            return False
        self._move_party_pointer(party_id, "explicit selection")
        return True

    def select_world(self, world_id: Optional[str], lock: bool = True) -> bool:
        if (
            world_id is not None
            and self._worlds is not None
            and self._worlds.loaded
            and world_id not in self._worlds
        ):
            self._report_violation(
                "unknown_world", f"Cannot select unknown world {world_id}", world_id=world_id
            )
            return False
        if world_id != self._active_world_id:
            logger.info("Active world %s -> %s", self._active_world_id, world_id)
            self._active_world_id = world_id
        if lock:
            self._selection_locked = True
        return True

    def forget_character(self, character_id: str) -> bool:
        """Drop the character pointer after the character was deleted remotely."""
        if self._active_character_id != character_id:
            return False
        self._move_character_pointer(None, "character deleted")
        self._selection_locked = False
        return True

    def forget_party(self, party_id: str) -> bool:
        if self._active_party_id != party_id:
            return False
        return self._move_party_pointer(None, "party deleted")

    def unlock_selection(self) -> None:
        self._selection_locked = False

    # ------------------------------------------------------------------
    # Reconciliation after cache writes
    # ------------------------------------------------------------------

    def reconcile_roster(self) -> Optional[str]:
        """Keep the character pointer valid against the freshest roster."""
        current = self._active_character_id
        if current is not None and current in self._roster:
            if self._selection_locked:
                logger.debug("Selection locked, keeping character %s", current)
            return current

        if current is not None:
            logger.warning("Active character %s no longer in roster; reselecting", current)
        records = self._roster.list_all()
        chosen = records[0].id if records else None
        self._move_character_pointer(chosen, "roster reconciliation")
        return chosen

    def reconcile_parties(self) -> Optional[str]:
        """Keep the party pointer valid: current, else first active, else first."""
        current = self._active_party_id
        if current is not None and current in self._parties:
            return current

        parties = self._parties.list_all()
        chosen = next((p for p in parties if p.status == PartyStatus.ACTIVE), None)
        if chosen is None and parties:
            chosen = parties[0]
        chosen_id = chosen.id if chosen is not None else None
        self._move_party_pointer(chosen_id, "party reconciliation")
        return chosen_id

    def reconcile_worlds(self) -> Optional[str]:
        if self._worlds is None:
            return self._active_world_id
        current = self._active_world_id
        if current is not None and current in self._worlds:
            if self._selection_locked:
                logger.debug("Selection locked, keeping world %s", current)
            return current

        worlds = self._worlds.list_all()
        chosen = worlds[0].id if worlds else None
        if chosen != current:
            logger.info("Active world %s -> %s (world reconciliation)", current, chosen)
            self._active_world_id = chosen
        return chosen
