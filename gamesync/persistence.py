"""Persisted selection state.

Only the active party id survives a restart; everything else is refetched.
"""

import json
import logging
import os
from typing import Optional

from pydantic import BaseModel, ValidationError

from gamesync.config import get_config

logger = logging.getLogger(__name__)


class PersistedSelection(BaseModel):
    active_party_id: Optional[str] = None


class SelectionStore:
    """Reads and writes the persisted selection as a small JSON document."""

    def __init__(self, path: Optional[str] = None):
        self.path = path or get_config().STATE_FILE

    def load(self) -> PersistedSelection:
        if not os.path.exists(self.path):
            return PersistedSelection()
        try:
            with open(self.path, "r") as f:
                return PersistedSelection(**json.load(f))
        except (OSError, ValueError, TypeError, ValidationError) as e:
            logger.error(f"Error loading persisted selection from {self.path}: {e}")
            return PersistedSelection()

    def save(self, selection: PersistedSelection) -> bool:
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump(selection.model_dump(), f, indent=2)
            return True
        except OSError as e:
            logger.error(f"Error saving persisted selection to {self.path}: {e}")
            return False

    def save_active_party_id(self, party_id: Optional[str]) -> bool:
        return self.save(PersistedSelection(active_party_id=party_id))


class MemorySelectionStore(SelectionStore):
    """Non-persistent store for embedding without a state file."""

    def __init__(self, active_party_id: Optional[str] = None):
        self.path = ""
        self._selection = PersistedSelection(active_party_id=active_party_id)

    def load(self) -> PersistedSelection:
        return self._selection

    def save(self, selection: PersistedSelection) -> bool:
        self._selection = selection
        return True
