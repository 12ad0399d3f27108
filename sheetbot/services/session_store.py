from dataclasses import dataclass
from typing import Optional

from sheetbot.services.state_store import InMemoryStateStore, StateStore


@dataclass
class SessionContext:
    pending_asset_key: Optional[str] = None


class SessionStore:
    """Pending-asset context per user. Expiry is driven by the activity tracker."""

    def __init__(self, store: Optional[StateStore[SessionContext]] = None):
        self.store = store if store is not None else InMemoryStateStore()

    def get(self, user_id: str) -> SessionContext:
        context = self.store.get(user_id)
        return SessionContext(pending_asset_key=context.pending_asset_key) if context else SessionContext()

    def set_pending_asset(self, user_id: str, key: str) -> None:
        self.store.set(user_id, SessionContext(pending_asset_key=key))

    def clear_pending_asset(self, user_id: str) -> None:
        if self.store.get(user_id) is not None:
            self.store.set(user_id, SessionContext(pending_asset_key=None))

    def reset(self, user_id: str) -> None:
        self.store.delete(user_id)
