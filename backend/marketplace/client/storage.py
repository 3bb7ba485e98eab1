"""Persistence of the in-flight checkout across the processor redirect."""

import json
import logging
from dataclasses import asdict, dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Where the host keeps small strings across a page reload."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


@dataclass(frozen=True)
class PendingCheckout:
    transaction_ref: str
    property_id: str | None = None
    listing_type: str | None = None


class PendingCheckoutStore:
    """Saves the pending checkout before redirecting and restores it after."""

    KEY = "pending_checkout"

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def save(self, pending: PendingCheckout) -> None:
        self._store.set(self.KEY, json.dumps(asdict(pending)))

    def load(self) -> PendingCheckout | None:
        raw = self._store.get(self.KEY)
        if raw is None:
            return None
        try:
            return PendingCheckout(**json.loads(raw))
        except (TypeError, ValueError):
            logger.warning("Discarding unreadable pending checkout")
            self.clear()
            return None

    def clear(self) -> None:
        self._store.delete(self.KEY)

    def take(self) -> PendingCheckout | None:
        """Load and clear in one step; the return page consumes it once."""
        pending = self.load()
        self.clear()
        return pending
