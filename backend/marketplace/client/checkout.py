"""Checkout redirect and post-payment activation polling.

After the processor redirects back, the webhook may not have arrived yet.
The poller asks the server to reconcile once, then watches the listing
until it is active or the attempts run out. Running out is never reported
as a failure: the payment is then waiting for validation.
"""

import asyncio
import enum
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from urllib.parse import parse_qs, urlsplit

import httpx

from marketplace.client.client import MarketplaceClient
from marketplace.client.storage import PendingCheckoutStore
from marketplace.config import settings

logger = logging.getLogger(__name__)


class NavigationBlocked(Exception):
    """Raised by a navigator that could not leave the current page."""


def open_checkout(url: str, navigators: Sequence[Callable[[str], None]]) -> int:
    """Navigate to ``url`` with the first navigator that is not blocked.

    Navigators are tried in order (embedded redirect, top-level window, same
    window). Returns the index of the one that succeeded.

    Raises:
        NavigationBlocked: every navigator was blocked.
    """
    for index, navigate in enumerate(navigators):
        try:
            navigate(url)
        except NavigationBlocked:
            logger.debug("Navigator %d blocked, trying next", index)
            continue
        return index
    raise NavigationBlocked("No navigator could open the checkout page")


class PollOutcome(str, enum.Enum):
    ACTIVATED = "activated"
    PENDING_VALIDATION = "pending_validation"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class ActivationPoller:
    """Bounded polling of a listing's ``is_active`` after payment."""

    def __init__(
        self,
        client: MarketplaceClient,
        transaction_ref: str | None,
        property_id: str | None,
        *,
        interval: float | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self.client = client
        self.transaction_ref = transaction_ref
        self.property_id = property_id
        self.interval = settings.checkout_poll_interval_seconds if interval is None else interval
        self.max_attempts = settings.checkout_poll_max_attempts if max_attempts is None else max_attempts
        self.attempts = 0
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    async def _confirm(self) -> None:
        if not self.transaction_ref:
            return
        try:
            await self.client.confirm_checkout(self.transaction_ref)
        except httpx.HTTPError as exc:
            # Not paid yet or not found yet; the webhook still completes it
            logger.info("Immediate confirmation of %s did not succeed: %s", self.transaction_ref, exc)

    async def _is_active(self) -> bool:
        try:
            listing = await self.client.get_listing(self.property_id)
        except httpx.HTTPError as exc:
            logger.debug("Listing %s lookup failed: %s", self.property_id, exc)
            return False
        return bool(listing.get("is_active"))

    async def _wait(self) -> bool:
        """Sleep one interval; True when cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
        except TimeoutError:
            return False
        return True

    async def run(self) -> PollOutcome:
        if self._stop.is_set():
            return PollOutcome.CANCELLED
        await self._confirm()
        if not self.property_id:
            return PollOutcome.RECEIVED

        while self.attempts < self.max_attempts:
            if self._stop.is_set():
                return PollOutcome.CANCELLED
            self.attempts += 1
            if await self._is_active():
                logger.info("Listing %s active after %d attempt(s)", self.property_id, self.attempts)
                return PollOutcome.ACTIVATED
            if await self._wait():
                return PollOutcome.CANCELLED
        return PollOutcome.PENDING_VALIDATION

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.create_task(self.run())
        return self._task

    def cancel(self) -> None:
        """Stop polling; a running task resolves to ``CANCELLED``."""
        self._stop.set()


@dataclass(frozen=True)
class ReturnParams:
    payment: str | None = None
    transaction_ref: str | None = None
    property_id: str | None = None
    listing_type: str | None = None
    session_id: str | None = None
    mode: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.payment == "success"


def parse_return_url(url: str) -> ReturnParams:
    """Read the query parameters the server put on the success/cancel URL."""
    query = parse_qs(urlsplit(url).query)

    def first(name: str) -> str | None:
        values = query.get(name)
        return values[0] if values else None

    return ReturnParams(
        payment=first("payment"),
        transaction_ref=first("transactionRef"),
        property_id=first("propertyId"),
        listing_type=first("listingType"),
        session_id=first("session_id"),
        mode=first("mode"),
    )


async def resume_checkout(
    client: MarketplaceClient,
    return_url: str,
    store: PendingCheckoutStore,
    **poller_kwargs,
) -> PollOutcome | None:
    """Handle the page the processor redirected back to.

    Returns ``None`` for a cancelled payment, leaving the saved checkout in
    place so the user can retry. Otherwise the saved property wins over the
    URL's, and the poller's outcome is returned.
    """
    params = parse_return_url(return_url)
    if not params.succeeded:
        return None

    pending = store.take()
    transaction_ref = params.transaction_ref or (pending.transaction_ref if pending else None)
    property_id = (pending.property_id if pending else None) or params.property_id
    poller = ActivationPoller(client, transaction_ref, property_id, **poller_kwargs)
    return await poller.run()
