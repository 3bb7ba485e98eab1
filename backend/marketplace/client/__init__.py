"""Async client for the checkout redirect and activation polling."""

from marketplace.client.checkout import (
    ActivationPoller,
    NavigationBlocked,
    PollOutcome,
    ReturnParams,
    open_checkout,
    parse_return_url,
    resume_checkout,
)
from marketplace.client.client import MarketplaceClient
from marketplace.client.storage import KeyValueStore, MemoryStore, PendingCheckout, PendingCheckoutStore

__all__ = [
    "ActivationPoller",
    "KeyValueStore",
    "MarketplaceClient",
    "MemoryStore",
    "NavigationBlocked",
    "PendingCheckout",
    "PendingCheckoutStore",
    "PollOutcome",
    "ReturnParams",
    "open_checkout",
    "parse_return_url",
    "resume_checkout",
]
