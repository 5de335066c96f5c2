# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Nostamp Contributors

"""
Nostamp Network - Nostr relay connections, subscriptions, and publishing.
"""

from nostamp.network.relay import (
    PublishStatus,
    RelayConnection,
    Subscription,
    normalize_relay_url,
)
from nostamp.network.pool import (
    RelayEvent,
    RelayPool,
)
from nostamp.network.publisher import (
    Publisher,
    RelayPublisher,
)

__all__ = [
    "PublishStatus",
    "RelayConnection",
    "Subscription",
    "normalize_relay_url",
    "RelayEvent",
    "RelayPool",
    "Publisher",
    "RelayPublisher",
]
