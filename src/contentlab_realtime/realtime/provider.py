"""Channel provider contracts.

Learn: The client never talks to a transport directly. A provider knows
how to subscribe to one scope's stream and reports back through four
listener callbacks:

    on_open()          the subscription is live
    on_message(raw)    one pushed message (dict, str or bytes)
    on_error(exc)      the transport failed
    on_close(reason)   the stream ended without the client asking

Callbacks are plain synchronous calls made on the event loop. Providers
may call on_open() from inside subscribe() itself.
"""

from abc import ABC, abstractmethod
from typing import Any, Protocol


class ChannelListener(Protocol):
    def on_open(self) -> None: ...

    def on_message(self, raw: Any) -> None: ...

    def on_error(self, exc: BaseException) -> None: ...

    def on_close(self, reason: str) -> None: ...


class Subscription(ABC):
    """Handle for one live provider subscription."""

    @abstractmethod
    async def close(self) -> None:
        """Tear the subscription down. Must be idempotent."""


class ChannelProvider(ABC):
    """A transport that can deliver a scope's event stream."""

    name: str = "provider"

    @abstractmethod
    async def subscribe(self, scope_id: str, listener: ChannelListener) -> Subscription:
        """Open a subscription for scope_id.

        May raise for immediate failures (e.g. connection refused); the
        client treats that the same as listener.on_error().
        """
