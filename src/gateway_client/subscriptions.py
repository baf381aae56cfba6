"""Subscriber bookkeeping for client-side events."""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Optional

logger = logging.getLogger(__name__)

# Handlers may be plain functions or coroutine functions
EventHandler = Callable[[Any], Any]
Unsubscribe = Callable[[], None]


@dataclass(eq=False)
class _Subscription:
    handler: EventHandler


class SubscriptionRegistry:
    """
    At most one active handler per ``(event_kind, owner)``.

    Subscribing again with the same owner replaces the previous handler, so a
    view that re-renders and re-subscribes never stacks duplicates. The
    returned unsubscribe function only removes the subscription it created;
    a late call from a replaced subscription leaves the newer one in place.
    """

    def __init__(self, handler_timeout: float = 30.0):
        self.handler_timeout = handler_timeout
        self._subscriptions: dict[str, dict[Hashable, _Subscription]] = {}

    def subscribe(
        self,
        event_kind: str,
        handler: EventHandler,
        owner: Optional[Hashable] = None,
    ) -> Unsubscribe:
        """
        Register a handler for an event kind.

        Args:
            event_kind: Event type to listen for.
            handler: Called with the event payload.
            owner: Subscriber identity. Defaults to the handler itself.

        Returns:
            A function that removes this subscription.
        """
        key = owner if owner is not None else handler
        subscription = _Subscription(handler)
        by_owner = self._subscriptions.setdefault(event_kind, {})
        if key in by_owner:
            logger.debug(f"Replacing {event_kind} handler for {key!r}")
        by_owner[key] = subscription

        def unsubscribe() -> None:
            current = self._subscriptions.get(event_kind, {})
            if current.get(key) is subscription:
                del current[key]
                if not current:
                    self._subscriptions.pop(event_kind, None)

        return unsubscribe

    def count(self, event_kind: str) -> int:
        """Return the number of active handlers for an event kind."""
        return len(self._subscriptions.get(event_kind, {}))

    async def dispatch(self, event_kind: str, payload: Any) -> int:
        """
        Invoke every handler of an event kind.

        Handler errors and timeouts are logged and do not stop delivery to
        other handlers.

        Returns:
            Number of handlers invoked.
        """
        subscriptions = list(self._subscriptions.get(event_kind, {}).values())

        for subscription in subscriptions:
            try:
                result = subscription.handler(payload)
                if inspect.isawaitable(result):
                    await asyncio.wait_for(result, timeout=self.handler_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Handler timed out for event type: {event_kind}")
            except Exception as e:
                logger.error(f"Error in {event_kind} handler: {e}")

        return len(subscriptions)

    def clear(self) -> None:
        self._subscriptions.clear()
