"""
EventBus: async pub/sub with tiered listener execution.

Responsibilities
----------------
- Register/unregister listeners with priorities (exact names and wildcards)
- Publish events to all matching listeners:
  * CRITICAL / HIGH: sequential, ordered, awaited with timeout
  * NORMAL: concurrent (gather), awaited
  * LOW: fire-and-forget background tasks
- Error isolation: a failing listener is logged and counted, never raised
- Publish/error counters for introspection

Services publish only after their transaction commits; the bus never sees
an event for a write that was rolled back or retried.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import Counter
from typing import Any, Optional

from questledger.core.event.registry import ListenerRegistry
from questledger.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)
from questledger.core.logging.logger import LogContext, get_logger

logger = get_logger(__name__)


class EventBus:
    """
    Instance-based EventBus (tests build their own; production uses the
    module-level `event_bus`).

    Examples
    --------
    >>> bus = EventBus()
    >>> bus.subscribe("rewards.granted", on_granted, priority=ListenerPriority.HIGH)
    >>> await bus.publish("rewards.granted", {"user_id": "u1", "challenge_id": "c1"})
    """

    def __init__(
        self,
        registry: Optional[ListenerRegistry] = None,
        *,
        critical_timeout_seconds: float = 5.0,
        high_timeout_seconds: float = 5.0,
    ) -> None:
        self._registry = registry or ListenerRegistry()
        self._critical_timeout = float(critical_timeout_seconds)
        self._high_timeout = float(high_timeout_seconds)
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._published: Counter[str] = Counter()
        self._errors: Counter[str] = Counter()

    # ------------------------------------------------------------------ #
    # Subscription API
    # ------------------------------------------------------------------ #

    @staticmethod
    def _validate_callback_signature(callback: CallbackType) -> None:
        """Reject callbacks that do not take exactly one positional payload."""
        try:
            sig = inspect.signature(callback)
        except (TypeError, ValueError):
            return

        params = list(sig.parameters.values())
        if len(params) != 1:
            callback_name = getattr(callback, "__qualname__", None) or getattr(
                callback, "__name__", repr(callback)
            )
            raise ValueError(
                f"Event listener must accept exactly 1 parameter (EventPayload), "
                f"got {len(params)} parameters for '{callback_name}'"
            )

    def subscribe(
        self,
        event_name: str,
        callback: CallbackType,
        *,
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
        allow_duplicates: bool = False,
    ) -> str:
        """
        Subscribe a callback to an event name or wildcard pattern.

        Returns
        -------
        str:
            The listener identifier (for unsubscribing later).
        """
        self._validate_callback_signature(callback)

        listener = EventListener.from_callback(
            event_name=event_name,
            callback=callback,
            priority=priority,
            identifier=identifier,
            once=once,
        )

        added = self._registry.add_listener(
            event_name=event_name,
            listener=listener,
            allow_duplicates=allow_duplicates,
        )

        if added:
            logger.debug(
                "EventBus: subscribed listener",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": listener.priority.name,
                    "once": listener.once,
                },
            )
        else:
            logger.warning(
                "EventBus: duplicate listener prevented",
                extra={"event_name": event_name, "listener_id": listener.identifier},
            )

        return listener.identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        removed = self._registry.remove_listener(event_name=event_name, identifier=identifier)
        if removed:
            logger.debug(
                "EventBus: unsubscribed listener",
                extra={"event_name": event_name, "listener_id": identifier},
            )
        return removed

    def clear(self) -> None:
        """Remove all listeners from all events."""
        total = self._registry.clear_all()
        logger.info(
            "EventBus: cleared all listeners",
            extra={"previous_listener_count": total},
        )

    # ------------------------------------------------------------------ #
    # Publish API
    # ------------------------------------------------------------------ #

    async def publish(self, event_name: str, data: EventPayload) -> list[Any]:
        """
        Publish an event to every matching listener.

        Returns
        -------
        list[Any]:
            Results from CRITICAL/HIGH/NORMAL listeners (None for a listener
            that failed). LOW-tier listeners are not awaited.
        """
        self._published[event_name] += 1
        with LogContext(event_name=event_name):
            return await self._dispatch(event_name, data)

    async def _dispatch(self, event_name: str, data: EventPayload) -> list[Any]:
        listeners = self._registry.extract_listeners_for_event(event_name=event_name)
        if not listeners:
            logger.debug("EventBus: no listeners for event", extra={"event_name": event_name})
            return []

        logger.debug(
            "EventBus: executing listeners",
            extra={"event_name": event_name, "listener_count": len(listeners)},
        )

        results: list[Any] = []

        for listener in listeners:
            if listener.priority is ListenerPriority.CRITICAL:
                results.append(
                    await self._run_with_timeout(listener, event_name, data, self._critical_timeout)
                )
        for listener in listeners:
            if listener.priority is ListenerPriority.HIGH:
                results.append(
                    await self._run_with_timeout(listener, event_name, data, self._high_timeout)
                )

        normal = [lst for lst in listeners if lst.priority is ListenerPriority.NORMAL]
        if normal:
            results.extend(
                await asyncio.gather(
                    *[self._run_listener(lst, event_name, data) for lst in normal]
                )
            )

        loop = asyncio.get_running_loop()
        for listener in listeners:
            if listener.priority is ListenerPriority.LOW:
                task = loop.create_task(
                    self._run_listener(listener, event_name, data),
                    name=f"eventbus-low-{event_name}-{listener.identifier}",
                )
                self._background_tasks.add(task)
                task.add_done_callback(self._background_tasks.discard)

        return results

    async def drain(self) -> None:
        """Wait for outstanding LOW-tier listeners (used on shutdown and in tests)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def _run_with_timeout(
        self,
        listener: EventListener,
        event_name: str,
        payload: EventPayload,
        timeout: float,
    ) -> Any:
        if timeout <= 0:
            return await self._run_listener(listener, event_name, payload)
        try:
            return await asyncio.wait_for(
                self._run_listener(listener, event_name, payload), timeout=timeout
            )
        except asyncio.TimeoutError as exc:
            self._handle_listener_error(event_name, listener, exc)
            return None

    async def _run_listener(
        self, listener: EventListener, event_name: str, payload: EventPayload
    ) -> Any:
        try:
            if inspect.iscoroutinefunction(listener.callback):
                return await listener.callback(payload)

            # Sync callbacks run in the default executor.
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, listener.callback, payload)
        except Exception as exc:
            self._handle_listener_error(event_name, listener, exc)
            return None

    def _handle_listener_error(
        self, event_name: str, listener: EventListener, exc: BaseException
    ) -> None:
        self._errors[event_name] += 1
        logger.error(
            "EventBus listener failed",
            extra={
                "event_name": event_name,
                "listener_id": listener.identifier,
                "priority": listener.priority.name,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
            exc_info=not isinstance(exc, asyncio.TimeoutError),
        )

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def get_listener_count(self, event_name: Optional[str] = None) -> int:
        if event_name:
            return self._registry.get_listener_count_for_event(event_name)
        return self._registry.get_total_listener_count()

    def get_all_events(self) -> list[str]:
        return self._registry.get_all_event_keys()

    def get_metrics(self) -> dict[str, Any]:
        total_published = sum(self._published.values())
        total_errors = sum(self._errors.values())
        return {
            "total_events_published": total_published,
            "events_by_type": dict(self._published),
            "total_errors": total_errors,
            "errors_by_event": dict(self._errors),
            "total_listeners": self._registry.get_total_listener_count(),
            "background_tasks": len(self._background_tasks),
        }
