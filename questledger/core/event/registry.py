"""
Listener registry and wildcard routing for the EventBus.

Supported patterns
------------------
- Exact:    "rewards.granted"
- Global:   "*"
- Prefix:   "progression.*"
- Suffix:   "*.anomaly"
- Sandwich: "progression.*.completed"

Not thread-safe; designed for single-loop asyncio usage where dictionary
mutations are atomic between awaits.
"""

from __future__ import annotations

from questledger.core.event.types import EventListener


def pattern_matches(event_name: str, pattern: str) -> bool:
    """
    Check whether `event_name` matches a `*` wildcard pattern.

    >>> pattern_matches("progression.chapter_unlocked", "progression.*")
    True
    >>> pattern_matches("rewards.granted", "progression.*")
    False
    """
    if pattern == "*":
        return True
    if "*" not in pattern:
        return event_name == pattern

    while "**" in pattern:
        pattern = pattern.replace("**", "*")

    parts = pattern.split("*")
    head, tail = parts[0], parts[-1]

    if head and not event_name.startswith(head):
        return False
    if tail and not event_name.endswith(tail):
        return False
    if len(head) + len(tail) > len(event_name):
        return False

    idx = len(head)
    limit = len(event_name) - len(tail)
    for mid in parts[1:-1]:
        if not mid:
            continue
        found = event_name.find(mid, idx, limit)
        if found == -1:
            return False
        idx = found + len(mid)

    return True


def _sort_key(listener: EventListener) -> tuple[int, str]:
    return (listener.priority.value, listener.identifier)


class ListenerRegistry:
    """Storage for exact and wildcard listeners."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[EventListener]] = {}
        self._wildcard_listeners: list[tuple[str, EventListener]] = []

    def add_listener(
        self,
        event_name: str,
        listener: EventListener,
        *,
        allow_duplicates: bool,
    ) -> bool:
        """
        Register a listener; returns False when prevented as a duplicate of
        the same (event_name, identifier).
        """
        if "*" in event_name:
            if not allow_duplicates and any(
                pattern == event_name and lst.identifier == listener.identifier
                for pattern, lst in self._wildcard_listeners
            ):
                return False
            self._wildcard_listeners.append((event_name, listener))
            self._wildcard_listeners.sort(key=lambda pl: _sort_key(pl[1]))
            return True

        listeners = self._listeners.setdefault(event_name, [])
        if not allow_duplicates and any(
            lst.identifier == listener.identifier for lst in listeners
        ):
            return False
        listeners.append(listener)
        listeners.sort(key=_sort_key)
        return True

    def remove_listener(self, event_name: str, identifier: str) -> bool:
        removed = False

        if event_name in self._listeners:
            before = len(self._listeners[event_name])
            self._listeners[event_name] = [
                lst for lst in self._listeners[event_name] if lst.identifier != identifier
            ]
            removed = len(self._listeners[event_name]) < before
            if not self._listeners[event_name]:
                del self._listeners[event_name]

        before_wc = len(self._wildcard_listeners)
        self._wildcard_listeners = [
            (pattern, lst)
            for pattern, lst in self._wildcard_listeners
            if not (pattern == event_name and lst.identifier == identifier)
        ]
        return removed or len(self._wildcard_listeners) < before_wc

    def clear_all(self) -> int:
        total = self.get_total_listener_count()
        self._listeners.clear()
        self._wildcard_listeners.clear()
        return total

    def extract_listeners_for_event(self, event_name: str) -> list[EventListener]:
        """
        Collect exact and wildcard listeners for an event, pruning `once`
        listeners in the same step. Sorted by (priority, identifier).
        """
        result: list[EventListener] = []

        kept_exact: list[EventListener] = []
        for listener in self._listeners.get(event_name, []):
            result.append(listener)
            if not listener.once:
                kept_exact.append(listener)
        if kept_exact:
            self._listeners[event_name] = kept_exact
        else:
            self._listeners.pop(event_name, None)

        kept_wildcards: list[tuple[str, EventListener]] = []
        for pattern, listener in self._wildcard_listeners:
            if pattern_matches(event_name, pattern):
                result.append(listener)
                if listener.once:
                    continue
            kept_wildcards.append((pattern, listener))
        self._wildcard_listeners = kept_wildcards

        result.sort(key=_sort_key)
        return result

    def get_listener_count_for_event(self, event_name: str) -> int:
        count = len(self._listeners.get(event_name, []))
        count += sum(
            1 for pattern, _ in self._wildcard_listeners if pattern_matches(event_name, pattern)
        )
        return count

    def get_total_listener_count(self) -> int:
        total = sum(len(listeners) for listeners in self._listeners.values())
        return total + len(self._wildcard_listeners)

    def get_all_event_keys(self) -> list[str]:
        keys = set(self._listeners)
        keys.update(pattern for pattern, _ in self._wildcard_listeners)
        return sorted(keys)
