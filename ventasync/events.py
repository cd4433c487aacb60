from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

log = logging.getLogger("ventasync.events")


@dataclass(frozen=True)
class ChangeEvent:
    resource: str
    payload: Any
    # endpoint the payload came from; empty when it is the resource collection
    path: str = ""


Listener = Callable[[ChangeEvent], None]


class ChangeNotifier:
    """In-process event bus for "resource has new data" notifications."""

    def __init__(self):
        self._listeners: list[Listener] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: ChangeEvent) -> None:
        # a failing listener must not starve the others
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                log.exception("change listener failed", extra={"resource": event.resource})
