"""EngineEvent enum + EventHooks registry for observing the sync engine."""

from __future__ import annotations

import inspect
import logging
from enum import Enum, auto
from typing import Any, Callable

logger = logging.getLogger(__name__)


class EngineEvent(Enum):
    PEER_JOINED = auto()
    PEER_LEFT = auto()
    WRITE_ACCEPTED = auto()
    PERSISTED = auto()
    PERSIST_FAILED = auto()
    LOAD_FAILED = auto()


EventHook = Callable[..., Any]


class EventHooks:
    """Registration and firing of engine event hooks.

    A failing hook is logged and never interrupts the engine.
    """

    def __init__(self) -> None:
        self._hooks: dict[EngineEvent, list[EventHook]] = {}

    def on(self, event: EngineEvent, hook: EventHook) -> None:
        self._hooks.setdefault(event, []).append(hook)

    def off(self, event: EngineEvent, hook: EventHook) -> None:
        hooks = self._hooks.get(event, [])
        if hook in hooks:
            hooks.remove(hook)

    def fire(self, event: EngineEvent, *args: Any, **kwargs: Any) -> None:
        for hook in list(self._hooks.get(event, [])):
            try:
                hook(*args, **kwargs)
            except Exception:
                logger.exception("hook for %s failed", event.name)

    async def fire_async(self, event: EngineEvent, *args: Any, **kwargs: Any) -> None:
        for hook in list(self._hooks.get(event, [])):
            try:
                result = hook(*args, **kwargs)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("hook for %s failed", event.name)

    def hook(self, event: EngineEvent) -> Callable[[EventHook], EventHook]:
        """Decorator to register an engine event hook."""
        def decorator(fn: EventHook) -> EventHook:
            self.on(event, fn)
            return fn
        return decorator
