"""
Configuration Change Notifier

Append-only registry of per-key subscribers that are told about
configuration changes after a reload.
"""
from typing import Awaitable, Callable, Dict, Iterable, Tuple, Union
import inspect
import threading

from monitoring.config_store import ConfigChange
from metrics import subscriber_errors
from logger import get_logger

logger = get_logger(__name__)

Subscriber = Callable[[ConfigChange], Union[None, Awaitable[None]]]


class ChangeNotifier:
    """
    Maps configuration keys to ordered subscriber callbacks

    Subscribers may be plain functions or coroutine functions. The
    subscriber list for a key is replaced (copy-on-write) on every
    subscribe, so a notification in progress keeps iterating the list it
    started with.

    Example:
        notifier = ChangeNotifier()

        async def on_host_change(change: ConfigChange):
            await reporter.reconfigure()

        notifier.subscribe("host", on_host_change)
        await notifier.fire(change)
    """

    def __init__(self):
        self._subscribers: Dict[str, Tuple[Subscriber, ...]] = {}
        self._lock = threading.Lock()

    def subscribe(self, key: str, callback: Subscriber):
        """Append a callback to the subscribers of a key"""
        if not key:
            raise ValueError("Property key must not be empty")
        if not callable(callback):
            raise TypeError("Changed callback must be callable")

        with self._lock:
            self._subscribers[key] = self._subscribers.get(key, ()) + (callback,)

        logger.debug(f"Subscribed {getattr(callback, '__qualname__', callback)} to '{key}'")

    def subscribe_all(self, keys: Iterable[str], callback: Subscriber):
        """Subscribe one callback to several keys"""
        for key in keys:
            self.subscribe(key, callback)

    def subscribers(self, key: str) -> Tuple[Subscriber, ...]:
        """Subscribers of a key in registration order"""
        return self._subscribers.get(key, ())

    def list_keys(self):
        return list(self._subscribers.keys())

    async def fire(self, change: ConfigChange) -> int:
        """
        Notify every subscriber of ``change.key``

        A subscriber that raises is logged and skipped; the remaining
        subscribers are still notified.

        Returns:
            Number of subscribers that completed without error
        """
        notified = 0

        for callback in self.subscribers(change.key):
            try:
                result = callback(change)
                if inspect.isawaitable(result):
                    await result
                notified += 1
            except Exception as e:
                subscriber_errors.labels(change.key).inc()
                logger.error(f"Subscriber for configuration '{change.key}' failed: {e}")
                logger.debug("Subscriber exception", exc_info=True)

        return notified
