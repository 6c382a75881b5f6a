"""
Broadcaster - fan-out of relay events to live subscribers

Every subscriber is a plain callable taking a RelayEvent. Each one gets its
own bounded queue and delivery thread, so a slow or broken sink only ever
hurts itself:
- A sink that raises is dropped
- A sink whose queue fills up is dropped
- Everyone else keeps receiving events in publish order

New subscribers first receive the current status, the latest sample (if
any) and the full history, before any live event.

Usage:
    broadcaster = Broadcaster(store)
    sub = broadcaster.subscribe(lambda event: print(event.name, event.data))
    broadcaster.publish_status(True)
    broadcaster.unsubscribe(sub)
"""

import logging
import queue
import threading
from contextlib import contextmanager
from typing import Callable, List

from relay.data_store import DataStore
from relay.models import RelayEvent, SensorSample

logger = logging.getLogger(__name__)

Sink = Callable[[RelayEvent], None]

DEFAULT_QUEUE_SIZE = 256

_CLOSE = object()


class Subscription:
    """A registered sink with its own delivery queue and thread."""

    def __init__(self, sink: Sink, on_dead: Callable[['Subscription'], None],
                 max_queue: int = DEFAULT_QUEUE_SIZE, name: str = None):
        self.sink = sink
        self.name = name or getattr(sink, '__name__', repr(sink))
        self._queue = queue.Queue(maxsize=max_queue)
        self._on_dead = on_dead
        self._active = True
        self._thread = threading.Thread(
            target=self._deliver_loop,
            name=f"relay-sink-{self.name}",
            daemon=True,
        )
        self._thread.start()

    @property
    def active(self) -> bool:
        return self._active

    def offer(self, event: RelayEvent) -> bool:
        """Queue an event without blocking. False if the sink is stalled or closed."""
        if not self._active:
            return False
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            logger.warning(f"Subscriber {self.name} is not keeping up, dropping it")
            self._active = False
            return False

    def close(self):
        """Stop delivery. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        try:
            self._queue.put_nowait(_CLOSE)
        except queue.Full:
            pass

    def join(self, timeout: float = 1.0):
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

    def _deliver_loop(self):
        while True:
            event = self._queue.get()
            if event is _CLOSE or not self._active:
                break
            try:
                self.sink(event)
            except Exception as e:
                logger.info(f"Subscriber {self.name} failed, dropping it: {e}")
                self._active = False
                break

        self._on_dead(self)


class Broadcaster:
    """Delivers relay events to all current subscribers."""

    def __init__(self, store: DataStore, max_queue: int = DEFAULT_QUEUE_SIZE):
        self._store = store
        self._max_queue = max_queue
        self._subscriptions: List[Subscription] = []
        self._connected = False
        # Re-entrant so a publisher can hold it across store update + publish
        self._lock = threading.RLock()

    @contextmanager
    def locked(self):
        """Hold off new subscriptions while the caller updates state and publishes."""
        with self._lock:
            yield

    @property
    def connected(self) -> bool:
        """Last published connection status"""
        return self._connected

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def subscribe(self, sink: Sink, name: str = None) -> Subscription:
        """
        Register a sink and replay the current view to it.

        Args:
            sink: Callable receiving each RelayEvent
            name: Optional label for logging

        Returns:
            The Subscription handle, needed to unsubscribe
        """
        with self._lock:
            subscription = Subscription(sink, self._discard, self._max_queue, name)
            latest, history = self._store.snapshot()

            subscription.offer(RelayEvent.status(self._connected))
            if latest is not None:
                subscription.offer(RelayEvent.sample(latest))
            subscription.offer(RelayEvent.history(history))

            self._subscriptions.append(subscription)

        logger.debug(f"Subscriber {subscription.name} attached ({self.subscriber_count} total)")
        return subscription

    def unsubscribe(self, subscription: Subscription):
        """Remove a subscription. Never raises, even if already gone."""
        subscription.close()
        self._discard(subscription)

    def _discard(self, subscription: Subscription):
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
                logger.debug(f"Subscriber {subscription.name} detached")

    def publish(self, event: RelayEvent):
        """Queue an event for every registered subscriber."""
        with self._lock:
            stalled = [s for s in self._subscriptions if not s.offer(event)]
            for subscription in stalled:
                self.unsubscribe(subscription)

    def publish_status(self, connected: bool):
        with self._lock:
            self._connected = connected
            self.publish(RelayEvent.status(connected))

    def publish_sample(self, sample: SensorSample):
        self.publish(RelayEvent.sample(sample))

    def close(self, timeout: float = 1.0):
        """Drop every subscriber and wait briefly for their threads."""
        with self._lock:
            subscriptions = self._subscriptions[:]
            self._subscriptions.clear()

        for subscription in subscriptions:
            subscription.close()
        for subscription in subscriptions:
            subscription.join(timeout=timeout)
