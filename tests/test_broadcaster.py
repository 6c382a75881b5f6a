"""
Tests for the event broadcaster.

Delivery is asynchronous (one thread per subscriber), so tests wait on
the recording sink instead of asserting immediately.

Run: python3 -m pytest tests/test_broadcaster.py -v
"""

import sys
import threading
import time
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from relay.broadcaster import Broadcaster
from relay.data_store import DataStore
from relay.models import RelayEvent, SensorSample, STATUS_CHANGED, SAMPLE, HISTORY


def make_sample(n: float) -> SensorSample:
    return SensorSample(
        temperature=20.0 + n,
        acceleration=(0.1, 0.2, 9.8),
        angular_rate=(0.0, 0.0, 0.0),
        timestamp=1000.0 + n,
    )


class RecordingSink:
    """Collects events and lets a test wait for a count."""

    def __init__(self, fail_on=None):
        self.events = []
        self.fail_on = fail_on
        self._cond = threading.Condition()

    def __call__(self, event):
        if self.fail_on and event.name == self.fail_on:
            raise RuntimeError("sink broke")
        with self._cond:
            self.events.append(event)
            self._cond.notify_all()

    def wait_for(self, count, timeout=2.0):
        deadline = time.monotonic() + timeout
        with self._cond:
            while len(self.events) < count:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True

    @property
    def names(self):
        return [e.name for e in self.events]


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestReplay:
    """Tests for what a new subscriber receives first"""

    def setup_method(self):
        self.store = DataStore()
        self.broadcaster = Broadcaster(self.store)

    def teardown_method(self):
        self.broadcaster.close()

    def test_empty_store_replay(self):
        """Status then empty history, no sample."""
        sink = RecordingSink()
        self.broadcaster.subscribe(sink)

        assert sink.wait_for(2)
        assert sink.names == [STATUS_CHANGED, HISTORY]
        assert sink.events[0].data == {'connected': False}
        assert sink.events[1].data == []

    def test_replay_order(self):
        """Status, latest sample, history, then live events."""
        for i in range(3):
            self.store.record(make_sample(i))
        self.broadcaster.publish_status(True)

        sink = RecordingSink()
        self.broadcaster.subscribe(sink)
        self.broadcaster.publish_sample(make_sample(9))

        assert sink.wait_for(4)
        assert sink.names == [STATUS_CHANGED, SAMPLE, HISTORY, SAMPLE]
        assert sink.events[0].data == {'connected': True}
        assert sink.events[1].data['temp'] == 22.0
        assert len(sink.events[2].data) == 3
        assert sink.events[3].data['temp'] == 29.0

    def test_locked_publisher_is_consistent_with_replay(self):
        """A sample recorded under the lock is in the replay or delivered live, not both."""
        sink = RecordingSink()
        with self.broadcaster.locked():
            self.store.record(make_sample(1))
            self.broadcaster.publish_sample(make_sample(1))
        self.broadcaster.subscribe(sink)

        assert sink.wait_for(3)
        time.sleep(0.05)
        assert sink.names == [STATUS_CHANGED, SAMPLE, HISTORY]


class TestFanOut:
    """Tests for live delivery"""

    def setup_method(self):
        self.broadcaster = Broadcaster(DataStore())

    def teardown_method(self):
        self.broadcaster.close()

    def test_every_subscriber_gets_events_in_order(self):
        sinks = [RecordingSink() for _ in range(3)]
        for sink in sinks:
            self.broadcaster.subscribe(sink)

        for i in range(5):
            self.broadcaster.publish_sample(make_sample(i))

        for sink in sinks:
            assert sink.wait_for(7)
            temps = [e.data['temp'] for e in sink.events if e.name == SAMPLE]
            assert temps == [20.0, 21.0, 22.0, 23.0, 24.0]

    def test_failing_sink_is_dropped_others_continue(self):
        good = RecordingSink()
        bad = RecordingSink(fail_on=SAMPLE)
        self.broadcaster.subscribe(good)
        self.broadcaster.subscribe(bad)

        self.broadcaster.publish_sample(make_sample(1))
        assert wait_until(lambda: self.broadcaster.subscriber_count == 1)

        self.broadcaster.publish_sample(make_sample(2))
        assert good.wait_for(4)
        assert good.names.count(SAMPLE) == 2
        assert SAMPLE not in bad.names

    def test_stalled_sink_is_dropped(self):
        release = threading.Event()

        def slow_sink(event):
            release.wait(2.0)

        broadcaster = Broadcaster(DataStore(), max_queue=4)
        broadcaster.subscribe(slow_sink)

        for i in range(20):
            broadcaster.publish_sample(make_sample(i))

        assert broadcaster.subscriber_count == 0
        release.set()
        broadcaster.close()

    def test_publish_status_tracks_connected(self):
        assert self.broadcaster.connected is False
        self.broadcaster.publish_status(True)
        assert self.broadcaster.connected is True

    def test_publish_with_no_subscribers(self):
        self.broadcaster.publish(RelayEvent.status(True))


class TestUnsubscribe:
    """Tests for leaving the feed"""

    def test_unsubscribe_stops_delivery(self):
        broadcaster = Broadcaster(DataStore())
        sink = RecordingSink()
        sub = broadcaster.subscribe(sink)
        assert sink.wait_for(2)

        broadcaster.unsubscribe(sub)
        broadcaster.publish_sample(make_sample(1))
        time.sleep(0.05)

        assert broadcaster.subscriber_count == 0
        assert SAMPLE not in sink.names

    def test_unsubscribe_twice_never_raises(self):
        broadcaster = Broadcaster(DataStore())
        sub = broadcaster.subscribe(RecordingSink())
        broadcaster.unsubscribe(sub)
        broadcaster.unsubscribe(sub)

    def test_unsubscribe_after_failure_never_raises(self):
        broadcaster = Broadcaster(DataStore())
        sub = broadcaster.subscribe(RecordingSink(fail_on=STATUS_CHANGED))
        assert wait_until(lambda: not sub.active)
        broadcaster.unsubscribe(sub)

    def test_close_drops_everyone(self):
        broadcaster = Broadcaster(DataStore())
        broadcaster.subscribe(RecordingSink())
        broadcaster.subscribe(RecordingSink())
        broadcaster.close()
        assert broadcaster.subscriber_count == 0
