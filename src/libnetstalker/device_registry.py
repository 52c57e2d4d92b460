"""
Defines an in-memory SQLite registry of discovered devices, keyed by MAC
address, with a subscribable stream of change events.

All reads and writes go through a single lock. Devices are handed out as
immutable snapshots, so a reader never sees a partially written device.

"""
import logging
import queue
import sqlite3
import threading
import time
import typing

from .host_info import normalize_mac


logger = logging.getLogger(__name__)


EVENT_INSERT = 'insert'
EVENT_UPDATE = 'update'

# Pushed into a subscription's queue when it is closed
_END_OF_STREAM = object()


class Device(typing.NamedTuple):

    mac_address: str
    ip_address: str
    first_seen_ts: float
    last_seen_ts: float
    display_name: typing.Optional[str] = None
    device_type: typing.Optional[str] = None


class RegistryEvent(typing.NamedTuple):

    kind: str
    device: Device


class RegistrySubscription(object):
    """
    A stream of RegistryEvents. Starts with one `insert` event per device that
    existed when the subscription was created, followed by live events in the
    order the registry applied them.

    Every device change, including the last-seen touch of each captured ARP
    packet, is queued for every open subscription without bound. A consumer
    must keep draining its subscription or close() it.

    Usage:

    subscription = registry.subscribe()
    for event in subscription:
        print(event.kind, event.device)

    """

    def __init__(self, registry) -> None:
        self._registry = registry
        self._queue = queue.Queue()
        self._closed = False

    @property
    def closed(self):
        return self._closed

    def get(self, timeout=None) -> RegistryEvent:
        """
        Returns the next event. Raises queue.Empty if no event arrives within
        `timeout` seconds, or EOFError if the subscription is closed.

        """
        event = self._queue.get(timeout=timeout)
        if event is _END_OF_STREAM:
            # Let other consumers of the same subscription see the end too
            self._queue.put(_END_OF_STREAM)
            raise EOFError('Subscription closed')
        return event

    def __iter__(self):
        while True:
            try:
                yield self.get()
            except EOFError:
                return

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._registry._unsubscribe(self)
        self._queue.put(_END_OF_STREAM)

    def _deliver(self, event):
        self._queue.put(event)


class DeviceRegistry(object):

    def __init__(self, db_uri=':memory:') -> None:

        # Connect to an in-memory SQLite database
        self._conn = sqlite3.connect(db_uri, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row

        # Should be held whenever accessing the database or the subscribers
        self._rw_lock = threading.Lock()

        self._subscriber_list = []
        self._last_ts = 0.0

        with self._rw_lock:
            self._conn.execute('''
                CREATE TABLE devices (
                    mac_address TEXT PRIMARY KEY,
                    ip_address TEXT NOT NULL,
                    first_seen_ts REAL NOT NULL,
                    last_seen_ts REAL NOT NULL,
                    display_name TEXT DEFAULT NULL,
                    device_type TEXT DEFAULT NULL
                )
            ''')
            self._conn.execute('CREATE INDEX idx_devices_ip_address ON devices(ip_address)')

    def lookup(self, mac_addr: str) -> typing.Optional[Device]:
        """Returns the device with the given MAC address, or None if unknown."""

        mac_addr = normalize_mac(mac_addr)
        with self._rw_lock:
            return self._select_device(mac_addr)

    def upsert(self, mac_addr: str, ip_addr: str) -> typing.Tuple[Device, bool]:
        """
        Records an observation of `mac_addr` at `ip_addr`.

        Returns (device, was_newly_created). A new device is created with
        first_seen_ts = last_seen_ts = now; a known device gets last_seen_ts
        set to now and its IP address replaced.

        """
        mac_addr = normalize_mac(mac_addr)

        with self._rw_lock:
            current_ts = self._next_timestamp()

            inserted_row_count = self._conn.execute('''
                INSERT INTO devices (mac_address, ip_address, first_seen_ts, last_seen_ts)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(mac_address) DO NOTHING
            ''', (mac_addr, ip_addr, current_ts, current_ts)).rowcount

            was_newly_created = inserted_row_count == 1
            if not was_newly_created:
                self._conn.execute('''
                    UPDATE devices SET ip_address = ?, last_seen_ts = ?
                    WHERE mac_address = ?
                ''', (ip_addr, current_ts, mac_addr))

            device = self._select_device(mac_addr)
            self._publish(EVENT_INSERT if was_newly_created else EVENT_UPDATE, device)

        return device, was_newly_created

    def annotate(self, mac_addr: str, display_name=None, device_type=None) -> typing.Optional[Device]:
        """
        Attaches enrichment results to a known device. Arguments left as None
        are not changed. Returns the updated device, or None if unknown.

        """
        mac_addr = normalize_mac(mac_addr)

        with self._rw_lock:
            updated_row_count = self._conn.execute('''
                UPDATE devices SET
                    display_name = COALESCE(?, display_name),
                    device_type = COALESCE(?, device_type)
                WHERE mac_address = ?
            ''', (display_name, device_type, mac_addr)).rowcount

            if updated_row_count == 0:
                return None

            device = self._select_device(mac_addr)
            self._publish(EVENT_UPDATE, device)

        return device

    def devices(self) -> typing.List[Device]:
        """Returns all devices in the order they were discovered."""

        with self._rw_lock:
            return self._select_all_devices()

    def __len__(self):
        with self._rw_lock:
            return self._conn.execute('SELECT COUNT(*) FROM devices').fetchone()[0]

    def subscribe(self) -> RegistrySubscription:
        """
        Returns a new subscription that replays the current devices and then
        receives live changes.

        """
        subscription = RegistrySubscription(self)

        # Taking the snapshot and registering under the same lock guarantees
        # that no event is lost or delivered twice.
        with self._rw_lock:
            for device in self._select_all_devices():
                subscription._deliver(RegistryEvent(EVENT_INSERT, device))
            self._subscriber_list.append(subscription)

        return subscription

    def close_subscriptions(self):
        """Ends all open subscriptions. The devices stay readable."""

        with self._rw_lock:
            subscriber_list = list(self._subscriber_list)

        for subscription in subscriber_list:
            subscription.close()

    def close(self):
        """Ends all subscriptions and closes the database."""

        self.close_subscriptions()

        with self._rw_lock:
            self._conn.close()

    def _unsubscribe(self, subscription):
        with self._rw_lock:
            try:
                self._subscriber_list.remove(subscription)
            except ValueError:
                pass

    def _publish(self, kind, device):
        # Must be called with the lock held, so that events follow mutation order
        event = RegistryEvent(kind, device)
        for subscription in self._subscriber_list:
            subscription._deliver(event)

    def _next_timestamp(self):
        # Strictly increasing, even if the wall clock stalls or steps back
        current_ts = time.time()
        if current_ts <= self._last_ts:
            current_ts = self._last_ts + 1e-6
        self._last_ts = current_ts
        return current_ts

    def _select_device(self, mac_addr):
        row = self._conn.execute('SELECT * FROM devices WHERE mac_address = ?', (mac_addr,)).fetchone()
        if row is None:
            return None
        return _row_to_device(row)

    def _select_all_devices(self):
        return [
            _row_to_device(row)
            for row in self._conn.execute('SELECT * FROM devices ORDER BY rowid')
        ]


def _row_to_device(row) -> Device:
    return Device(
        mac_address=row['mac_address'],
        ip_address=row['ip_address'],
        first_seen_ts=row['first_seen_ts'],
        last_seen_ts=row['last_seen_ts'],
        display_name=row['display_name'],
        device_type=row['device_type']
    )
