"""
Discovers local devices via ARP scanning. Periodically sweeps the local
address space and sends one ARP request per candidate address.

The sweep timer is an explicit two-state machine: it is ARMED with a deadline
while waiting for the next sweep, and DISARMED while a sweep is in flight or
while the scheduler is paused. It is re-armed only after a sweep completes, so
sweeps never overlap, even when a sweep overruns the interval.

"""
import itertools
import logging
import threading
import time

from . import packet_codec
from .errors import EngineDisposedError, UnsupportedNetworkClassError
from .host_info import (
    NETWORK_CLASS_A, NETWORK_CLASS_B, NETWORK_CLASS_C, SCANNABLE_CLASS_PREFIX_OCTETS
)
from .safe_loop import SafeLoopThread


logger = logging.getLogger(__name__)


DEFAULT_PROBE_INTERVAL = 10

TIMER_ARMED = 'armed'
TIMER_DISARMED = 'disarmed'

# Candidate host octets in every swept position
_HOST_OCTET_RANGE = range(1, 255)


def iter_sweep_addresses(subnet_root: str, network_class: str):
    """
    Yields every candidate IP address of one sweep, lazily.

    Class C yields subnet_root.1 .. subnet_root.254; class B and class A nest
    the same 1..254 range over the last two and three octets respectively.

    """
    if network_class == NETWORK_CLASS_C:
        for i in _HOST_OCTET_RANGE:
            yield f'{subnet_root}.{i}'

    elif network_class == NETWORK_CLASS_B:
        for i in _HOST_OCTET_RANGE:
            for j in _HOST_OCTET_RANGE:
                yield f'{subnet_root}.{i}.{j}'

    elif network_class == NETWORK_CLASS_A:
        for i in _HOST_OCTET_RANGE:
            for j in _HOST_OCTET_RANGE:
                for k in _HOST_OCTET_RANGE:
                    yield f'{subnet_root}.{i}.{j}.{k}'

    else:
        raise UnsupportedNetworkClassError(
            f'Cannot sweep a network of class {network_class}',
            {'network_class': network_class}
        )


def get_sweep_size(network_class: str) -> int:
    """Returns how many addresses a full sweep of the given class probes."""

    fixed_octets = SCANNABLE_CLASS_PREFIX_OCTETS.get(network_class)
    if fixed_octets is None:
        return 0
    return len(_HOST_OCTET_RANGE) ** (4 - fixed_octets)


def check_network_class(host_info):
    """Raises UnsupportedNetworkClassError unless the host's network can be swept."""

    if host_info.network_class not in SCANNABLE_CLASS_PREFIX_OCTETS:
        raise UnsupportedNetworkClassError(
            f'The detected network class ({host_info.network_class}) is not supported',
            {'network_class': host_info.network_class, 'host_ip': host_info.host_ip}
        )


class ProbeScheduler(object):

    def __init__(self, host_info, transmit, interval=DEFAULT_PROBE_INTERVAL, max_probes_per_sweep=None) -> None:

        self._host_info = host_info
        self._transmit = transmit
        self._interval = interval
        self._max_probes_per_sweep = max_probes_per_sweep

        # Guards every attribute below
        self._cond = threading.Condition()

        self._timer_state = TIMER_DISARMED
        self._deadline = None
        self._paused = True
        self._sweep_requested = False
        self._sweep_in_flight = False
        # Set when the scheduler is resumed while a sweep is in flight
        self._rearm_immediately = False
        self._closing = False
        self._loop = None

        # Set to stop an in-flight sweep between two transmits
        self._cancel_sweep_event = threading.Event()

        self.sweep_count = 0

    @property
    def timer_state(self):
        with self._cond:
            return self._timer_state

    @property
    def is_sweeping(self):
        with self._cond:
            return self._sweep_in_flight

    def start(self):
        """
        Arms the timer for an immediate first sweep. Raises
        UnsupportedNetworkClassError if the host's network cannot be swept.

        """
        check_network_class(self._host_info)

        with self._cond:
            self._check_not_closed()
            self._unpause()

        logger.info(f'[Probe Scheduler] Started; sweeping {get_sweep_size(self._host_info.network_class)} addresses every {self._interval} seconds.')

    def pause(self, wait=True, timeout=None):
        """
        Disarms the timer. An in-flight sweep stops after its current transmit;
        if `wait` is True, blocks until it has finished.

        """
        with self._cond:
            self._paused = True
            self._sweep_requested = False
            self._rearm_immediately = False
            self._disarm()
            if self._sweep_in_flight:
                self._cancel_sweep_event.set()
            self._cond.notify_all()

            if wait:
                self._cond.wait_for(lambda: not self._sweep_in_flight, timeout)

    def resume(self):
        """
        Re-arms the timer with an immediate tick. If a sweep cancelled by
        pause() is still winding down, the next sweep starts as soon as it ends.

        """
        with self._cond:
            self._check_not_closed()
            self._unpause()

    def trigger_immediate_sweep(self):
        """
        Requests one sweep now, without waiting for the timer. If a sweep is in
        flight, the requested sweep runs right after it.

        """
        with self._cond:
            self._check_not_closed()
            self._ensure_loop()
            self._sweep_requested = True
            self._cond.notify_all()

    def close(self, timeout=None):
        """Stops the timer loop for good, waiting for an in-flight sweep. Idempotent."""

        self.pause(wait=True, timeout=timeout)

        with self._cond:
            if self._closing:
                return
            self._closing = True
            loop = self._loop
            if loop is not None:
                loop.stop()
            self._cond.notify_all()

        if loop is not None:
            loop.join(timeout)

    def sweep(self) -> int:
        """
        Sends one ARP probe per candidate address. Returns the number of
        probes sent. Transmit failures are logged and skipped.

        """
        host_info = self._host_info
        candidates = iter_sweep_addresses(host_info.subnet_root, host_info.network_class)

        max_probes = self._max_probes_per_sweep
        probe_count = sweep_size = get_sweep_size(host_info.network_class)
        if max_probes is not None and max_probes < sweep_size:
            logger.warning(f'[Probe Scheduler] Sweep limited to {max_probes} of {sweep_size} addresses.')
            candidates = itertools.islice(candidates, max_probes)
            probe_count = max_probes

        logger.info(f'[Probe Scheduler] Sweeping {probe_count} IP addresses.')

        start_ts = time.time()
        sent_count = 0
        failed_count = 0

        for ip_addr in candidates:

            if self._cancel_sweep_event.is_set():
                logger.info(f'[Probe Scheduler] Sweep cancelled after {sent_count} probes.')
                break

            try:
                self._transmit(packet_codec.encode_probe(ip_addr, host_info))
            except Exception as e:
                failed_count += 1
                logger.debug(f'[Probe Scheduler] Failed to probe {ip_addr}: {e}')
            else:
                sent_count += 1

        logger.info(f'[Probe Scheduler] Sent {sent_count} probes ({failed_count} failed) in {time.time() - start_ts:.1f} seconds.')

        return sent_count

    def _wait_and_sweep(self):
        """Runs in the scheduler loop thread: waits for the next tick, then sweeps once."""

        with self._cond:
            while True:
                if self._closing:
                    return
                if self._sweep_requested:
                    break
                if self._timer_state == TIMER_ARMED:
                    remaining = self._deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    self._cond.wait(remaining)
                else:
                    self._cond.wait()

            # Self-pause until the sweep completes
            self._sweep_requested = False
            self._sweep_in_flight = True
            self._cancel_sweep_event.clear()
            self._disarm()

        try:
            self.sweep()

        finally:
            with self._cond:
                self._sweep_in_flight = False
                self.sweep_count += 1
                if not self._paused and not self._closing:
                    self._arm(delay=0 if self._rearm_immediately else self._interval)
                self._rearm_immediately = False
                self._cond.notify_all()

    def _ensure_loop(self):
        if self._loop is None:
            self._loop = SafeLoopThread(self._wait_and_sweep, name='probe-scheduler')

    def _unpause(self):
        # Must be called with the condition held
        self._ensure_loop()
        was_paused = self._paused
        self._paused = False
        if not self._sweep_in_flight:
            self._arm(delay=0)
        elif was_paused:
            # The in-flight sweep may already be cancelled; sweep again once it ends
            self._rearm_immediately = True

    def _check_not_closed(self):
        if self._closing:
            raise EngineDisposedError('The probe scheduler has been closed')

    def _arm(self, delay):
        self._timer_state = TIMER_ARMED
        self._deadline = time.monotonic() + delay
        self._cond.notify_all()

    def _disarm(self):
        self._timer_state = TIMER_DISARMED
        self._deadline = None
