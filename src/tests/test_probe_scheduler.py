import itertools
import threading
import time
import unittest

import scapy.all as sc

from libnetstalker.errors import EngineDisposedError, UnsupportedNetworkClassError
from libnetstalker.host_info import BROADCAST_MAC, EMPTY_MAC, HostInfo
from libnetstalker.probe_scheduler import (
    ProbeScheduler, TIMER_ARMED, TIMER_DISARMED, get_sweep_size, iter_sweep_addresses
)

from fakes import HOST_MAC, wait_until


def make_host_info(network_class, subnet_root):
    return HostInfo(
        host_ip='192.168.1.20',
        host_mac=HOST_MAC,
        subnet_root=subnet_root,
        network_class=network_class
    )


class RecordingTransmit(object):

    def __init__(self, delay=0, fail_every=None):
        self.delay = delay
        self.fail_every = fail_every
        self.frame_list = []
        self.call_count = 0
        self.active_count = 0
        self.max_active_count = 0
        self._lock = threading.Lock()

    def __call__(self, frame):
        with self._lock:
            self.call_count += 1
            call_count = self.call_count
            self.active_count += 1
            self.max_active_count = max(self.max_active_count, self.active_count)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.fail_every and call_count % self.fail_every == 0:
                raise OSError('Network is down')
            with self._lock:
                self.frame_list.append(frame)
        finally:
            with self._lock:
                self.active_count -= 1


class TestSweepAddresses(unittest.TestCase):

    def test_class_c(self):
        address_list = list(iter_sweep_addresses('192.168.1', 'C'))
        self.assertEqual(len(address_list), 254)
        self.assertEqual(address_list[0], '192.168.1.1')
        self.assertEqual(address_list[-1], '192.168.1.254')

    def test_class_b(self):
        address_list = list(iter_sweep_addresses('172.16', 'B'))
        self.assertEqual(len(address_list), 254 * 254)
        self.assertEqual(len(set(address_list)), 254 * 254)
        self.assertEqual(address_list[:2], ['172.16.1.1', '172.16.1.2'])
        self.assertEqual(address_list[-1], '172.16.254.254')

    def test_class_a_is_lazy(self):
        candidates = iter_sweep_addresses('10', 'A')
        self.assertEqual(list(itertools.islice(candidates, 3)), ['10.1.1.1', '10.1.1.2', '10.1.1.3'])
        self.assertEqual(get_sweep_size('A'), 254 ** 3)

    def test_unsupported_class(self):
        for network_class in ('D', 'E', None):
            with self.assertRaises(UnsupportedNetworkClassError):
                next(iter_sweep_addresses('224.0.0', network_class))
            self.assertEqual(get_sweep_size(network_class), 0)


class TestSweep(unittest.TestCase):

    def test_class_c_sweep_probes_every_host_once(self):
        transmit = RecordingTransmit()
        scheduler = ProbeScheduler(make_host_info('C', '192.168.1'), transmit)

        self.assertEqual(scheduler.sweep(), 254)
        self.assertEqual(len(transmit.frame_list), 254)

        target_list = []
        for frame in transmit.frame_list:
            pkt = sc.Ether(frame)
            self.assertEqual(pkt[sc.Ether].dst, BROADCAST_MAC)
            self.assertEqual(pkt[sc.ARP].op, 1)
            self.assertEqual(pkt[sc.ARP].hwdst, EMPTY_MAC)
            self.assertEqual(pkt[sc.ARP].hwsrc, HOST_MAC)
            target_list.append(pkt[sc.ARP].pdst)

        self.assertEqual(target_list, [f'192.168.1.{i}' for i in range(1, 255)])

    def test_bounded_class_a_sweep(self):
        transmit = RecordingTransmit()
        scheduler = ProbeScheduler(make_host_info('A', '10'), transmit, max_probes_per_sweep=300)

        self.assertEqual(scheduler.sweep(), 300)
        self.assertEqual(sc.Ether(transmit.frame_list[-1])[sc.ARP].pdst, '10.1.2.46')

    def test_transmit_failures_do_not_abort_sweep(self):
        transmit = RecordingTransmit(fail_every=2)
        scheduler = ProbeScheduler(make_host_info('C', '192.168.1'), transmit)

        self.assertEqual(scheduler.sweep(), 127)
        self.assertEqual(transmit.call_count, 254)


class TestProbeScheduler(unittest.TestCase):

    def setUp(self):
        self.scheduler = None

    def tearDown(self):
        if self.scheduler is not None:
            self.scheduler.close(timeout=5)

    def test_start_rejects_unsupported_class(self):
        for network_class in ('D', 'E', None):
            scheduler = ProbeScheduler(make_host_info(network_class, ''), RecordingTransmit())
            with self.assertRaises(UnsupportedNetworkClassError):
                scheduler.start()
            self.assertEqual(scheduler.timer_state, TIMER_DISARMED)
            scheduler.close()

    def test_start_sweeps_immediately_then_rearms(self):
        transmit = RecordingTransmit()
        self.scheduler = ProbeScheduler(make_host_info('C', '192.168.1'), transmit, interval=3600)
        self.scheduler.start()

        self.assertTrue(wait_until(lambda: self.scheduler.sweep_count == 1))
        self.assertEqual(len(transmit.frame_list), 254)
        self.assertEqual(self.scheduler.timer_state, TIMER_ARMED)

    def test_timer_disarmed_during_sweep(self):
        state_list = []

        def transmit(frame):
            state_list.append(self.scheduler.timer_state)

        self.scheduler = ProbeScheduler(make_host_info('C', '192.168.1'), transmit, interval=3600)
        self.scheduler.start()

        self.assertTrue(wait_until(lambda: self.scheduler.sweep_count == 1))
        self.assertEqual(set(state_list), {TIMER_DISARMED})

    def test_sweeps_never_overlap(self):
        transmit = RecordingTransmit(delay=0.002)
        self.scheduler = ProbeScheduler(make_host_info('C', '192.168.1'), transmit, interval=0, max_probes_per_sweep=10)
        self.scheduler.start()

        for _ in range(5):
            self.scheduler.trigger_immediate_sweep()
            time.sleep(0.01)

        self.assertTrue(wait_until(lambda: self.scheduler.sweep_count >= 4))
        self.scheduler.pause()

        self.assertEqual(transmit.max_active_count, 1)
        self.assertFalse(self.scheduler.is_sweeping)
        self.assertEqual(self.scheduler.timer_state, TIMER_DISARMED)

    def test_pause_stops_in_flight_sweep(self):
        transmit = RecordingTransmit(delay=0.001)
        self.scheduler = ProbeScheduler(make_host_info('B', '172.16'), transmit, interval=3600)
        self.scheduler.start()

        self.assertTrue(wait_until(lambda: transmit.call_count > 10))
        self.scheduler.pause(wait=True)

        self.assertFalse(self.scheduler.is_sweeping)
        self.assertEqual(self.scheduler.timer_state, TIMER_DISARMED)
        self.assertLess(transmit.call_count, 254 * 254)

        # Nothing is sent while paused
        call_count = transmit.call_count
        time.sleep(0.1)
        self.assertEqual(transmit.call_count, call_count)

    def test_trigger_while_paused_runs_one_sweep(self):
        transmit = RecordingTransmit()
        self.scheduler = ProbeScheduler(make_host_info('C', '192.168.1'), transmit, interval=0)

        self.scheduler.trigger_immediate_sweep()

        self.assertTrue(wait_until(lambda: self.scheduler.sweep_count == 1))
        time.sleep(0.1)
        self.assertEqual(self.scheduler.sweep_count, 1)
        self.assertEqual(self.scheduler.timer_state, TIMER_DISARMED)

    def test_resume_rearms(self):
        transmit = RecordingTransmit()
        self.scheduler = ProbeScheduler(make_host_info('C', '192.168.1'), transmit, interval=3600)
        self.scheduler.start()
        self.assertTrue(wait_until(lambda: self.scheduler.sweep_count == 1))

        self.scheduler.pause()
        self.scheduler.resume()

        self.assertTrue(wait_until(lambda: self.scheduler.sweep_count == 2))

    def check_unpause_during_cancelled_sweep(self, unpause):
        transmit = RecordingTransmit(delay=0.001)
        self.scheduler = ProbeScheduler(make_host_info('C', '192.168.1'), transmit, interval=3600)
        self.scheduler.start()

        self.assertTrue(wait_until(lambda: transmit.call_count > 10))
        self.scheduler.pause(wait=False)
        unpause(self.scheduler)

        # The next full sweep follows at once instead of one interval later
        self.assertTrue(wait_until(lambda: self.scheduler.sweep_count == 2))
        target_list = [sc.Ether(frame)[sc.ARP].pdst for frame in transmit.frame_list[-254:]]
        self.assertEqual(target_list, [f'192.168.1.{i}' for i in range(1, 255)])
        self.assertEqual(self.scheduler.timer_state, TIMER_ARMED)

    def test_resume_during_cancelled_sweep(self):
        self.check_unpause_during_cancelled_sweep(lambda scheduler: scheduler.resume())

    def test_start_during_cancelled_sweep(self):
        self.check_unpause_during_cancelled_sweep(lambda scheduler: scheduler.start())

    def test_start_while_running_does_not_queue_sweep(self):
        transmit = RecordingTransmit(delay=0.001)
        self.scheduler = ProbeScheduler(make_host_info('C', '192.168.1'), transmit, interval=3600)
        self.scheduler.start()

        self.assertTrue(wait_until(lambda: transmit.call_count > 10))
        self.scheduler.start()

        self.assertTrue(wait_until(lambda: self.scheduler.sweep_count == 1))
        time.sleep(0.1)
        self.assertEqual(self.scheduler.sweep_count, 1)
        self.assertEqual(transmit.call_count, 254)

    def test_close_is_idempotent(self):
        self.scheduler = ProbeScheduler(make_host_info('C', '192.168.1'), RecordingTransmit())
        self.scheduler.start()
        self.scheduler.close()
        self.scheduler.close()

        for operation in (self.scheduler.start, self.scheduler.resume, self.scheduler.trigger_immediate_sweep):
            with self.assertRaises(EngineDisposedError):
                operation()


if __name__ == '__main__':
    unittest.main()
