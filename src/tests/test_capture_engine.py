import collections
import threading
import unittest

import scapy.all as sc

from libnetstalker import global_state
from libnetstalker.capture_engine import CaptureEngine, resolve_adapter
from libnetstalker.errors import AdapterNotFoundError, AdapterOpenFailedError, CaptureError

from fakes import CountingOpener, HOST_MAC, make_arp_frame, wait_until


FakeInterface = collections.namedtuple('FakeInterface', ['name', 'description', 'network_name'])


class TestResolveAdapter(unittest.TestCase):

    interfaces = [
        FakeInterface('lo', 'Loopback', 'lo'),
        FakeInterface('Ethernet', 'Intel(R) Ethernet Connection', '\\Device\\NPF_{1111}'),
        FakeInterface('Wi-Fi', 'Wireless Adapter', '\\Device\\NPF_{2222}'),
        FakeInterface('Wi-Fi 2', 'Wireless Adapter', '\\Device\\NPF_{3333}'),
    ]

    def test_match_by_name(self):
        self.assertEqual(resolve_adapter('Ethernet', self.interfaces).network_name, '\\Device\\NPF_{1111}')

    def test_match_by_description(self):
        self.assertEqual(resolve_adapter('Intel(R) Ethernet Connection', self.interfaces).name, 'Ethernet')

    def test_no_match(self):
        with self.assertRaises(AdapterNotFoundError) as cm:
            resolve_adapter('eth9', self.interfaces)
        self.assertIn('eth9', cm.exception.user_message)

    def test_ambiguous_match(self):
        with self.assertRaises(AdapterNotFoundError) as cm:
            resolve_adapter('Wireless Adapter', self.interfaces)
        self.assertEqual(cm.exception.details['matches'], ['Wi-Fi', 'Wi-Fi 2'])
        self.assertIn('ambiguous', cm.exception.user_message)


class TestCaptureEngine(unittest.TestCase):

    def setUp(self):
        self.opener = CountingOpener()
        self.handle = self.opener.handle
        self.engine = CaptureEngine('test-capture0', opener=self.opener, poll_timeout=0.05)

    def tearDown(self):
        self.engine.close()

    def test_open_is_idempotent(self):
        first = self.engine.open()
        second = self.engine.open()

        self.assertIs(first, second)
        self.assertEqual(self.opener.call_count, 1)
        self.assertTrue(self.engine.is_open)

    def test_close_twice(self):
        self.engine.open()
        self.engine.close()
        self.engine.close()

        self.assertEqual(self.handle.close_count, 1)
        self.assertFalse(self.engine.is_open)
        self.assertNotIn('test-capture0', global_state.held_adapter_set)

    def test_adapter_is_exclusive(self):
        self.engine.open()

        other = CaptureEngine('test-capture0', opener=CountingOpener())
        with self.assertRaises(AdapterOpenFailedError):
            other.open()

        self.engine.close()
        other.open()
        other.close()

    def test_failed_open_releases_adapter(self):
        opener = CountingOpener(error=AdapterNotFoundError('missing', {'adapter': 'test-capture1'}))
        engine = CaptureEngine('test-capture1', opener=opener)

        with self.assertRaises(AdapterNotFoundError):
            engine.open()

        self.assertFalse(engine.is_open)
        self.assertNotIn('test-capture1', global_state.held_adapter_set)

    def test_transmit(self):
        with self.assertRaises(CaptureError):
            self.engine.transmit(b'frame')

        self.engine.open()
        self.engine.transmit(b'frame')
        self.assertEqual(self.handle.sent_frames, [b'frame'])

        self.engine.close()
        with self.assertRaises(CaptureError):
            self.engine.transmit(b'frame')

    def test_start_capture_requires_open_adapter(self):
        with self.assertRaises(CaptureError):
            self.engine.start_capture(lambda observation: None)

    def test_captured_frames_reach_handler(self):
        observation_list = []
        self.engine.open()
        self.engine.start_capture(observation_list.append)

        self.handle.inbound.put(make_arp_frame('aa:aa:aa:aa:aa:01', '10.0.0.5'))
        self.handle.inbound.put(bytes(sc.Ether(src='aa:aa:aa:aa:aa:09', dst=HOST_MAC) / sc.IP() / sc.ICMP() / (b'x' * 20)))
        self.handle.inbound.put(b'\x00' * 5)
        self.handle.inbound.put(make_arp_frame('aa:aa:aa:aa:aa:02', '10.0.0.6', op=1))

        self.assertTrue(wait_until(lambda: len(observation_list) == 2))
        self.assertEqual(
            [(o.sender_mac, o.sender_ip) for o in observation_list],
            [('aa:aa:aa:aa:aa:01', '10.0.0.5'), ('aa:aa:aa:aa:aa:02', '10.0.0.6')]
        )

    def test_handler_errors_do_not_stop_capture(self):
        observation_list = []

        def handler(observation):
            if observation.sender_mac == 'aa:aa:aa:aa:aa:01':
                raise ValueError('boom')
            observation_list.append(observation)

        self.engine.open()
        self.engine.start_capture(handler)

        self.handle.inbound.put(make_arp_frame('aa:aa:aa:aa:aa:01', '10.0.0.5'))
        self.handle.inbound.put(make_arp_frame('aa:aa:aa:aa:aa:02', '10.0.0.6'))

        self.assertTrue(wait_until(lambda: len(observation_list) == 1))

    def test_stop_capture_keeps_adapter_open(self):
        observation_list = []
        self.engine.open()
        self.engine.start_capture(observation_list.append)
        self.engine.stop_capture()

        self.assertFalse(self.engine.is_capturing)
        self.assertTrue(self.engine.is_open)
        self.assertEqual(self.handle.close_count, 0)

        # Frames queued by the driver while stopped are read after a restart
        self.handle.inbound.put(make_arp_frame('aa:aa:aa:aa:aa:01', '10.0.0.5'))

        self.engine.start_capture(observation_list.append)
        self.assertTrue(wait_until(lambda: len(observation_list) == 1))

    def test_start_capture_is_idempotent(self):
        self.engine.open()
        self.engine.start_capture(lambda observation: None)
        self.engine.start_capture(lambda observation: None)

        capture_thread_list = [th for th in threading.enumerate() if th.name == 'arp-capture']
        self.assertEqual(len(capture_thread_list), 1)


if __name__ == '__main__':
    unittest.main()
