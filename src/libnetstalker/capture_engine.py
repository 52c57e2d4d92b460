"""
Captures ARP packets from the network adapter and injects ARP probes.

The adapter is opened in promiscuous mode with an `arp` capture filter, so
all other traffic is dropped by the driver and never reaches the decoder.

"""
import logging
import threading

import scapy.all as sc

from . import global_state
from . import packet_codec
from .errors import AdapterNotFoundError, AdapterOpenFailedError, CaptureError
from .safe_loop import SafeLoopThread


logger = logging.getLogger(__name__)


ARP_CAPTURE_FILTER = 'arp'

# Sniff in short windows, so that stop_capture() takes effect quickly even
# when no ARP traffic arrives.
DEFAULT_POLL_TIMEOUT = 1


def resolve_adapter(friendly_name: str, interfaces=None):
    """
    Returns the scapy network interface whose name or description equals
    `friendly_name`. Raises AdapterNotFoundError if there is no match or more
    than one.

    """
    if interfaces is None:
        interfaces = sc.conf.ifaces.values()

    match_list = []
    for iface in interfaces:
        if friendly_name in (iface.name, iface.description):
            if iface not in match_list:
                match_list.append(iface)

    if not match_list:
        raise AdapterNotFoundError(
            f'No network adapter named {friendly_name!r}',
            {'adapter': friendly_name}
        )

    if len(match_list) > 1:
        raise AdapterNotFoundError(
            f'More than one network adapter named {friendly_name!r}',
            {'adapter': friendly_name, 'matches': [iface.name for iface in match_list]}
        )

    return match_list[0]


class AdapterHandle(object):
    """An open listen socket (promiscuous, ARP only) and send socket on one interface."""

    def __init__(self, iface) -> None:

        self.iface = iface

        self._listen_socket = sc.conf.L2listen(iface=iface, promisc=True, filter=ARP_CAPTURE_FILTER)
        try:
            self._send_socket = sc.conf.L2socket(iface=iface, promisc=True)
        except Exception:
            self._listen_socket.close()
            raise

    def send(self, frame: bytes):
        self._send_socket.send(frame)

    def sniff(self, prn, stop_filter, timeout):
        sc.sniff(
            opened_socket=self._listen_socket,
            prn=prn,
            stop_filter=stop_filter,
            timeout=timeout,
            store=False
        )

    def close(self):
        try:
            self._listen_socket.close()
        finally:
            self._send_socket.close()


def open_adapter(adapter_name: str) -> AdapterHandle:
    """Opens the named adapter for ARP capture and injection."""

    iface = resolve_adapter(adapter_name)

    try:
        return AdapterHandle(iface)
    except (OSError, sc.Scapy_Exception) as e:
        raise AdapterOpenFailedError(
            f'Cannot open network adapter {adapter_name!r}: {e}',
            {'adapter': adapter_name}
        ) from e


class CaptureEngine(object):

    def __init__(self, adapter_name, opener=open_adapter, poll_timeout=DEFAULT_POLL_TIMEOUT) -> None:

        self.adapter_name = adapter_name
        self._opener = opener
        self._poll_timeout = poll_timeout

        # Guards the attributes below; never held during adapter I/O
        self._lock = threading.Lock()

        self._handle = None
        self._is_capturing = False
        self._capture_loop = None
        self._observation_handler = None

    @property
    def is_open(self):
        with self._lock:
            return self._handle is not None

    @property
    def is_capturing(self):
        with self._lock:
            return self._is_capturing

    def open(self):
        """
        Opens the adapter if not already open and returns the handle. Raises
        AdapterNotFoundError or AdapterOpenFailedError.

        """
        with self._lock:
            if self._handle is not None:
                return self._handle

        if not global_state.claim_adapter(self.adapter_name):
            raise AdapterOpenFailedError(
                f'Network adapter {self.adapter_name!r} is already held by another capture engine',
                {'adapter': self.adapter_name}
            )

        try:
            handle = self._opener(self.adapter_name)
        except Exception:
            global_state.release_adapter(self.adapter_name)
            raise

        with self._lock:
            self._handle = handle

        logger.info(f'[Capture] Opened adapter {self.adapter_name} with filter "{ARP_CAPTURE_FILTER}".')
        return handle

    def start_capture(self, observation_handler):
        """
        Starts the receive loop. Each captured frame is decoded, and every ARP
        observation is passed to `observation_handler`.

        """
        with self._lock:
            if self._handle is None:
                raise CaptureError('Cannot start capture: the adapter is not open', {'adapter': self.adapter_name})
            if self._is_capturing:
                return
            self._observation_handler = observation_handler
            self._is_capturing = True
            self._capture_loop = SafeLoopThread(self._capture_window, name='arp-capture')

        logger.info(f'[Capture] Capturing on {self.adapter_name}.')

    def stop_capture(self):
        """Stops the receive loop and waits for it to exit. The adapter stays open."""

        with self._lock:
            if not self._is_capturing:
                return
            self._is_capturing = False
            capture_loop = self._capture_loop
            self._capture_loop = None

        capture_loop.stop()
        capture_loop.join()

        logger.info(f'[Capture] Stopped capturing on {self.adapter_name}.')

    def transmit(self, frame: bytes):
        """Injects a frame on the adapter. Raises CaptureError if the adapter is not open."""

        handle = self._handle
        if handle is None:
            raise CaptureError('Cannot transmit: the adapter is not open', {'adapter': self.adapter_name})

        handle.send(frame)

    def close(self):
        """Stops capture and releases the adapter. Closing twice is a no-op."""

        self.stop_capture()

        with self._lock:
            handle = self._handle
            self._handle = None

        if handle is None:
            return

        try:
            handle.close()
        finally:
            global_state.release_adapter(self.adapter_name)

        logger.info(f'[Capture] Closed adapter {self.adapter_name}.')

    def _capture_window(self):
        """Captures frames for at most one poll timeout."""

        handle = self._handle
        if handle is None or not self.is_capturing:
            return

        handle.sniff(
            prn=self._process_packet,
            stop_filter=lambda _: not self.is_capturing,
            timeout=self._poll_timeout
        )

    def _process_packet(self, pkt):

        if not self.is_capturing:
            return

        observation = packet_codec.decode(bytes(pkt))
        if observation is None:
            return

        try:
            self._observation_handler(observation)
        except Exception as e:
            logger.error(f'[Capture] Error handling {observation}: {e}', exc_info=True)
