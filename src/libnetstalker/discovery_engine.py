"""
Discovers devices on the local network by combining ARP capture, periodic ARP
probing and the device registry behind a scan/refresh/stop/dispose surface.

Every ARP request or reply seen on the adapter identifies its sender: an unseen
MAC address becomes a new device, a known one has its last-seen time touched.
New devices are handed to the name resolver and the type identifier on a worker
pool, so capture never waits for them.

"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from .device_registry import DeviceRegistry
from .errors import EngineDisposedError
from .probe_scheduler import DEFAULT_PROBE_INTERVAL, ProbeScheduler, check_network_class


logger = logging.getLogger(__name__)


STATE_IDLE = 'idle'
STATE_RUNNING = 'running'
STATE_DISPOSED = 'disposed'

DEFAULT_ENRICHMENT_WORKERS = 4


class DiscoveryEngine(object):
    """
    Usage:

    engine = DiscoveryEngine(host_info, CaptureEngine('eth0'), name_resolver=DeviceNameResolver())
    subscription = engine.registry.subscribe()
    engine.scan()
    ...
    engine.dispose()

    """

    def __init__(self, host_info, capture_engine, registry=None, name_resolver=None, type_identifier=None,
                 probe_interval=DEFAULT_PROBE_INTERVAL, max_probes_per_sweep=None,
                 enrichment_workers=DEFAULT_ENRICHMENT_WORKERS) -> None:

        self._host_info = host_info
        self._capture_engine = capture_engine
        self._owns_registry = registry is None
        self._registry = registry if registry is not None else DeviceRegistry()
        self._name_resolver = name_resolver
        self._type_identifier = type_identifier

        self._scheduler = ProbeScheduler(
            host_info,
            capture_engine.transmit,
            interval=probe_interval,
            max_probes_per_sweep=max_probes_per_sweep
        )

        self._enrichment_executor = ThreadPoolExecutor(
            max_workers=enrichment_workers,
            thread_name_prefix='enrichment'
        )

        # Serializes scan/refresh/stop/dispose
        self._transition_lock = threading.Lock()
        self._state = STATE_IDLE

        logger.info('[Discovery] Service initialized')

    @property
    def is_running(self) -> bool:
        return self._state == STATE_RUNNING

    @property
    def is_disposed(self) -> bool:
        return self._state == STATE_DISPOSED

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    @property
    def host_info(self):
        return self._host_info

    def scan(self):
        """
        Starts discovery. Does nothing if already running. Raises a
        ConfigurationError or AdapterOpenFailedError if discovery cannot start,
        in which case nothing is left running.

        """
        with self._transition_lock:
            self._check_not_disposed()

            if self._state == STATE_RUNNING:
                logger.debug('[Discovery] scan() called while running; ignored')
                return

            check_network_class(self._host_info)

            self._capture_engine.open()
            self._capture_engine.start_capture(self.handle_observation)

            try:
                self._scheduler.start()
            except Exception:
                self._capture_engine.stop_capture()
                raise

            self._state = STATE_RUNNING

        logger.info('[Discovery] Service started')

    def refresh(self) -> bool:
        """
        Sweeps the address space now instead of waiting for the next tick.
        Returns False, doing nothing, if discovery is not running.

        """
        with self._transition_lock:
            self._check_not_disposed()

            if self._state != STATE_RUNNING:
                logger.warning('[Discovery] refresh() called while not running; ignored')
                return False

            self._scheduler.trigger_immediate_sweep()

        logger.info('[Discovery] Refresh requested')
        return True

    def stop(self):
        """
        Stops probing and capturing. An in-flight sweep finishes its current
        transmit first. The adapter stays open for a later scan().

        """
        with self._transition_lock:
            self._check_not_disposed()
            if self._state != STATE_RUNNING:
                return
            self._stop_locked()

        logger.info('[Discovery] Service stopped')

    def dispose(self):
        """
        Stops discovery and releases the adapter for good. Disposing twice is a
        no-op. If the engine created its own registry, its subscriptions end;
        the devices stay readable.

        """
        with self._transition_lock:
            if self._state == STATE_DISPOSED:
                return

            if self._state == STATE_RUNNING:
                self._stop_locked()

            self._state = STATE_DISPOSED

            try:
                self._scheduler.close()
                self._capture_engine.close()
            finally:
                self._enrichment_executor.shutdown(wait=False)
                if self._owns_registry:
                    self._registry.close_subscriptions()

        logger.info('[Discovery] Service disposed')

    def handle_observation(self, observation):
        """
        Records the sender of a captured ARP packet. Called from the capture
        thread for every decoded frame.

        Frames sent from the host's own MAC address and frames whose sender
        IP is 0.0.0.0 (ARP probes from hosts without an address yet) are not
        recorded.

        """
        if observation.sender_mac == self._host_info.host_mac:
            return
        if observation.sender_ip == '0.0.0.0':
            return

        device, was_newly_created = self._registry.upsert(observation.sender_mac, observation.sender_ip)

        if was_newly_created:
            logger.info(f'[Discovery] New device {device.mac_address} at {device.ip_address}')
            self._dispatch_enrichment(device)

    def _stop_locked(self):
        # Scheduler first, so that no transmit is in flight once capture stops
        self._state = STATE_IDLE
        self._scheduler.pause(wait=True)
        self._capture_engine.stop_capture()

    def _check_not_disposed(self):
        if self._state == STATE_DISPOSED:
            raise EngineDisposedError('The discovery engine has been disposed')

    def _dispatch_enrichment(self, device):

        try:
            if self._name_resolver is not None:
                self._enrichment_executor.submit(self._resolve_name, device)

            if self._type_identifier is not None:
                self._enrichment_executor.submit(self._identify_type, device)

        except RuntimeError:
            # The executor is shut down while disposing
            logger.debug(f'[Discovery] Enrichment skipped for {device.mac_address}; engine disposed')

    def _resolve_name(self, device):

        try:
            display_name = self._name_resolver.resolve_name(device)
        except Exception:
            logger.exception(f'[Discovery] Name resolution failed for {device.mac_address}')
            return

        if display_name:
            self._registry.annotate(device.mac_address, display_name=display_name)

    def _identify_type(self, device):

        try:
            device_type = self._type_identifier.identify(device)
        except Exception:
            logger.exception(f'[Discovery] Type identification failed for {device.mac_address}')
            return

        if device_type:
            self._registry.annotate(device.mac_address, device_type=device_type)
