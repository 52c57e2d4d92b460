import logging

from . import local_config

LOG_FILE = local_config.get('log_file', 'netstalker.log')

logging.basicConfig(filename=LOG_FILE, level=logging.DEBUG, format='%(asctime)s - %(levelname)s - %(message)s')
logging.getLogger("scapy.runtime").setLevel(logging.ERROR)
logger = logging.getLogger(__name__)

import argparse
import datetime
import queue
import sys

from . import common
from . import networking
from .capture_engine import CaptureEngine, DEFAULT_POLL_TIMEOUT
from .device_identifier import DeviceTypeIdentifier
from .device_registry import EVENT_INSERT
from .discovery_engine import DEFAULT_ENRICHMENT_WORKERS, DiscoveryEngine
from .errors import NetStalkerError
from .name_resolver import DEFAULT_MDNS_CACHE_TTL, DeviceNameResolver
from .probe_scheduler import DEFAULT_PROBE_INTERVAL


def create_engine(adapter_name=None) -> DiscoveryEngine:
    """
    Builds a DiscoveryEngine for the named adapter (or the default route's
    adapter), with its collaborators configured from the local config file.

    """
    if adapter_name is None:
        adapter_name = local_config.get('adapter_name')

    logger.info('[core] Initializing the networking variables')
    host_info = networking.get_host_info(adapter_name)

    capture_engine = CaptureEngine(
        host_info.interface_name,
        poll_timeout=local_config.get('capture_poll_timeout', DEFAULT_POLL_TIMEOUT)
    )

    name_resolver = None
    if local_config.get('resolve_device_names', True):
        name_resolver = DeviceNameResolver(
            cache_ttl=local_config.get('mdns_cache_ttl', DEFAULT_MDNS_CACHE_TTL)
        )

    # Optional: discovery works without it
    type_identifier = None
    if local_config.get('identify_device_types', True):
        type_identifier = DeviceTypeIdentifier()

    return DiscoveryEngine(
        host_info,
        capture_engine,
        name_resolver=name_resolver,
        type_identifier=type_identifier,
        probe_interval=local_config.get('probe_interval', DEFAULT_PROBE_INTERVAL),
        max_probes_per_sweep=local_config.get('max_probes_per_sweep'),
        enrichment_workers=local_config.get('enrichment_workers', DEFAULT_ENRICHMENT_WORKERS)
    )


def format_device(kind, device) -> str:

    last_seen = datetime.datetime.fromtimestamp(device.last_seen_ts).strftime('%H:%M:%S')
    marker = '+' if kind == EVENT_INSERT else '~'
    return f'{marker} {device.mac_address}  {device.ip_address:<15}  {last_seen}  {device.display_name or ""}  {device.device_type or ""}'


def main():
    """
    Execute this function to run discovery as a standalone application from the command line.

    """
    parser = argparse.ArgumentParser(description='Discover devices on the local network with ARP.')
    parser.add_argument('--adapter', help='friendly name of the network adapter to scan on')
    args = parser.parse_args()

    if not common.is_root():
        print('Device discovery must be run as root. Exiting.')
        sys.exit(1)

    try:
        engine = create_engine(args.adapter)
        engine.scan()
    except NetStalkerError as e:
        logger.error(f'[core] Cannot start discovery: {e}')
        print(e.user_message)
        sys.exit(1)

    print(f'Scanning {networking.get_network_ip_range(engine.host_info)} on {engine.host_info.interface_name}. Press Ctrl+C to stop.')

    subscription = engine.registry.subscribe()

    # Maps MAC address to the last printed (ip, name, type); plain touches are not printed
    printed_dict = {}

    # Loop until the user quits
    try:
        while True:
            try:
                event = subscription.get(timeout=1)
            except queue.Empty:
                continue

            device = event.device
            printed_key = (device.ip_address, device.display_name, device.device_type)
            if printed_dict.get(device.mac_address) == printed_key:
                continue
            printed_dict[device.mac_address] = printed_key

            print(format_device(event.kind, device))

    except KeyboardInterrupt:
        pass

    finally:
        subscription.close()
        engine.dispose()

    print(f'{len(engine.registry)} devices found.')


if __name__ == '__main__':
    main()
