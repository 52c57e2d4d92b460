"""
Resolves a display name for a discovered device: first by reverse DNS, then
from the mDNS names announced on the local network.

mDNS discovery runs `libnetstalker.mdns_names` in a separate process. Running
zeroconf repeatedly inside a long-lived process leaks sockets until the OS runs
out of them; a subprocess releases them when it exits. Results are cached for
`cache_ttl` seconds, so a burst of new devices triggers one discovery only.

"""
import json
import logging
import socket
import subprocess
import sys
import threading
import time


logger = logging.getLogger(__name__)


DEFAULT_MDNS_CACHE_TTL = 300

# The helper browses service types and then devices, 5 seconds each
MDNS_HELPER_TIMEOUT = 30


def get_reverse_dns_name(ip_addr: str):
    """Returns the PTR name of the IP address, or None."""

    try:
        hostname = socket.gethostbyaddr(ip_addr)[0]
    except OSError:
        return None

    # Some resolvers echo the address back when there is no PTR record
    if not hostname or hostname == ip_addr:
        return None

    return hostname


def run_mdns_helper():
    """
    Runs the mDNS helper in a subprocess. Returns a dict mapping IP addresses
    to lists of names; returns an empty dict on failure.

    """
    logger.info('[Name Resolver] Discovering mDNS names...')

    try:
        proc = subprocess.run(
            [sys.executable, '-m', 'libnetstalker.mdns_names'],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=MDNS_HELPER_TIMEOUT
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.error(f'[Name Resolver] Error running the mDNS helper: {e}')
        return {}

    if proc.returncode != 0:
        logger.error(f'[Name Resolver] Error discovering mDNS names: {proc.stderr.decode(errors="replace")}')
        return {}

    try:
        return json.loads(proc.stdout.decode().strip())
    except json.JSONDecodeError as e:
        logger.error(f'[Name Resolver] Error decoding JSON output: {e}')
        return {}


class DeviceNameResolver(object):

    def __init__(self, use_mdns=True, cache_ttl=DEFAULT_MDNS_CACHE_TTL, mdns_lookup=run_mdns_helper, reverse_dns_lookup=get_reverse_dns_name) -> None:

        self._use_mdns = use_mdns
        self._cache_ttl = cache_ttl
        self._mdns_lookup = mdns_lookup
        self._reverse_dns_lookup = reverse_dns_lookup

        # Held while refreshing, so that concurrent lookups share one discovery
        self._mdns_lock = threading.Lock()
        self._mdns_name_dict = {}
        self._mdns_updated_ts = None

    def resolve_name(self, device):
        """Returns a display name for the device, or None if none is found."""

        try:
            hostname = self._reverse_dns_lookup(device.ip_address)
            if hostname:
                logger.info(f'[Name Resolver] {device.mac_address} ({device.ip_address}) -> {hostname} (data_source: dns)')
                return hostname

            if not self._use_mdns:
                return None

            name_list = self._get_mdns_names().get(device.ip_address)
            if name_list:
                logger.info(f'[Name Resolver] {device.mac_address} ({device.ip_address}) -> {name_list[0]} (data_source: mdns)')
                return name_list[0]

        except Exception:
            logger.exception(f'[Name Resolver] Error resolving the name of {device.mac_address} ({device.ip_address})')

        return None

    def _get_mdns_names(self):

        with self._mdns_lock:
            if self._mdns_updated_ts is None or time.time() - self._mdns_updated_ts > self._cache_ttl:
                self._mdns_name_dict = self._mdns_lookup()
                self._mdns_updated_ts = time.time()
            return self._mdns_name_dict
