"""
Reads the host's own network parameters (address, MAC, netmask, gateway) from
the operating system.

"""
import socket
import time
import typing

import netaddr
import netifaces
import scapy.all as sc
import logging

from . import common
from .capture_engine import resolve_adapter
from .errors import HostNetworkError
from .host_info import HostInfo, make_host_info

logger = logging.getLogger(__name__)


# How many times to read the route table before giving up, 2 seconds apart
ROUTE_RETRY_COUNT = 15


def get_host_info(adapter_name: typing.Optional[str] = None) -> HostInfo:
    """
    Returns the HostInfo of the named adapter, or of the default route's
    interface if no name is given. Raises HostNetworkError or
    AdapterNotFoundError.

    """
    if adapter_name:
        iface = resolve_adapter(adapter_name)
        iface_name = iface.network_name
        host_ip = sc.get_if_addr(iface)
        gateway_ip = get_gateway_ip(iface_name)
    else:
        (gateway_ip, iface_name, host_ip) = get_default_route()
        adapter_name = sc.conf.ifaces.dev_from_networkname(iface_name).name

    if not host_ip or host_ip == '0.0.0.0':
        raise HostNetworkError(f'Adapter {adapter_name} has no IPv4 address', {'adapter': adapter_name})

    try:
        host_mac = sc.get_if_hwaddr(iface_name)
    except (OSError, ValueError, sc.Scapy_Exception) as e:
        raise HostNetworkError(f'Cannot read the MAC address of {adapter_name}: {e}', {'adapter': adapter_name}) from e

    netmask = get_network_mask(iface_name, host_ip)
    if netmask is None:
        logger.warning(f'[networking] No netmask found for {adapter_name}; assuming the classful default.')

    host_info = make_host_info(
        host_ip, host_mac,
        netmask=netmask,
        gateway_ip=gateway_ip or '',
        interface_name=adapter_name
    )

    logger.info(f'[networking] Gateway IP address: {host_info.gateway_ip}, Host Interface: {host_info.interface_name}, Host IP address: {host_info.host_ip}, Host MAC address: {host_info.host_mac}, Network class: {host_info.network_class}, Subnet root: {host_info.subnet_root}')

    return host_info


def get_default_route():
    """
    Returns (gateway_ip, iface, host_ip) of the default route. Raises
    HostNetworkError if there is none.

    """

    # Discover the active/preferred network interface
    # by connecting to Google's public DNS server
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.settimeout(10)
            s.connect(("8.8.8.8", 80))
            iface_ip = s.getsockname()[0]
    except OSError as e:
        raise HostNetworkError(f'No network connectivity: {e}') from e

    default_route = None

    for _ in range(ROUTE_RETRY_COUNT):

        # Get all routes
        sc.conf.route.resync()
        routes = sc.conf.route.routes
        if not routes:
            logger.error('[networking] No routes found. Retrying')
            time.sleep(2)
            continue

        # Get the default route
        for route in routes:
            if route[4] == iface_ip and route[2] != '0.0.0.0':
                default_route = route[2:5]
                break

        if default_route:
            break

        logger.error('[networking] No default routes found. Retrying')
        time.sleep(2)

    if default_route is None:
        raise HostNetworkError(f'No default route found after {ROUTE_RETRY_COUNT * 2} seconds')

    return tuple(default_route)


def get_gateway_ip(iface_name: str) -> str:
    """Returns the gateway reachable through the interface, or '' if there is none."""

    sc.conf.route.resync()
    for route in sc.conf.route.routes:
        if route[3] == iface_name and route[2] != '0.0.0.0':
            return route[2]

    return ''


def get_network_mask(iface_name: str, host_ip: str):
    """
    Returns the network mask of the interface for the given address, as a
    string in the format, e.g., `255.255.255.0`.

    Returns None upon error.

    """
    if common.get_os() == 'windows':
        # netifaces names Windows adapters by GUID, e.g. \Device\NPF_{GUID} -> {GUID}
        iface_name = iface_name.replace('\\Device\\NPF_', '')

    try:
        address_list = netifaces.ifaddresses(str(iface_name)).get(netifaces.AF_INET, [])
    except ValueError:
        return None

    for address in address_list:
        if address.get('addr') == host_ip and address.get('netmask'):
            return address['netmask']

    return None


def get_network_ip_range(host_info: HostInfo) -> netaddr.IPNetwork:
    """Returns the network that a sweep of the host's network class covers."""

    prefix_octets = len(host_info.subnet_root.split('.'))
    padding = '.0' * (4 - prefix_octets)
    return netaddr.IPNetwork(f'{host_info.subnet_root}{padding}/{prefix_octets * 8}')
