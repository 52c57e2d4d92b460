"""
The host's own network identity, as seen by the discovery engine.

The engine does not compute these values itself; `networking.get_host_info()`
reads them from the OS, and tests construct them directly.

"""
import typing

import netaddr


BROADCAST_MAC = 'ff:ff:ff:ff:ff:ff'
EMPTY_MAC = '00:00:00:00:00:00'

NETWORK_CLASS_A = 'A'
NETWORK_CLASS_B = 'B'
NETWORK_CLASS_C = 'C'
NETWORK_CLASS_D = 'D'
NETWORK_CLASS_E = 'E'

# Classes whose address space can be swept, mapped to the number of leading
# octets that stay fixed during a sweep.
SCANNABLE_CLASS_PREFIX_OCTETS = {
    NETWORK_CLASS_A: 1,
    NETWORK_CLASS_B: 2,
    NETWORK_CLASS_C: 3,
}


class HostInfo(typing.NamedTuple):

    host_ip: str
    host_mac: str
    subnet_root: str
    network_class: typing.Optional[str]
    gateway_ip: str = ''
    interface_name: str = ''


def detect_network_class(ip_addr: str, netmask: typing.Optional[str] = None) -> typing.Optional[str]:
    """
    Returns the network class ('A' to 'E') of the given IPv4 address, or None
    if it cannot be determined.

    Multicast (D) and reserved (E) addresses are recognized by their first
    octet. For unicast addresses, a known netmask takes precedence: a /24 or
    longer prefix is swept as class C, /16 to /23 as class B, and /8 to /15 as
    class A. Without a netmask, the classful default for the first octet is
    used.

    """
    try:
        addr = netaddr.IPAddress(ip_addr, version=4)
    except (netaddr.AddrFormatError, ValueError, TypeError):
        return None

    first_octet = addr.words[0]
    if 224 <= first_octet <= 239:
        return NETWORK_CLASS_D
    if first_octet >= 240:
        return NETWORK_CLASS_E

    if netmask:
        try:
            prefix_len = netaddr.IPAddress(netmask).netmask_bits()
        except (netaddr.AddrFormatError, ValueError, TypeError):
            return None
        if prefix_len >= 24:
            return NETWORK_CLASS_C
        if prefix_len >= 16:
            return NETWORK_CLASS_B
        if prefix_len >= 8:
            return NETWORK_CLASS_A
        return None

    if first_octet < 128:
        return NETWORK_CLASS_A
    if first_octet < 192:
        return NETWORK_CLASS_B
    return NETWORK_CLASS_C


def get_subnet_root(ip_addr: str, network_class: typing.Optional[str]) -> str:
    """
    Returns the fixed leading octets of the host's address for a sweep, e.g.
    '192.168.1' for 192.168.1.20 in a class C network. Returns '' for classes
    that cannot be swept.

    """
    prefix_octets = SCANNABLE_CLASS_PREFIX_OCTETS.get(network_class)
    if prefix_octets is None:
        return ''

    octets = str(netaddr.IPAddress(ip_addr, version=4)).split('.')
    return '.'.join(octets[:prefix_octets])


def make_host_info(host_ip, host_mac, netmask=None, gateway_ip='', interface_name=''):
    """Builds a HostInfo from raw interface values."""

    network_class = detect_network_class(host_ip, netmask)
    return HostInfo(
        host_ip=host_ip,
        host_mac=normalize_mac(host_mac),
        subnet_root=get_subnet_root(host_ip, network_class),
        network_class=network_class,
        gateway_ip=gateway_ip,
        interface_name=interface_name
    )


def normalize_mac(mac_addr: str) -> str:
    """Returns the MAC address as lower-case, colon-separated text. Raises netaddr.AddrFormatError if invalid."""

    return str(netaddr.EUI(mac_addr, dialect=netaddr.mac_unix_expanded))
