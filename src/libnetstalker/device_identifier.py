"""
Identifies the vendor of a device from the OUI of its MAC address, using the
IEEE registry bundled with netaddr.

"""
import functools
import logging

import netaddr


logger = logging.getLogger(__name__)


LOCALLY_ADMINISTERED_TYPE = 'Locally administered (randomized MAC)'


@functools.lru_cache(maxsize=1024)
def get_vendor(mac_addr: str) -> str:
    """Given a MAC address, returns the vendor. Returns '' if unknown. """

    try:
        return netaddr.EUI(mac_addr).oui.registration().org
    except (netaddr.NotRegisteredError, netaddr.AddrFormatError, IndexError, ValueError):
        return ''


def is_locally_administered(mac_addr: str) -> bool:
    """Returns True if the MAC address has the locally-administered bit set, as randomized MACs do."""

    first_octet = int(netaddr.EUI(mac_addr).words[0])
    return bool(first_octet & 0x02)


class DeviceTypeIdentifier(object):
    """Classifies a device by the vendor registered for its MAC address."""

    def identify(self, device):
        """Returns the vendor of the device, or None if it cannot be identified."""

        try:
            vendor = get_vendor(device.mac_address)
            if vendor:
                return vendor
            if is_locally_administered(device.mac_address):
                return LOCALLY_ADMINISTERED_TYPE
        except Exception:
            logger.exception(f'[Device Identifier] Error identifying {device.mac_address}')

        return None
