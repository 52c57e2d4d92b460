"""
Builds ARP probe frames and parses captured ARP frames.

Both functions are pure: they do not touch the network or any shared state.

"""
import logging
import typing

import scapy.all as sc

from .host_info import BROADCAST_MAC, EMPTY_MAC


logger = logging.getLogger(__name__)


ARP_OP_REQUEST = 1
ARP_OP_REPLY = 2

# Ethernet header (14 bytes) + ARP payload for IPv4 over Ethernet (28 bytes)
MIN_ARP_FRAME_LENGTH = 42


class ArpObservation(typing.NamedTuple):
    """The sender of an ARP request or reply."""

    sender_mac: str
    sender_ip: str
    operation: int


def encode_probe(target_ip: str, host_info) -> bytes:
    """
    Returns an Ethernet broadcast frame carrying an ARP request for
    `target_ip`, sent on behalf of the host described by `host_info`.

    """
    arp_pkt = sc.Ether(src=host_info.host_mac, dst=BROADCAST_MAC) / \
        sc.ARP(
            op=ARP_OP_REQUEST,
            hwsrc=host_info.host_mac,
            psrc=host_info.host_ip,
            hwdst=EMPTY_MAC,
            pdst=target_ip
        )

    return bytes(arp_pkt)


def decode(raw_frame: bytes) -> typing.Optional[ArpObservation]:
    """
    Parses a captured Ethernet frame. Returns an ArpObservation if the frame is
    an ARP request or reply for IPv4 over Ethernet; returns None otherwise,
    including for truncated or malformed frames.

    """
    if raw_frame is None or len(raw_frame) < MIN_ARP_FRAME_LENGTH:
        return None

    try:
        pkt = sc.Ether(bytes(raw_frame))
    except Exception as e:
        logger.debug(f'[Packet Codec] Cannot parse frame: {e}')
        return None

    if sc.ARP not in pkt:
        return None

    arp = pkt[sc.ARP]

    # Only Ethernet hardware addresses and IPv4 protocol addresses
    if arp.hwtype != 1 or arp.ptype != 0x0800 or arp.hwlen != 6 or arp.plen != 4:
        return None

    if arp.op not in (ARP_OP_REQUEST, ARP_OP_REPLY):
        return None

    if not arp.hwsrc or not arp.psrc:
        return None

    return ArpObservation(
        sender_mac=str(arp.hwsrc).lower(),
        sender_ip=str(arp.psrc),
        operation=int(arp.op)
    )
