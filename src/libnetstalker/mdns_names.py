"""
Collects the mDNS names announced on the local network, grouped by IP address.

Run as `python -m libnetstalker.mdns_names` to print a JSON object mapping each
IP address to the list of names announced from it.

"""
from zeroconf import Zeroconf, ServiceBrowser, ServiceListener
import time
import json



class ServiceTypeListener(ServiceListener):
    """ Listener to discover available mDNS service types. """
    def __init__(self):
        self.service_types = set()

    def add_service(self, zeroconf, service_type, name):
        self.service_types.add(name)

    def remove_service(self, zeroconf, service_type, name):
        pass

    def update_service(self, zeroconf, service_type, name):
        pass


def get_all_service_types(timeout=5):
    """ Discover all available mDNS service types. """
    zeroconf = Zeroconf()
    listener = ServiceTypeListener()
    ServiceBrowser(zeroconf, "_services._dns-sd._udp.local.", listener)

    time.sleep(timeout)
    zeroconf.close()

    return listener.service_types


class MDNSNameListener(ServiceListener):
    """ Listener that records the server name of every instance of a service type. """
    def __init__(self):
        # Maps IP address to a set of names
        self.ip_name_dict = dict()

    def add_service(self, zeroconf, service_type, name):
        try:
            info = zeroconf.get_service_info(service_type, name)
        except Exception:
            return

        if not info:
            return

        device_name = get_device_name(info.server or name)
        if not device_name:
            return

        for ip_address in info.parsed_addresses():
            if ':' in ip_address:
                continue
            self.ip_name_dict.setdefault(ip_address, set()).add(device_name)

    def remove_service(self, zeroconf, service_type, name):
        pass

    def update_service(self, zeroconf, service_type, name):
        self.add_service(zeroconf, service_type, name)


def get_device_name(server_name):
    """ Turns 'Living-Room-TV.local.' into 'Living-Room-TV'. """
    server_name = (server_name or '').strip().rstrip('.')
    if server_name.endswith('.local'):
        server_name = server_name[:-len('.local')]
    return server_name


def get_mdns_names(service_type_discovery_timeout=5, device_discovery_timeout=5):
    """ Returns a dictionary mapping IP addresses to sorted lists of mDNS names. """

    service_types = get_all_service_types(timeout=service_type_discovery_timeout)

    zeroconf = Zeroconf()
    listener = MDNSNameListener()
    browser_list = []
    for service_type in service_types:
        try:
            browser_list.append(ServiceBrowser(zeroconf, service_type, listener))
        except Exception:
            continue

    time.sleep(device_discovery_timeout)
    zeroconf.close()

    return {
        ip_address: sorted(name_set)
        for (ip_address, name_set) in listener.ip_name_dict.items()
    }


if __name__ == "__main__":

    print(json.dumps(get_mdns_names()))
