"""
Exceptions raised by libnetstalker.

Every exception carries a human-readable `user_message` so that callers (the
command line, a UI) can show an actionable status such as "adapter not found"
instead of a raw internal error.

"""
from typing import Optional


class NetStalkerError(Exception):
    """
    Base exception for all libnetstalker errors.

    Attributes:
        message: Description of the error, used for logging.
        details: Optional dictionary with additional context.

    """

    user_message = 'Device discovery failed.'

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f'{self.message} (details: {self.details})'
        return self.message


class ConfigurationError(NetStalkerError):
    """Discovery cannot start with the current host or adapter configuration."""

    user_message = 'Device discovery is not configured correctly.'


class AdapterNotFoundError(ConfigurationError):
    """
    The configured adapter name matches no interface, or more than one.

    Examples:
        >>> raise AdapterNotFoundError("No adapter named 'eth9'", {'adapter': 'eth9'})

    """

    @property
    def user_message(self):
        adapter = self.details.get('adapter')
        matches = self.details.get('matches')
        if matches:
            return f"Network adapter '{adapter}' is ambiguous ({len(matches)} matches). Pick a more specific name."
        return f"Network adapter '{adapter}' was not found. Check the adapter name in the configuration."


class UnsupportedNetworkClassError(ConfigurationError):
    """The host address belongs to class D or E, or its class cannot be determined."""

    @property
    def user_message(self):
        network_class = self.details.get('network_class')
        if network_class is None:
            return 'The network class of this host could not be determined, so it cannot be scanned.'
        return f'Scanning a class {network_class} network is not supported.'


class HostNetworkError(ConfigurationError):
    """The host's own network parameters (route, address, netmask) are unavailable."""

    user_message = 'The network parameters of this host could not be read. Is the adapter connected?'


class AdapterOpenFailedError(NetStalkerError):
    """The adapter exists but could not be opened, or is already in use."""

    @property
    def user_message(self):
        adapter = self.details.get('adapter')
        return f"Network adapter '{adapter}' could not be opened. Run as root/administrator and make sure no other scan is using it."


class CaptureError(NetStalkerError):
    """A capture or transmit operation was attempted without an open adapter."""

    user_message = 'The network adapter is not open.'


class EngineDisposedError(NetStalkerError):
    """An operation was attempted on a disposed discovery engine or a closed probe scheduler."""

    user_message = 'The discovery service has been shut down.'
