"""
Common Helper Functions.

Functions:
    get_os(): Detects the current operating system and returns a normalized string.
    is_root(): Tells whether the process may open adapters for raw capture.

"""
import os
import sys


def get_os() -> str:
    """
    Detect the current operating system and return a normalized string identifier.

    Returns:
        str: One of 'mac', 'linux', or 'windows' depending on the detected platform.

    Raises:
        RuntimeError: If the operating system is not recognized as macOS, Linux, or Windows.

    Adapter names differ per platform (e.g. Windows exposes capture devices as
    `\\Device\\NPF_{GUID}`), so callers branch on this value.
    """
    os_platform = sys.platform

    if os_platform.startswith('darwin'):
        return 'mac'

    if os_platform.startswith('linux'):
        return 'linux'

    if os_platform.startswith('win'):
        return 'windows'

    raise RuntimeError('Unsupported operating system.')


def is_root() -> bool:
    """Returns True if running as root. On Windows, raw capture depends on Npcap instead, so True is returned."""

    if get_os() == 'windows':
        return True

    return os.geteuid() == 0
