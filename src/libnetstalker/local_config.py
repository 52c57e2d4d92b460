"""
Parsing a local configuration file (read-only).

The config file should be saved in JSON format as a file named `netstalker_config.json` in the same directory the script is run from.

If the config file is not found, or if the key is not found, or if the file is not in JSON format, or if there is any other error, the default value is returned.

Recognized keys:

    adapter_name            Friendly name of the adapter to scan on (default: the default-route interface)
    probe_interval          Seconds between the end of a sweep and the start of the next (default: 10)
    capture_poll_timeout    Seconds per capture window (default: 1)
    max_probes_per_sweep    Upper bound on probes per sweep, for large class A/B networks (default: no bound)
    enrichment_workers      Number of name/type resolution worker threads (default: 4)
    resolve_device_names    Resolve device names via reverse DNS and mDNS (default: true)
    identify_device_types   Identify device vendors from their MAC addresses (default: true)
    mdns_cache_ttl          Seconds before mDNS names are discovered again (default: 300)
    log_file                Path of the log file (default: netstalker.log)

"""
import json
import functools
import logging


logger = logging.getLogger(__name__)


CONFIG_FILE_PATH = 'netstalker_config.json'


def get(config_key: str, default=None):
    """
    Returns the value of the given configuration key.
    If the key is not found, or its value is null, the default value is returned.

    """
    config_dict = _load_config_file()
    value = config_dict.get(config_key)
    if value is None:
        return default
    return value


@functools.lru_cache(maxsize=1)
def _load_config_file():
    """
    Returns the contents of the config file as a dictionary.
    If the file is not found, an empty dictionary is returned.

    """
    try:
        with open(CONFIG_FILE_PATH, 'r') as fp:
            o = json.load(fp)
    except FileNotFoundError:
        logger.info(f'[local_config] Config file {CONFIG_FILE_PATH} not found.')
        return {}
    except json.JSONDecodeError:
        logger.error(f'[local_config] Config file {CONFIG_FILE_PATH} is not in proper JSON format.')
        return {}
    except Exception:
        logger.exception(f'[local_config] Error reading config file {CONFIG_FILE_PATH}.')
        return {}

    if not isinstance(o, dict):
        logger.error(f'[local_config] Config file {CONFIG_FILE_PATH} must contain a JSON object.')
        return {}

    logger.info(f'[local_config] Loaded config file {CONFIG_FILE_PATH}')
    return o


def reload():
    """Forgets the cached config, so that the next `get()` reads the file again."""

    _load_config_file.cache_clear()
