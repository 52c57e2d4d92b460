"""
Process-wide state shared by all discovery sessions.

Only the ownership of network adapters lives here: opening an adapter for
capture and injection is an exclusive acquisition, so at most one capture
engine per process may hold a given adapter.

"""
import threading


# Should be held whenever accessing the global state's variables.
global_state_lock = threading.Lock()

# Names of the adapters currently held by a capture engine
held_adapter_set = set()


def claim_adapter(adapter_name: str) -> bool:
    """Marks the adapter as held. Returns False if it is already held."""

    with global_state_lock:
        if adapter_name in held_adapter_set:
            return False
        held_adapter_set.add(adapter_name)
        return True


def release_adapter(adapter_name: str):

    with global_state_lock:
        held_adapter_set.discard(adapter_name)
