"""
A wrapper to repeatedly execute a function in a daemon thread; if the
function crashes, automatically restarts the function after `sleep_time`
seconds. The loop runs until `stop()` is called.

Usage:

def my_func(a, b=1):
    pass

loop = SafeLoopThread(my_func, args=['a'], kwargs={'b': 2}, sleep_time=1)
...
loop.stop()
loop.join()

"""
import threading
import logging
import datetime
import traceback
import sys


logger = logging.getLogger(__name__)


class SafeLoopThread(object):

    def __init__(self, func, args=None, kwargs=None, sleep_time=1, name=None) -> None:

        self._func = func
        self._func_args = args or []
        self._func_kwargs = kwargs or {}
        self._sleep_time = sleep_time
        self._stop_event = threading.Event()

        self._thread = threading.Thread(target=self._execute_repeated_func_safe, name=name)
        self._thread.daemon = True
        self._thread.start()

    def stop(self):
        """Asks the loop to exit once the current call returns."""
        self._stop_event.set()

    def is_stopping(self):
        return self._stop_event.is_set()

    def join(self, timeout=None):
        # Joining from the loop thread itself would deadlock
        if threading.current_thread() is self._thread:
            return
        self._thread.join(timeout)

    def is_alive(self):
        return self._thread.is_alive()

    def _execute_repeated_func_safe(self):
        """Safely executes the repeated function calls."""

        logger.info('[SafeLoopThread] Starting %s %s %s' % (self._func, self._func_args, self._func_kwargs))

        while not self._stop_event.is_set():

            try:
                self._func(*self._func_args, **self._func_kwargs)

            except Exception as e:

                err_msg = '=' * 80 + '\n'
                err_msg += 'Time: %s\n' % datetime.datetime.today()
                err_msg += 'Function: %s %s %s\n' % (self._func, self._func_args, self._func_kwargs)
                err_msg += 'Exception: %s\n' % e
                err_msg += str(traceback.format_exc()) + '\n\n\n'

                sys.stderr.write(err_msg + '\n')
                logger.error(err_msg)

                self._stop_event.wait(self._sleep_time)

        logger.info('[SafeLoopThread] Stopped %s' % self._func)
