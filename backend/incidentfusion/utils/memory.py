"""Process memory probe and GC hint for the streaming loader."""
from __future__ import annotations

import gc
import logging
import os
import sys

logger = logging.getLogger(__name__)

_STATM_PATH = "/proc/self/statm"


def current_rss_mb() -> float:
    """Resident set size of this process in MB.

    Reads /proc/self/statm where available (Linux); elsewhere falls back to
    the peak RSS reported by ``resource.getrusage``, which never decreases and
    so over-reports after a spike.
    """
    try:
        with open(_STATM_PATH) as f:
            fields = f.read().split()
        return int(fields[1]) * os.sysconf("SC_PAGE_SIZE") / (1024 * 1024)
    except (OSError, IndexError, ValueError):
        pass

    if sys.platform == "win32":
        return 0.0
    import resource

    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS, kilobytes on Linux/BSD
    if sys.platform == "darwin":
        return peak / (1024 * 1024)
    return peak / 1024


def request_gc() -> int:
    """Run a full collection; returns the number of unreachable objects found."""
    collected = gc.collect()
    logger.debug("Garbage collection hint: %d objects collected", collected)
    return collected
