"""
Process-wide suppression of expected statsmodels fit warnings.

``warnings.catch_warnings`` saves and restores the global filter list, so
threads entering and leaving it at different times overwrite each other's
state. Fits running concurrently share a single guard instead: the first
thread in installs the filters and the last thread out restores them.
"""

import logging
import threading
import warnings
from contextlib import contextmanager

from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning,
    DomainWarning,
    PerfectSeparationWarning,
)

logger = logging.getLogger(__name__)

SUPPRESSED_WARNINGS = (
    # identical replicates give an exact, valid fit
    PerfectSeparationWarning,
    # non-convergence is read from the results object
    ConvergenceWarning,
    # gamma family with identity link in the dispersion trend
    DomainWarning,
)

_lock = threading.Lock()
_depth = 0
_saved = None


@contextmanager
def suppress_fit_warnings():
    """Ignore :data:`SUPPRESSED_WARNINGS` while any fit is running."""
    global _depth, _saved
    with _lock:
        if _depth == 0:
            _saved = warnings.catch_warnings()
            _saved.__enter__()
            for category in SUPPRESSED_WARNINGS:
                warnings.simplefilter("ignore", category)
            logger.debug("Installed fit warning filters")
        _depth += 1
    try:
        yield
    finally:
        with _lock:
            _depth -= 1
            if _depth == 0:
                _saved.__exit__(None, None, None)
                _saved = None
                logger.debug("Restored warning filters")
