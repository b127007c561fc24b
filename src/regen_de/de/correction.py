"""Benjamini-Hochberg adjustment with explicit handling of missing values."""

import logging
from typing import List, Optional, Sequence

import numpy as np
from statsmodels.stats.multitest import multipletests

logger = logging.getLogger(__name__)


class MultipleTestingCorrector:
    """
    Adjusts p-values for multiple comparisons.

    Missing entries (None or NaN) are excluded from the number of tests and
    stay missing in the output. Tied p-values receive identical adjusted
    values, so the relative order of ties is preserved.
    """

    def __init__(self, method: str = "fdr_bh"):
        self.method = method

    def adjust(self, pvalues: Sequence[Optional[float]]) -> List[Optional[float]]:
        """Adjusted p-values aligned with ``pvalues``."""
        raw = np.array(
            [np.nan if p is None else float(p) for p in pvalues], dtype=float
        )
        present = np.isfinite(raw)
        adjusted: List[Optional[float]] = [None] * len(raw)
        if not present.any():
            return adjusted

        _, corrected, _, _ = multipletests(raw[present], method=self.method)
        for index, value in zip(np.flatnonzero(present), corrected):
            adjusted[index] = float(value)
        logger.debug(
            "%s adjustment over %d tests (%d missing)",
            self.method,
            int(present.sum()),
            int((~present).sum()),
        )
        return adjusted
