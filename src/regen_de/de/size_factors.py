"""
Median-of-ratios size factors.

Each gene's geometric mean across samples serves as a pseudo-reference. A
sample's size factor is the median, over genes with a nonzero reference,
of its count divided by that reference.
"""

import logging

import numpy as np
import pandas as pd

from ..errors import DegenerateInputError
from .counts import CountMatrix

logger = logging.getLogger(__name__)


class SizeFactorEstimator:
    """Per-sample normalization factors for sequencing depth and composition."""

    def estimate(self, counts: CountMatrix) -> pd.Series:
        """
        Compute size factors.

        Args:
            counts: Raw count matrix.

        Returns:
            Series of size factors indexed by sample id.

        Raises:
            DegenerateInputError: Fewer than 2 samples, all counts zero, or
                every gene has a zero in at least one sample.
        """
        n_genes, n_samples = counts.shape
        if n_samples < 2:
            raise DegenerateInputError(
                f"Size factors need at least 2 samples, got {n_samples}"
            )
        values = counts.values.astype(float)
        if not values.any():
            raise DegenerateInputError("All genes have zero total count")

        with np.errstate(divide="ignore"):
            log_counts = np.log(values)
        log_geo_means = log_counts.mean(axis=1)
        usable = np.isfinite(log_geo_means)
        if not usable.any():
            raise DegenerateInputError(
                "No gene has a nonzero count in every sample; "
                "median-of-ratios reference is empty"
            )

        log_ratios = log_counts[usable] - log_geo_means[usable, np.newaxis]
        factors = np.exp(np.median(log_ratios, axis=0))
        logger.debug(
            "Size factors from %d of %d genes: %s",
            int(usable.sum()),
            n_genes,
            np.round(factors, 3).tolist(),
        )
        return pd.Series(factors, index=counts.samples, name="size_factor")

    @staticmethod
    def normalize(counts: CountMatrix, size_factors: pd.Series) -> pd.DataFrame:
        """Counts divided by their sample's size factor."""
        frame = counts.to_frame().astype(float)
        return frame.div(size_factors.reindex(frame.columns), axis=1)
