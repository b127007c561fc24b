"""
Negative-binomial dispersion estimation.

Three steps, each over all genes:

1. Gene-wise method-of-moments estimate from the pooled within-group
   variance of normalized counts.
2. A parametric mean-dispersion trend ``alpha(mu) = a0 + a1 / mu`` fitted by
   a gamma-family GLM with identity link, iteratively refitted after
   discarding genes far from the current curve.
3. Empirical-Bayes shrinkage of the gene-wise estimates toward the trend in
   log space. The weight on the gene-wise value grows with the residual
   degrees of freedom of the design.

Step 2 is a barrier: shrinkage of any gene needs the finished trend. When
the trend cannot be fitted the gene-wise estimates are used unchanged.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy.special import polygamma
from scipy.stats import median_abs_deviation

from ..config import DEConfig
from ..errors import DegenerateInputError, FitDivergedError
from .fit_warnings import suppress_fit_warnings

logger = logging.getLogger(__name__)

# Genes with genewise/trend outside this band are left out of the refit.
_TREND_LOWER_RATIO = 1e-4
_TREND_TOLERANCE = 1e-6
_MIN_PRIOR_LOG_VAR = 0.25
_TREND_START = (0.1, 1.0)


@dataclass(frozen=True)
class DispersionEstimate:
    """
    Dispersion snapshot for one comparison.

    Attributes:
        table: Per-gene frame with ``baseMean``, ``genewise``, ``trend``,
            ``final`` and ``outlier`` columns. Missing values are NaN.
        coefficients: Trend coefficients ``(a0, a1)``, None without a trend.
        trend_fitted: False when the trend fit diverged and the gene-wise
            estimates were used as final values.
        prior_log_variance: Variance of the log-dispersion prior.
    """

    table: pd.DataFrame
    coefficients: Optional[Tuple[float, float]]
    trend_fitted: bool
    prior_log_variance: Optional[float] = None

    @property
    def final(self) -> pd.Series:
        return self.table["final"]


class DispersionEstimator:
    """Gene-wise, trended and shrunk dispersion estimates."""

    def __init__(self, config: Optional[DEConfig] = None):
        self.config = config or DEConfig()

    def estimate(
        self, normalized: pd.DataFrame, size_factors: pd.Series, groups: Sequence
    ) -> DispersionEstimate:
        """
        Estimate dispersions for every gene.

        Args:
            normalized: Size-factor-normalized counts (genes x samples).
            size_factors: Size factors in the column order of ``normalized``.
            groups: Design level of each sample, in column order.

        Returns:
            DispersionEstimate with the final per-gene dispersions.
        """
        groups = np.asarray(list(groups), dtype=object)
        n_samples = normalized.shape[1]
        n_levels = len(pd.unique(groups))
        df_resid = n_samples - n_levels
        if df_resid < 1:
            raise DegenerateInputError(
                f"No residual degrees of freedom ({n_samples} samples, "
                f"{n_levels} groups); replicates are required"
            )

        base_mean = normalized.mean(axis=1).to_numpy()
        genewise = self.genewise(normalized, size_factors, groups)

        table = pd.DataFrame(
            {
                "baseMean": base_mean,
                "genewise": genewise,
                "trend": np.nan,
                "final": genewise,
                "outlier": False,
            },
            index=normalized.index,
        )

        try:
            coefficients = self._fit_trend(base_mean, genewise)
        except FitDivergedError as e:
            logger.warning(
                "Dispersion trend fit failed (%s); using gene-wise estimates", e
            )
            return DispersionEstimate(
                table=table, coefficients=None, trend_fitted=False
            )

        trend = coefficients[0] + coefficients[1] / base_mean
        final, outlier, prior_var = self._shrink(genewise, trend, df_resid)
        table["trend"] = trend
        table["final"] = final
        table["outlier"] = outlier
        logger.info(
            "Dispersion trend a0=%.4g a1=%.4g, prior log-variance %.3f, "
            "%d outlier genes",
            coefficients[0],
            coefficients[1],
            prior_var,
            int(outlier.sum()),
        )
        return DispersionEstimate(
            table=table,
            coefficients=coefficients,
            trend_fitted=True,
            prior_log_variance=prior_var,
        )

    def genewise(
        self, normalized: pd.DataFrame, size_factors: pd.Series, groups: np.ndarray
    ) -> np.ndarray:
        """Method-of-moments dispersion per gene; NaN for all-zero genes."""
        values = normalized.to_numpy(dtype=float)
        n_samples = values.shape[1]
        max_disp = max(10.0, float(n_samples))

        sum_sq = np.zeros(values.shape[0])
        levels = pd.unique(groups)
        for level in levels:
            cols = groups == level
            block = values[:, cols]
            if block.shape[1] > 1:
                sum_sq += ((block - block.mean(axis=1, keepdims=True)) ** 2).sum(axis=1)
        variance = sum_sq / (n_samples - len(levels))

        mu = values.mean(axis=1)
        inv_sf = np.mean(1.0 / size_factors.reindex(normalized.columns).to_numpy())
        with np.errstate(divide="ignore", invalid="ignore"):
            alpha = (variance - mu * inv_sf) / mu**2
        alpha = np.clip(alpha, self.config.min_disp, max_disp)
        alpha[mu <= 0] = np.nan
        return alpha

    def _fit_trend(
        self, base_mean: np.ndarray, genewise: np.ndarray
    ) -> Tuple[float, float]:
        """Iteratively fit ``a0 + a1 / mu`` with outlier rejection."""
        usable = np.isfinite(genewise) & (genewise > 100 * self.config.min_disp)
        if usable.sum() < 3:
            raise FitDivergedError(
                f"only {int(usable.sum())} genes above the dispersion floor"
            )
        mu = base_mean[usable]
        disp = genewise[usable]
        design = np.column_stack([np.ones_like(mu), 1.0 / mu])

        coefs = np.array(_TREND_START)
        for iteration in range(1, self.config.max_trend_iterations + 1):
            ratio = disp / (coefs[0] + coefs[1] / mu)
            keep = (ratio > _TREND_LOWER_RATIO) & (ratio < self.config.outlier_ratio)
            if keep.sum() < 3:
                raise FitDivergedError("fewer than 3 genes left after outlier rejection")

            family = sm.families.Gamma(link=sm.families.links.Identity())
            try:
                with suppress_fit_warnings():
                    result = sm.GLM(disp[keep], design[keep], family=family).fit(
                        start_params=coefs
                    )
            except (ValueError, np.linalg.LinAlgError) as e:
                raise FitDivergedError(f"gamma GLM failed: {e}") from e

            new_coefs = np.asarray(result.params, dtype=float)
            if not np.all(np.isfinite(new_coefs)) or np.any(new_coefs <= 0):
                raise FitDivergedError(
                    f"non-positive trend coefficients {new_coefs.tolist()}"
                )
            change = np.sum(np.abs(np.log(new_coefs / coefs)))
            coefs = new_coefs
            logger.debug(
                "Trend iteration %d: a0=%.4g a1=%.4g (change %.2e)",
                iteration,
                coefs[0],
                coefs[1],
                change,
            )
            if change < _TREND_TOLERANCE:
                return float(coefs[0]), float(coefs[1])

        raise FitDivergedError(
            f"no convergence within {self.config.max_trend_iterations} iterations"
        )

    def _shrink(self, genewise: np.ndarray, trend: np.ndarray, df_resid: int):
        """Log-space weighted average of gene-wise estimate and trend."""
        sampling_var = float(polygamma(1, df_resid / 2.0))
        usable = np.isfinite(genewise) & (genewise > 100 * self.config.min_disp)
        residuals = np.log(genewise[usable]) - np.log(trend[usable])
        observed_var = median_abs_deviation(residuals, scale="normal") ** 2
        prior_var = max(observed_var - sampling_var, _MIN_PRIOR_LOG_VAR)

        weight = prior_var / (prior_var + sampling_var)
        with np.errstate(invalid="ignore"):
            log_final = weight * np.log(genewise) + (1 - weight) * np.log(trend)
            final = np.exp(log_final)
            outlier = genewise > trend * np.exp(2 * np.sqrt(prior_var))

        final = np.where(outlier, genewise, final)
        final = np.maximum(final, self.config.min_disp)
        return final, outlier, float(prior_var)
