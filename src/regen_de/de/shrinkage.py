"""
Empirical-Bayes shrinkage of log2 fold changes.

The prior over true effects is a mixture of a point mass at zero and
zero-centered normals on a geometric grid of standard deviations. Mixture
weights are fitted by EM on the marginal likelihood of the observed
(estimate, SE) pairs; the null component carries a pseudo-count so that the
prior favours zero unless the data argue otherwise.

Posterior quantities per gene:
    - posterior mean, reported as the shrunk log2 fold change
    - local false sign rate (s-value), ``min(P(beta >= 0), P(beta <= 0))``

Genes with a large SE relative to their estimate get a likelihood that is
nearly flat across components, so their posterior collapses toward zero.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from scipy.stats import norm

logger = logging.getLogger(__name__)

_GRID_MULT = np.sqrt(2.0)


@dataclass(frozen=True)
class ShrinkageResult:
    """Posterior summaries; genes without a finite (lfc, se) are NaN."""

    posterior_mean: pd.Series
    svalue: pd.Series
    grid: np.ndarray
    weights: np.ndarray
    n_iterations: int


class ShrinkageEstimator:
    """Adaptive-shrinkage mixture prior fitted across all tested genes."""

    def __init__(
        self, null_weight: float = 10.0, tol: float = 1e-8, max_iter: int = 1000
    ):
        self.null_weight = null_weight
        self.tol = tol
        self.max_iter = max_iter

    @staticmethod
    def mixture_grid(lfc: np.ndarray, se: np.ndarray) -> np.ndarray:
        """Component SDs: 0 followed by a sqrt(2)-spaced geometric grid."""
        sigma_min = np.min(se) / 10.0
        excess = np.max(lfc**2 - se**2)
        sigma_max = 2.0 * np.sqrt(excess) if excess > 0 else 0.0
        if sigma_max < sigma_min:
            sigma_max = 8.0 * sigma_min
        n_points = int(np.ceil(np.log2(sigma_max / sigma_min) / np.log2(_GRID_MULT)))
        grid = sigma_max * _GRID_MULT ** np.arange(-n_points, 1, dtype=float)
        return np.concatenate([[0.0], grid])

    def shrink(self, lfc: pd.Series, se: pd.Series) -> ShrinkageResult:
        """
        Shrink raw log2 fold changes.

        Args:
            lfc: Raw log2 fold changes indexed by gene.
            se: Standard errors aligned with ``lfc``.

        Returns:
            ShrinkageResult indexed like ``lfc``.
        """
        se = se.reindex(lfc.index)
        b_all = lfc.to_numpy(dtype=float)
        s_all = se.to_numpy(dtype=float)
        usable = np.isfinite(b_all) & np.isfinite(s_all) & (s_all > 0)

        posterior_mean = np.full(len(lfc), np.nan)
        svalue = np.full(len(lfc), np.nan)
        if not usable.any():
            logger.warning("No genes with finite effect and SE; nothing to shrink")
            return ShrinkageResult(
                posterior_mean=pd.Series(posterior_mean, index=lfc.index),
                svalue=pd.Series(svalue, index=lfc.index),
                grid=np.zeros(1),
                weights=np.ones(1),
                n_iterations=0,
            )

        b = b_all[usable]
        s = s_all[usable]
        grid = self.mixture_grid(b, s)
        log_lik = norm.logpdf(
            b[:, None], loc=0.0, scale=np.sqrt(grid[None, :] ** 2 + s[:, None] ** 2)
        )
        lik = np.exp(log_lik - log_lik.max(axis=1, keepdims=True))
        weights, n_iter = self._fit_weights(lik)

        resp = lik * weights
        resp /= resp.sum(axis=1, keepdims=True)

        # per-component posterior of beta given a N(0, sigma_k^2) prior
        var_k = grid[None, :] ** 2
        shrink_k = var_k / (var_k + s[:, None] ** 2)
        mean_k = b[:, None] * shrink_k
        sd_k = np.sqrt(shrink_k * s[:, None] ** 2)

        with np.errstate(divide="ignore", invalid="ignore"):
            p_neg_k = norm.cdf(0.0, loc=mean_k[:, 1:], scale=sd_k[:, 1:])
        p_zero = resp[:, 0]
        p_neg = (resp[:, 1:] * p_neg_k).sum(axis=1)
        p_pos = np.clip(1.0 - p_neg - p_zero, 0.0, 1.0)

        posterior_mean[usable] = (resp * mean_k).sum(axis=1)
        svalue[usable] = np.minimum(p_neg + p_zero, p_pos + p_zero)

        logger.info(
            "Shrinkage prior fitted on %d genes: %d components, null weight %.3f "
            "(%d EM iterations)",
            int(usable.sum()),
            len(grid),
            weights[0],
            n_iter,
        )
        return ShrinkageResult(
            posterior_mean=pd.Series(posterior_mean, index=lfc.index),
            svalue=pd.Series(svalue, index=lfc.index),
            grid=grid,
            weights=weights,
            n_iterations=n_iter,
        )

    def _fit_weights(self, lik: np.ndarray, init: Optional[np.ndarray] = None):
        """EM for mixture weights with a Dirichlet pseudo-count on the null."""
        n_genes, n_comp = lik.shape
        prior = np.ones(n_comp)
        prior[0] = self.null_weight
        weights = init if init is not None else np.full(n_comp, 1.0 / n_comp)

        for iteration in range(1, self.max_iter + 1):
            resp = lik * weights
            resp /= resp.sum(axis=1, keepdims=True)
            new = np.maximum(resp.sum(axis=0) + prior - 1.0, 0.0)
            new /= new.sum()
            delta = np.max(np.abs(new - weights))
            weights = new
            if delta < self.tol:
                return weights, iteration
        logger.warning(
            "Shrinkage EM stopped at %d iterations without reaching tol %.1e",
            self.max_iter,
            self.tol,
        )
        return weights, self.max_iter
