"""
Per-gene negative-binomial GLM fitting and Wald contrasts.

Fitting and testing are separate steps. ``GLMTester.fit`` produces an
immutable :class:`FittedModel` for one design; ``GLMTester.test`` evaluates
any contrast between two levels of the design factor against that snapshot.
Comparing other pairs of levels never refits and never changes the
reference of an existing model.

Example:
    tester = GLMTester()
    model = tester.fit(counts, size_factors, dispersions, metadata,
                       DesignSpec("tissue", reference="skin"))
    stats = tester.test(model, ContrastSpec("tissue", "ear", "skin"))
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy.stats import norm
from statsmodels.tools.sm_exceptions import PerfectSeparationError

from ..config import DEConfig
from ..errors import DegenerateInputError, FitNonconvergentError
from .counts import CountMatrix
from .fit_warnings import suppress_fit_warnings
from .metadata import SampleMetadata

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_FAILED = "fit_failed"


@dataclass(frozen=True)
class DesignSpec:
    """Grouping factor and its reference level."""

    factor: str
    reference: str


@dataclass(frozen=True)
class ContrastSpec:
    """Comparison ``level_a`` vs ``level_b``; log2FC is a over b."""

    factor: str
    level_a: str
    level_b: str

    @property
    def label(self) -> str:
        return f"{self.factor}: {self.level_a} vs {self.level_b}"


@dataclass(frozen=True)
class FittedModel:
    """
    Immutable snapshot of one design fitted to every gene.

    Attributes:
        design: The design that was fitted.
        levels: Factor levels, reference first; column ``i > 0`` of the
            design matrix is the indicator of ``levels[i]``.
        gene_ids: Genes in fit order.
        coefficients: (n_genes, n_levels) natural-log coefficients; NaN rows
            for failed fits.
        covariances: (n_genes, n_levels, n_levels) coefficient covariances.
        failures: Gene id -> reason for genes whose fit failed.
    """

    design: DesignSpec
    levels: Tuple[str, ...]
    gene_ids: Tuple[str, ...]
    coefficients: np.ndarray
    covariances: np.ndarray
    failures: Tuple[Tuple[str, str], ...] = ()

    @property
    def failure_reasons(self) -> Dict[str, str]:
        return dict(self.failures)

    def contrast_vector(self, contrast: ContrastSpec) -> np.ndarray:
        """Weights over coefficients giving ``level_a - level_b`` (log scale)."""
        if contrast.factor != self.design.factor:
            raise ValueError(
                f"Contrast factor {contrast.factor!r} is not the fitted "
                f"design factor {self.design.factor!r}"
            )
        vector = np.zeros(len(self.levels))
        for level, sign in ((contrast.level_a, 1.0), (contrast.level_b, -1.0)):
            if level not in self.levels:
                raise ValueError(
                    f"Level {level!r} not in fitted levels {list(self.levels)}"
                )
            index = self.levels.index(level)
            # the reference level is absorbed in the intercept
            if index > 0:
                vector[index] += sign
        return vector


class GLMTester:
    """Negative-binomial GLM (log link, IRLS) per gene with Wald tests."""

    def __init__(self, config: Optional[DEConfig] = None):
        self.config = config or DEConfig()

    @staticmethod
    def design_matrix(
        metadata: SampleMetadata, design: DesignSpec
    ) -> Tuple[np.ndarray, Tuple[str, ...]]:
        """Intercept plus treatment-coded indicators for non-reference levels."""
        values = metadata.values(design.factor)
        if any(v is None for v in values):
            missing = [
                s for s, v in zip(metadata.sample_ids, values) if v is None
            ]
            raise DegenerateInputError(
                f"Samples without a {design.factor!r} value: {missing}"
            )
        observed = sorted(set(values))
        if design.reference not in observed:
            raise DegenerateInputError(
                f"Reference level {design.reference!r} not among {observed}"
            )
        if len(observed) < 2:
            raise DegenerateInputError(
                f"Factor {design.factor!r} has a single level {observed}"
            )
        levels = (design.reference,) + tuple(
            level for level in observed if level != design.reference
        )
        matrix = np.ones((len(values), len(levels)))
        for j, level in enumerate(levels[1:], start=1):
            matrix[:, j] = [1.0 if v == level else 0.0 for v in values]
        return matrix, levels

    def fit_gene(
        self,
        gene_id: str,
        y: np.ndarray,
        design: np.ndarray,
        offset: np.ndarray,
        dispersion: float,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Fit one gene.

        Returns:
            Tuple of (coefficients, covariance matrix) on the natural-log scale.

        Raises:
            FitNonconvergentError: IRLS did not converge, the fitter raised a
                separation or linear-algebra error, or the estimates are not
                finite.
        """
        if not np.isfinite(dispersion):
            raise FitNonconvergentError(gene_id, "no dispersion estimate")
        family = sm.families.NegativeBinomial(alpha=float(dispersion))
        try:
            result = sm.GLM(y, design, family=family, offset=offset).fit(
                maxiter=self.config.glm_maxiter
            )
        except PerfectSeparationError as e:
            raise FitNonconvergentError(gene_id, f"perfect separation: {e}") from e
        except (ValueError, np.linalg.LinAlgError) as e:
            raise FitNonconvergentError(gene_id, str(e)) from e

        if not result.converged:
            raise FitNonconvergentError(
                gene_id, f"IRLS did not converge in {self.config.glm_maxiter} iterations"
            )
        params = np.asarray(result.params, dtype=float)
        cov = np.asarray(result.cov_params(), dtype=float)
        if not (np.all(np.isfinite(params)) and np.all(np.isfinite(cov))):
            raise FitNonconvergentError(gene_id, "non-finite estimates")
        return params, cov

    def fit(
        self,
        counts: CountMatrix,
        size_factors: pd.Series,
        dispersions: pd.Series,
        metadata: SampleMetadata,
        design: DesignSpec,
    ) -> FittedModel:
        """
        Fit the design to every gene.

        Per-gene failures are recorded in ``FittedModel.failures`` with NaN
        coefficients; they never abort the batch.
        """
        if tuple(counts.samples) != metadata.sample_ids:
            raise DegenerateInputError(
                "Count matrix columns and sample metadata are not aligned"
            )
        matrix, levels = self.design_matrix(metadata, design)
        offset = np.log(size_factors.reindex(counts.samples).to_numpy(dtype=float))
        values = counts.values
        disp = dispersions.reindex(counts.genes).to_numpy(dtype=float)
        gene_ids = tuple(counts.genes)
        n_coef = len(levels)

        def _fit_one(i: int):
            try:
                return self.fit_gene(
                    gene_ids[i], values[i].astype(float), matrix, offset, disp[i]
                )
            except FitNonconvergentError as e:
                return e

        with suppress_fit_warnings():
            if self.config.n_jobs > 1:
                with ThreadPoolExecutor(max_workers=self.config.n_jobs) as pool:
                    outcomes = list(pool.map(_fit_one, range(len(gene_ids))))
            else:
                outcomes = [_fit_one(i) for i in range(len(gene_ids))]

        coefficients = np.full((len(gene_ids), n_coef), np.nan)
        covariances = np.full((len(gene_ids), n_coef, n_coef), np.nan)
        failures = []
        for i, outcome in enumerate(outcomes):
            if isinstance(outcome, FitNonconvergentError):
                failures.append((outcome.gene_id, outcome.reason))
                continue
            coefficients[i], covariances[i] = outcome

        if failures:
            logger.warning(
                "GLM fit failed for %d of %d genes (recorded as NA)",
                len(failures),
                len(gene_ids),
            )
        coefficients.flags.writeable = False
        covariances.flags.writeable = False
        return FittedModel(
            design=design,
            levels=levels,
            gene_ids=gene_ids,
            coefficients=coefficients,
            covariances=covariances,
            failures=tuple(failures),
        )

    def test(self, model: FittedModel, contrast: ContrastSpec) -> pd.DataFrame:
        """
        Wald test of a contrast against a fitted model.

        Returns:
            Frame indexed by gene with ``log2FoldChange``, ``lfcSE``, ``stat``,
            ``pvalue`` and ``status``. Failed genes carry NaN statistics.
        """
        vector = model.contrast_vector(contrast)
        estimate = model.coefficients @ vector
        variance = np.einsum("i,gij,j->g", vector, model.covariances, vector)
        with np.errstate(invalid="ignore", divide="ignore"):
            se = np.sqrt(variance)
            stat = estimate / se
        pvalue = 2 * norm.sf(np.abs(stat))

        ok = np.isfinite(estimate) & np.isfinite(se) & (se > 0)
        status = np.where(ok, STATUS_OK, STATUS_FAILED)
        frame = pd.DataFrame(
            {
                "log2FoldChange": np.where(ok, estimate / math.log(2), np.nan),
                "lfcSE": np.where(ok, se / math.log(2), np.nan),
                "stat": np.where(ok, stat, np.nan),
                "pvalue": np.where(ok, pvalue, np.nan),
                "status": status,
            },
            index=pd.Index(model.gene_ids, name="gene"),
        )
        logger.info(
            "Wald test %s: %d genes tested, %d failed",
            contrast.label,
            int(ok.sum()),
            int((~ok).sum()),
        )
        return frame
