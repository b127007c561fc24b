"""
Differential expression engine for one comparison.

Chains the count-model stages over the samples a comparison selects:

    subset + low-count filter -> size factors -> dispersions
    -> NB GLM fit -> Wald contrast -> LFC shrinkage -> BH correction

Fitting produces a :class:`ModelSnapshot` (normalization, dispersion and
fitted coefficients). Results for any contrast of the design factor are
computed from a snapshot without modifying it, so re-evaluating a different
pair of levels never alters results already produced.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import pandas as pd

from ..config import ComparisonConfig, DEConfig
from ..errors import ComparisonError, DegenerateInputError
from .correction import MultipleTestingCorrector
from .counts import CountMatrix
from .de_result import DEResult, GeneDEResult, build_provenance
from .dispersion import DispersionEstimate, DispersionEstimator
from .glm import STATUS_OK, ContrastSpec, DesignSpec, FittedModel, GLMTester
from .metadata import SampleMetadata
from .shrinkage import ShrinkageEstimator
from .size_factors import SizeFactorEstimator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelSnapshot:
    """Everything fitted for one (comparison, design); read-only."""

    comparison: str
    counts: CountMatrix
    metadata: SampleMetadata
    size_factors: pd.Series
    dispersions: DispersionEstimate
    model: FittedModel
    n_genes_input: int


class DifferentialExpressionAnalyzer:
    """
    Count-model differential expression for a single comparison.

    Example:
        analyzer = DifferentialExpressionAnalyzer(DEConfig())
        result = analyzer.analyze(counts, metadata, comparison)
        print(f"{result.n_tested} genes tested, {result.n_failed} failed")
    """

    def __init__(self, config: Optional[DEConfig] = None):
        self.config = config or DEConfig()
        self.size_factor_estimator = SizeFactorEstimator()
        self.dispersion_estimator = DispersionEstimator(self.config)
        self.glm = GLMTester(self.config)
        self.shrinkage = ShrinkageEstimator(null_weight=self.config.null_weight)
        self.corrector = MultipleTestingCorrector()

    def select_samples(
        self, metadata: SampleMetadata, comparison: ComparisonConfig
    ) -> SampleMetadata:
        """
        Samples of the comparison whose factor value is level_a or level_b.

        Raises:
            ComparisonError: A level has no samples, or neither level has a
                replicate.
        """
        selected = metadata.select(
            time_points=comparison.time_points,
            tissues=comparison.tissues,
            conditions=comparison.conditions,
        )
        levels = {comparison.level_a, comparison.level_b}
        try:
            kept = tuple(
                r for r in selected.records if getattr(r, comparison.factor) in levels
            )
        except AttributeError as e:
            raise ComparisonError(
                comparison.name, f"unknown factor {comparison.factor!r}"
            ) from e

        n_a = sum(1 for r in kept if getattr(r, comparison.factor) == comparison.level_a)
        n_b = len(kept) - n_a
        if n_a == 0 or n_b == 0:
            raise ComparisonError(
                comparison.name,
                f"missing replicate group ({comparison.level_a}: {n_a} samples, "
                f"{comparison.level_b}: {n_b} samples)",
            )
        if n_a < 2 and n_b < 2:
            raise ComparisonError(
                comparison.name, "no replicates in either group"
            )
        return SampleMetadata(records=kept)

    def fit(
        self,
        counts: CountMatrix,
        metadata: SampleMetadata,
        comparison: ComparisonConfig,
    ) -> ModelSnapshot:
        """Fit normalization, dispersions and the GLM for one comparison."""
        selected = self.select_samples(metadata, comparison)
        design = DesignSpec(factor=comparison.factor, reference=comparison.level_b)
        logger.info(
            "[%s] fitting %s (reference %s) on %d samples",
            comparison.name,
            design.factor,
            design.reference,
            len(selected),
        )
        try:
            subset = counts.subset(selected.sample_ids)
            filtered = subset.filter_low_counts(self.config.min_total_count)
            size_factors = self.size_factor_estimator.estimate(filtered)
            normalized = self.size_factor_estimator.normalize(filtered, size_factors)
            dispersions = self.dispersion_estimator.estimate(
                normalized, size_factors, selected.values(design.factor)
            )
            model = self.glm.fit(
                filtered, size_factors, dispersions.final, selected, design
            )
        except DegenerateInputError as e:
            raise ComparisonError(comparison.name, str(e)) from e

        return ModelSnapshot(
            comparison=comparison.name,
            counts=filtered,
            metadata=selected,
            size_factors=size_factors,
            dispersions=dispersions,
            model=model,
            n_genes_input=counts.shape[0],
        )

    def results(self, snapshot: ModelSnapshot, contrast: ContrastSpec) -> DEResult:
        """Evaluate one contrast against a fitted snapshot."""
        wald = self.glm.test(snapshot.model, contrast)
        shrunk = self.shrinkage.shrink(wald["log2FoldChange"], wald["lfcSE"])

        if self.config.significance_source == "svalue":
            padj = [_none_if_nan(v) for v in shrunk.svalue]
        else:
            padj = self.corrector.adjust([_none_if_nan(v) for v in wald["pvalue"]])

        base_mean = snapshot.dispersions.table["baseMean"]
        genes: List[GeneDEResult] = []
        for i, gene_id in enumerate(wald.index):
            row = wald.iloc[i]
            genes.append(
                GeneDEResult(
                    gene_id=gene_id,
                    base_mean=_none_if_nan(base_mean.iloc[i]),
                    log2_fold_change=_none_if_nan(row["log2FoldChange"]),
                    shrunk_log2_fold_change=_none_if_nan(shrunk.posterior_mean.iloc[i]),
                    lfc_se=_none_if_nan(row["lfcSE"]),
                    stat=_none_if_nan(row["stat"]),
                    pvalue=_none_if_nan(row["pvalue"]),
                    padj=padj[i] if row["status"] == STATUS_OK else None,
                    svalue=_none_if_nan(shrunk.svalue.iloc[i]),
                    status=row["status"],
                )
            )

        samples_a, samples_b = self._samples_by_level(snapshot.metadata, contrast)
        provenance = build_provenance(
            comparison=snapshot.comparison,
            samples_a=samples_a,
            samples_b=samples_b,
            significance_source=self.config.significance_source,
            n_genes_input=snapshot.n_genes_input,
            n_genes_filtered=snapshot.counts.shape[0],
        )
        provenance["fit_failures"] = snapshot.model.failure_reasons
        return DEResult(
            comparison=snapshot.comparison,
            design=snapshot.model.design,
            contrast=contrast,
            genes=tuple(genes),
            size_factors=snapshot.size_factors,
            dispersions=snapshot.dispersions,
            provenance=provenance,
        )

    def analyze(
        self,
        counts: CountMatrix,
        metadata: SampleMetadata,
        comparison: ComparisonConfig,
    ) -> DEResult:
        """Fit and test ``level_a`` vs ``level_b`` for one comparison."""
        snapshot = self.fit(counts, metadata, comparison)
        contrast = ContrastSpec(
            factor=comparison.factor,
            level_a=comparison.level_a,
            level_b=comparison.level_b,
        )
        result = self.results(snapshot, contrast)
        logger.info(
            "[%s] %d genes tested, %d fit failures",
            comparison.name,
            result.n_tested,
            result.n_failed,
        )
        return result

    @staticmethod
    def _samples_by_level(
        metadata: SampleMetadata, contrast: ContrastSpec
    ) -> Tuple[List[str], List[str]]:
        values = metadata.values(contrast.factor)
        samples_a = [s for s, v in zip(metadata.sample_ids, values) if v == contrast.level_a]
        samples_b = [s for s, v in zip(metadata.sample_ids, values) if v == contrast.level_b]
        return samples_a, samples_b


def _none_if_nan(value) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)
