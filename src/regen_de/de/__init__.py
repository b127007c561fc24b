"""Count-model differential expression.

Median-of-ratios normalization, negative-binomial dispersion estimation
with a shrunk mean-dispersion trend, per-gene NB GLM Wald tests, adaptive
shrinkage of fold changes and Benjamini-Hochberg correction.

Usage::

    from regen_de.de import DifferentialExpressionAnalyzer, DEGFilter

    result = DifferentialExpressionAnalyzer().analyze(counts, metadata, comparison)
    deg = DEGFilter().apply(result.genes)
    deg.top(50).to_frame()
"""

from regen_de.de.correction import MultipleTestingCorrector
from regen_de.de.counts import CountMatrix, load_count_matrix
from regen_de.de.de_analysis import DifferentialExpressionAnalyzer, ModelSnapshot
from regen_de.de.de_result import DEResult, GeneDEResult
from regen_de.de.dispersion import DispersionEstimate, DispersionEstimator
from regen_de.de.gene_filter import DEGFilter, DEGTable, TopGenesView
from regen_de.de.glm import ContrastSpec, DesignSpec, FittedModel, GLMTester
from regen_de.de.metadata import (
    MetadataResolver,
    SampleMetadata,
    SampleRecord,
    load_sample_sheet,
)
from regen_de.de.shrinkage import ShrinkageEstimator, ShrinkageResult
from regen_de.de.size_factors import SizeFactorEstimator

__all__ = [
    "CountMatrix",
    "load_count_matrix",
    "MetadataResolver",
    "SampleMetadata",
    "SampleRecord",
    "load_sample_sheet",
    "SizeFactorEstimator",
    "DispersionEstimator",
    "DispersionEstimate",
    "DesignSpec",
    "ContrastSpec",
    "FittedModel",
    "GLMTester",
    "ShrinkageEstimator",
    "ShrinkageResult",
    "MultipleTestingCorrector",
    "GeneDEResult",
    "DEResult",
    "DEGFilter",
    "DEGTable",
    "TopGenesView",
    "DifferentialExpressionAnalyzer",
    "ModelSnapshot",
]
