"""
Result dataclasses for differential expression with provenance.

Every statistic is Optional: ``None`` means the gene was excluded (failed
fit or missing input) and is never conflated with a computed value.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from .dispersion import DispersionEstimate
from .glm import STATUS_OK, ContrastSpec, DesignSpec

DE_COLUMNS = [
    "gene",
    "baseMean",
    "log2FoldChange",
    "log2FoldChange_shrunk",
    "lfcSE",
    "stat",
    "pvalue",
    "padj",
    "svalue",
    "status",
]


@dataclass(frozen=True)
class GeneDEResult:
    """
    Result for a single gene and contrast.

    log2 fold changes are ``level_a`` over ``level_b`` of the contrast.
    """

    gene_id: str
    base_mean: Optional[float]
    log2_fold_change: Optional[float]
    shrunk_log2_fold_change: Optional[float]
    lfc_se: Optional[float]
    stat: Optional[float]
    pvalue: Optional[float]
    padj: Optional[float]
    svalue: Optional[float]
    status: str = STATUS_OK

    def effect(self, use_shrunk: bool = True) -> Optional[float]:
        """Fold change used for filtering and ranking."""
        return self.shrunk_log2_fold_change if use_shrunk else self.log2_fold_change

    def direction(self, use_shrunk: bool = True) -> Optional[str]:
        """Sign of :meth:`effect` as up or down; None when it is zero or NA."""
        lfc = self.effect(use_shrunk)
        if lfc is None or lfc == 0:
            return None
        return "up" if lfc > 0 else "down"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gene": self.gene_id,
            "baseMean": self.base_mean,
            "log2FoldChange": self.log2_fold_change,
            "log2FoldChange_shrunk": self.shrunk_log2_fold_change,
            "lfcSE": self.lfc_se,
            "stat": self.stat,
            "pvalue": self.pvalue,
            "padj": self.padj,
            "svalue": self.svalue,
            "status": self.status,
        }

    def __repr__(self) -> str:
        lfc = f"{self.log2_fold_change:.2f}" if self.log2_fold_change is not None else "NA"
        padj = f"{self.padj:.2e}" if self.padj is not None else "NA"
        return f"GeneDEResult({self.gene_id}, log2FC={lfc}, padj={padj})"


@dataclass(frozen=True)
class DEResult:
    """
    Complete differential expression result for one comparison.

    Genes are kept in count-matrix row order; ranking happens in DEGFilter.
    """

    comparison: str
    design: DesignSpec
    contrast: ContrastSpec
    genes: Tuple[GeneDEResult, ...]
    size_factors: pd.Series
    dispersions: DispersionEstimate
    provenance: Dict[str, Any] = field(default_factory=dict)

    @property
    def n_tested(self) -> int:
        return sum(1 for g in self.genes if g.status == STATUS_OK)

    @property
    def n_failed(self) -> int:
        return len(self.genes) - self.n_tested

    def get(self, gene_id: str) -> Optional[GeneDEResult]:
        for gene in self.genes:
            if gene.gene_id == gene_id:
                return gene
        return None

    def to_frame(self) -> pd.DataFrame:
        """All genes as a DataFrame; missing statistics are NaN."""
        return pd.DataFrame([g.to_dict() for g in self.genes], columns=DE_COLUMNS)

    def to_dict(self) -> Dict[str, Any]:
        """Summary for JSON serialization (gene rows go to TSV)."""
        return {
            "comparison": self.comparison,
            "design": {
                "factor": self.design.factor,
                "reference": self.design.reference,
            },
            "contrast": {
                "factor": self.contrast.factor,
                "level_a": self.contrast.level_a,
                "level_b": self.contrast.level_b,
            },
            "genes": {
                "total": len(self.genes),
                "tested": self.n_tested,
                "failed": self.n_failed,
            },
            "size_factors": {k: float(v) for k, v in self.size_factors.items()},
            "dispersion_trend": {
                "fitted": self.dispersions.trend_fitted,
                "coefficients": (
                    list(self.dispersions.coefficients)
                    if self.dispersions.coefficients
                    else None
                ),
            },
            "provenance": self.provenance,
        }


def build_provenance(
    comparison: str,
    samples_a: List[str],
    samples_b: List[str],
    significance_source: str,
    n_genes_input: int,
    n_genes_filtered: int,
) -> Dict[str, Any]:
    """Provenance record with the current timestamp."""
    return {
        "timestamp": datetime.now().isoformat(),
        "comparison": comparison,
        "samples": {
            "level_a": samples_a,
            "level_b": samples_b,
            "n_level_a": len(samples_a),
            "n_level_b": len(samples_b),
        },
        "genes": {
            "input": n_genes_input,
            "after_count_filter": n_genes_filtered,
        },
        "methods": {
            "normalization": "median_of_ratios",
            "dispersion": "moments_trend_shrunk",
            "test": "nb_glm_wald",
            "lfc_shrinkage": "normal_mixture_ash",
            "significance_source": significance_source,
            "fdr": "benjamini_hochberg",
        },
    }
