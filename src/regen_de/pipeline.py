"""
Pipeline orchestrator.

One :class:`ComparisonPipeline` runs every stage for a single comparison:

    DE analysis -> DEG filter -> annotation aggregation -> enrichment

``run_comparisons`` runs all configured comparisons over the same count
matrix and metadata. Comparisons share no mutable state: each gets its own
sample subset, size factors, dispersion snapshot and fitted model, so they
may run on a thread pool. A comparison that fails is recorded in
``PipelineResult.failures`` and the others continue.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .annotation.aggregator import AnnotationAggregator, AnnotationSummary
from .annotation.categories import KeywordClassifier
from .annotation.go_reference import GOReference
from .annotation.parser import parse_annotation_feed
from .config import ComparisonConfig, PipelineConfig
from .de.counts import CountMatrix, load_count_matrix
from .de.de_analysis import DifferentialExpressionAnalyzer
from .de.de_result import DEResult
from .de.fit_warnings import suppress_fit_warnings
from .de.gene_filter import DEGFilter, DEGTable, TopGenesView
from .de.metadata import MetadataResolver, SampleMetadata, load_sample_sheet
from .enrichment.enrichment_analyzer import (
    EnrichmentTable,
    EnrichmentTester,
    TermGeneSets,
    load_term_gene_sets,
)
from .enrichment.gene_mapper import IdentifierMapper, IdentityMapper, TableIdentifierMapper
from .enrichment.summary_matrix import SummaryMatrix, SummaryMatrixBuilder
from .errors import ConfigError, RegenDEError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComparisonResult:
    """Everything produced for one comparison."""

    name: str
    de_result: DEResult
    deg: DEGTable
    top: TopGenesView
    annotation: Optional[AnnotationSummary] = None
    enrichment: Dict[str, EnrichmentTable] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        summary = {
            "de": self.de_result.to_dict(),
            "deg": {
                "alpha": self.deg.alpha,
                "lfc_threshold": self.deg.lfc_threshold,
                "n_significant": len(self.deg),
                "n_up": len(self.deg.up),
                "n_down": len(self.deg.down),
                "top_n": self.top.n,
                "top_n_missing": self.top.n_missing,
            },
        }
        if self.annotation is not None:
            summary["annotation"] = {
                "n_records": self.annotation.n_records,
                "n_records_with_go": self.annotation.n_records_with_go,
                "n_go_terms": len(self.annotation.go_terms),
                "n_signatures": len(self.annotation.signatures),
                "unknown_go_ids": list(self.annotation.unknown_go_ids),
            }
        if self.enrichment:
            summary["enrichment"] = {
                direction: {
                    "n_tested": len(table.tested),
                    "n_significant": len(table.significant),
                    "n_mapped": table.n_mapped,
                    "unmapped": list(table.unmapped),
                    "empty_reason": getattr(table, "reason", None),
                }
                for direction, table in self.enrichment.items()
            }
        return summary


@dataclass
class PipelineResult:
    """Container for a full run."""

    comparisons: Dict[str, ComparisonResult] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)
    summary_matrices: Dict[str, SummaryMatrix] = field(default_factory=dict)

    @property
    def succeeded(self) -> List[str]:
        return list(self.comparisons)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "comparisons": {
                name: result.to_dict() for name, result in self.comparisons.items()
            },
            "failures": dict(self.failures),
            "summary_matrices": {
                direction: {
                    "n_terms": int(matrix.values.shape[0]),
                    "comparisons": matrix.comparisons,
                }
                for direction, matrix in self.summary_matrices.items()
            },
        }


class ComparisonPipeline:
    """
    Runs the stages of one comparison against shared read-only inputs.

    Args:
        config: Run configuration.
        counts: Full count matrix.
        metadata: Metadata for every count-matrix column.
        go_reference: Needed when a comparison has an annotation feed.
        term_sets: Term-to-gene mapping; enrichment is skipped without it.
        mapper: Identifier mapper for enrichment.
    """

    def __init__(
        self,
        config: PipelineConfig,
        counts: CountMatrix,
        metadata: SampleMetadata,
        go_reference: Optional[GOReference] = None,
        term_sets: Optional[TermGeneSets] = None,
        mapper: Optional[IdentifierMapper] = None,
    ):
        self.config = config
        self.counts = counts
        self.metadata = metadata
        self.analyzer = DifferentialExpressionAnalyzer(config.de)
        self.aggregator = (
            AnnotationAggregator(go_reference, KeywordClassifier(config.categories))
            if go_reference is not None
            else None
        )
        self.enrichment = (
            EnrichmentTester(term_sets, mapper or IdentityMapper(), config.enrichment)
            if term_sets is not None
            else None
        )

    def run(self, comparison: ComparisonConfig) -> ComparisonResult:
        """Run one comparison. Raises on comparison-level failure."""
        de_result = self.analyzer.analyze(self.counts, self.metadata, comparison)

        filter_config = comparison.filter_config(self.config.filter)
        deg = DEGFilter(filter_config).apply(de_result.genes)
        top = deg.top(filter_config.top_n)

        annotation = None
        if comparison.annotation_feed:
            if self.aggregator is None:
                raise ConfigError(
                    f"Comparison {comparison.name!r} has an annotation feed "
                    f"but no go_reference_path is configured"
                )
            records = parse_annotation_feed(comparison.annotation_feed)
            annotation = self.aggregator.aggregate(records, comparison.name)

        enrichment: Dict[str, EnrichmentTable] = {}
        if self.enrichment is not None:
            background = [g.gene_id for g in de_result.genes if g.padj is not None]
            enrichment = self.enrichment.analyze(deg, background, comparison.name)

        return ComparisonResult(
            name=comparison.name,
            de_result=de_result,
            deg=deg,
            top=top,
            annotation=annotation,
            enrichment=enrichment,
        )


def load_inputs(config: PipelineConfig):
    """Count matrix and resolved sample metadata for a run."""
    counts = load_count_matrix(config.counts_path)
    overrides = (
        load_sample_sheet(config.sample_sheet_path) if config.sample_sheet_path else None
    )
    metadata = MetadataResolver(config.metadata).resolve(counts.samples, overrides)
    return counts, metadata


def run_comparisons(
    config: PipelineConfig,
    counts: Optional[CountMatrix] = None,
    metadata: Optional[SampleMetadata] = None,
    parallel: bool = False,
) -> PipelineResult:
    """
    Run every configured comparison.

    Args:
        config: Run configuration.
        counts: Preloaded count matrix (loaded from ``config`` if None).
        metadata: Preloaded metadata (resolved from ``counts`` if None).
        parallel: Run comparisons on a thread pool.

    Returns:
        PipelineResult with per-comparison results, failures and summary
        matrices per enrichment direction.
    """
    if counts is None:
        counts, metadata = load_inputs(config)
    elif metadata is None:
        metadata = MetadataResolver(config.metadata).resolve(counts.samples)

    go_reference = (
        GOReference.load(config.go_reference_path) if config.go_reference_path else None
    )
    term_sets = (
        load_term_gene_sets(config.term_genes_path) if config.term_genes_path else None
    )
    mapper = (
        TableIdentifierMapper.from_tsv(config.identifier_map_path)
        if config.identifier_map_path
        else None
    )
    pipeline = ComparisonPipeline(config, counts, metadata, go_reference, term_sets, mapper)

    def _run_one(comparison: ComparisonConfig):
        try:
            return pipeline.run(comparison)
        except (RegenDEError, OSError, ValueError) as e:
            logger.warning("Comparison %s failed: %s", comparison.name, e)
            return e

    with suppress_fit_warnings():
        if parallel and len(config.comparisons) > 1:
            with ThreadPoolExecutor(max_workers=len(config.comparisons)) as pool:
                outcomes = list(pool.map(_run_one, config.comparisons))
        else:
            outcomes = [_run_one(c) for c in config.comparisons]

    result = PipelineResult()
    for comparison, outcome in zip(config.comparisons, outcomes):
        if isinstance(outcome, ComparisonResult):
            result.comparisons[comparison.name] = outcome
        else:
            result.failures[comparison.name] = str(outcome)

    if term_sets is not None and result.comparisons:
        builder = SummaryMatrixBuilder()
        for direction in config.enrichment.directions:
            tables = {
                name: r.enrichment[direction]
                for name, r in result.comparisons.items()
                if direction in r.enrichment
            }
            result.summary_matrices[direction] = builder.build(tables)

    logger.info(
        "Run finished: %d comparisons succeeded, %d failed",
        len(result.comparisons),
        len(result.failures),
    )
    return result
