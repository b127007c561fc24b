"""
regen_de: differential expression and functional annotation for
regeneration time-course studies.

## Differential Expression

```python
from regen_de import (
    ComparisonConfig, DEGFilter, DifferentialExpressionAnalyzer,
    MetadataResolver, load_count_matrix,
)

counts = load_count_matrix("counts.tsv")
metadata = MetadataResolver().resolve(counts.samples)
comparison = ComparisonConfig(
    name="D5", factor="tissue", level_a="ear", level_b="skin", time_points=("D5",)
)
result = DifferentialExpressionAnalyzer().analyze(counts, metadata, comparison)
deg = DEGFilter().apply(result.genes)
```

## Annotation and Enrichment

```python
from regen_de import AnnotationAggregator, GOReference, parse_annotation_feed

summary = AnnotationAggregator(GOReference.load("go-basic.obo")).aggregate(
    parse_annotation_feed("D5_interpro.tsv"), "D5"
)
summary.go_term_table()
```

## Command Line Interface

```bash
regen-de run config.json --output-dir results/
regen-de aggregate D5_interpro.tsv --go-reference go-basic.obo
```
"""

from .annotation import (
    AnnotationAggregator,
    AnnotationRecord,
    AnnotationSummary,
    GOReference,
    GOTermAnnotation,
    KeywordClassifier,
    parse_annotation_feed,
)
from .config import (
    CategoryConfig,
    ComparisonConfig,
    DEConfig,
    EnrichmentConfig,
    FilterConfig,
    MetadataConfig,
    PipelineConfig,
    load_config,
)
from .de import (
    ContrastSpec,
    CountMatrix,
    DEGFilter,
    DEGTable,
    DEResult,
    DesignSpec,
    DifferentialExpressionAnalyzer,
    DispersionEstimator,
    FittedModel,
    GeneDEResult,
    GLMTester,
    MetadataResolver,
    MultipleTestingCorrector,
    SampleMetadata,
    ShrinkageEstimator,
    SizeFactorEstimator,
    TopGenesView,
    load_count_matrix,
)
from .enrichment import (
    EmptyResultSet,
    EnrichedTerm,
    EnrichmentTable,
    EnrichmentTester,
    IdentifierMapper,
    MappingResult,
    SummaryMatrixBuilder,
    TableIdentifierMapper,
    load_term_gene_sets,
)
from .errors import (
    ComparisonError,
    ConfigError,
    DegenerateInputError,
    FitDivergedError,
    FitNonconvergentError,
    RegenDEError,
    UnmappedIdentifierWarning,
)
from .pipeline import ComparisonPipeline, PipelineResult, run_comparisons
from .report_generator import ReportGenerator

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "MetadataConfig",
    "DEConfig",
    "FilterConfig",
    "CategoryConfig",
    "EnrichmentConfig",
    "ComparisonConfig",
    "PipelineConfig",
    "load_config",
    # Differential expression
    "CountMatrix",
    "load_count_matrix",
    "MetadataResolver",
    "SampleMetadata",
    "SizeFactorEstimator",
    "DispersionEstimator",
    "DesignSpec",
    "ContrastSpec",
    "FittedModel",
    "GLMTester",
    "ShrinkageEstimator",
    "MultipleTestingCorrector",
    "GeneDEResult",
    "DEResult",
    "DEGFilter",
    "DEGTable",
    "TopGenesView",
    "DifferentialExpressionAnalyzer",
    # Annotation
    "AnnotationRecord",
    "parse_annotation_feed",
    "GOReference",
    "KeywordClassifier",
    "AnnotationAggregator",
    "AnnotationSummary",
    "GOTermAnnotation",
    # Enrichment
    "IdentifierMapper",
    "MappingResult",
    "TableIdentifierMapper",
    "EnrichmentTester",
    "EnrichedTerm",
    "EnrichmentTable",
    "EmptyResultSet",
    "load_term_gene_sets",
    "SummaryMatrixBuilder",
    # Pipeline
    "ComparisonPipeline",
    "PipelineResult",
    "run_comparisons",
    "ReportGenerator",
    # Errors
    "RegenDEError",
    "ConfigError",
    "DegenerateInputError",
    "FitDivergedError",
    "FitNonconvergentError",
    "ComparisonError",
    "UnmappedIdentifierWarning",
]
