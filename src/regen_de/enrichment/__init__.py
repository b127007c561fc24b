"""Functional enrichment of DEG sets and cross-comparison summaries."""

from regen_de.enrichment.enrichment_analyzer import (
    EmptyResultSet,
    EnrichedTerm,
    EnrichmentTable,
    EnrichmentTester,
    TermGeneSets,
    load_term_gene_sets,
)
from regen_de.enrichment.gene_mapper import (
    IdentifierMapper,
    IdentityMapper,
    MappingResult,
    TableIdentifierMapper,
)
from regen_de.enrichment.summary_matrix import SummaryMatrix, SummaryMatrixBuilder

__all__ = [
    "EmptyResultSet",
    "EnrichedTerm",
    "EnrichmentTable",
    "EnrichmentTester",
    "TermGeneSets",
    "load_term_gene_sets",
    "IdentifierMapper",
    "IdentityMapper",
    "MappingResult",
    "TableIdentifierMapper",
    "SummaryMatrix",
    "SummaryMatrixBuilder",
]
