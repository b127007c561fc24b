"""Functional annotation aggregation.

Parses per-protein annotation feeds, counts GO terms and signature
descriptions, and categorizes them with an ordered keyword taxonomy.

Usage::

    from regen_de.annotation import AnnotationAggregator, GOReference, parse_annotation_feed

    aggregator = AnnotationAggregator(GOReference.load("go-basic.obo"))
    summary = aggregator.aggregate(parse_annotation_feed("D5_interpro.tsv"), "D5")
"""

from regen_de.annotation.aggregator import (
    AnnotationAggregator,
    AnnotationSummary,
    GOTermAnnotation,
    SignatureCount,
)
from regen_de.annotation.categories import KeywordClassifier
from regen_de.annotation.go_reference import GOReference, GOTerm
from regen_de.annotation.parser import (
    AnnotationRecord,
    iter_annotation_records,
    parse_annotation_feed,
    split_go_terms,
)

__all__ = [
    "AnnotationAggregator",
    "AnnotationSummary",
    "GOTermAnnotation",
    "SignatureCount",
    "KeywordClassifier",
    "GOReference",
    "GOTerm",
    "AnnotationRecord",
    "iter_annotation_records",
    "parse_annotation_feed",
    "split_go_terms",
]
