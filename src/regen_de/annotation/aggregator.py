"""
Aggregation of per-protein annotation records into term summaries.

For one comparison's feed:

1. Records without GO terms are dropped for GO counting.
2. GO fields are split on ``|`` and evidence suffixes removed; every id
   occurrence across the remaining records is counted.
3. Counted ids are joined against the GO reference; alternate ids add to
   their primary term. Unknown ids are dropped with an
   ``UnmappedIdentifierWarning``.
4. Signature descriptions are counted over all records, ignoring the ``-``
   placeholder.
5. GO term text and signature descriptions are categorized by keyword.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import pandas as pd

from .categories import KeywordClassifier
from .go_reference import GOReference
from .parser import PLACEHOLDER, AnnotationRecord

logger = logging.getLogger(__name__)

GO_TABLE_COLUMNS = ["go_id", "term", "branch", "category", "count"]
SIGNATURE_TABLE_COLUMNS = ["description", "count", "category"]


@dataclass(frozen=True)
class GOTermAnnotation:
    """A counted GO term with its derived category."""

    go_id: str
    term: str
    branch: Optional[str]
    category: str
    count: int


@dataclass(frozen=True)
class SignatureCount:
    description: str
    count: int
    category: str


@dataclass(frozen=True)
class AnnotationSummary:
    """
    Aggregated annotation for one feed.

    Attributes:
        go_terms: Counted GO terms, count descending then id.
        signatures: Counted signature descriptions, count descending then text.
        unknown_go_ids: Counted ids missing from the GO reference.
        n_records: Records read.
        n_records_with_go: Records that carried at least one GO id.
    """

    comparison: Optional[str]
    go_terms: Tuple[GOTermAnnotation, ...]
    signatures: Tuple[SignatureCount, ...]
    unknown_go_ids: Tuple[str, ...]
    n_records: int
    n_records_with_go: int

    def go_term_table(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "go_id": t.go_id,
                    "term": t.term,
                    "branch": t.branch,
                    "category": t.category,
                    "count": t.count,
                }
                for t in self.go_terms
            ],
            columns=GO_TABLE_COLUMNS,
        )

    def signature_table(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {"description": s.description, "count": s.count, "category": s.category}
                for s in self.signatures
            ],
            columns=SIGNATURE_TABLE_COLUMNS,
        )

    def category_summary(self) -> pd.DataFrame:
        """Distinct GO terms per category x branch."""
        table = self.go_term_table()
        if table.empty:
            return pd.DataFrame()
        return pd.crosstab(
            table["category"], table["branch"].fillna("unknown")
        )

    def categories(self) -> dict:
        """Term text -> category, for GO terms and signatures together."""
        mapping = {t.term: t.category for t in self.go_terms}
        mapping.update({s.description: s.category for s in self.signatures})
        return mapping


class AnnotationAggregator:
    """
    Counts and categorizes GO terms and signature descriptions.

    Example:
        aggregator = AnnotationAggregator(GOReference.load("go-basic.obo"))
        summary = aggregator.aggregate(parse_annotation_feed("D5.tsv"), "D5")
        summary.go_term_table().head()
    """

    def __init__(
        self,
        reference: GOReference,
        classifier: Optional[KeywordClassifier] = None,
    ):
        self.reference = reference
        self.classifier = classifier or KeywordClassifier()

    def count_go_ids(self, records: Iterable[AnnotationRecord]) -> Tuple[Counter, int]:
        """Occurrence count per GO id, and the number of records with GO terms."""
        counts: Counter = Counter()
        n_with_go = 0
        for record in records:
            ids = record.go_ids
            if not ids:
                continue
            n_with_go += 1
            counts.update(ids)
        return counts, n_with_go

    @staticmethod
    def count_signatures(records: Iterable[AnnotationRecord]) -> Counter:
        counts: Counter = Counter()
        for record in records:
            description = record.signature_description.strip()
            if description and description != PLACEHOLDER:
                counts[description] += 1
        return counts

    def aggregate(
        self, records: Iterable[AnnotationRecord], comparison: Optional[str] = None
    ) -> AnnotationSummary:
        records = list(records)
        go_counts, n_with_go = self.count_go_ids(records)
        found, unknown = self.reference.resolve(sorted(go_counts))

        primary_counts: Counter = Counter()
        primary_terms = {}
        for go_id, term in found.items():
            primary_counts[term.go_id] += go_counts[go_id]
            primary_terms[term.go_id] = term
        go_terms = [
            GOTermAnnotation(
                go_id=go_id,
                term=term.name,
                branch=term.branch,
                category=self.classifier.classify(term.name),
                count=primary_counts[go_id],
            )
            for go_id, term in primary_terms.items()
        ]
        go_terms.sort(key=lambda t: (-t.count, t.go_id))

        signature_counts = self.count_signatures(records)
        signatures = [
            SignatureCount(
                description=description,
                count=count,
                category=self.classifier.classify(description),
            )
            for description, count in signature_counts.items()
        ]
        signatures.sort(key=lambda s: (-s.count, s.description))

        logger.info(
            "%s: %d records (%d with GO), %d GO terms, %d unknown ids, "
            "%d signature descriptions",
            comparison or "annotation",
            len(records),
            n_with_go,
            len(go_terms),
            len(unknown),
            len(signatures),
        )
        return AnnotationSummary(
            comparison=comparison,
            go_terms=tuple(go_terms),
            signatures=tuple(signatures),
            unknown_go_ids=tuple(unknown),
            n_records=len(records),
            n_records_with_go=n_with_go,
        )
