"""
Parser for per-protein functional annotation feeds.

Each line of a feed is one signature hit, tab-delimited with 15 columns:

    protein accession, sequence checksum, sequence length, analysis,
    signature accession, signature description, start, end, score,
    status, date, InterPro accession, InterPro description,
    GO terms (pipe-delimited, optional evidence suffix), pathways

Missing values use the ``-`` placeholder. Lines with 11 to 14 columns are
accepted and the missing trailing columns are filled with the placeholder;
shorter lines are skipped with a warning.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

PLACEHOLDER = "-"
N_COLUMNS = 15
MIN_COLUMNS = 11

FEED_COLUMNS = (
    "protein_accession",
    "sequence_md5",
    "sequence_length",
    "analysis",
    "signature_accession",
    "signature_description",
    "start",
    "end",
    "score",
    "status",
    "date",
    "interpro_accession",
    "interpro_description",
    "go_terms",
    "pathways",
)

_EVIDENCE_SUFFIX = re.compile(r"\([^)]*\)")


def split_go_terms(field: str) -> Tuple[str, ...]:
    """
    GO ids from a pipe-delimited field with evidence suffixes removed.

    Example:
        split_go_terms("GO:0005515(InterPro)|GO:0006955")
        # ("GO:0005515", "GO:0006955")
    """
    if not field or field.strip() == PLACEHOLDER:
        return ()
    ids = []
    for part in field.split("|"):
        term = _EVIDENCE_SUFFIX.sub("", part).strip()
        if term and term != PLACEHOLDER:
            ids.append(term)
    return tuple(ids)


def _int_or_none(value: str) -> Optional[int]:
    try:
        return int(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class AnnotationRecord:
    """One signature hit from an annotation feed."""

    protein_accession: str
    sequence_md5: str
    sequence_length: Optional[int]
    analysis: str
    signature_accession: str
    signature_description: str
    start: Optional[int]
    end: Optional[int]
    score: str
    status: str
    date: str
    interpro_accession: str = PLACEHOLDER
    interpro_description: str = PLACEHOLDER
    go_terms: str = PLACEHOLDER
    pathways: str = PLACEHOLDER

    @property
    def go_ids(self) -> Tuple[str, ...]:
        return split_go_terms(self.go_terms)

    @property
    def has_go_terms(self) -> bool:
        return bool(self.go_ids)

    @property
    def pathway_ids(self) -> Tuple[str, ...]:
        if self.pathways.strip() == PLACEHOLDER:
            return ()
        return tuple(p.strip() for p in self.pathways.split("|") if p.strip())

    @classmethod
    def from_fields(cls, fields: List[str]) -> "AnnotationRecord":
        fields = [f.strip() for f in fields]
        fields += [PLACEHOLDER] * (N_COLUMNS - len(fields))
        values = dict(zip(FEED_COLUMNS, fields))
        for key in ("sequence_length", "start", "end"):
            values[key] = _int_or_none(values[key])
        return cls(**values)


def iter_annotation_records(lines: Iterable[str]) -> Iterator[AnnotationRecord]:
    """Yield records from feed lines, skipping blanks, comments and short rows."""
    n_skipped = 0
    for line_number, line in enumerate(lines, start=1):
        line = line.rstrip("\r\n")
        if not line.strip() or line.startswith("#"):
            continue
        fields = line.split("\t")
        if len(fields) < MIN_COLUMNS or len(fields) > N_COLUMNS:
            n_skipped += 1
            logger.warning(
                "Skipping feed line %d: %d columns (expected %d-%d)",
                line_number,
                len(fields),
                MIN_COLUMNS,
                N_COLUMNS,
            )
            continue
        yield AnnotationRecord.from_fields(fields)
    if n_skipped:
        logger.warning("Skipped %d malformed annotation lines", n_skipped)


def parse_annotation_feed(path: Union[str, Path]) -> List[AnnotationRecord]:
    """Read every record of a feed file."""
    with open(path, "r", encoding="utf-8") as f:
        records = list(iter_annotation_records(f))
    logger.info("Parsed %d annotation records from %s", len(records), path)
    return records
