"""
Sample metadata derived from sample identifiers.

Identifiers such as ``M3_Ear_D5_inj`` or ``a12-skin-day10`` encode subject,
tissue, time point and condition. Tokens are split on ``_``, ``-``, ``.``
and whitespace; the subject is the first token and the remaining fields are
recognized by vocabulary, so token order beyond the subject does not matter.

Example:
    resolver = MetadataResolver()
    metadata = resolver.resolve(["M1_ear_D5_inj", "M2_skin_D5_inj"])
    metadata.groups  # ("ear_D5", "skin_D5")
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd

from ..config import MetadataConfig
from ..errors import DegenerateInputError

logger = logging.getLogger(__name__)

_TOKEN_SPLIT = re.compile(r"[_\-.\s]+")
_TIME_POINT = re.compile(r"^(?:d|day)(\d+)$", re.IGNORECASE)

RECORD_FIELDS = ("subject", "tissue", "time_point", "condition")


@dataclass(frozen=True)
class SampleRecord:
    """Parsed covariates for one sample. Unparseable fields are None."""

    sample_id: str
    subject: Optional[str]
    tissue: Optional[str]
    time_point: Optional[str]
    condition: Optional[str]

    @property
    def group(self) -> Optional[str]:
        """Composite tissue x time point label."""
        if self.tissue is None or self.time_point is None:
            return None
        return f"{self.tissue}_{self.time_point}"


@dataclass(frozen=True)
class SampleMetadata:
    """Read-only collection of sample records, in count-matrix column order."""

    records: Tuple[SampleRecord, ...]

    @property
    def sample_ids(self) -> Tuple[str, ...]:
        return tuple(r.sample_id for r in self.records)

    @property
    def groups(self) -> Tuple[Optional[str], ...]:
        return tuple(r.group for r in self.records)

    def __len__(self) -> int:
        return len(self.records)

    def get(self, sample_id: str) -> Optional[SampleRecord]:
        for record in self.records:
            if record.sample_id == sample_id:
                return record
        return None

    def values(self, factor: str) -> Tuple[Optional[str], ...]:
        """Per-sample values of a covariate (``group`` included)."""
        if factor not in RECORD_FIELDS + ("group",):
            raise KeyError(f"Unknown metadata factor: {factor!r}")
        return tuple(getattr(r, factor) for r in self.records)

    def select(
        self,
        time_points: Iterable[str] = (),
        tissues: Iterable[str] = (),
        conditions: Iterable[str] = (),
    ) -> "SampleMetadata":
        """Records matching every non-empty selection (case-insensitive)."""
        tp = {t.upper() for t in time_points}
        ts = {t.lower() for t in tissues}
        cs = {c.lower() for c in conditions}
        kept = tuple(
            r
            for r in self.records
            if (not tp or (r.time_point is not None and r.time_point.upper() in tp))
            and (not ts or (r.tissue is not None and r.tissue.lower() in ts))
            and (not cs or (r.condition is not None and r.condition.lower() in cs))
        )
        return SampleMetadata(records=kept)

    def to_frame(self) -> pd.DataFrame:
        """Metadata as a DataFrame indexed by sample id."""
        rows = [
            {
                "sample": r.sample_id,
                "subject": r.subject,
                "tissue": r.tissue,
                "time_point": r.time_point,
                "condition": r.condition,
                "group": r.group,
            }
            for r in self.records
        ]
        return pd.DataFrame(
            rows, columns=["sample", *RECORD_FIELDS, "group"]
        ).set_index("sample")


class MetadataResolver:
    """Derives grouping covariates from sample identifiers."""

    def __init__(self, config: Optional[MetadataConfig] = None):
        self.config = config or MetadataConfig()
        self._tissues = {t.lower() for t in self.config.tissues}
        self._time_points = {t.upper() for t in self.config.time_points}
        self._control = {t.lower() for t in self.config.control_tokens}
        self._treated = {t.lower() for t in self.config.treated_tokens}

    def parse(self, sample_id: str) -> SampleRecord:
        """Parse one identifier. Never raises on malformed input."""
        tokens = [t for t in _TOKEN_SPLIT.split(str(sample_id).strip()) if t]
        if not tokens:
            logger.warning("Empty sample identifier %r", sample_id)
            return SampleRecord(sample_id, None, None, None, None)

        subject = tokens[0]
        tissue = None
        time_point = None
        flag = None

        for token in tokens[1:]:
            lowered = token.lower()
            if tissue is None and lowered in self._tissues:
                tissue = lowered
                continue
            if time_point is None:
                canonical = self._parse_time_point(token)
                if canonical is not None:
                    time_point = canonical
                    continue
            if flag is None:
                if lowered in self._control:
                    flag = "control"
                elif lowered in self._treated:
                    flag = "treated"

        if time_point is None:
            logger.warning("No recognized time point in sample %r", sample_id)

        condition = flag
        if condition is None and time_point is not None:
            baseline = self.config.baseline_time_point.upper()
            condition = "control" if time_point == baseline else "treated"

        return SampleRecord(
            sample_id=str(sample_id),
            subject=subject,
            tissue=tissue,
            time_point=time_point,
            condition=condition,
        )

    def _parse_time_point(self, token: str) -> Optional[str]:
        match = _TIME_POINT.match(token)
        if not match:
            return None
        canonical = f"D{int(match.group(1))}"
        return canonical if canonical in self._time_points else None

    def resolve(
        self,
        sample_ids: Iterable[str],
        overrides: Optional[pd.DataFrame] = None,
    ) -> SampleMetadata:
        """
        Build SampleMetadata for a sequence of identifiers.

        Args:
            sample_ids: Sample identifiers, typically count-matrix columns.
            overrides: Optional sample sheet indexed by sample id whose
                non-null ``subject``/``tissue``/``time_point``/``condition``
                values replace the parsed ones.

        Returns:
            SampleMetadata in input order.
        """
        sample_ids = list(sample_ids)
        if len(set(sample_ids)) != len(sample_ids):
            raise DegenerateInputError("Sample identifiers are not unique")

        records: List[SampleRecord] = []
        for sample_id in sample_ids:
            record = self.parse(sample_id)
            if overrides is not None and sample_id in overrides.index:
                record = self._apply_override(record, overrides.loc[sample_id])
            records.append(record)

        n_missing = sum(1 for r in records if r.group is None)
        logger.info(
            "Resolved metadata for %d samples (%d without a group)",
            len(records),
            n_missing,
        )
        return SampleMetadata(records=tuple(records))

    @staticmethod
    def _apply_override(record: SampleRecord, row: pd.Series) -> SampleRecord:
        values: Dict[str, Optional[str]] = {
            f: getattr(record, f) for f in RECORD_FIELDS
        }
        for f in RECORD_FIELDS:
            if f in row.index and pd.notna(row[f]):
                values[f] = str(row[f])
        return SampleRecord(sample_id=record.sample_id, **values)


def load_sample_sheet(path: Union[str, Path]) -> pd.DataFrame:
    """Read a tab-delimited sample sheet with a ``sample`` column."""
    sheet = pd.read_csv(path, sep="\t", dtype=str)
    if "sample" not in sheet.columns:
        raise DegenerateInputError(f"Sample sheet {path} has no 'sample' column")
    unknown = sorted(set(sheet.columns) - {"sample", *RECORD_FIELDS})
    if unknown:
        logger.warning("Ignoring unknown sample sheet columns: %s", unknown)
    return sheet.set_index("sample")
