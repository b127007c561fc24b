"""
Thresholding and ranking of differential expression results.

A gene passes when its adjusted p-value is present and ``<= alpha``, its
fold change is present and ``|lfc| > lfc_threshold``, and its identifier
does not look like an uninformative placeholder (``LOC...``, bare Ensembl
ids and similar). Passing genes are ordered by adjusted p-value, then by
descending absolute fold change, then by input order.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import pandas as pd

from ..config import FilterConfig
from .de_result import DE_COLUMNS, GeneDEResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TopGenesView:
    """
    Capped reporting view of a filtered gene table.

    ``entries`` always has exactly ``n`` items; when fewer genes passed the
    filter the tail is padded with None.
    """

    n: int
    entries: Tuple[Optional[GeneDEResult], ...]

    @property
    def genes(self) -> Tuple[GeneDEResult, ...]:
        return tuple(e for e in self.entries if e is not None)

    @property
    def n_missing(self) -> int:
        return sum(1 for e in self.entries if e is None)

    def to_frame(self) -> pd.DataFrame:
        """Rows in rank order; padding rows have rank set and NA elsewhere."""
        rows = []
        for rank, entry in enumerate(self.entries, start=1):
            row = entry.to_dict() if entry is not None else {c: None for c in DE_COLUMNS}
            row["rank"] = rank
            rows.append(row)
        return pd.DataFrame(rows, columns=["rank"] + DE_COLUMNS)


@dataclass(frozen=True)
class DEGTable:
    """Filtered, ranked genes for one comparison."""

    genes: Tuple[GeneDEResult, ...]
    alpha: float
    lfc_threshold: float
    use_shrunk_lfc: bool
    n_excluded_uninformative: int = 0
    n_excluded_missing: int = 0

    def __len__(self) -> int:
        return len(self.genes)

    @property
    def gene_ids(self) -> List[str]:
        return [g.gene_id for g in self.genes]

    @property
    def up(self) -> Tuple[GeneDEResult, ...]:
        return tuple(g for g in self.genes if g.direction(self.use_shrunk_lfc) == "up")

    @property
    def down(self) -> Tuple[GeneDEResult, ...]:
        return tuple(g for g in self.genes if g.direction(self.use_shrunk_lfc) == "down")

    def top(self, n: int) -> TopGenesView:
        """First ``n`` genes, padded with None when fewer passed."""
        if n < 0:
            raise ValueError(f"n must be non-negative, got {n}")
        head = list(self.genes[:n])
        head.extend([None] * (n - len(head)))
        return TopGenesView(n=n, entries=tuple(head))

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([g.to_dict() for g in self.genes], columns=DE_COLUMNS)


class DEGFilter:
    """
    Filters and ranks genes into a DEG table.

    Example:
        deg = DEGFilter(FilterConfig(alpha=0.10)).apply(result.genes)
        top = deg.top(50)
    """

    def __init__(self, config: Optional[FilterConfig] = None):
        self.config = config or FilterConfig()
        self._uninformative = re.compile(self.config.uninformative_pattern)

    def is_uninformative(self, gene_id: str) -> bool:
        return bool(self._uninformative.match(gene_id))

    def apply(
        self,
        genes: Iterable[GeneDEResult],
        alpha: Optional[float] = None,
        lfc_threshold: Optional[float] = None,
    ) -> DEGTable:
        """
        Filter and rank genes.

        Args:
            genes: Per-gene results in input order.
            alpha: Overrides ``config.alpha``.
            lfc_threshold: Overrides ``config.lfc_threshold``.

        Returns:
            DEGTable of passing genes in rank order.
        """
        alpha = self.config.alpha if alpha is None else alpha
        lfc_threshold = (
            self.config.lfc_threshold if lfc_threshold is None else lfc_threshold
        )
        use_shrunk = self.config.use_shrunk_lfc

        passing: List[Tuple[int, GeneDEResult]] = []
        n_uninformative = 0
        n_missing = 0
        for position, gene in enumerate(genes):
            if self.is_uninformative(gene.gene_id):
                n_uninformative += 1
                continue
            effect = gene.effect(use_shrunk)
            if gene.padj is None or effect is None:
                n_missing += 1
                continue
            if gene.padj <= alpha and abs(effect) > lfc_threshold:
                passing.append((position, gene))

        passing.sort(key=lambda item: (item[1].padj, -abs(item[1].effect(use_shrunk)), item[0]))
        logger.info(
            "DEG filter (padj <= %g, |lfc| > %g): %d genes pass; "
            "%d uninformative ids and %d NA rows excluded",
            alpha,
            lfc_threshold,
            len(passing),
            n_uninformative,
            n_missing,
        )
        return DEGTable(
            genes=tuple(g for _, g in passing),
            alpha=alpha,
            lfc_threshold=lfc_threshold,
            use_shrunk_lfc=use_shrunk,
            n_excluded_uninformative=n_uninformative,
            n_excluded_missing=n_missing,
        )
