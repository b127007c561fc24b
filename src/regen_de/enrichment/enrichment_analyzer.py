"""
Over-representation analysis of DEG sets in functional terms.

For every term with at least one query gene, the probability of drawing at
least the observed number of term genes when sampling the query size from
the background universe is the one-sided hypergeometric tail (equivalent to
a one-sided Fisher exact test on the 2x2 table of query/background by
in-term/not-in-term). P-values are BH-adjusted over all tested terms.

Example:
    from regen_de.enrichment import EnrichmentTester, load_term_gene_sets

    tester = EnrichmentTester(load_term_gene_sets("go_mouse.gmt"))
    tables = tester.analyze(deg_table, background=result_gene_ids, comparison="D5")
    tables["up"].to_frame()
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy.stats import hypergeom

from ..config import EnrichmentConfig
from ..de.correction import MultipleTestingCorrector
from ..de.gene_filter import DEGTable
from .gene_mapper import IdentifierMapper, IdentityMapper

logger = logging.getLogger(__name__)

ENRICHMENT_COLUMNS = [
    "term_id",
    "description",
    "query_count",
    "query_size",
    "background_count",
    "universe_size",
    "term_size",
    "pvalue",
    "padj",
    "direction",
    "genes",
]


@dataclass(frozen=True)
class TermGeneSets:
    """Term id -> member genes (stable ids), with optional descriptions."""

    genes: Mapping[str, FrozenSet[str]]
    descriptions: Mapping[str, str] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.genes)

    def describe(self, term_id: str) -> str:
        return self.descriptions.get(term_id) or term_id


def load_term_gene_sets(path: Union[str, Path]) -> TermGeneSets:
    """
    Load a term-to-gene mapping.

    ``.gmt`` files carry one term per line (id, description, genes...).
    Anything else is read as a tab-delimited table with ``term_id`` and
    ``gene`` columns and an optional ``description`` column.
    """
    path = Path(path)
    genes: Dict[str, set] = {}
    descriptions: Dict[str, str] = {}

    if path.suffix.lower() == ".gmt":
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                parts = line.rstrip("\r\n").split("\t")
                if len(parts) < 3:
                    continue
                term_id = parts[0].strip()
                descriptions[term_id] = parts[1].strip()
                genes.setdefault(term_id, set()).update(
                    g.strip() for g in parts[2:] if g.strip()
                )
    else:
        frame = pd.read_csv(path, sep="\t", dtype=str)
        missing = {"term_id", "gene"} - set(frame.columns)
        if missing:
            raise ValueError(f"{path}: missing columns {sorted(missing)}")
        frame = frame.dropna(subset=["term_id", "gene"])
        for term_id, group in frame.groupby("term_id", sort=False):
            genes[term_id] = set(group["gene"].str.strip())
            if "description" in frame.columns:
                first = group["description"].dropna()
                if not first.empty:
                    descriptions[term_id] = first.iloc[0]

    logger.info("Loaded %d term gene sets from %s", len(genes), path)
    return TermGeneSets(
        genes={t: frozenset(g) for t, g in genes.items()},
        descriptions=descriptions,
    )


@dataclass(frozen=True)
class EnrichedTerm:
    """
    One tested term.

    ``background_count`` is the number of universe genes annotated to the
    term and ``term_size`` the size of the term before restricting to the
    universe.
    """

    term_id: str
    description: str
    query_count: int
    query_size: int
    background_count: int
    universe_size: int
    term_size: int
    pvalue: float
    padj: Optional[float]
    direction: str
    genes: Tuple[str, ...] = ()

    @property
    def neg_log10_padj(self) -> Optional[float]:
        if self.padj is None:
            return None
        return float(-np.log10(max(self.padj, np.finfo(float).tiny)))

    def to_dict(self) -> Dict[str, object]:
        return {
            "term_id": self.term_id,
            "description": self.description,
            "query_count": self.query_count,
            "query_size": self.query_size,
            "background_count": self.background_count,
            "universe_size": self.universe_size,
            "term_size": self.term_size,
            "pvalue": self.pvalue,
            "padj": self.padj,
            "direction": self.direction,
            "genes": ",".join(self.genes),
        }


@dataclass(frozen=True)
class EnrichmentTable:
    """
    Enrichment result for one (comparison, direction).

    Attributes:
        tested: Every tested term, ordered by adjusted p-value.
        threshold: Adjusted p-value cutoff for ``significant``.
        unmapped: Query symbols dropped because they could not be mapped.
        n_mapped: Query genes that entered the test.
    """

    comparison: Optional[str]
    direction: str
    tested: Tuple[EnrichedTerm, ...] = ()
    threshold: float = 0.05
    unmapped: Tuple[str, ...] = ()
    n_mapped: int = 0
    universe_size: int = 0

    @property
    def significant(self) -> Tuple[EnrichedTerm, ...]:
        return tuple(
            t for t in self.tested if t.padj is not None and t.padj < self.threshold
        )

    @property
    def is_empty(self) -> bool:
        return not self.significant

    def to_frame(self, significant_only: bool = True) -> pd.DataFrame:
        terms = self.significant if significant_only else self.tested
        return pd.DataFrame([t.to_dict() for t in terms], columns=ENRICHMENT_COLUMNS)


@dataclass(frozen=True)
class EmptyResultSet(EnrichmentTable):
    """Explicitly empty enrichment result; ``reason`` says why."""

    reason: str = ""


class EnrichmentTester:
    """
    Hypergeometric over-representation tester.

    Args:
        term_sets: Term to gene mapping in the mapper's target id space.
        mapper: Symbol mapper; defaults to the identity mapping.
        config: Thresholds and term-size limits.
    """

    def __init__(
        self,
        term_sets: TermGeneSets,
        mapper: Optional[IdentifierMapper] = None,
        config: Optional[EnrichmentConfig] = None,
    ):
        self.term_sets = term_sets
        self.mapper = mapper or IdentityMapper()
        self.config = config or EnrichmentConfig()
        self.corrector = MultipleTestingCorrector()

    def test(
        self,
        query: Sequence[str],
        background: Sequence[str],
        comparison: Optional[str] = None,
        direction: str = "all",
    ) -> EnrichmentTable:
        """
        Test one query gene set against the background.

        Args:
            query: Query gene symbols (DEGs).
            background: All tested gene symbols.
            comparison: Label carried into the result.
            direction: ``up``, ``down`` or ``all``.

        Returns:
            EnrichmentTable, or EmptyResultSet when nothing can be tested or
            nothing is significant.
        """
        threshold = self.config.significance_threshold
        query_map = self.mapper.map(query)
        background_map = self.mapper.map(background)

        universe = set(background_map.mapped.values()) | set(query_map.mapped.values())
        query_ids = set(query_map.mapped.values())
        common = dict(
            comparison=comparison,
            direction=direction,
            threshold=threshold,
            unmapped=query_map.unmapped,
            n_mapped=len(query_ids),
            universe_size=len(universe),
        )
        if not query_ids:
            logger.info("%s/%s: no mappable query genes", comparison, direction)
            return EmptyResultSet(reason="no mappable query genes", **common)

        ids_to_symbols: Dict[str, List[str]] = {}
        for symbol, target in query_map.mapped.items():
            ids_to_symbols.setdefault(target, []).append(symbol)

        candidates = []
        for term_id in sorted(self.term_sets.genes):
            members = self.term_sets.genes[term_id]
            in_universe = members & universe
            size = len(in_universe)
            if size < self.config.min_term_size:
                continue
            if self.config.max_term_size is not None and size > self.config.max_term_size:
                continue
            hits = in_universe & query_ids
            if hits:
                candidates.append((term_id, len(members), size, hits))

        if not candidates:
            return EmptyResultSet(reason="no term contains a query gene", **common)

        n_universe = len(universe)
        n_query = len(query_ids)
        k = np.array([len(c[3]) for c in candidates])
        n = np.array([c[2] for c in candidates])
        pvalues = np.clip(hypergeom.sf(k - 1, n_universe, n, n_query), 0.0, 1.0)
        padj = self.corrector.adjust(pvalues.tolist())

        terms = []
        for (term_id, term_size, size, hits), p, q in zip(candidates, pvalues, padj):
            if self.config.report_symbols:
                genes = sorted(s for h in hits for s in ids_to_symbols.get(h, [h]))
            else:
                genes = sorted(hits)
            terms.append(
                EnrichedTerm(
                    term_id=term_id,
                    description=self.term_sets.describe(term_id),
                    query_count=len(hits),
                    query_size=n_query,
                    background_count=size,
                    universe_size=n_universe,
                    term_size=term_size,
                    pvalue=float(p),
                    padj=q,
                    direction=direction,
                    genes=tuple(genes),
                )
            )
        terms.sort(key=lambda t: (t.padj, t.pvalue, t.term_id))

        table = EnrichmentTable(tested=tuple(terms), **common)
        logger.info(
            "%s/%s: %d query genes, %d terms tested, %d significant (padj < %g)",
            comparison,
            direction,
            n_query,
            len(terms),
            len(table.significant),
            threshold,
        )
        if table.is_empty:
            return EmptyResultSet(
                tested=tuple(terms), reason="no significant terms", **common
            )
        return table

    def analyze(
        self,
        deg: DEGTable,
        background: Iterable[str],
        comparison: Optional[str] = None,
    ) -> Dict[str, EnrichmentTable]:
        """Run the configured directions (up / down / all) for a DEG table."""
        background = list(background)
        queries = {
            "up": [g.gene_id for g in deg.up],
            "down": [g.gene_id for g in deg.down],
            "all": deg.gene_ids,
        }
        results = {}
        for direction in self.config.directions:
            if direction not in queries:
                raise ValueError(f"Unknown enrichment direction {direction!r}")
            results[direction] = self.test(
                queries[direction], background, comparison, direction
            )
        return results
