"""
Cross-comparison summary of enrichment results.

The matrix has one row per term description and one column per comparison,
holding ``-log10(padj)`` of significant terms. Comparisons are outer-joined
and gaps are filled with 0, so 0 stands both for "not tested" and for
"tested, not significant". The companion presence matrix keeps the
distinction (``significant`` / ``tested`` / ``absent``).
"""

import logging
from dataclasses import dataclass
from typing import Mapping

import pandas as pd

from .enrichment_analyzer import EnrichmentTable

logger = logging.getLogger(__name__)

SIGNIFICANT = "significant"
TESTED = "tested"
ABSENT = "absent"


@dataclass(frozen=True)
class SummaryMatrix:
    values: pd.DataFrame
    presence: pd.DataFrame

    @property
    def comparisons(self):
        return list(self.values.columns)


class SummaryMatrixBuilder:
    """Merges per-comparison enrichment tables into a term x comparison matrix."""

    def build(self, tables: Mapping[str, EnrichmentTable]) -> SummaryMatrix:
        """
        Args:
            tables: Comparison name -> enrichment table, in column order.

        Returns:
            SummaryMatrix with rows sorted by descending row maximum, then
            description.
        """
        columns = list(tables)
        series = []
        presence_series = []
        for name in columns:
            table = tables[name]
            scores = {}
            for term in table.significant:
                score = term.neg_log10_padj
                # descriptions are not unique across term ids; keep the strongest
                if score is not None and score > scores.get(term.description, -1.0):
                    scores[term.description] = score
            series.append(pd.Series(scores, name=name, dtype=float))

            status = {t.description: TESTED for t in table.tested}
            status.update({d: SIGNIFICANT for d in scores})
            presence_series.append(pd.Series(status, name=name, dtype=object))

        if not columns:
            return SummaryMatrix(values=pd.DataFrame(), presence=pd.DataFrame())

        values = pd.concat(series, axis=1, join="outer")
        values = values.reindex(columns=columns)
        n_filled = int(values.isna().sum().sum())
        values = values.fillna(0.0)
        if n_filled:
            logger.warning(
                "Summary matrix: %d cells filled with 0, which means either "
                "'not tested' or 'not significant'; see the presence matrix",
                n_filled,
            )

        order = sorted(values.index, key=lambda d: (-values.loc[d].max(), d))
        values = values.loc[order]
        values.index.name = "description"

        presence = pd.concat(presence_series, axis=1, join="outer")
        presence = presence.reindex(index=order, columns=columns).fillna(ABSENT)
        presence.index.name = "description"
        return SummaryMatrix(values=values, presence=presence)
