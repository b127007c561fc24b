"""
Count matrix loading and low-count filtering.

The count matrix is genes (rows) x samples (columns) of non-negative
integers. Loaded values may be fractional (e.g. estimated counts from a
quantifier) and are rounded half-to-even before use.
"""

import logging
from pathlib import Path
from typing import Iterable, Union

import numpy as np
import pandas as pd

from ..errors import DegenerateInputError

logger = logging.getLogger(__name__)


class CountMatrix:
    """Immutable genes x samples count matrix.

    Derived views (``filter_low_counts``, ``subset``) return new instances;
    the wrapped frame is copied on construction and only exposed as a copy.
    """

    def __init__(self, counts: pd.DataFrame):
        if counts.empty:
            raise DegenerateInputError("Count matrix is empty")
        if not counts.index.is_unique:
            dupes = counts.index[counts.index.duplicated()].unique().tolist()[:5]
            raise DegenerateInputError(f"Duplicate gene identifiers: {dupes}")
        if not counts.columns.is_unique:
            raise DegenerateInputError("Duplicate sample identifiers")

        values = counts.to_numpy(dtype=float)
        if np.isnan(values).any():
            raise DegenerateInputError("Count matrix contains missing values")
        if (values < 0).any():
            raise DegenerateInputError("Count matrix contains negative values")

        frame = pd.DataFrame(
            np.round(values).astype(np.int64),
            index=counts.index.astype(str),
            columns=counts.columns.astype(str),
        )
        self._frame = frame

    @property
    def genes(self) -> pd.Index:
        return self._frame.index

    @property
    def samples(self) -> pd.Index:
        return self._frame.columns

    @property
    def shape(self):
        return self._frame.shape

    @property
    def values(self) -> np.ndarray:
        """Counts as a read-only (n_genes, n_samples) array."""
        arr = self._frame.to_numpy()
        arr.flags.writeable = False
        return arr

    def to_frame(self) -> pd.DataFrame:
        return self._frame.copy()

    def total_counts(self) -> pd.Series:
        return self._frame.sum(axis=1)

    def filter_low_counts(self, min_total: int) -> "CountMatrix":
        """New matrix keeping genes whose total count is >= ``min_total``."""
        keep = self.total_counts() >= min_total
        n_removed = int((~keep).sum())
        if n_removed:
            logger.info(
                "Low-count filter: removed %d of %d genes (total count < %d)",
                n_removed,
                len(keep),
                min_total,
            )
        if not keep.any():
            raise DegenerateInputError(
                f"No genes with total count >= {min_total}"
            )
        return CountMatrix(self._frame.loc[keep])

    def subset(self, samples: Iterable[str]) -> "CountMatrix":
        """New matrix restricted to ``samples`` in the given order."""
        samples = list(samples)
        missing = [s for s in samples if s not in self._frame.columns]
        if missing:
            raise DegenerateInputError(f"Samples not in count matrix: {missing}")
        return CountMatrix(self._frame[samples])

    def __repr__(self) -> str:
        return f"CountMatrix(genes={self.shape[0]}, samples={self.shape[1]})"


def load_count_matrix(path: Union[str, Path]) -> CountMatrix:
    """
    Load a count matrix from a delimited text file.

    The first column holds gene identifiers and the header row holds sample
    identifiers. ``.csv`` files are comma-delimited, everything else is
    treated as tab-delimited.

    Raises:
        DegenerateInputError: If values are missing, negative or non-numeric.
    """
    path = Path(path)
    sep = "," if path.suffix.lower() == ".csv" else "\t"
    frame = pd.read_csv(path, sep=sep, index_col=0)
    try:
        frame = frame.apply(pd.to_numeric, errors="raise")
    except (ValueError, TypeError) as e:
        raise DegenerateInputError(f"Non-numeric counts in {path}: {e}") from e

    matrix = CountMatrix(frame)
    logger.info("Loaded %s from %s", matrix, path)
    return matrix
