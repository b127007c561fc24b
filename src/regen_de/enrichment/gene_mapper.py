"""Gene symbol to stable identifier mapping.

Enrichment runs in the identifier space of the term-to-gene mapping
(typically human orthologs or NCBI Gene ids), while DE results are keyed by
the symbols of the count matrix. Mappers are injected into the enrichment
tester and always report which symbols could not be mapped.
"""

import csv
import logging
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol, Tuple, Union

from ..errors import UnmappedIdentifierWarning

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MappingResult:
    """Mapped symbols (symbol -> stable id) plus the explicit unmapped subset."""

    mapped: Dict[str, str]
    unmapped: Tuple[str, ...]

    @property
    def n_mapped(self) -> int:
        return len(self.mapped)


class IdentifierMapper(Protocol):
    """Protocol for identifier-mapping collaborators."""

    def map(self, symbols: Iterable[str]) -> MappingResult:
        """
        Map gene symbols to stable identifiers.

        Returns:
            MappingResult whose ``mapped`` and ``unmapped`` together cover
            every input symbol exactly once.
        """
        ...


def _report_unmapped(unmapped: Tuple[str, ...], total: int) -> None:
    if not unmapped:
        return
    logger.warning(
        "%d of %d symbols could not be mapped: %s",
        len(unmapped),
        total,
        ", ".join(unmapped[:10]),
    )
    warnings.warn(
        f"{len(unmapped)} gene symbols could not be mapped",
        UnmappedIdentifierWarning,
        stacklevel=3,
    )


class IdentityMapper:
    """Symbols are already stable identifiers; everything maps to itself."""

    def map(self, symbols: Iterable[str]) -> MappingResult:
        unique = list(dict.fromkeys(symbols))
        return MappingResult(mapped={s: s for s in unique}, unmapped=())


class TableIdentifierMapper:
    """Maps symbols through a two-column lookup table.

    Lookup tries the exact symbol first and then its upper-cased form, so
    mouse-style symbols (``Col1a1``) resolve against human-style keys.

    Args:
        table: Symbol -> stable id.
    """

    def __init__(self, table: Dict[str, str]) -> None:
        self._table: Dict[str, str] = {}
        for symbol, target in table.items():
            self._table[symbol] = target
            self._table.setdefault(symbol.upper(), target)

    def __len__(self) -> int:
        return len(self._table)

    def lookup(self, symbol: str) -> Optional[str]:
        return self._table.get(symbol) or self._table.get(symbol.upper())

    def map(self, symbols: Iterable[str]) -> MappingResult:
        unique = list(dict.fromkeys(symbols))
        mapped: Dict[str, str] = {}
        unmapped = []
        for symbol in unique:
            target = self.lookup(symbol)
            if target is None:
                unmapped.append(symbol)
            else:
                mapped[symbol] = target
        result = MappingResult(mapped=mapped, unmapped=tuple(unmapped))
        _report_unmapped(result.unmapped, len(unique))
        return result

    @classmethod
    def from_tsv(cls, path: Union[str, Path]) -> "TableIdentifierMapper":
        """Load ``symbol<TAB>stable_id`` rows; a header row is skipped if present."""
        table: Dict[str, str] = {}
        with open(path, "r", encoding="utf-8") as f:
            reader = csv.reader(f, delimiter="\t")
            for i, row in enumerate(reader):
                if len(row) < 2 or row[0].startswith("#"):
                    continue
                symbol, target = row[0].strip(), row[1].strip()
                if i == 0 and symbol.lower() in ("symbol", "gene", "gene_symbol"):
                    continue
                if symbol and target:
                    table.setdefault(symbol, target)
        logger.info("Loaded %d identifier mappings from %s", len(table), path)
        return cls(table)
