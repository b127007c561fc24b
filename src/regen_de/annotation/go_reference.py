"""
GO term dictionary.

Provides term text and ontology branch for GO ids, loaded from an OBO file
(``go-basic.obo``) or a three-column TSV (``go_id``, ``term``, ``branch``).
Alternate ids resolve to their primary term; obsolete terms are left out.
"""

import logging
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd

from ..errors import UnmappedIdentifierWarning

logger = logging.getLogger(__name__)

BIOLOGICAL_PROCESS = "biological_process"
MOLECULAR_FUNCTION = "molecular_function"
CELLULAR_COMPONENT = "cellular_component"

_BRANCH_ALIASES = {
    "bp": BIOLOGICAL_PROCESS,
    "p": BIOLOGICAL_PROCESS,
    "biological process": BIOLOGICAL_PROCESS,
    BIOLOGICAL_PROCESS: BIOLOGICAL_PROCESS,
    "mf": MOLECULAR_FUNCTION,
    "f": MOLECULAR_FUNCTION,
    "molecular function": MOLECULAR_FUNCTION,
    MOLECULAR_FUNCTION: MOLECULAR_FUNCTION,
    "cc": CELLULAR_COMPONENT,
    "c": CELLULAR_COMPONENT,
    "cellular component": CELLULAR_COMPONENT,
    CELLULAR_COMPONENT: CELLULAR_COMPONENT,
}


def normalize_branch(value: str) -> Optional[str]:
    return _BRANCH_ALIASES.get(value.strip().lower())


@dataclass(frozen=True)
class GOTerm:
    go_id: str
    name: str
    branch: Optional[str]


class GOReference:
    """
    Read-only GO id -> term lookup.

    Example:
        reference = GOReference.from_obo("go-basic.obo")
        reference.lookup("GO:0042060").name  # "wound healing"
    """

    def __init__(self, terms: Iterable[GOTerm], alt_ids: Optional[Dict[str, str]] = None):
        self._terms: Dict[str, GOTerm] = {t.go_id: t for t in terms}
        self._alt_ids: Dict[str, str] = dict(alt_ids or {})

    def __len__(self) -> int:
        return len(self._terms)

    def __contains__(self, go_id: str) -> bool:
        return self.lookup(go_id) is not None

    def lookup(self, go_id: str) -> Optional[GOTerm]:
        term = self._terms.get(go_id)
        if term is None and go_id in self._alt_ids:
            term = self._terms.get(self._alt_ids[go_id])
        return term

    def resolve(self, go_ids: Iterable[str]) -> Tuple[Dict[str, GOTerm], List[str]]:
        """
        Look up many ids at once.

        Unknown ids are returned separately and reported with a single
        ``UnmappedIdentifierWarning`` per call.
        """
        found: Dict[str, GOTerm] = {}
        unknown: List[str] = []
        for go_id in go_ids:
            term = self.lookup(go_id)
            if term is None:
                unknown.append(go_id)
            else:
                found[go_id] = term
        if unknown:
            logger.warning(
                "%d GO ids not in reference, dropped: %s",
                len(unknown),
                ", ".join(unknown[:10]),
            )
            warnings.warn(
                f"{len(unknown)} GO ids not found in reference: {unknown}",
                UnmappedIdentifierWarning,
                stacklevel=2,
            )
        return found, unknown

    @classmethod
    def from_obo(cls, path: Union[str, Path]) -> "GOReference":
        """Parse ``[Term]`` stanzas of an OBO file."""
        terms: List[GOTerm] = []
        alt_ids: Dict[str, str] = {}
        stanza: Optional[Dict[str, List[str]]] = None

        def _flush(current):
            if not current or "id" not in current:
                return
            if current.get("is_obsolete", ["false"])[0] == "true":
                return
            go_id = current["id"][0]
            namespace = current.get("namespace", [""])[0]
            terms.append(
                GOTerm(
                    go_id=go_id,
                    name=current.get("name", [go_id])[0],
                    branch=normalize_branch(namespace) if namespace else None,
                )
            )
            for alt in current.get("alt_id", []):
                alt_ids[alt] = go_id

        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line.startswith("["):
                    _flush(stanza)
                    stanza = {} if line == "[Term]" else None
                    continue
                if stanza is None or ":" not in line:
                    continue
                key, _, value = line.partition(":")
                # drop trailing OBO modifiers and comments
                value = value.split(" ! ")[0].strip()
                stanza.setdefault(key.strip(), []).append(value)
        _flush(stanza)

        logger.info("Loaded %d GO terms from %s", len(terms), path)
        return cls(terms, alt_ids)

    @classmethod
    def from_tsv(cls, path: Union[str, Path]) -> "GOReference":
        """Load a ``go_id``/``term``/``branch`` table (header optional)."""
        frame = pd.read_csv(path, sep="\t", header=None, dtype=str, comment="#")
        if frame.shape[1] < 3:
            raise ValueError(f"{path}: expected 3 columns, found {frame.shape[1]}")
        if str(frame.iloc[0, 0]).strip().lower() == "go_id":
            frame = frame.iloc[1:]
        terms = [
            GOTerm(
                go_id=str(row[0]).strip(),
                name=str(row[1]).strip(),
                branch=normalize_branch(str(row[2])) if pd.notna(row[2]) else None,
            )
            for row in frame.itertuples(index=False)
        ]
        logger.info("Loaded %d GO terms from %s", len(terms), path)
        return cls(terms)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "GOReference":
        """Dispatch on file extension: ``.obo`` or tab-delimited."""
        if Path(path).suffix.lower() == ".obo":
            return cls.from_obo(path)
        return cls.from_tsv(path)
