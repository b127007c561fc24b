"""Configuration dataclasses and JSON config loading.

Every knob of the pipeline lives in one of the dataclasses below. A run is
described by a :class:`PipelineConfig`, usually loaded from JSON::

    {
      "counts_path": "data/counts.tsv",
      "output_dir": "results",
      "go_reference_path": "data/go-basic.obo",
      "de": {"min_total_count": 10},
      "comparisons": [
        {"name": "D5", "time_points": ["D5"], "factor": "tissue",
         "level_a": "ear", "level_b": "skin",
         "annotation_feed": "data/D5_interpro.tsv"},
        {"name": "D10", "time_points": ["D10"], "factor": "tissue",
         "level_a": "ear", "level_b": "skin", "alpha": 0.10}
      ]
    }
"""

import dataclasses
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import ConfigError

logger = logging.getLogger(__name__)

N_JOBS_ENV = "REGEN_DE_N_JOBS"


# Keyword sets are matched as case-insensitive substrings. Order of the
# categories is significant: the first matching category wins.
REGENERATION_KEYWORDS: Tuple[str, ...] = (
    "wound healing",
    "regenerat",
    "stem cell",
    "migration",
    "angiogenesis",
    "proliferation",
    "re-epithelialization",
    "epithelial cell differentiation",
    "hair follicle",
    "morphogenesis",
    "blastema",
    "wnt",
    "fibroblast growth factor",
    "epidermal growth factor",
    "cell cycle",
    "dna replication",
    "tissue development",
)

FIBROSIS_KEYWORDS: Tuple[str, ...] = (
    "collagen",
    "scar",
    "fibrosis",
    "fibrotic",
    "tgf",
    "transforming growth factor",
    "myofibroblast",
    "crosslink",
    "cross-link",
    "lysyl oxidase",
    "extracellular matrix",
    "fibronectin",
    "smad",
    "inflammatory response",
    "connective tissue",
)


@dataclass
class MetadataConfig:
    """Vocabulary used to parse sample identifiers.

    Attributes:
        tissues: Controlled tissue vocabulary (matched case-insensitively).
        time_points: Allowed canonical time points (``D<n>``).
        baseline_time_point: Time point treated as uninjured control when
            an identifier carries no explicit condition flag.
        control_tokens: Tokens marking a control sample.
        treated_tokens: Tokens marking a treated sample.
    """

    tissues: Tuple[str, ...] = ("ear", "skin", "dorsal", "back", "tail")
    time_points: Tuple[str, ...] = ("D0", "D3", "D5", "D10", "D15")
    baseline_time_point: str = "D0"
    control_tokens: Tuple[str, ...] = ("ctrl", "control", "uninj", "uninjured", "c")
    treated_tokens: Tuple[str, ...] = ("trt", "treated", "inj", "injured", "wound", "t")


@dataclass
class DEConfig:
    """Configuration for the count-model differential expression engine.

    Attributes:
        min_total_count: Genes whose total count across the comparison's
            samples is below this are dropped before fitting.
        min_disp: Lower bound for dispersion estimates.
        max_trend_iterations: Iteration cap for the dispersion trend fit.
        outlier_ratio: Genes with genewise/trend outside
            ``[1e-4, outlier_ratio]`` are left out of the trend refit.
        glm_maxiter: IRLS iteration cap per gene.
        null_weight: Pseudo-count on the null component of the shrinkage
            mixture prior.
        significance_source: ``"pvalue"`` (BH on Wald p-values) or
            ``"svalue"`` (posterior tail probability used as adjusted value).
        n_jobs: Thread count for per-gene fits (1 = sequential).
    """

    min_total_count: int = 10
    min_disp: float = 1e-8
    max_trend_iterations: int = 10
    outlier_ratio: float = 15.0
    glm_maxiter: int = 100
    null_weight: float = 10.0
    significance_source: str = "pvalue"
    n_jobs: int = 1

    def __post_init__(self):
        if self.significance_source not in ("pvalue", "svalue"):
            raise ConfigError(
                f"significance_source must be 'pvalue' or 'svalue', "
                f"got {self.significance_source!r}"
            )
        env_jobs = os.environ.get(N_JOBS_ENV)
        if env_jobs:
            try:
                self.n_jobs = int(env_jobs)
            except ValueError as e:
                raise ConfigError(f"{N_JOBS_ENV} must be an integer: {env_jobs!r}") from e
        if self.n_jobs < 1:
            raise ConfigError(f"n_jobs must be >= 1, got {self.n_jobs}")


@dataclass
class FilterConfig:
    """Thresholds for turning a DE result into a DEG table.

    Attributes:
        alpha: Maximum adjusted p-value (inclusive).
        lfc_threshold: Minimum absolute log2 fold change (exclusive).
        top_n: Size of the capped reporting view.
        use_shrunk_lfc: Filter and rank on the shrunk rather than raw LFC.
        uninformative_pattern: Regex for placeholder gene identifiers.
    """

    alpha: float = 0.05
    lfc_threshold: float = 1.0
    top_n: int = 50
    use_shrunk_lfc: bool = True
    uninformative_pattern: str = (
        r"^(LOC\d+|ENS[A-Z]*G\d+(\.\d+)?|Gm\d+|[A-Z]{1,2}\d{5,}(\.\d+)?)$"
    )


@dataclass
class CategoryConfig:
    """Ordered keyword taxonomy; the first category with a match wins."""

    categories: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
        ("Regeneration", REGENERATION_KEYWORDS),
        ("Fibrosis", FIBROSIS_KEYWORDS),
    )
    default: str = "Other"


@dataclass
class EnrichmentConfig:
    """
    Configuration for over-representation analysis.

    Attributes:
        significance_threshold: Adjusted p-value cutoff for reported terms.
        min_term_size: Smallest term (in background genes) that is tested.
        max_term_size: Largest term that is tested (None = unbounded).
        directions: Query sets to test ("up", "down", "all").
        report_symbols: Re-express term genes as input symbols.
    """

    significance_threshold: float = 0.05
    min_term_size: int = 1
    max_term_size: Optional[int] = None
    directions: Tuple[str, ...] = ("up", "down")
    report_symbols: bool = True


@dataclass
class ComparisonConfig:
    """One comparison: sample selection, contrast and thresholds.

    ``time_points`` / ``tissues`` / ``conditions`` select the samples (empty =
    no restriction). The contrast is ``factor: level_a vs level_b`` and
    ``level_b`` is the reference level of the design.
    """

    name: str
    factor: str
    level_a: str
    level_b: str
    time_points: Tuple[str, ...] = ()
    tissues: Tuple[str, ...] = ()
    conditions: Tuple[str, ...] = ()
    alpha: Optional[float] = None
    lfc_threshold: Optional[float] = None
    top_n: Optional[int] = None
    annotation_feed: Optional[str] = None

    def filter_config(self, base: FilterConfig) -> FilterConfig:
        """Per-comparison thresholds layered over the run defaults."""
        overrides = {
            k: v
            for k, v in (
                ("alpha", self.alpha),
                ("lfc_threshold", self.lfc_threshold),
                ("top_n", self.top_n),
            )
            if v is not None
        }
        return dataclasses.replace(base, **overrides)


@dataclass
class PipelineConfig:
    """Complete description of a pipeline run."""

    counts_path: str
    output_dir: str = "results"
    sample_sheet_path: Optional[str] = None
    go_reference_path: Optional[str] = None
    term_genes_path: Optional[str] = None
    identifier_map_path: Optional[str] = None
    metadata: MetadataConfig = field(default_factory=MetadataConfig)
    de: DEConfig = field(default_factory=DEConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    categories: CategoryConfig = field(default_factory=CategoryConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    comparisons: List[ComparisonConfig] = field(default_factory=list)

    def __post_init__(self):
        names = [c.name for c in self.comparisons]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigError(f"Duplicate comparison names: {duplicates}")


# =============================================================================
# JSON loading
# =============================================================================


def _build(cls, payload: Dict[str, Any], where: str):
    """Instantiate a config dataclass from a dict, rejecting unknown keys."""
    if not isinstance(payload, dict):
        raise ConfigError(f"{where}: expected an object, got {type(payload).__name__}")
    known = {f.name: f for f in dataclasses.fields(cls)}
    unknown = sorted(set(payload) - set(known))
    if unknown:
        raise ConfigError(f"{where}: unknown keys {unknown}")

    kwargs = {}
    for key, value in payload.items():
        # JSON has no tuples; every tuple-typed default is rebuilt as a tuple
        if isinstance(value, list) and key != "comparisons":
            value = tuple(tuple(v) if isinstance(v, list) else v for v in value)
        kwargs[key] = value
    try:
        return cls(**kwargs)
    except TypeError as e:
        raise ConfigError(f"{where}: {e}") from e


def _parse_categories(payload: Dict[str, Any]) -> CategoryConfig:
    """Categories are given in JSON as an ordered list of {label, keywords}."""
    if not isinstance(payload, dict):
        raise ConfigError(
            f"categories: expected an object, got {type(payload).__name__}"
        )
    categories = payload.get("categories")
    default = payload.get("default", "Other")
    if categories is None:
        return CategoryConfig(default=default)
    if not isinstance(categories, list):
        raise ConfigError(
            f"categories.categories: expected a list, got {type(categories).__name__}"
        )
    parsed = []
    for i, entry in enumerate(categories):
        try:
            parsed.append((entry["label"], tuple(entry["keywords"])))
        except (KeyError, TypeError) as e:
            raise ConfigError(f"categories[{i}]: expected label and keywords") from e
    return CategoryConfig(categories=tuple(parsed), default=default)


def config_from_dict(payload: Dict[str, Any]) -> PipelineConfig:
    """Build a :class:`PipelineConfig` from a parsed JSON document."""
    payload = dict(payload)
    sections = {
        "metadata": MetadataConfig,
        "de": DEConfig,
        "filter": FilterConfig,
        "enrichment": EnrichmentConfig,
    }
    for key, cls in sections.items():
        if key in payload:
            payload[key] = _build(cls, payload[key], key)
    if "categories" in payload:
        payload["categories"] = _parse_categories(payload["categories"])
    payload["comparisons"] = [
        _build(ComparisonConfig, c, f"comparisons[{i}]")
        for i, c in enumerate(payload.get("comparisons", []))
    ]
    if "counts_path" not in payload:
        raise ConfigError("counts_path is required")
    return _build(PipelineConfig, payload, "config")


def load_config(path: Union[str, Path]) -> PipelineConfig:
    """Load a JSON pipeline configuration; relative paths resolve against it."""
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as fh:
            payload = json.load(fh)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path}: invalid JSON ({e})") from e

    base = path.parent
    for key in (
        "counts_path",
        "sample_sheet_path",
        "go_reference_path",
        "term_genes_path",
        "identifier_map_path",
    ):
        if payload.get(key):
            payload[key] = str(base / payload[key])
    for comparison in payload.get("comparisons", []):
        if isinstance(comparison, dict) and comparison.get("annotation_feed"):
            comparison["annotation_feed"] = str(base / comparison["annotation_feed"])

    config = config_from_dict(payload)
    logger.info(
        "Loaded config %s: %d comparisons", path, len(config.comparisons)
    )
    return config
