"""Exception and warning taxonomy for the regen_de pipeline.

Severity follows the batch boundaries of the pipeline:

- ``DegenerateInputError`` aborts whatever consumed the input (the run, or a
  single comparison when raised from inside one).
- ``FitDivergedError`` / ``FitNonconvergentError`` are recoverable; the
  dispersion trend falls back to gene-wise estimates and a failed gene is
  recorded as NA.
- ``ComparisonError`` aborts one comparison and leaves the others running.
- ``UnmappedIdentifierWarning`` is a ``warnings`` category, never raised.
"""


class RegenDEError(Exception):
    """Base class for all regen_de errors."""


class ConfigError(RegenDEError):
    """Configuration file or values are invalid."""


class DegenerateInputError(RegenDEError):
    """Too few samples or genes to estimate anything meaningful."""


class FitDivergedError(RegenDEError):
    """The mean-dispersion trend fit did not converge."""


class FitNonconvergentError(RegenDEError):
    """A per-gene GLM fit did not converge."""

    def __init__(self, gene_id: str, reason: str):
        super().__init__(f"GLM fit failed for {gene_id}: {reason}")
        self.gene_id = gene_id
        self.reason = reason


class ComparisonError(RegenDEError):
    """A comparison cannot be run (missing replicate group, unknown level)."""

    def __init__(self, comparison: str, reason: str):
        super().__init__(f"Comparison {comparison!r} failed: {reason}")
        self.comparison = comparison
        self.reason = reason


class UnmappedIdentifierWarning(UserWarning):
    """A gene or term identifier could not be mapped across identifier spaces."""
