"""
Report generation for pipeline results.

Per comparison (one directory each):
- deg_all.tsv: every gene with all statistics
- deg_filtered.tsv: genes passing the DEG filter, in rank order
- deg_top.tsv: the capped top-N view, padded with NA rows
- size_factors.tsv, dispersions.tsv
- go_terms.tsv, signatures.tsv: when an annotation feed was given
- enrichment_<direction>.tsv: when term gene sets were given

Per run:
- summary_matrix_<direction>.tsv and summary_presence_<direction>.tsv
- run_summary.json
"""

import json
import logging
from pathlib import Path
from typing import List, Union

import pandas as pd

from .annotation.aggregator import AnnotationSummary
from .pipeline import ComparisonResult, PipelineResult

logger = logging.getLogger(__name__)

NA = "NA"


class ReportGenerator:
    """
    Writes pipeline results as TSV tables and a JSON run summary.

    Example:
        generator = ReportGenerator()
        written = generator.write_run(result, "results/")
    """

    @staticmethod
    def _write_tsv(frame: pd.DataFrame, path: Path, index: bool = False) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        frame.to_csv(path, sep="\t", index=index, na_rep=NA)
        return path

    def write_annotation(
        self, summary: AnnotationSummary, output_dir: Union[str, Path]
    ) -> List[Path]:
        """GO term and signature tables for one feed."""
        output_dir = Path(output_dir)
        return [
            self._write_tsv(summary.go_term_table(), output_dir / "go_terms.tsv"),
            self._write_tsv(summary.signature_table(), output_dir / "signatures.tsv"),
        ]

    def write_comparison(
        self, result: ComparisonResult, output_dir: Union[str, Path]
    ) -> List[Path]:
        """All per-comparison tables under ``output_dir/<comparison>``."""
        directory = Path(output_dir) / result.name
        written = [
            self._write_tsv(result.de_result.to_frame(), directory / "deg_all.tsv"),
            self._write_tsv(result.deg.to_frame(), directory / "deg_filtered.tsv"),
            self._write_tsv(result.top.to_frame(), directory / "deg_top.tsv"),
            self._write_tsv(
                result.de_result.size_factors.rename_axis("sample").to_frame(),
                directory / "size_factors.tsv",
                index=True,
            ),
            self._write_tsv(
                result.de_result.dispersions.table.rename_axis("gene"),
                directory / "dispersions.tsv",
                index=True,
            ),
        ]
        if result.annotation is not None:
            written.extend(self.write_annotation(result.annotation, directory))
        for direction, table in result.enrichment.items():
            written.append(
                self._write_tsv(
                    table.to_frame(significant_only=False),
                    directory / f"enrichment_{direction}.tsv",
                )
            )
        return written

    def to_json(self, result: PipelineResult, path: Union[str, Path], indent: int = 2) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(result.to_dict(), f, indent=indent, default=str)
        return path

    def write_run(self, result: PipelineResult, output_dir: Union[str, Path]) -> List[Path]:
        """Write every comparison, the summary matrices and the run summary."""
        output_dir = Path(output_dir)
        written: List[Path] = []
        for comparison in result.comparisons.values():
            written.extend(self.write_comparison(comparison, output_dir))
        for direction, matrix in result.summary_matrices.items():
            written.append(
                self._write_tsv(
                    matrix.values, output_dir / f"summary_matrix_{direction}.tsv", index=True
                )
            )
            written.append(
                self._write_tsv(
                    matrix.presence,
                    output_dir / f"summary_presence_{direction}.tsv",
                    index=True,
                )
            )
        written.append(self.to_json(result, output_dir / "run_summary.json"))
        logger.info("Wrote %d files to %s", len(written), output_dir)
        return written

    def to_console_summary(self, result: PipelineResult) -> str:
        """Human-readable run summary."""
        lines = ["=" * 70, "REGEN-DE RUN SUMMARY", "=" * 70]
        for name, comparison in result.comparisons.items():
            deg = comparison.deg
            lines.append(
                f"{name}: {comparison.de_result.n_tested} tested, "
                f"{len(deg)} DEGs ({len(deg.up)} up, {len(deg.down)} down), "
                f"{comparison.de_result.n_failed} fit failures"
            )
            for direction, table in comparison.enrichment.items():
                lines.append(
                    f"  enrichment {direction}: {len(table.significant)} significant "
                    f"of {len(table.tested)} tested"
                )
        for name, reason in result.failures.items():
            lines.append(f"{name}: FAILED ({reason})")
        return "\n".join(lines)
