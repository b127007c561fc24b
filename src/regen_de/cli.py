from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import click

from regen_de.annotation.aggregator import AnnotationAggregator
from regen_de.annotation.go_reference import GOReference
from regen_de.annotation.parser import parse_annotation_feed
from regen_de.config import MetadataConfig, load_config
from regen_de.de.counts import load_count_matrix
from regen_de.de.metadata import MetadataResolver, load_sample_sheet
from regen_de.errors import RegenDEError
from regen_de.pipeline import run_comparisons
from regen_de.report_generator import ReportGenerator


@click.group()
@click.option("--verbose", is_flag=True, help="Enable verbose logging.")
def cli(verbose: bool) -> None:
    """Differential expression and functional annotation for regeneration studies."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)


@cli.command("run")
@click.argument(
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for result tables (overrides output_dir in the config).",
)
@click.option(
    "--parallel",
    is_flag=True,
    help="Run comparisons concurrently.",
)
def run_command(config_path: Path, output_dir: Optional[Path], parallel: bool) -> None:
    """Run every comparison in CONFIG_PATH and write result tables."""
    try:
        config = load_config(config_path)
        result = run_comparisons(config, parallel=parallel)
    except RegenDEError as exc:
        raise click.ClickException(str(exc)) from exc

    target = output_dir or Path(config.output_dir)
    generator = ReportGenerator()
    written = generator.write_run(result, target)
    click.echo(generator.to_console_summary(result))
    click.echo(f"Wrote {len(written)} files to {target}")
    if result.failures:
        raise SystemExit(1)


@cli.command("aggregate")
@click.argument(
    "feed_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--go-reference",
    "go_reference_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="GO dictionary (.obo or 3-column TSV).",
)
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory to write go_terms.tsv and signatures.tsv.",
)
def aggregate_command(
    feed_path: Path, go_reference_path: Path, output_dir: Path
) -> None:
    """Count and categorize GO terms and signatures in one annotation feed."""
    aggregator = AnnotationAggregator(GOReference.load(go_reference_path))
    summary = aggregator.aggregate(parse_annotation_feed(feed_path), feed_path.stem)
    written = ReportGenerator().write_annotation(summary, output_dir)
    click.echo(
        f"{summary.n_records} records, {len(summary.go_terms)} GO terms, "
        f"{len(summary.signatures)} signature descriptions"
    )
    if summary.unknown_go_ids:
        click.echo(
            f"Warning: {len(summary.unknown_go_ids)} GO ids not in reference",
            err=True,
        )
    for path in written:
        click.echo(f"  {path}")


@cli.command("parse-samples")
@click.argument(
    "counts_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--sample-sheet",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Optional TSV overriding parsed sample fields.",
)
def parse_samples_command(counts_path: Path, sample_sheet: Optional[Path]) -> None:
    """Print the metadata parsed from the column names of COUNTS_PATH."""
    try:
        counts = load_count_matrix(counts_path)
    except RegenDEError as exc:
        raise click.ClickException(str(exc)) from exc
    overrides = load_sample_sheet(sample_sheet) if sample_sheet else None
    metadata = MetadataResolver(MetadataConfig()).resolve(counts.samples, overrides)
    click.echo(metadata.to_frame().to_csv(sep="\t", na_rep="NA"), nl=False)


def main() -> None:  # pragma: no cover
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()
