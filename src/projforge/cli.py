"""Command-line interface for ProjForge.

This module provides the main entry point for the projforge CLI tool.
It uses Click to define commands.

Commands:
    predict: Project reference transcripts onto a target genome

Example:
    $ projforge --help
    $ projforge predict --genome target.fa --fragments cds-parts.fa \\
        --assignment assignment.tsv --hits search.tsv -o predictions.gff3
"""

from __future__ import annotations

import logging
from pathlib import Path

import click
from rich.console import Console

from projforge import __version__
from projforge.config import Config
from projforge.utils.logging import Timer, setup_logging

logger = logging.getLogger(__name__)

# Initialize rich console for pretty output
console = Console(stderr=True)


@click.group()
@click.version_option(version=__version__, prog_name="projforge")
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v info, -vv debug).")
@click.option("-q", "--quiet", is_flag=True, help="Suppress non-error output.")
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help="Also write debug logging to this file.",
)
@click.pass_context
def main(ctx: click.Context, verbose: int, quiet: bool, log_file: Path | None) -> None:
    """ProjForge: homology-based gene model projection.

    Reference CDS parts are aligned to a target genome beforehand; ProjForge
    chains the alignments into spliced gene models, optionally guided by
    RNA-seq intron and coverage evidence.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    setup_logging(verbosity=0 if quiet else min(verbose, 2), log_file=log_file)


# =============================================================================
# predict command
# =============================================================================


@main.command()
@click.option(
    "--genome",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="Target genome FASTA file.",
)
@click.option(
    "--fragments",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="Reference CDS parts as protein FASTA (ids <gene>_<part>).",
)
@click.option(
    "--assignment",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="Assignment table of transcripts to parts.",
)
@click.option(
    "--hits",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="Tabular search results of the parts against the genome.",
)
@click.option(
    "--introns",
    type=click.Path(exists=True, path_type=Path),
    help="RNA-seq intron table (contig, start, end, strand, reads).",
)
@click.option(
    "--coverage",
    type=click.Path(exists=True, path_type=Path),
    help="RNA-seq coverage table (contig, start, end, strand, count).",
)
@click.option(
    "--proteins",
    type=click.Path(exists=True, path_type=Path),
    help="Reference proteins FASTA keyed by transcript id.",
)
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    help="TOML configuration file.",
)
@click.option(
    "-o",
    "--output",
    type=click.Path(path_type=Path),
    required=True,
    help="Output GFF3 file.",
)
@click.option(
    "-r",
    "--report",
    type=click.Path(path_type=Path),
    help="Output per-transcript status TSV.",
)
@click.option("-j", "--threads", type=click.IntRange(min=1), help="Transcripts processed in parallel.")
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), help="Seconds allowed per transcript.")
@click.option("--predictions", type=click.IntRange(min=1), help="Predictions per transcript.")
@click.option("--evalue", type=float, help="E-value cutoff for search hits.")
@click.option("--max-intron", type=click.IntRange(min=1), help="Maximum intron length (bp).")
@click.pass_context
def predict(
    ctx: click.Context,
    genome: Path,
    fragments: Path,
    assignment: Path,
    hits: Path,
    introns: Path | None,
    coverage: Path | None,
    proteins: Path | None,
    config_path: Path | None,
    output: Path,
    report: Path | None,
    threads: int | None,
    timeout: float | None,
    predictions: int | None,
    evalue: float | None,
    max_intron: int | None,
) -> None:
    """Predict gene models from search hits.

    \b
    Examples:
        $ projforge predict --genome target.fa --fragments parts.fa \\
            --assignment assignment.tsv --hits search.tsv -o out.gff3

        # With RNA-seq evidence, 8 threads and a status report
        $ projforge predict --genome target.fa --fragments parts.fa \\
            --assignment assignment.tsv --hits search.tsv \\
            --introns introns.tsv --coverage coverage.tsv \\
            -j 8 -o out.gff3 -r report.tsv
    """
    from projforge.core.context import ProjectionContext
    from projforge.io.evidence import EvidenceIndex
    from projforge.io.fasta import GenomeAccessor
    from projforge.io.gff import GFF3Writer, write_report
    from projforge.io.hits import read_search_hits
    from projforge.io.reference import load_transcripts
    from projforge.parallel.executor import TranscriptBatchRunner, TranscriptJob, create_progress_bar

    verbose = ctx.obj.get("verbose", 0)
    quiet = ctx.obj.get("quiet", False)

    try:
        config = Config.load(config_path)
        config = config.with_overrides("runtime", threads=threads, timeout=timeout)
        config = config.with_overrides("search", predictions=predictions)
        config = config.with_overrides("thresholds", evalue_cutoff=evalue)
        config = config.with_overrides("intron", max_intron_length=max_intron)

        if not quiet:
            console.print(f"[blue]Genome:[/blue] {genome}")
            console.print(f"[blue]Hits:[/blue] {hits}")
            console.print(f"[blue]Output:[/blue] {output}")

        with GenomeAccessor(genome) as target:
            transcripts = load_transcripts(assignment, fragments, proteins)
            hits_by_gene = read_search_hits(
                hits,
                evalue_cutoff=config.thresholds.evalue_cutoff,
                score_column=config.thresholds.score_column,
            )
            evidence = EvidenceIndex.from_files(introns, coverage)
            context = ProjectionContext.build(target, config, evidence)

            jobs = [TranscriptJob(t, tuple(hits_by_gene.get(t.gene_id, ()))) for t in transcripts]

            with Timer("Prediction", logger):
                if quiet:
                    outcomes, stats = TranscriptBatchRunner(context).run(jobs)
                else:
                    with create_progress_bar() as progress:
                        task = progress.add_task("Predicting", total=len(jobs))

                        def advance(completed: int, total: int, transcript_id: str) -> None:
                            progress.update(task, completed=completed)

                        runner = TranscriptBatchRunner(context, progress_callback=advance)
                        outcomes, stats = runner.run(jobs)

        with GFF3Writer(output) as writer:
            writer.write_header(genome_path=genome, version=__version__)
            for outcome in outcomes:
                writer.write_predictions(outcome.predictions)

        if report:
            write_report(report, outcomes)

        if not quiet:
            states: dict[str, int] = {}
            for outcome in outcomes:
                states[outcome.state.value] = states.get(outcome.state.value, 0) + 1
            console.print("")
            console.print("[bold]Prediction Summary:[/bold]")
            console.print(f"  Transcripts:  {len(outcomes):,}")
            console.print(f"  Predictions:  {writer.written:,}")
            for state, count in sorted(states.items()):
                console.print(f"  {state + ':':<13} {count:,}")
            console.print(f"  Duration:     {stats.total_duration:.1f}s")
            console.print(f"[green]Wrote predictions:[/green] {output}")
            if report:
                console.print(f"[green]Wrote report:[/green] {report}")

    except (OSError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        if verbose:
            console.print_exception()
        raise SystemExit(1)


if __name__ == "__main__":
    main()
