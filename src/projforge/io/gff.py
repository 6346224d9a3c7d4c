"""GFF3 output of predicted gene models and the run report.

Each prediction is written as one ``prediction`` feature followed by its
``CDS`` features. Prediction attributes carry the ranking flags and the
evidence and protein metrics; undefined metrics are written as "?".

Example:
    >>> from projforge.io.gff import GFF3Writer
    >>> with GFF3Writer("predictions.gff3") as writer:
    ...     writer.write_header(genome_path="genome.fa")
    ...     for prediction in predictions:
    ...         writer.write_prediction(prediction)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any, TextIO

from projforge.core.solution import GeneModelPrediction
from projforge.parallel.scheduler import TranscriptOutcome

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

FEATURE_PREDICTION = "prediction"
FEATURE_CDS = "CDS"

UNDEFINED = "?"

REPORT_COLUMNS = (
    "transcript_id",
    "state",
    "predictions",
    "strands_tested",
    "regions_analysed",
    "alignments",
    "duration_seconds",
    "status",
)


# =============================================================================
# Attribute helpers
# =============================================================================


def format_attributes(attributes: dict[str, Any]) -> str:
    """Format attribute dictionary as GFF3 string.

    Args:
        attributes: Dictionary of attributes.

    Returns:
        Semicolon-separated key=value string.
    """
    if not attributes:
        return "."

    parts = []
    for key, value in attributes.items():
        # URL encode special characters
        value = str(value).replace(";", "%3B").replace("=", "%3D")
        value = value.replace("&", "%26").replace(",", "%2C")
        parts.append(f"{key}={value}")

    return ";".join(parts)


def _metric(value: float | int | None, digits: int = 4) -> str:
    if value is None:
        return UNDEFINED
    if isinstance(value, float):
        return f"{value:.{digits}f}".rstrip("0").rstrip(".") or "0"
    return str(value)


def prediction_attributes(prediction: GeneModelPrediction) -> dict[str, str]:
    """Attributes of the ``prediction`` feature."""
    attributes = {
        "ID": prediction.prediction_id,
        "ref-gene": prediction.gene_id,
        "ref-transcript": prediction.transcript_id,
        "rank": str(prediction.rank),
        "score": str(prediction.score),
        "AA": str(len(prediction.protein.rstrip("*"))),
        "parts": f"{prediction.matched_parts}/{prediction.total_parts}",
        "nps": str(prediction.premature_stops),
        "start": prediction.start_residue or UNDEFINED,
        "stop": prediction.stop_residue or UNDEFINED,
    }
    evidence = prediction.evidence
    if evidence is not None:
        attributes.update(
            {
                "tae": _metric(evidence.tae),
                "tde": _metric(evidence.tde),
                "tie": _metric(evidence.tie),
                "minSplitReads": _metric(evidence.min_split_reads),
                "tpc": _metric(evidence.tpc),
                "minCov": _metric(evidence.min_coverage),
                "avgCov": _metric(evidence.avg_coverage),
            }
        )
    metrics = prediction.protein_metrics
    if metrics is not None:
        attributes["iAA"] = _metric(metrics.identity)
        attributes["pAA"] = _metric(metrics.positive)
        attributes["maxGap"] = str(metrics.max_gap)
    for flag in ("backup", "cut", "intron_gain", "intron_loss"):
        if getattr(prediction, flag):
            attributes[flag] = "true"
    return attributes


# =============================================================================
# GFF3 Writer
# =============================================================================


class GFF3Writer:
    """Write predicted gene models to GFF3 format.

    Example:
        >>> writer = GFF3Writer("output.gff3")
        >>> writer.write_header(genome_path="genome.fa")
        >>> for prediction in predictions:
        ...     writer.write_prediction(prediction)
        >>> writer.close()
    """

    def __init__(
        self,
        output: Path | str | TextIO,
        source: str = "ProjForge",
    ) -> None:
        """Initialize the writer.

        Args:
            output: Output file path or an open text stream.
            source: Source field value for GFF3.
        """
        self.source = source
        if isinstance(output, (str, Path)):
            self.path: Path | None = Path(output)
            self._file: TextIO | None = open(self.path, "w")
            self._owns_file = True
        else:
            self.path = None
            self._file = output
            self._owns_file = False
        self._header_written = False
        self.written = 0

    def __enter__(self) -> GFF3Writer:
        """Context manager entry."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.close()

    def close(self) -> None:
        """Close the output file."""
        if self._file and self._owns_file:
            self._file.close()
        self._file = None

    def write_header(
        self,
        genome_path: Path | str | None = None,
        version: str = "0.1.0",
    ) -> None:
        """Write GFF3 header with provenance.

        Args:
            genome_path: Path to the target genome.
            version: ProjForge version.
        """
        self._file.write("##gff-version 3\n")
        self._file.write(f"#!processor ProjForge v{version}\n")
        if genome_path:
            self._file.write(f"#!genome-build-file {genome_path}\n")
        self._header_written = True

    def _format_line(
        self,
        seqid: str,
        feature_type: str,
        start: int,
        end: int,
        strand: str,
        attributes: dict[str, str],
        score: float | None = None,
        phase: int | None = None,
    ) -> str:
        """Format a GFF3 line; coordinates are 1-based and inclusive."""
        score_str = "." if score is None else f"{score:g}"
        phase_str = "." if phase is None else str(phase)
        attr_str = format_attributes(attributes)
        return f"{seqid}\t{self.source}\t{feature_type}\t{start}\t{end}\t{score_str}\t{strand}\t{phase_str}\t{attr_str}\n"

    def write_prediction(self, prediction: GeneModelPrediction) -> None:
        """Write a prediction and its CDS features.

        Args:
            prediction: Refined gene model.
        """
        if not self._header_written:
            self.write_header()

        pid = prediction.prediction_id
        self._file.write(
            self._format_line(
                prediction.contig,
                FEATURE_PREDICTION,
                prediction.start,
                prediction.end,
                prediction.strand,
                prediction_attributes(prediction),
                score=prediction.score,
            )
        )
        for i, cds in enumerate(prediction.cds, 1):
            cds_attrs = {"ID": f"{pid}.CDS{i}", "Parent": pid}
            if prediction.evidence is not None and prediction.evidence.tie is not None:
                cds_attrs["acceptorEvidence"] = str(cds.acceptor_evidence).lower()
                cds_attrs["donorEvidence"] = str(cds.donor_evidence).lower()
            self._file.write(
                self._format_line(
                    prediction.contig,
                    FEATURE_CDS,
                    cds.start,
                    cds.end,
                    prediction.strand,
                    cds_attrs,
                    phase=cds.phase,
                )
            )
        self.written += 1

    def write_predictions(self, predictions: Iterable[GeneModelPrediction]) -> None:
        """Write multiple predictions."""
        for prediction in predictions:
            self.write_prediction(prediction)


# =============================================================================
# Report
# =============================================================================


def write_report(path: Path | str, outcomes: Iterable[TranscriptOutcome]) -> None:
    """Write the per-transcript status table.

    Args:
        path: Output TSV path.
        outcomes: Transcript outcomes in run order.
    """
    count = 0
    with open(path, "w") as f:
        f.write("\t".join(REPORT_COLUMNS) + "\n")
        for outcome in outcomes:
            stats = outcome.stats
            row = (
                outcome.transcript_id,
                outcome.state.value,
                str(len(outcome.predictions)),
                str(stats.strands_tested) if stats else UNDEFINED,
                str(stats.regions_analysed) if stats else UNDEFINED,
                str(stats.alignments) if stats else UNDEFINED,
                f"{outcome.duration_seconds:.3f}",
                outcome.summary(),
            )
            f.write("\t".join(row) + "\n")
            count += 1
    logger.info(f"Wrote report for {count} transcripts to {path}")
