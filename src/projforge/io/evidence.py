"""RNA-seq evidence tables.

Evidence arrives as two tab-separated tables that upstream tools derive
from read alignments:

- Introns: ``contig  start  end  strand  reads`` where start and end are
  the first and last intron base (1-based, genomic).
- Coverage: ``contig  start  end  strand  count`` with non-overlapping
  intervals of constant read depth.

A strand of "." applies the record to both strands. Lines starting with
"#" are ignored.

Example:
    >>> from projforge.io.evidence import EvidenceIndex
    >>> evidence = EvidenceIndex.from_files("introns.tsv", "coverage.tsv")
    >>> evidence.introns("chr1", "+").reads
"""

from __future__ import annotations

import logging
from collections import defaultdict
from pathlib import Path

import attrs
import numpy as np

logger = logging.getLogger(__name__)

EVIDENCE_STRANDS = ("+", "-", ".")


class EvidenceParseError(ValueError):
    """Raised when an evidence table line is malformed."""


# =============================================================================
# Data Structures
# =============================================================================


@attrs.define(slots=True, frozen=True)
class IntronTrack:
    """Introns of one contig strand, genomic coordinates.

    Attributes:
        starts: First intron base of each intron.
        ends: Last intron base of each intron.
        reads: Split reads supporting each intron.
    """

    starts: np.ndarray
    ends: np.ndarray
    reads: np.ndarray

    def __len__(self) -> int:
        return len(self.starts)


@attrs.define(slots=True, frozen=True)
class CoverageTrack:
    """Coverage intervals of one contig strand, sorted by start.

    Attributes:
        starts: Interval starts (1-based, inclusive).
        ends: Interval ends (inclusive).
        counts: Read depth of each interval.
    """

    starts: np.ndarray
    ends: np.ndarray
    counts: np.ndarray

    def __len__(self) -> int:
        return len(self.starts)


_EMPTY_INTRONS = IntronTrack(
    np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64)
)
_EMPTY_COVERAGE = CoverageTrack(
    np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.float64)
)


@attrs.define(slots=True, frozen=True)
class EvidenceIndex:
    """Introns and coverage indexed by (contig, strand)."""

    intron_tracks: dict[tuple[str, str], IntronTrack] = attrs.Factory(dict)
    coverage_tracks: dict[tuple[str, str], CoverageTrack] = attrs.Factory(dict)

    @classmethod
    def from_files(
        cls,
        introns: Path | str | None = None,
        coverage: Path | str | None = None,
    ) -> EvidenceIndex:
        return cls(
            read_introns(introns) if introns is not None else {},
            read_coverage(coverage) if coverage is not None else {},
        )

    @property
    def has_introns(self) -> bool:
        return bool(self.intron_tracks)

    @property
    def has_coverage(self) -> bool:
        return bool(self.coverage_tracks)

    def introns(self, contig: str, strand: str) -> IntronTrack:
        return self.intron_tracks.get((contig, strand), _EMPTY_INTRONS)

    def coverage(self, contig: str, strand: str) -> CoverageTrack:
        return self.coverage_tracks.get((contig, strand), _EMPTY_COVERAGE)


# =============================================================================
# Parsing
# =============================================================================


def _parse_records(path: Path | str, kind: str) -> dict[tuple[str, str], list[tuple[int, int, float]]]:
    records: dict[tuple[str, str], list[tuple[int, int, float]]] = defaultdict(list)
    with open(path) as f:
        for line_num, line in enumerate(f, 1):
            line = line.rstrip("\n")
            if not line.strip() or line.startswith("#"):
                continue
            fields = line.split("\t")
            if len(fields) < 5:
                raise EvidenceParseError(
                    f"{kind} line {line_num}: expected 5 fields, found {len(fields)}: {line!r}"
                )
            contig, start_s, end_s, strand, value_s = fields[:5]
            if strand not in EVIDENCE_STRANDS:
                raise EvidenceParseError(f"{kind} line {line_num}: invalid strand {strand!r}: {line!r}")
            try:
                start, end, value = int(start_s), int(end_s), float(value_s)
            except ValueError as e:
                raise EvidenceParseError(f"{kind} line {line_num}: {e}: {line!r}") from e
            if start < 1 or end < start:
                raise EvidenceParseError(f"{kind} line {line_num}: invalid interval {start}-{end}: {line!r}")
            if value < 0:
                raise EvidenceParseError(f"{kind} line {line_num}: negative value: {line!r}")
            for s in ("+", "-") if strand == "." else (strand,):
                records[(contig, s)].append((start, end, value))
    return records


def read_introns(path: Path | str) -> dict[tuple[str, str], IntronTrack]:
    """Read an intron table.

    Duplicate introns have their reads summed.

    Args:
        path: Path to the intron table.

    Returns:
        Intron tracks keyed by (contig, strand).

    Raises:
        EvidenceParseError: If a line is malformed.
    """
    tracks = {}
    for key, records in _parse_records(path, "Intron").items():
        merged: dict[tuple[int, int], int] = defaultdict(int)
        for start, end, reads in records:
            merged[(start, end)] += int(reads)
        pairs = sorted(merged)
        tracks[key] = IntronTrack(
            starts=np.array([p[0] for p in pairs], dtype=np.int64),
            ends=np.array([p[1] for p in pairs], dtype=np.int64),
            reads=np.array([merged[p] for p in pairs], dtype=np.int64),
        )
    logger.info(f"Loaded {sum(len(t) for t in tracks.values())} introns from {Path(path).name}")
    return tracks


def read_coverage(path: Path | str) -> dict[tuple[str, str], CoverageTrack]:
    """Read a coverage table.

    Args:
        path: Path to the coverage table.

    Returns:
        Coverage tracks keyed by (contig, strand).

    Raises:
        EvidenceParseError: If a line is malformed or intervals overlap.
    """
    tracks = {}
    for key, records in _parse_records(path, "Coverage").items():
        records.sort()
        starts = np.array([r[0] for r in records], dtype=np.int64)
        ends = np.array([r[1] for r in records], dtype=np.int64)
        if len(starts) > 1 and np.any(starts[1:] <= ends[:-1]):
            raise EvidenceParseError(f"Coverage intervals overlap on {key[0]} strand {key[1]}")
        tracks[key] = CoverageTrack(starts, ends, np.array([r[2] for r in records], dtype=np.float64))
    logger.info(f"Loaded coverage for {len(tracks)} contig strands from {Path(path).name}")
    return tracks
