"""Reference transcripts: assignment table plus fragment proteins.

The assignment table lists, per reference transcript, which CDS parts it
consists of. Tab-separated, "#" starts a comment line:

====  =====================================================
0     gene id (prefix of the fragment ids)
1     transcript id
2     comma-separated part indices in transcription order
3     optional comma-separated split residues, one per part
      boundary ("-" or empty for none)
4     optional longest reference intron of the gene
====  =====================================================

Fragment sequences come from a protein FASTA with ids ``<gene>_<part>``.

Example:
    >>> from projforge.io.reference import load_transcripts
    >>> transcripts = load_transcripts("assignment.tsv", "fragments.fa")
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from projforge.core.transcript import ReferenceTranscript, fragment_id
from projforge.io.fasta import read_protein_fasta

logger = logging.getLogger(__name__)

NO_VALUE = ("", "-")


class AssignmentParseError(ValueError):
    """Raised when an assignment table line is malformed."""


def _split_residues(value: str, parts: int) -> tuple[str, ...]:
    if value.strip() in NO_VALUE:
        return ()
    residues = tuple("" if r.strip() in NO_VALUE else r.strip().upper() for r in value.split(","))
    if len(residues) != parts - 1:
        raise ValueError(f"expected {parts - 1} split residues, found {len(residues)}")
    return residues


def read_assignment(
    path: Path | str,
    fragments: Mapping[str, str],
    proteins: Mapping[str, str] | None = None,
) -> list[ReferenceTranscript]:
    """Read the assignment table.

    Args:
        path: Assignment table.
        fragments: Fragment sequences keyed by fragment id.
        proteins: Reference proteins keyed by transcript id.

    Returns:
        Transcripts in file order. Transcripts with a fragment missing
        from ``fragments`` are skipped with a warning.

    Raises:
        AssignmentParseError: If a line is malformed or a transcript id repeats.
    """
    path = Path(path)
    proteins = proteins or {}
    transcripts: list[ReferenceTranscript] = []
    seen: set[str] = set()
    skipped = 0

    with open(path) as f:
        for line_num, line in enumerate(f, 1):
            line = line.rstrip("\n")
            if not line.strip() or line.startswith("#"):
                continue
            fields = line.split("\t")
            if len(fields) < 3:
                raise AssignmentParseError(
                    f"Assignment line {line_num}: expected at least 3 fields, "
                    f"found {len(fields)}: {line!r}"
                )
            gene_id, transcript_id = fields[0].strip(), fields[1].strip()
            if not gene_id or not transcript_id:
                raise AssignmentParseError(f"Assignment line {line_num}: empty id: {line!r}")
            if transcript_id in seen:
                raise AssignmentParseError(
                    f"Assignment line {line_num}: duplicate transcript {transcript_id}: {line!r}"
                )
            try:
                parts = tuple(int(p) for p in fields[2].split(","))
                split_residues = _split_residues(fields[3], len(parts)) if len(fields) > 3 else ()
                max_intron = None
                if len(fields) > 4 and fields[4].strip() not in NO_VALUE:
                    max_intron = int(fields[4])
            except ValueError as e:
                raise AssignmentParseError(f"Assignment line {line_num}: {e}: {line!r}") from e

            missing = [fragment_id(gene_id, p) for p in parts if fragment_id(gene_id, p) not in fragments]
            if missing:
                logger.warning(
                    f"Transcript {transcript_id}: fragment(s) {', '.join(missing)} not found; skipped"
                )
                skipped += 1
                continue

            try:
                transcript = ReferenceTranscript(
                    transcript_id=transcript_id,
                    gene_id=gene_id,
                    parts=parts,
                    fragments=tuple(fragments[fragment_id(gene_id, p)] for p in parts),
                    split_residues=split_residues,
                    max_reference_intron=max_intron,
                    protein=proteins.get(transcript_id),
                )
            except ValueError as e:
                raise AssignmentParseError(f"Assignment line {line_num}: {e}: {line!r}") from e
            seen.add(transcript_id)
            transcripts.append(transcript)

    logger.info(f"Read {len(transcripts)} transcripts from {path.name} ({skipped} skipped)")
    return transcripts


def load_transcripts(
    assignment_path: Path | str,
    fragments_path: Path | str,
    proteins_path: Path | str | None = None,
) -> list[ReferenceTranscript]:
    """Read transcripts from an assignment table and fragment FASTA files."""
    fragments = read_protein_fasta(fragments_path)
    proteins = read_protein_fasta(proteins_path) if proteins_path else None
    return read_assignment(assignment_path, fragments, proteins)
