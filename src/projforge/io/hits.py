"""Tabular homology search results.

Hits are read from tblastn-style tabular output written with
``-outfmt "6 std sallseqid score nident positive gaps ppos qframe sframe
qseq sseq qlen"``. Columns used (0-based):

====  ===================================
0     query (fragment) id, ``<gene>_<part>``
1     target contig
6, 7  query start, query end
8, 9  target start, target end
10    e-value
13    raw score (configurable)
20    aligned query
21    aligned target
22    query length
====  ===================================

A target start larger than the target end marks a hit on the reverse
strand; coordinates are normalised so that ``start <= end``.

Example:
    >>> from projforge.io.hits import read_search_hits
    >>> hits = read_search_hits("search.tsv", evalue_cutoff=100)
    >>> len(hits["geneA"])
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from pathlib import Path

from projforge.core.hits import INFO_SEARCH, Hit
from projforge.core.transcript import split_fragment_id

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

MIN_COLUMNS = 23

COL_QUERY = 0
COL_TARGET = 1
COL_QSTART = 6
COL_QEND = 7
COL_SSTART = 8
COL_SEND = 9
COL_EVALUE = 10
COL_QSEQ = 20
COL_SSEQ = 21
COL_QLEN = 22

# Ambiguous amino acids in the translated target are scored as X
AMBIGUOUS_AA = re.compile("[BJZ]")


class HitParseError(ValueError):
    """Raised when a search result line is malformed."""


# =============================================================================
# Parsing
# =============================================================================


def parse_hit_line(line: str, line_num: int = 0, score_column: int = 13) -> tuple[Hit, float]:
    """Parse one tabular search result line.

    Args:
        line: Tab-separated line.
        line_num: Line number for error messages.
        score_column: Column holding the raw score.

    Returns:
        The hit and its e-value.

    Raises:
        HitParseError: If the line is malformed.
    """
    fields = line.rstrip("\n").split("\t")
    if len(fields) < max(MIN_COLUMNS, score_column + 1):
        raise HitParseError(
            f"Hit line {line_num}: expected at least {MIN_COLUMNS} columns, "
            f"found {len(fields)}: {line.rstrip()!r}"
        )
    try:
        _, part = split_fragment_id(fields[COL_QUERY])
        qstart, qend = int(fields[COL_QSTART]), int(fields[COL_QEND])
        sstart, send = int(fields[COL_SSTART]), int(fields[COL_SEND])
        evalue = float(fields[COL_EVALUE])
        score = int(float(fields[score_column]))
        qlen = int(fields[COL_QLEN])
    except ValueError as e:
        raise HitParseError(f"Hit line {line_num}: {e}: {line.rstrip()!r}") from e

    query_aligned = fields[COL_QSEQ].upper()
    target_aligned = AMBIGUOUS_AA.sub("X", fields[COL_SSEQ].upper())
    if len(query_aligned) != len(target_aligned):
        raise HitParseError(
            f"Hit line {line_num}: aligned query and target differ in length: {line.rstrip()!r}"
        )

    strand = "+" if sstart <= send else "-"
    start, end = min(sstart, send), max(sstart, send)
    try:
        hit = Hit(
            query_id=fields[COL_QUERY],
            part=part,
            contig=fields[COL_TARGET],
            strand=strand,
            query_start=qstart,
            query_end=qend,
            query_length=qlen,
            start=start,
            end=end,
            score=score,
            query_aligned=query_aligned,
            target_aligned=target_aligned,
            info=INFO_SEARCH,
        )
    except ValueError as e:
        raise HitParseError(f"Hit line {line_num}: {e}: {line.rstrip()!r}") from e
    return hit, evalue


def read_search_hits(
    path: Path | str,
    evalue_cutoff: float = 100.0,
    score_column: int = 13,
) -> dict[str, list[Hit]]:
    """Read tabular search results grouped by gene.

    Args:
        path: Search result table. Lines starting with "#" are ignored.
        evalue_cutoff: Hits with a larger e-value are dropped.
        score_column: Column holding the raw score.

    Returns:
        Hits per gene id, each list in deterministic hit order.

    Raises:
        HitParseError: If a line is malformed.
    """
    path = Path(path)
    by_gene: dict[str, list[Hit]] = defaultdict(list)
    total = dropped = 0
    with open(path) as f:
        for line_num, line in enumerate(f, 1):
            if not line.strip() or line.startswith("#"):
                continue
            hit, evalue = parse_hit_line(line, line_num, score_column)
            total += 1
            if evalue > evalue_cutoff:
                dropped += 1
                continue
            gene_id, _ = split_fragment_id(hit.query_id)
            by_gene[gene_id].append(hit)

    for hits in by_gene.values():
        hits.sort(key=Hit.sort_key)
    logger.info(
        f"Read {total} hits for {len(by_gene)} genes from {path.name} "
        f"({dropped} above e-value {evalue_cutoff:g})"
    )
    return dict(by_gene)
