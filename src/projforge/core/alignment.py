"""Amino-acid pairwise alignment.

This module provides the scoring primitives used throughout the
projection:

- ``SubstitutionMatrix``: integer substitution scores over the amino-acid
  alphabet including ``*``
- ``PairwiseAligner``: affine-gap (Gotoh) global and local alignment whose
  full state matrices stay available after a computation, so callers can
  read scores of interior cells
- ``score_aligned``: rescoring of an existing gapped alignment

Scores are maximised. A gap of length ``l`` scores ``-(gap_open + l *
gap_extend)``.

Example:
    >>> aligner = PairwiseAligner(SubstitutionMatrix.blosum62(), 11, 1)
    >>> result = aligner.align(AlignmentKind.GLOBAL, "MKV", "MKV")
    >>> result.score
    14
"""

from __future__ import annotations

import functools
import logging
from enum import Enum
from pathlib import Path

import attrs
import numpy as np

from projforge.core.cancellation import NEVER_CANCELLED, CancellationToken
from projforge.data import read_data_text

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

# Effectively minus infinity, far from int64 overflow
NEG = -(10**12)

# Rows filled between two cancellation checks
CHECK_INTERVAL = 256

GAP = "-"


class AlignmentKind(Enum):
    """Alignment mode."""

    GLOBAL = "global"
    LOCAL = "local"


class MatrixFormatError(ValueError):
    """Raised when a substitution matrix file is malformed."""


# =============================================================================
# Substitution Matrix
# =============================================================================


class SubstitutionMatrix:
    """Symmetric integer substitution matrix.

    Residues outside the alphabet are scored as ``X``.

    Attributes:
        alphabet: Residue letters in matrix order.
        scores: Square int64 score array.
    """

    def __init__(self, alphabet: str, scores: np.ndarray) -> None:
        if scores.shape != (len(alphabet), len(alphabet)):
            raise MatrixFormatError(
                f"Matrix shape {scores.shape} does not match alphabet of size {len(alphabet)}"
            )
        if "X" not in alphabet:
            raise MatrixFormatError("Substitution matrix must contain 'X'")
        self.alphabet = alphabet
        self.scores = scores.astype(np.int64)
        self._lookup = np.full(256, alphabet.index("X"), dtype=np.intp)
        for idx, residue in enumerate(alphabet):
            self._lookup[ord(residue.upper())] = idx
            self._lookup[ord(residue.lower())] = idx

    @classmethod
    def from_text(cls, text: str) -> SubstitutionMatrix:
        """Parse a matrix in NCBI text format.

        Raises:
            MatrixFormatError: If the text is not a square matrix.
        """
        alphabet: list[str] | None = None
        rows: list[list[int]] = []
        for line_num, line in enumerate(text.splitlines(), 1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            fields = line.split()
            if alphabet is None:
                alphabet = fields
                continue
            if len(rows) >= len(alphabet) or fields[0] != alphabet[len(rows)]:
                raise MatrixFormatError(f"Line {line_num}: unexpected row {fields[0]!r}")
            try:
                rows.append([int(v) for v in fields[1:]])
            except ValueError as e:
                raise MatrixFormatError(f"Line {line_num}: {e}") from e
        if alphabet is None or len(rows) != len(alphabet):
            raise MatrixFormatError("Incomplete substitution matrix")
        if any(len(row) != len(alphabet) for row in rows):
            raise MatrixFormatError("Substitution matrix rows have inconsistent lengths")
        return cls("".join(alphabet), np.array(rows, dtype=np.int64))

    @classmethod
    def from_file(cls, path: Path | str) -> SubstitutionMatrix:
        return cls.from_text(Path(path).read_text())

    @classmethod
    @functools.cache
    def blosum62(cls) -> SubstitutionMatrix:
        """Return the packaged BLOSUM62 matrix."""
        return cls.from_text(read_data_text("blosum62.txt"))

    def encode(self, sequence: str) -> np.ndarray:
        """Map a sequence to matrix indices."""
        raw = np.frombuffer(sequence.encode("ascii", errors="replace"), dtype=np.uint8)
        return self._lookup[raw]

    def score(self, a: str, b: str) -> int:
        return int(self.scores[self._lookup[ord(a)], self._lookup[ord(b)]])


# =============================================================================
# Results
# =============================================================================


@attrs.define(slots=True, frozen=True)
class AlignmentResult:
    """A traced alignment.

    Coordinates are 0-based half-open positions in the ungapped inputs.

    Attributes:
        score: Alignment score.
        query_aligned: Gapped query.
        target_aligned: Gapped target.
        query_start: First aligned query position.
        query_end: End of the aligned query (exclusive).
        target_start: First aligned target position.
        target_end: End of the aligned target (exclusive).
    """

    score: int
    query_aligned: str
    target_aligned: str
    query_start: int
    query_end: int
    target_start: int
    target_end: int

    @property
    def length(self) -> int:
        return len(self.query_aligned)

    def identity_counts(self, matrix: SubstitutionMatrix) -> tuple[int, int, int]:
        """Return (identical, positive, longest gap) over the alignment columns."""
        identical = positive = 0
        longest = run = 0
        for a, b in zip(self.query_aligned, self.target_aligned):
            if a == GAP or b == GAP:
                run += 1
                longest = max(longest, run)
                continue
            run = 0
            if a == b:
                identical += 1
                positive += 1
            elif matrix.score(a, b) > 0:
                positive += 1
        return identical, positive, longest


# =============================================================================
# Aligner
# =============================================================================


class PairwiseAligner:
    """Affine-gap aligner with three states.

    ``M`` ends in an aligned pair, ``X`` in a query residue against a gap,
    ``Y`` in a target residue against a gap; ``H`` is their maximum (and
    0 in local mode). After ``compute`` the matrices of the last
    computation stay available for ``score``, ``states`` and
    ``traceback``. A repeated call with identical arguments reuses them.

    The aligner is not thread-safe; every worker owns its own instance.

    Attributes:
        matrix: Substitution matrix.
        gap_open: Gap opening cost.
        gap_extend: Gap extension cost.
        alignments: Number of matrix computations performed.
    """

    def __init__(
        self,
        matrix: SubstitutionMatrix,
        gap_open: int,
        gap_extend: int,
        token: CancellationToken = NEVER_CANCELLED,
    ) -> None:
        self.matrix = matrix
        self.gap_open = gap_open
        self.gap_extend = gap_extend
        self.token = token
        self.alignments = 0
        self._key: tuple[AlignmentKind, str, str] | None = None
        self._m = self._x = self._y = self._h = np.zeros((1, 1), dtype=np.int64)

    def gap_penalty(self, length: int) -> int:
        """Score of a gap of the given length (0 for no gap)."""
        if length <= 0:
            return 0
        return -(self.gap_open + length * self.gap_extend)

    def compute(self, kind: AlignmentKind, query: str, target: str) -> int:
        """Fill the matrices for query (rows) against target (columns).

        Returns:
            The optimal score: ``H[n, m]`` for global, ``max(H)`` for local.

        Raises:
            TranscriptCancelled: If the aligner's token is cancelled.
        """
        self.token.check()
        key = (kind, query, target)
        if key == self._key:
            return self._best(kind)

        self._key = None
        n, m = len(query), len(target)
        o, e = self.gap_open, self.gap_extend
        local = kind is AlignmentKind.LOCAL

        M = np.full((n + 1, m + 1), NEG, dtype=np.int64)
        X = np.full((n + 1, m + 1), NEG, dtype=np.int64)
        Y = np.full((n + 1, m + 1), NEG, dtype=np.int64)
        H = np.zeros((n + 1, m + 1), dtype=np.int64)

        cols = np.arange(m + 1, dtype=np.int64)
        if not local:
            M[0, 0] = 0
            H[0, 1:] = -(o + e * cols[1:])
            Y[0, 1:] = H[0, 1:]
            rows = np.arange(n + 1, dtype=np.int64)
            H[1:, 0] = -(o + e * rows[1:])
            X[1:, 0] = H[1:, 0]

        q_codes = self.matrix.encode(query)
        t_codes = self.matrix.encode(target)
        scores = self.matrix.scores
        ramp = e * cols[:-1]
        open_ramp = o + e * cols[1:]

        for i in range(1, n + 1):
            if i % CHECK_INTERVAL == 0:
                self.token.check()
            if m == 0:
                continue
            M[i, 1:] = H[i - 1, :-1] + scores[q_codes[i - 1], t_codes]
            X[i, 1:] = np.maximum(H[i - 1, 1:] - o - e, X[i - 1, 1:] - e)
            A = np.maximum(M[i], X[i])
            A[0] = H[i, 0]
            Y[i, 1:] = np.maximum.accumulate(A[:-1] + ramp) - open_ramp
            row = np.maximum(A[1:], Y[i, 1:])
            if local:
                row = np.maximum(row, 0)
            H[i, 1:] = row

        self._m, self._x, self._y, self._h = M, X, Y, H
        self._key = key
        self.alignments += 1
        return self._best(kind)

    def _best(self, kind: AlignmentKind) -> int:
        if kind is AlignmentKind.LOCAL:
            return int(self._h.max())
        return int(self._h[-1, -1])

    def score(self, i: int, j: int) -> int:
        """Best score of the last computation ending at cell (i, j)."""
        return int(self._h[i, j])

    def states(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return copies of the M, X and Y matrices of the last computation."""
        return self._m.copy(), self._x.copy(), self._y.copy()

    def traceback(self) -> AlignmentResult:
        """Trace the optimal alignment of the last computation.

        Ties prefer an aligned pair, then a gap in the target, then a gap
        in the query.
        """
        if self._key is None:
            raise RuntimeError("traceback() called before compute()")
        kind, query, target = self._key
        M, X, Y, H = self._m, self._x, self._y, self._h
        o, e = self.gap_open, self.gap_extend
        local = kind is AlignmentKind.LOCAL

        if local:
            i, j = np.unravel_index(int(np.argmax(H)), H.shape)
            i, j = int(i), int(j)
            if H[i, j] <= 0:
                return AlignmentResult(0, "", "", 0, 0, 0, 0)
        else:
            i, j = len(query), len(target)
        best = int(H[i, j])
        end_i, end_j = i, j

        def state_of(a: int, b: int) -> str:
            value = H[a, b]
            if M[a, b] == value:
                return "M"
            if X[a, b] == value:
                return "X"
            return "Y"

        q_out: list[str] = []
        t_out: list[str] = []
        state = "H"
        while i > 0 or j > 0:
            if state == "H":
                if local and H[i, j] == 0:
                    break
                if i == 0:
                    state = "Y"
                elif j == 0:
                    state = "X"
                else:
                    state = state_of(i, j)
            if state == "M":
                q_out.append(query[i - 1])
                t_out.append(target[j - 1])
                i -= 1
                j -= 1
                state = "H"
            elif state == "X":
                q_out.append(query[i - 1])
                t_out.append(GAP)
                opened = X[i, j] == H[i - 1, j] - o - e
                i -= 1
                state = "H" if opened else "X"
            else:
                q_out.append(GAP)
                t_out.append(target[j - 1])
                opened = Y[i, j] == H[i, j - 1] - o - e
                j -= 1
                state = "H" if opened else "Y"

        return AlignmentResult(
            score=best,
            query_aligned="".join(reversed(q_out)),
            target_aligned="".join(reversed(t_out)),
            query_start=i,
            query_end=end_i,
            target_start=j,
            target_end=end_j,
        )

    def align(self, kind: AlignmentKind, query: str, target: str) -> AlignmentResult:
        """Compute and trace an alignment."""
        self.compute(kind, query, target)
        return self.traceback()


# =============================================================================
# Rescoring
# =============================================================================


def score_aligned(
    query_aligned: str,
    target_aligned: str,
    matrix: SubstitutionMatrix,
    gap_open: int,
    gap_extend: int,
) -> int:
    """Score an existing gapped alignment.

    Switching a gap from one sequence to the other opens a new gap.

    Raises:
        ValueError: If the aligned strings differ in length.
    """
    if len(query_aligned) != len(target_aligned):
        raise ValueError(
            f"Aligned strings differ in length ({len(query_aligned)} != {len(target_aligned)})"
        )
    total = 0
    gap_side = None
    for a, b in zip(query_aligned, target_aligned):
        if a == GAP and b == GAP:
            continue
        if a == GAP or b == GAP:
            side = "query" if a == GAP else "target"
            if side != gap_side:
                total -= gap_open
                gap_side = side
            total -= gap_extend
        else:
            total += matrix.score(a, b)
            gap_side = None
    return total
