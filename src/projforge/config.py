"""Configuration management for projforge.

This module holds every tunable of a projection run. Configuration can
come from:
- Default values
- A TOML configuration file
- Command-line overrides (applied by the CLI through ``Config.from_dict``)

Example:
    >>> from projforge.config import Config
    >>> config = Config.load("projforge.toml")
    >>> config.intron.max_intron_length
    15000
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

import attrs

# =============================================================================
# Default Configuration Values
# =============================================================================

# Scoring defaults
DEFAULT_GAP_OPEN = 11
DEFAULT_GAP_EXTEND = 1
DEFAULT_MATRIX = "BLOSUM62"

# Intron defaults
DEFAULT_MAX_INTRON_LENGTH = 15_000
DEFAULT_DYNAMIC_FACTOR = 2.0
DEFAULT_MIN_DYNAMIC_INTRON_LENGTH = 500
DEFAULT_INTRON_GAIN_LOSS_PENALTY = 25
DEFAULT_MIN_INTRON_LENGTH = 30

# Filtering thresholds
DEFAULT_EVALUE_CUTOFF = 100.0
DEFAULT_CONTIG_THRESHOLD = 0.9
DEFAULT_REGION_THRESHOLD = 0.9
DEFAULT_HIT_THRESHOLD = 0.9
DEFAULT_SCORE_COLUMN = 13

# Search defaults
DEFAULT_PREDICTIONS = 1
DEFAULT_MAX_NEW_HITS_PER_PART = 20_000

# Runtime defaults (seconds)
DEFAULT_TIMEOUT = 3600.0
DEFAULT_CANCEL_GRACE = 5.0

AMBIGUITY_MODES = ("fail", "unknown", "random")


def _fraction(instance: Any, attribute: attrs.Attribute, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{attribute.name} must be within [0, 1], got {value}")


# =============================================================================
# Configuration Classes
# =============================================================================


@attrs.define
class ScoringConfig:
    """Configuration for amino-acid alignment scoring.

    Attributes:
        gap_open: Gap opening cost (a gap of length l costs open + l * extend).
        gap_extend: Gap extension cost.
        matrix: "BLOSUM62" or path to a substitution matrix in NCBI format.
        genetic_code: Path to a codon table, or None for the standard code.
        ambiguity: Handling of ambiguous bases ("fail", "unknown", "random").
    """

    gap_open: int = attrs.field(default=DEFAULT_GAP_OPEN, validator=attrs.validators.ge(0))
    gap_extend: int = attrs.field(default=DEFAULT_GAP_EXTEND, validator=attrs.validators.ge(0))
    matrix: str = DEFAULT_MATRIX
    genetic_code: str | None = None
    ambiguity: str = attrs.field(default="unknown", validator=attrs.validators.in_(AMBIGUITY_MODES))


@attrs.define
class IntronConfig:
    """Configuration for intron handling.

    Attributes:
        max_intron_length: Maximum intron length in base pairs.
        static_intron_length: Use max_intron_length for every gene.
        dynamic_factor: Multiplier applied to the gene's reference intron.
        min_dynamic_intron_length: Lower bound of the dynamic length.
        intron_gain_loss_penalty: Penalty per gained or lost intron.
        min_intron_length: Minimum intron length in base pairs.
    """

    max_intron_length: int = attrs.field(
        default=DEFAULT_MAX_INTRON_LENGTH, validator=attrs.validators.gt(0)
    )
    static_intron_length: bool = True
    dynamic_factor: float = attrs.field(
        default=DEFAULT_DYNAMIC_FACTOR, validator=attrs.validators.gt(0)
    )
    min_dynamic_intron_length: int = attrs.field(
        default=DEFAULT_MIN_DYNAMIC_INTRON_LENGTH, validator=attrs.validators.gt(0)
    )
    intron_gain_loss_penalty: int = attrs.field(
        default=DEFAULT_INTRON_GAIN_LOSS_PENALTY, validator=attrs.validators.ge(0)
    )
    min_intron_length: int = attrs.field(
        default=DEFAULT_MIN_INTRON_LENGTH, validator=attrs.validators.ge(1)
    )

    def limit_for(self, reference_max_intron: int | None) -> int:
        """Return the maximum intron length used for one gene.

        Args:
            reference_max_intron: Longest intron of the gene in the reference,
                if known.

        Returns:
            The intron length limit in base pairs.
        """
        if self.static_intron_length or reference_max_intron is None:
            return self.max_intron_length
        dynamic = int(self.dynamic_factor * reference_max_intron)
        return min(self.max_intron_length, max(self.min_dynamic_intron_length, dynamic))


@attrs.define
class ThresholdConfig:
    """Filtering thresholds.

    Attributes:
        evalue_cutoff: Hits with a larger e-value are discarded.
        contig_threshold: Contigs/strands below this fraction of the best
            coarse score are not analysed.
        region_threshold: Regions below this fraction of the best are dropped.
        hit_threshold: Hits below this fraction of the best are dropped.
        score_column: 0-based column of the raw score in the hit table.
    """

    evalue_cutoff: float = attrs.field(default=DEFAULT_EVALUE_CUTOFF, validator=attrs.validators.ge(0))
    contig_threshold: float = attrs.field(default=DEFAULT_CONTIG_THRESHOLD, validator=_fraction)
    region_threshold: float = attrs.field(default=DEFAULT_REGION_THRESHOLD, validator=_fraction)
    hit_threshold: float = attrs.field(default=DEFAULT_HIT_THRESHOLD, validator=_fraction)
    score_column: int = attrs.field(default=DEFAULT_SCORE_COLUMN, validator=attrs.validators.ge(0))


@attrs.define
class SearchConfig:
    """Configuration of the model search.

    Attributes:
        predictions: Maximum number of predictions per transcript.
        avoid_stop: Split hits at in-frame stop codons.
        approximate: Approximate scoring of intron gains inside one part.
        canonical_fallback: Use canonical motifs when evidence yields nothing.
        max_new_hits_per_part: Cap on hits recovered by gap filling.
        seed: Seed for random resolution of ambiguous bases.
    """

    predictions: int = attrs.field(default=DEFAULT_PREDICTIONS, validator=attrs.validators.ge(1))
    avoid_stop: bool = True
    approximate: bool = True
    canonical_fallback: bool = True
    max_new_hits_per_part: int = attrs.field(
        default=DEFAULT_MAX_NEW_HITS_PER_PART, validator=attrs.validators.ge(1)
    )
    seed: int = 0


@attrs.define
class RuntimeConfig:
    """Configuration for execution.

    Attributes:
        timeout: Seconds allowed per transcript.
        cancel_grace: Seconds to wait for a cancelled transcript to unwind.
        threads: Number of transcripts processed concurrently.
    """

    timeout: float = attrs.field(default=DEFAULT_TIMEOUT, validator=attrs.validators.gt(0))
    cancel_grace: float = attrs.field(default=DEFAULT_CANCEL_GRACE, validator=attrs.validators.ge(0))
    threads: int = attrs.field(default=1, validator=attrs.validators.ge(1))


_SECTIONS = {
    "scoring": ScoringConfig,
    "intron": IntronConfig,
    "thresholds": ThresholdConfig,
    "search": SearchConfig,
    "runtime": RuntimeConfig,
}


@attrs.define
class Config:
    """Main configuration container for projforge.

    Attributes:
        scoring: Alignment scoring configuration.
        intron: Intron configuration.
        thresholds: Filtering thresholds.
        search: Model search configuration.
        runtime: Execution configuration.
    """

    scoring: ScoringConfig = attrs.Factory(ScoringConfig)
    intron: IntronConfig = attrs.Factory(IntronConfig)
    thresholds: ThresholdConfig = attrs.Factory(ThresholdConfig)
    search: SearchConfig = attrs.Factory(SearchConfig)
    runtime: RuntimeConfig = attrs.Factory(RuntimeConfig)

    @classmethod
    def load(cls, path: Path | str | None = None) -> Config:
        """Load configuration from a TOML file.

        Args:
            path: Path to configuration file. If None, returns the defaults.

        Returns:
            Loaded configuration object.

        Raises:
            FileNotFoundError: If configuration file doesn't exist.
            ValueError: If configuration file is invalid.
        """
        if path is None:
            return cls()

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "rb") as f:
            try:
                data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ValueError(f"Invalid configuration file {path}: {e}") from e

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """Build a configuration from nested section dictionaries.

        Raises:
            ValueError: On unknown sections, unknown keys or invalid values.
        """
        sections: dict[str, Any] = {}
        for name, values in data.items():
            if name not in _SECTIONS:
                raise ValueError(f"Unknown configuration section: {name!r}")
            if not isinstance(values, dict):
                raise ValueError(f"Configuration section {name!r} must be a table")
            section_cls = _SECTIONS[name]
            known = {a.name for a in attrs.fields(section_cls)}
            unknown = sorted(set(values) - known)
            if unknown:
                raise ValueError(f"Unknown keys in section {name!r}: {', '.join(unknown)}")
            try:
                sections[name] = section_cls(**values)
            except TypeError as e:
                raise ValueError(f"Invalid value in section {name!r}: {e}") from e
        return cls(**sections)

    def with_overrides(self, section: str, **values: Any) -> Config:
        """Return a copy with some keys of one section replaced.

        None values are ignored so unset CLI options keep the file value.
        """
        values = {k: v for k, v in values.items() if v is not None}
        if not values:
            return self
        current = getattr(self, section)
        return attrs.evolve(self, **{section: attrs.evolve(current, **values)})

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary.

        Returns:
            Dictionary representation of configuration.
        """
        return attrs.asdict(self)
