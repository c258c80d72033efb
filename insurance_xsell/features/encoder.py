# ============================================================
# insurance_xsell/features/encoder.py
# Maps one raw record plus fitted statistics into a fixed-length
# numeric vector: impute -> standardize -> one-hot -> engineered.
# The same code path serves train, validation, test and
# single-record prediction.
# ============================================================

import asyncio                                     # Cooperative yields for long encodes
import math                                        # Finite checks on raw and scaled values
from bisect import bisect_right                    # Premium bucket lookup
from dataclasses import dataclass                  # Immutable fitted statistics
import numpy as np                                 # Feature vectors and matrices
from loguru import logger                          # Structured logging
from typing import Callable, Dict, List, Mapping, Optional, Sequence  # Type hints

from insurance_xsell.features.schema import FeatureSchema  # Canonical vector layout
from insurance_xsell.features.statistics import (  # Column statistics
    ColumnStatistic,
    fit_column,
)

# progress(done, total) -> None
ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class FittedStatistics:
    """
    Per-column statistics fit on the training records, plus the schema
    they were fit under.

    Carrying the schema here ties every encoded vector to one layout:
    anything encoded with the same FittedStatistics has the same width
    and field order.
    """

    schema: FeatureSchema
    columns: Mapping[str, ColumnStatistic]
    n_records: int = 0

    @property
    def width(self) -> int:
        return self.schema.width

    @property
    def feature_names(self) -> List[str]:
        return self.schema.feature_names


def _as_number(value) -> Optional[float]:
    """Return ``value`` as a finite float, or None when it is not one."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, np.integer, np.floating)):
        number = float(value)
        return number if math.isfinite(number) else None
    return None


def _is_one(value) -> bool:
    number = _as_number(value)
    return number is not None and number == 1.0


def impute(record: Mapping, column: str, stats: FittedStatistics) -> float:
    """Raw numeric value of ``column``, or the fitted median when missing/invalid."""
    number = _as_number(record.get(column))
    if number is None:
        return stats.columns[column].median
    return number


def standardize(value: float, statistic: ColumnStatistic) -> float:
    """``(value - mean) / max(std, 1)``; anything non-finite degrades to 0.0."""
    scaled = (value - statistic.mean) / statistic.scale
    return scaled if math.isfinite(scaled) else 0.0


def one_hot(value, domain: Sequence[str]) -> List[float]:
    """
    One-hot encode ``value`` against a fixed ``domain``.

    Values outside the domain (including None and numbers) give an
    all-zero block.
    """
    return [1.0 if isinstance(value, str) and value == category else 0.0 for category in domain]


def premium_segment(premium: float, edges: Sequence[float]) -> List[float]:
    """One-hot of the bucket ``premium`` falls in; bucket i covers [edges[i-1], edges[i])."""
    block = [0.0] * (len(edges) + 1)
    block[bisect_right(list(edges), premium)] = 1.0
    return block


def encode_record(record: Mapping, stats: FittedStatistics) -> np.ndarray:
    """
    Encode one record into its feature vector.

    Parameters
    ----------
    record : mapping
        Raw record (column -> number, string or None).
    stats : FittedStatistics
        Statistics fit on the training records.

    Returns
    -------
    np.ndarray
        float32 vector of length ``stats.width``.
    """
    schema = stats.schema
    features: List[float] = []

    # Step 1 + 2: impute with the median, then standardize
    imputed: Dict[str, float] = {}
    for column in schema.numeric_columns:
        imputed[column] = impute(record, column, stats)
        features.append(standardize(imputed[column], stats.columns[column]))

    # Binary columns pass through as 0/1 (missing reads as 0)
    for column in schema.binary_columns:
        features.append(1.0 if _is_one(record.get(column)) else 0.0)

    # Step 3: one-hot blocks in schema order
    for column, domain in schema.categorical_domains:
        features.extend(one_hot(record.get(column), domain))

    # Step 4: engineered features read imputed raw values, not scaled ones
    age = imputed.get(schema.age_column)
    if age is None:
        age = _as_number(record.get(schema.age_column))
    damaged = record.get(schema.damage_column) == "Yes"
    young_risky = age is not None and age < schema.young_driver_age and damaged
    lapsed = _is_one(record.get(schema.insured_column)) and damaged
    features.append(1.0 if young_risky else 0.0)
    features.append(1.0 if lapsed else 0.0)

    premium = imputed.get(schema.premium_column)
    if premium is None:
        premium = _as_number(record.get(schema.premium_column)) or 0.0
    features.extend(premium_segment(premium, schema.premium_edges))

    # Values finite in float64 can still overflow float32
    with np.errstate(over="ignore"):
        vector = np.asarray(features, dtype=np.float32)
    vector[~np.isfinite(vector)] = 0.0
    return vector


def decode_category(vector: Sequence[float], column: str, schema: FeatureSchema) -> Optional[str]:
    """
    Read a categorical value back out of an encoded vector.

    Returns None for an all-zero block (unknown category).
    """
    block = np.asarray(vector)[schema.block_slice(column)]
    if not np.any(block == 1.0):
        return None
    return schema.domains[column][int(np.argmax(block))]


class FeatureEncoder:
    """
    Fits column statistics on training records and encodes records
    into fixed-width vectors.

    Statistics come from the training records only; validation, test
    and single-record inputs are encoded with those same statistics.
    Nothing here raises for bad data: invalid numbers fall back to the
    median or to 0.0, unknown categories to an all-zero block.
    """

    def __init__(self, config: dict, schema: Optional[FeatureSchema] = None):
        """
        Initialize the encoder with configuration settings.

        Parameters
        ----------
        config : dict
            Project configuration dictionary from config.yaml.
        schema : FeatureSchema, optional
            Explicit schema; built from ``config`` when omitted.
        """
        self.config = config
        # Design-time schema (columns, domains, engineered features)
        self.schema = schema or FeatureSchema.from_config(config)
        # Records encoded between progress reports / cooperative yields
        self.chunk_size = max(1, int(config.get("preprocessing", {}).get("chunk_size", 1000)))
        logger.info("FeatureEncoder initialized")
        logger.info(f"  Numerical columns ({len(self.schema.numeric_columns)}): {list(self.schema.numeric_columns)}")
        logger.info(f"  Categorical columns ({len(self.schema.categorical_domains)}): {list(self.schema.domains)}")
        logger.info(f"  Feature width: {self.schema.width}")

    @property
    def feature_names(self) -> List[str]:
        return self.schema.feature_names

    @property
    def binary_mask(self) -> List[bool]:
        return self.schema.binary_mask

    def fit(self, training_records: Sequence[Mapping]) -> FittedStatistics:
        """
        Compute median/mean/std for every numeric column.

        Only call this with training records; fitting on validation or
        test rows leaks their distribution into the model.

        Parameters
        ----------
        training_records : sequence of mapping
            Parsed training records.

        Returns
        -------
        FittedStatistics
            Immutable statistics for ``encode``.
        """
        columns = {}
        for column in self.schema.numeric_columns:
            columns[column] = fit_column(record.get(column) for record in training_records)
            stat = columns[column]
            logger.debug(
                f"  {column}: median={stat.median:.4f} mean={stat.mean:.4f} std={stat.std:.4f}"
            )

        stats = FittedStatistics(schema=self.schema, columns=columns, n_records=len(training_records))
        logger.info(f"Encoder fitted on {len(training_records)} training records")
        return stats

    def encode(self, record: Mapping, stats: FittedStatistics) -> np.ndarray:
        """Encode a single record (see ``encode_record``)."""
        return encode_record(record, stats)

    def encode_many(
        self,
        records: Sequence[Mapping],
        stats: FittedStatistics,
        progress: Optional[ProgressCallback] = None,
    ) -> np.ndarray:
        """
        Encode records into an ``(n, width)`` matrix, preserving order.

        ``progress(done, total)`` is called after every ``chunk_size``
        records and once at the end.
        """
        total = len(records)
        matrix = np.zeros((total, stats.width), dtype=np.float32)
        for start in range(0, total, self.chunk_size):
            stop = min(start + self.chunk_size, total)
            for i in range(start, stop):
                matrix[i] = encode_record(records[i], stats)
            if progress is not None:
                progress(stop, total)
        logger.info(f"Encoded {total} records. Shape: {matrix.shape}")
        return matrix

    async def encode_many_async(
        self,
        records: Sequence[Mapping],
        stats: FittedStatistics,
        progress: Optional[ProgressCallback] = None,
    ) -> np.ndarray:
        """
        Same as ``encode_many`` but yields to the event loop after each
        chunk so a long encode does not starve other tasks.
        """
        total = len(records)
        matrix = np.zeros((total, stats.width), dtype=np.float32)
        for start in range(0, total, self.chunk_size):
            stop = min(start + self.chunk_size, total)
            for i in range(start, stop):
                matrix[i] = encode_record(records[i], stats)
            if progress is not None:
                progress(stop, total)
            # Cooperative yield point
            await asyncio.sleep(0)
        logger.info(f"Encoded {total} records. Shape: {matrix.shape}")
        return matrix

    def decode_category(self, vector: Sequence[float], column: str) -> Optional[str]:
        return decode_category(vector, column, self.schema)
