# ============================================================
# insurance_xsell/data/dataset.py
# Builds feature matrices and label vectors from records, splits
# train/validation by row order, and rebalances the minority class.
# ============================================================

import numpy as np                                 # Matrices and resampling
from dataclasses import dataclass, field           # Immutable dataset containers
from loguru import logger                          # Structured logging
from typing import List, Mapping, Optional, Sequence, Tuple  # Type hints

from insurance_xsell.features.encoder import (     # Record -> vector encoding
    FeatureEncoder,
    FittedStatistics,
    ProgressCallback,
)

REBALANCE_STRATEGIES = ("none", "oversample", "synthetic")


@dataclass(frozen=True)
class LabeledDataset:
    """Feature matrix with its binary labels (train/validation)."""

    features: np.ndarray
    labels: np.ndarray

    def __len__(self) -> int:
        return int(self.labels.shape[0])

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(self.features.shape)


@dataclass(frozen=True)
class InferenceDataset:
    """Feature matrix with the record ids it was built from (test/scoring)."""

    features: np.ndarray
    ids: List = field(default_factory=list)

    def __len__(self) -> int:
        return int(self.features.shape[0])

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(self.features.shape)


def to_label(value) -> int:
    """1 when the raw target equals 1, else 0."""
    if isinstance(value, bool):
        return int(value)
    try:
        return 1 if float(value) == 1.0 else 0
    except (TypeError, ValueError):
        return 0


def class_counts(labels: Sequence) -> Tuple[int, int]:
    """Return ``(negatives, positives)`` for a 0/1 label vector."""
    labels = np.asarray(labels)
    positives = int(np.sum(labels == 1))
    return int(labels.shape[0]) - positives, positives


def split_train_validation(
    features: np.ndarray,
    labels: np.ndarray,
    fraction: float = 0.8,
) -> Tuple[LabeledDataset, LabeledDataset]:
    """
    Ordered split: the first ``floor(n * fraction)`` rows train, the rest validate.

    No shuffling happens here; shuffle beforehand if random splits are wanted.

    Parameters
    ----------
    features : np.ndarray
        ``(n, d)`` feature matrix.
    labels : np.ndarray
        ``(n,)`` label vector.
    fraction : float
        Share of rows used for training.

    Returns
    -------
    tuple of (LabeledDataset, LabeledDataset)
        (train_set, validation_set)
    """
    features = np.asarray(features)
    labels = np.asarray(labels)
    n = labels.shape[0]
    split = int(np.floor(n * fraction))
    train = LabeledDataset(features=features[:split], labels=labels[:split])
    validation = LabeledDataset(features=features[split:], labels=labels[split:])
    logger.info(f"Data split: Train={len(train)}, Validation={len(validation)}")
    return train, validation


class DatasetBuilder:
    """
    Assembles datasets from records through a FeatureEncoder.

    Rebalancing options:
    - ``none``: training rows as-is
    - ``oversample``: minority rows drawn with replacement until both
      classes match the majority count
    - ``synthetic``: minority rows resampled, then jittered (non-binary
      features) and occasionally bit-flipped (binary features)
    """

    def __init__(self, config: dict, encoder: Optional[FeatureEncoder] = None):
        """
        Initialize the builder with configuration settings.

        Parameters
        ----------
        config : dict
            Project configuration dictionary from config.yaml.
        encoder : FeatureEncoder, optional
            Encoder to use; one is built from ``config`` when omitted.
        """
        self.config = config
        self.encoder = encoder or FeatureEncoder(config)
        prep = config.get("preprocessing", {})
        # Training share for the ordered split
        self.train_fraction = float(prep.get("train_fraction", 0.8))
        # Default rebalancing and its synthetic-sample knobs
        self.strategy = prep.get("rebalance_strategy", "oversample")
        self.jitter = float(prep.get("synthetic_jitter", 0.05))
        self.flip_probability = float(prep.get("synthetic_flip_probability", 0.02))
        # Target / id columns
        self.target = self.encoder.schema.target
        self.id_column = self.encoder.schema.id_column
        logger.info(
            f"DatasetBuilder initialized. Split={self.train_fraction}, rebalance='{self.strategy}'"
        )

    def build_labeled(
        self,
        records: Sequence[Mapping],
        stats: FittedStatistics,
        progress: Optional[ProgressCallback] = None,
    ) -> LabeledDataset:
        """Encode every record and collect its 0/1 label, in record order."""
        features = self.encoder.encode_many(records, stats, progress=progress)
        labels = np.asarray([to_label(record.get(self.target)) for record in records], dtype=np.float32)
        negatives, positives = class_counts(labels)
        logger.info(f"Labeled dataset built: {features.shape}, positives={positives}, negatives={negatives}")
        return LabeledDataset(features=features, labels=labels)

    def build_inference(
        self,
        records: Sequence[Mapping],
        stats: FittedStatistics,
        progress: Optional[ProgressCallback] = None,
    ) -> InferenceDataset:
        """Encode every record and keep its id, in record order."""
        features = self.encoder.encode_many(records, stats, progress=progress)
        ids = [record.get(self.id_column) for record in records]
        logger.info(f"Inference dataset built: {features.shape}")
        return InferenceDataset(features=features, ids=ids)

    def split(self, dataset: LabeledDataset) -> Tuple[LabeledDataset, LabeledDataset]:
        """Ordered split using the configured training fraction."""
        return split_train_validation(dataset.features, dataset.labels, self.train_fraction)

    def rebalance(
        self,
        dataset: LabeledDataset,
        strategy: Optional[str] = None,
        rng: Optional[np.random.Generator] = None,
        binary_mask: Optional[Sequence[bool]] = None,
    ) -> LabeledDataset:
        """
        Rebalance the training set so both labels appear equally often.

        Parameters
        ----------
        dataset : LabeledDataset
            Training rows (never the validation split).
        strategy : str, optional
            ``none``, ``oversample`` or ``synthetic``; defaults to config.
        rng : np.random.Generator, optional
            Random source; seeded from config when omitted.
        binary_mask : sequence of bool, optional
            Which columns hold 0/1 values. Defaults to the encoder schema.

        Returns
        -------
        LabeledDataset
            Rebalanced and reshuffled rows, or ``dataset`` unchanged when
            a class is missing or the strategy is ``none``.
        """
        strategy = strategy or self.strategy
        if strategy not in REBALANCE_STRATEGIES:
            raise ValueError(f"Unknown rebalance strategy: {strategy}")
        if strategy == "none":
            return dataset

        labels = np.asarray(dataset.labels)
        pos_idx = np.flatnonzero(labels == 1)
        neg_idx = np.flatnonzero(labels != 1)
        # A missing class leaves nothing to balance against
        if len(pos_idx) == 0 or len(neg_idx) == 0:
            logger.warning("Rebalance skipped: one class is absent from the training rows")
            return dataset

        if rng is None:
            rng = np.random.default_rng(self.config.get("data", {}).get("random_state", 42))

        if strategy == "oversample":
            # Keep every row, then draw minority rows with replacement up to parity
            minority_idx = pos_idx if len(pos_idx) < len(neg_idx) else neg_idx
            deficit = abs(len(pos_idx) - len(neg_idx))
            chosen = np.concatenate([
                np.arange(len(labels)),
                rng.choice(minority_idx, size=deficit, replace=True),
            ])
            features = dataset.features[chosen]
            new_labels = labels[chosen]
        else:
            features, new_labels = self._synthesize(dataset, pos_idx, neg_idx, rng, binary_mask)

        # Shuffle so mini-batches do not see one class in a block
        order = rng.permutation(len(new_labels))
        result = LabeledDataset(
            features=np.asarray(features[order], dtype=np.float32),
            labels=np.asarray(new_labels[order], dtype=np.float32),
        )
        negatives, positives = class_counts(result.labels)
        logger.info(
            f"Rebalanced ({strategy}): {len(labels)} -> {len(result)} rows, "
            f"positives={positives}, negatives={negatives}"
        )
        return result

    def _synthesize(self, dataset, pos_idx, neg_idx, rng, binary_mask):
        """Append jittered minority copies until the classes are level."""
        minority_idx, majority_idx = (pos_idx, neg_idx) if len(pos_idx) < len(neg_idx) else (neg_idx, pos_idx)
        deficit = len(majority_idx) - len(minority_idx)

        # Resample minority rows, then perturb the copies
        base = dataset.features[rng.choice(minority_idx, size=deficit, replace=True)].astype(np.float32)
        if binary_mask is None:
            binary_mask = self.encoder.binary_mask
        mask = np.asarray(binary_mask, dtype=bool)
        if mask.shape[0] != base.shape[1]:
            # Mask from a different layout: fall back to inspecting the values
            mask = np.all(np.isin(dataset.features, (0.0, 1.0)), axis=0)

        # +/- jitter relative noise on continuous columns
        noise = rng.uniform(-self.jitter, self.jitter, size=base.shape).astype(np.float32)
        continuous = ~mask
        base[:, continuous] = base[:, continuous] * (1.0 + noise[:, continuous])

        # Rare flips on 0/1 columns
        flips = (rng.random(base.shape) < self.flip_probability) & mask
        base[flips] = 1.0 - base[flips]

        synthetic_labels = np.full(deficit, dataset.labels[minority_idx[0]], dtype=np.float32)
        features = np.concatenate([dataset.features, base])
        labels = np.concatenate([np.asarray(dataset.labels, dtype=np.float32), synthetic_labels])
        logger.debug(f"Generated {deficit} synthetic minority rows")
        return features, labels
