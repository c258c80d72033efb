# ============================================================
# insurance_xsell/pipeline/session.py
# One cross-sell workflow run held as an immutable snapshot:
# load -> preprocess -> train -> evaluate -> predict -> export.
# Every stage returns a new session; stale downstream results
# are dropped whenever an upstream stage reruns.
# ============================================================

import numpy as np                                 # Probability arrays
from dataclasses import dataclass, replace         # Immutable snapshots
from pathlib import Path                           # Export location
from loguru import logger                          # Structured logging
from typing import Any, Callable, Dict, List, Optional, Union  # Type hints

from insurance_xsell.data.dataset import (         # Matrices, split, rebalance
    DatasetBuilder,
    InferenceDataset,
    LabeledDataset,
    class_counts,
)
from insurance_xsell.features.encoder import (     # Fitting and encoding
    FeatureEncoder,
    FittedStatistics,
    ProgressCallback,
)
from insurance_xsell.models.evaluator import EvaluationReport, ModelEvaluator  # Metrics
from insurance_xsell.models.trainer import EpochCallback, ModelTrainer, TrainedModel  # Training
from insurance_xsell.pipeline.export import export_predictions, summarize_predictions  # CSV output


class InputAbsentError(RuntimeError):
    """A stage was asked to run before the stage that feeds it."""


@dataclass(frozen=True, eq=False)
class PipelineSession:
    """
    Immutable state of one workflow run.

    Stages never mutate ``self``; they return a copy with their outputs
    filled in. Rerunning ``preprocess`` drops the trained model and all
    predictions; rerunning ``train`` drops validation predictions, the
    evaluation report and test predictions, so probabilities from one
    model are never scored against another model's split.
    """

    config: Dict[str, Any]
    train_records: Optional[List[dict]] = None
    test_records: Optional[List[dict]] = None
    stats: Optional[FittedStatistics] = None
    train_set: Optional[LabeledDataset] = None
    validation_set: Optional[LabeledDataset] = None
    test_set: Optional[InferenceDataset] = None
    model: Optional[TrainedModel] = None
    validation_probabilities: Optional[np.ndarray] = None
    report: Optional[EvaluationReport] = None
    test_probabilities: Optional[np.ndarray] = None
    threshold: float = 0.5

    @classmethod
    def create(cls, config: Dict[str, Any]) -> "PipelineSession":
        """Empty session using the configured default threshold."""
        threshold = float(config.get("evaluation", {}).get("default_threshold", 0.5))
        return cls(config=config, threshold=threshold)

    @staticmethod
    def _require(value: Any, what: str, stage: str, non_empty: bool = False) -> Any:
        if value is None:
            raise InputAbsentError(f"Cannot {stage}: {what} missing")
        # A header-only file loads as zero records
        if non_empty and len(value) == 0:
            raise InputAbsentError(f"Cannot {stage}: {what} empty")
        return value

    # ----------------------------------------------------------
    # Stages
    # ----------------------------------------------------------
    def load(self, train_records: List[dict], test_records: Optional[List[dict]] = None) -> "PipelineSession":
        """
        Start from freshly loaded records; everything downstream is cleared.

        Without ``test_records`` the test set is a copy of the training records.
        """
        if test_records is None:
            test_records = [dict(record) for record in train_records]
        logger.info(f"Session loaded: train={len(train_records)}, test={len(test_records)}")
        return PipelineSession(
            config=self.config,
            train_records=list(train_records),
            test_records=list(test_records),
            threshold=self.threshold,
        )

    def preprocess(
        self,
        rebalance: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> "PipelineSession":
        """
        Fit statistics on the training prefix, encode every split and
        rebalance the training rows.

        The ordered split is applied to the records first so the
        statistics only ever see training rows.
        """
        records = self._require(self.train_records, "training records", "preprocess", non_empty=True)
        test_records = self.test_records if self.test_records is not None else []

        encoder = FeatureEncoder(self.config)
        builder = DatasetBuilder(self.config, encoder=encoder)

        cut = int(np.floor(len(records) * builder.train_fraction))
        stats = encoder.fit(records[:cut])
        labeled = builder.build_labeled(records, stats, progress=progress)
        train_set, validation_set = builder.split(labeled)
        train_set = builder.rebalance(train_set, strategy=rebalance, rng=rng)
        test_set = builder.build_inference(test_records, stats, progress=progress)

        return replace(
            self,
            stats=stats,
            train_set=train_set,
            validation_set=validation_set,
            test_set=test_set,
            model=None,
            validation_probabilities=None,
            report=None,
            test_probabilities=None,
        )

    def train(
        self,
        on_trained: Optional[Callable[[TrainedModel], None]] = None,
        on_epoch_end: Optional[EpochCallback] = None,
        **overrides,
    ) -> "PipelineSession":
        """
        Train a new model on the rebalanced training rows.

        ``overrides`` are passed to ``ModelTrainer.train`` (algorithm,
        epochs, class weights...). ``on_trained`` receives the model once
        training finishes.
        """
        train_set = self._require(self.train_set, "preprocessed training set", "train", non_empty=True)
        validation = None
        if self.validation_set is not None and len(self.validation_set) > 0:
            validation = (self.validation_set.features, self.validation_set.labels)

        model = ModelTrainer(self.config).train(
            train_set.features,
            train_set.labels,
            validation=validation,
            on_epoch_end=on_epoch_end,
            **overrides,
        )
        if on_trained is not None:
            on_trained(model)
        return replace(
            self,
            model=model,
            validation_probabilities=None,
            report=None,
            test_probabilities=None,
        )

    def evaluate(self, threshold: Optional[float] = None) -> "PipelineSession":
        """Score the validation split and build an evaluation report at ``threshold``."""
        model = self._require(self.model, "trained model", "evaluate")
        validation_set = self._require(self.validation_set, "validation set", "evaluate")
        threshold = self.threshold if threshold is None else float(threshold)

        probabilities = self.validation_probabilities
        if probabilities is None:
            probabilities = model.predict(validation_set.features)

        report = ModelEvaluator(self.config).evaluate(probabilities, validation_set.labels, threshold)
        return replace(self, validation_probabilities=probabilities, report=report, threshold=threshold)

    def with_threshold(self, threshold: float) -> "PipelineSession":
        """
        Move the decision threshold.

        An existing report is recomputed from the cached validation
        probabilities; nothing is retrained or re-predicted.
        """
        threshold = float(threshold)
        if self.validation_probabilities is None:
            return replace(self, threshold=threshold)
        return self.evaluate(threshold)

    def with_optimal_threshold(self) -> "PipelineSession":
        """Switch to the F1-optimal threshold found on the validation split."""
        session = self if self.report is not None else self.evaluate()
        return session.with_threshold(session.report.optimal_threshold)

    def predict(self) -> "PipelineSession":
        """Score the test set with the current model."""
        model = self._require(self.model, "trained model", "predict")
        test_set = self._require(self.test_set, "encoded test set", "predict")
        probabilities = model.predict(test_set.features)
        stats = summarize_predictions(probabilities, self.threshold)
        logger.info(
            f"Predicted {stats['total']} test records: {stats['predicted_positive']} positive "
            f"({stats['positive_rate']:.2f}%) at threshold {self.threshold:.2f}"
        )
        return replace(self, test_probabilities=probabilities)

    def export(self, output_dir: Union[str, Path]) -> Dict[str, Path]:
        """Write submission/probability CSVs for the current test predictions."""
        probabilities = self._require(self.test_probabilities, "test predictions", "export")
        return export_predictions(self.test_set.ids, probabilities, self.threshold, output_dir)

    # ----------------------------------------------------------
    # Display
    # ----------------------------------------------------------
    def summary(self) -> Dict[str, Any]:
        """Shapes, widths and stage status for display."""
        info: Dict[str, Any] = {
            "train_records": len(self.train_records) if self.train_records is not None else 0,
            "test_records": len(self.test_records) if self.test_records is not None else 0,
            "threshold": self.threshold,
            "feature_width": self.stats.width if self.stats is not None else None,
            "trained": self.model is not None,
        }
        if self.train_set is not None:
            negatives, positives = class_counts(self.train_set.labels)
            info["train_shape"] = self.train_set.shape
            info["train_class_counts"] = {"negative": negatives, "positive": positives}
        if self.validation_set is not None:
            info["validation_shape"] = self.validation_set.shape
        if self.test_set is not None:
            info["test_shape"] = self.test_set.shape
        if self.model is not None:
            info["model"] = self.model.summary()
        if self.report is not None:
            info["metrics"] = self.report.as_dict()
        if self.test_probabilities is not None:
            info["predictions"] = summarize_predictions(self.test_probabilities, self.threshold)
        return info
