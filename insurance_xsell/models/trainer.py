# ============================================================
# insurance_xsell/models/trainer.py
# Trains the cross-sell classifier (feed-forward network or a
# logistic-regression baseline) with optional class weighting,
# and wraps the result behind predict(features) -> probabilities.
# ============================================================

import numpy as np                                 # Arrays in and out
import torch                                       # Training loop
import torch.nn as nn                              # Loss function
from torch.utils.data import DataLoader, TensorDataset  # Mini-batching
from sklearn.linear_model import LogisticRegression  # Linear baseline model
from dataclasses import dataclass, field           # Trained model container
from loguru import logger                          # Structured logging
from typing import Any, Callable, Dict, List, Optional, Tuple  # Type hints

from insurance_xsell.models.network import FeedForwardNet  # Feed-forward classifier

ALGORITHMS = ("feedforward", "logistic_regression")

# on_epoch_end(epoch_index, logs) -> None
EpochCallback = Callable[[int, Dict[str, float]], None]


class FeatureDimensionError(ValueError):
    """Feature width at prediction time differs from the width the model was trained on."""


def compute_class_weights(labels, cap: float = 5.0) -> Dict[int, float]:
    """
    Per-class loss weights countering label imbalance.

    The minority class gets ``min(majority / minority, cap)``, the
    majority class 1.0. With positives as the minority that is
    ``min(negatives / positives, cap)``. A missing class gives equal
    weights.

    Parameters
    ----------
    labels : array-like
        0/1 training labels.
    cap : float
        Upper bound on the minority weight.

    Returns
    -------
    dict
        ``{0: w0, 1: w1}``
    """
    labels = np.asarray(labels)
    positives = int(np.sum(labels == 1))
    negatives = int(labels.shape[0]) - positives
    if positives == 0 or negatives == 0:
        return {0: 1.0, 1: 1.0}
    if positives <= negatives:
        return {0: 1.0, 1: float(min(negatives / positives, cap))}
    return {0: float(min(positives / negatives, cap)), 1: 1.0}


@dataclass
class TrainedModel:
    """
    A fitted classifier plus what is needed to use it safely.

    ``predict`` refuses inputs whose width differs from ``input_dim``:
    the network has no feature names, so a reordered or resized vector
    would otherwise be scored silently.
    """

    algorithm: str
    estimator: Any
    input_dim: int
    params: Dict[str, Any] = field(default_factory=dict)
    history: List[Dict[str, float]] = field(default_factory=list)

    def _check_width(self, features: np.ndarray) -> np.ndarray:
        features = np.asarray(features, dtype=np.float32)
        # A single vector is scored as one row
        if features.ndim == 1:
            features = features.reshape(1, -1)
        if features.ndim != 2 or features.shape[1] != self.input_dim:
            raise FeatureDimensionError(
                f"Model expects {self.input_dim} features per row, got shape {features.shape}"
            )
        return features

    def predict(self, features: np.ndarray) -> np.ndarray:
        """
        Probability of the positive class for every row.

        Parameters
        ----------
        features : np.ndarray
            ``(n, input_dim)`` matrix or a single ``(input_dim,)`` vector.

        Returns
        -------
        np.ndarray
            ``(n,)`` float64 probabilities in [0, 1].

        Raises
        ------
        FeatureDimensionError
            If the feature width does not match training.
        """
        features = self._check_width(features)
        if features.shape[0] == 0:
            return np.zeros(0, dtype=np.float64)
        if self.algorithm == "feedforward":
            probs = self.estimator.predict_proba(torch.from_numpy(features))
            return probs.cpu().numpy().astype(np.float64)
        return self.estimator.predict_proba(features)[:, 1].astype(np.float64)

    def summary(self) -> Dict[str, Any]:
        """Layer/parameter description for display."""
        info = {"algorithm": self.algorithm, "input_dim": self.input_dim, **self.params}
        if self.algorithm == "feedforward":
            info["parameters"] = self.estimator.count_params()
            info["layers"] = [str(layer) for layer in self.estimator.net]
        else:
            info["parameters"] = int(self.input_dim + 1)
        return info


class ModelTrainer:
    """
    Trains a binary classifier on encoded feature matrices.

    Key capabilities:
    - Feed-forward network (PyTorch) with dropout, Adam and mini-batches
    - Logistic-regression baseline (scikit-learn) behind the same contract
    - Per-example loss weighting from class weights
    - Per-epoch history and an ``on_epoch_end`` hook
    """

    def __init__(self, config: dict):
        """
        Initialize the ModelTrainer with configuration settings.

        Parameters
        ----------
        config : dict
            Project configuration with model hyperparameters.
        """
        self.config = config
        model_cfg = config.get("model", {})
        # Defaults for every recognised option; train() overrides them per call
        self.defaults = {
            "algorithm": model_cfg.get("algorithm", "feedforward"),
            "hidden_units": list(model_cfg.get("hidden_units", [32, 16])),
            "dropout_rate": float(model_cfg.get("dropout_rate", 0.2)),
            "epochs": int(model_cfg.get("epochs", 40)),
            "batch_size": int(model_cfg.get("batch_size", 64)),
            "learning_rate": float(model_cfg.get("learning_rate", 0.001)),
            "class_weight_cap": float(model_cfg.get("class_weight_cap", 5.0)),
            "use_class_weights": bool(model_cfg.get("use_class_weights", False)),
            "class_weights": None,
        }
        self.lr_params = model_cfg.get("logistic_regression_params", {"C": 1.0, "max_iter": 1000})
        self.random_state = int(config.get("data", {}).get("random_state", 42))
        logger.info(f"ModelTrainer initialized. Algorithm: {self.defaults['algorithm']}")

    def resolve_params(self, labels: np.ndarray, **overrides) -> Dict[str, Any]:
        """Merge config defaults with ``overrides`` and settle the class weights."""
        unknown = set(overrides) - set(self.defaults)
        if unknown:
            raise ValueError(f"Unknown training options: {sorted(unknown)}")
        params = {**self.defaults, **{k: v for k, v in overrides.items() if v is not None}}
        if params["algorithm"] not in ALGORITHMS:
            raise ValueError(f"Unknown algorithm: {params['algorithm']}")
        if params["class_weights"] is None and params["use_class_weights"]:
            params["class_weights"] = compute_class_weights(labels, params["class_weight_cap"])
        return params

    def _example_weights(self, labels: np.ndarray, class_weights: Optional[Dict[int, float]]) -> np.ndarray:
        if not class_weights:
            return np.ones(labels.shape[0], dtype=np.float32)
        w0 = float(class_weights.get(0, 1.0))
        w1 = float(class_weights.get(1, 1.0))
        return np.where(labels == 1, w1, w0).astype(np.float32)

    def train(
        self,
        features: np.ndarray,
        labels: np.ndarray,
        validation: Optional[Tuple[np.ndarray, np.ndarray]] = None,
        on_epoch_end: Optional[EpochCallback] = None,
        **overrides,
    ) -> TrainedModel:
        """
        Train a classifier.

        Parameters
        ----------
        features : np.ndarray
            ``(n, d)`` training matrix.
        labels : np.ndarray
            ``(n,)`` 0/1 labels.
        validation : tuple of (np.ndarray, np.ndarray), optional
            Held-out rows for per-epoch ``val_loss``/``val_accuracy``.
        on_epoch_end : callable, optional
            Called with ``(epoch, logs)`` after every epoch.
        **overrides
            Any of ``algorithm``, ``hidden_units``, ``dropout_rate``,
            ``epochs``, ``batch_size``, ``learning_rate``,
            ``class_weights``, ``class_weight_cap``, ``use_class_weights``.

        Returns
        -------
        TrainedModel
            The fitted model.
        """
        features = np.asarray(features, dtype=np.float32)
        labels = np.asarray(labels, dtype=np.float32)
        if features.ndim != 2 or features.shape[0] == 0:
            raise ValueError(f"Cannot train on an empty feature matrix (shape {features.shape})")
        if features.shape[0] != labels.shape[0]:
            raise ValueError(f"Row mismatch: {features.shape[0]} feature rows, {labels.shape[0]} labels")

        params = self.resolve_params(labels, **overrides)
        logger.info(f"Training model: {params['algorithm']} on {features.shape[0]} rows x {features.shape[1]} features")
        if params["class_weights"]:
            logger.info(f"  Class weights: {params['class_weights']}")

        if params["algorithm"] == "logistic_regression":
            model = self._train_logistic_regression(features, labels, params)
        else:
            model = self._train_feedforward(features, labels, params, validation, on_epoch_end)

        logger.info(f"Model '{params['algorithm']}' trained successfully")
        return model

    def _train_logistic_regression(self, features, labels, params) -> TrainedModel:
        estimator = LogisticRegression(
            C=self.lr_params.get("C", 1.0),
            max_iter=self.lr_params.get("max_iter", 1000),
            random_state=self.random_state,
        )
        estimator.fit(features, labels.astype(int), sample_weight=self._example_weights(labels, params["class_weights"]))
        return TrainedModel(
            algorithm="logistic_regression",
            estimator=estimator,
            input_dim=features.shape[1],
            params={"class_weights": params["class_weights"], **self.lr_params},
        )

    def _train_feedforward(self, features, labels, params, validation, on_epoch_end) -> TrainedModel:
        torch.manual_seed(self.random_state)
        network = FeedForwardNet(
            input_dim=features.shape[1],
            hidden_units=params["hidden_units"],
            dropout=params["dropout_rate"],
        )
        weights = self._example_weights(labels, params["class_weights"])
        dataset = TensorDataset(
            torch.from_numpy(features),
            torch.from_numpy(labels),
            torch.from_numpy(weights),
        )
        generator = torch.Generator().manual_seed(self.random_state)
        loader = DataLoader(dataset, batch_size=params["batch_size"], shuffle=True, generator=generator)

        # Per-example loss so class weights can scale each row
        criterion = nn.BCEWithLogitsLoss(reduction="none")
        optimizer = torch.optim.Adam(network.parameters(), lr=params["learning_rate"])

        history: List[Dict[str, float]] = []
        for epoch in range(params["epochs"]):
            network.train()
            total_loss, correct, seen = 0.0, 0, 0
            for x, y, w in loader:
                logits = network(x)
                loss = (criterion(logits, y) * w).mean()

                optimizer.zero_grad()
                loss.backward()
                optimizer.step()

                total_loss += float(loss.item()) * x.shape[0]
                correct += int(((logits >= 0).float() == y).sum().item())
                seen += x.shape[0]

            logs = {"loss": total_loss / seen, "accuracy": correct / seen}
            if validation is not None and len(validation[1]) > 0:
                logs.update(self._validation_logs(network, criterion, validation))
            history.append(logs)

            logger.debug(f"Epoch {epoch + 1}/{params['epochs']} " + " ".join(f"{k}={v:.4f}" for k, v in logs.items()))
            if on_epoch_end is not None:
                on_epoch_end(epoch, logs)

        if history:
            logger.info("  Final epoch: " + ", ".join(f"{k}={v:.4f}" for k, v in history[-1].items()))

        return TrainedModel(
            algorithm="feedforward",
            estimator=network,
            input_dim=features.shape[1],
            params={k: params[k] for k in ("hidden_units", "dropout_rate", "epochs", "batch_size", "learning_rate", "class_weights")},
            history=history,
        )

    @staticmethod
    @torch.no_grad()
    def _validation_logs(network, criterion, validation) -> Dict[str, float]:
        network.eval()
        x = torch.from_numpy(np.asarray(validation[0], dtype=np.float32))
        y = torch.from_numpy(np.asarray(validation[1], dtype=np.float32))
        logits = network(x)
        return {
            "val_loss": float(criterion(logits, y).mean().item()),
            "val_accuracy": float(((logits >= 0).float() == y).float().mean().item()),
        }
