# ============================================================
# insurance_xsell/models/evaluator.py
# Threshold-parametrized evaluation of binary predictions:
# confusion counts, derived metrics, ROC/PR sweeps, trapezoid
# AUC, F1-optimal threshold search, and report plots.
# ============================================================

import asyncio                                     # Cooperative yields during sweeps
import numpy as np                                 # Vectorized comparisons
import matplotlib.pyplot as plt                    # Matplotlib for plotting
plt.switch_backend('Agg')                          # Non-interactive backend for server environments
import seaborn as sns                              # Confusion-matrix heatmap
from dataclasses import dataclass, field           # Immutable result containers
from pathlib import Path                           # Report paths
from loguru import logger                          # Structured logging
from typing import Any, Dict, List, Optional, Sequence, Tuple  # Type hints


@dataclass(frozen=True)
class ConfusionCounts:
    """Confusion-matrix cells for one decision threshold."""

    tp: int = 0
    tn: int = 0
    fp: int = 0
    fn: int = 0

    @property
    def total(self) -> int:
        return self.tp + self.tn + self.fp + self.fn

    def as_dict(self) -> Dict[str, int]:
        return {
            "true_positives": self.tp,
            "true_negatives": self.tn,
            "false_positives": self.fp,
            "false_negatives": self.fn,
        }


@dataclass(frozen=True)
class CurvePoint:
    """One point of a threshold sweep: (fpr, tpr) for ROC or (recall, precision) for PR."""

    x: float
    y: float
    threshold: float


@dataclass(frozen=True)
class EvaluationReport:
    """Everything computed for one (probabilities, labels, threshold) triple."""

    threshold: float
    counts: ConfusionCounts
    metrics: Dict[str, float]
    roc: List[CurvePoint] = field(default_factory=list)
    pr: List[CurvePoint] = field(default_factory=list)
    auc: float = 0.0
    optimal_threshold: float = 0.5
    optimal_f1: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "threshold": self.threshold,
            **self.counts.as_dict(),
            **self.metrics,
            "roc_auc": self.auc,
            "optimal_threshold": self.optimal_threshold,
            "optimal_f1": self.optimal_f1,
        }


def _safe_div(numerator: float, denominator: float) -> float:
    """Division that answers 0.0 for a zero denominator."""
    return float(numerator) / float(denominator) if denominator else 0.0


def _as_arrays(probabilities, labels) -> Tuple[np.ndarray, np.ndarray]:
    probs = np.asarray(probabilities, dtype=np.float64).reshape(-1)
    truth = np.asarray(labels).reshape(-1) == 1
    n = min(probs.shape[0], truth.shape[0])
    if probs.shape[0] != truth.shape[0]:
        logger.warning(
            f"{probs.shape[0]} probabilities but {truth.shape[0]} labels; "
            f"scoring the first {n} pairs only"
        )
    return probs[:n], truth[:n]


def _count(probs: np.ndarray, truth: np.ndarray, threshold: float) -> ConfusionCounts:
    predicted = probs >= threshold
    return ConfusionCounts(
        tp=int(np.sum(predicted & truth)),
        tn=int(np.sum(~predicted & ~truth)),
        fp=int(np.sum(predicted & ~truth)),
        fn=int(np.sum(~predicted & truth)),
    )


def confusion_counts(probabilities, labels, threshold: float = 0.5) -> ConfusionCounts:
    """
    Count tp/tn/fp/fn with ``probability >= threshold`` as a positive call.

    Parameters
    ----------
    probabilities : array-like
        Predicted probabilities for the positive class.
    labels : array-like
        True 0/1 labels.
    threshold : float
        Decision threshold.

    Returns
    -------
    ConfusionCounts
    """
    probs, truth = _as_arrays(probabilities, labels)
    return _count(probs, truth, threshold)


def compute_metrics(counts: ConfusionCounts) -> Dict[str, float]:
    """
    Derived metrics from confusion counts; any zero denominator gives 0.

    Returns
    -------
    dict
        accuracy, precision, recall, f1, specificity, balanced_accuracy
    """
    precision = _safe_div(counts.tp, counts.tp + counts.fp)
    recall = _safe_div(counts.tp, counts.tp + counts.fn)
    specificity = _safe_div(counts.tn, counts.tn + counts.fp)
    return {
        "accuracy": _safe_div(counts.tp + counts.tn, counts.total),
        "precision": precision,
        "recall": recall,
        "f1": _safe_div(2 * precision * recall, precision + recall),
        "specificity": specificity,
        "balanced_accuracy": (recall + specificity) / 2.0,
    }


def threshold_grid(points: int = 101) -> np.ndarray:
    """Uniform thresholds over [0, 1], rounded so 0.3 is exactly 0.3."""
    points = max(2, int(points))
    return np.round(np.linspace(0.0, 1.0, points), 6)


def roc_curve(probabilities, labels, points: int = 101) -> List[CurvePoint]:
    """
    Sweep the threshold grid and return (fpr, tpr) points.

    Points are sorted by fpr, then tpr, ascending; tied probabilities
    can make the raw sweep non-monotonic and the trapezoid rule needs
    ordered x values.
    """
    probs, truth = _as_arrays(probabilities, labels)
    return _sort_roc([_roc_point(probs, truth, t) for t in threshold_grid(points)])


def pr_curve(probabilities, labels, points: int = 101) -> List[CurvePoint]:
    """Sweep the threshold grid and return (recall, precision) points in threshold order."""
    probs, truth = _as_arrays(probabilities, labels)
    return [_pr_point(probs, truth, t) for t in threshold_grid(points)]


def _roc_point(probs: np.ndarray, truth: np.ndarray, threshold: float) -> CurvePoint:
    counts = _count(probs, truth, threshold)
    tpr = _safe_div(counts.tp, counts.tp + counts.fn)
    fpr = _safe_div(counts.fp, counts.fp + counts.tn)
    return CurvePoint(x=fpr, y=tpr, threshold=float(threshold))


def _pr_point(probs: np.ndarray, truth: np.ndarray, threshold: float) -> CurvePoint:
    counts = _count(probs, truth, threshold)
    precision = _safe_div(counts.tp, counts.tp + counts.fp)
    recall = _safe_div(counts.tp, counts.tp + counts.fn)
    return CurvePoint(x=recall, y=precision, threshold=float(threshold))


def _sort_roc(curve: List[CurvePoint]) -> List[CurvePoint]:
    return sorted(curve, key=lambda point: (point.x, point.y))


async def _sweep_async(point_fn, probs, truth, thresholds, chunk: int) -> List[CurvePoint]:
    """Build curve points ``chunk`` thresholds at a time, yielding in between."""
    curve = []
    chunk = max(1, int(chunk))
    for start in range(0, len(thresholds), chunk):
        curve.extend(point_fn(probs, truth, t) for t in thresholds[start:start + chunk])
        # Cooperative yield point
        await asyncio.sleep(0)
    return curve


async def roc_curve_async(probabilities, labels, points: int = 101, chunk: int = 10) -> List[CurvePoint]:
    """``roc_curve`` that yields to the event loop every ``chunk`` thresholds."""
    probs, truth = _as_arrays(probabilities, labels)
    curve = await _sweep_async(_roc_point, probs, truth, threshold_grid(points), chunk)
    return _sort_roc(curve)


async def pr_curve_async(probabilities, labels, points: int = 101, chunk: int = 10) -> List[CurvePoint]:
    """``pr_curve`` that yields to the event loop every ``chunk`` thresholds."""
    probs, truth = _as_arrays(probabilities, labels)
    return await _sweep_async(_pr_point, probs, truth, threshold_grid(points), chunk)


def auc(points: Sequence[CurvePoint]) -> float:
    """
    Trapezoidal area under sorted curve points:
    ``sum((x[i] - x[i-1]) * (y[i] + y[i-1]) / 2)``.
    """
    area = 0.0
    for previous, current in zip(points, points[1:]):
        area += (current.x - previous.x) * (current.y + previous.y) / 2.0
    return float(area)


def optimal_threshold_grid(start: float = 0.10, stop: float = 0.90, step: float = 0.05) -> np.ndarray:
    """Candidate thresholds for the F1 search, ``stop`` included."""
    count = int(round((stop - start) / step)) + 1
    return np.round(start + step * np.arange(count), 6)


def find_optimal_threshold(probabilities, labels, grid: Optional[Sequence[float]] = None) -> Tuple[float, float]:
    """
    Grid-search the threshold that maximizes F1.

    Ties keep the first (lowest) threshold found.

    Parameters
    ----------
    probabilities : array-like
        Predicted probabilities.
    labels : array-like
        True 0/1 labels.
    grid : sequence of float, optional
        Candidates; defaults to 0.10..0.90 in steps of 0.05.

    Returns
    -------
    tuple of (float, float)
        (best_threshold, best_f1)
    """
    grid = optimal_threshold_grid() if grid is None else grid
    probs, truth = _as_arrays(probabilities, labels)
    best_threshold, best_f1 = float(grid[0]) if len(grid) else 0.5, -1.0
    for threshold in grid:
        f1 = compute_metrics(_count(probs, truth, threshold))["f1"]
        # Strict improvement only: the lowest threshold wins ties
        if f1 > best_f1:
            best_threshold, best_f1 = float(threshold), f1
    return best_threshold, max(best_f1, 0.0)


class ModelEvaluator:
    """
    Evaluation engine for the cross-sell classifier.

    Wraps the pure functions above with configured grids, logging and
    report plots. Nothing here raises on empty or single-class inputs:
    the metrics simply come back as zeros.
    """

    def __init__(self, config: dict, output_dir: Optional[str] = None):
        """
        Initialize the evaluator with configuration.

        Parameters
        ----------
        config : dict
            Project configuration dictionary.
        output_dir : str, optional
            Where plots are written; defaults to ``evaluation.reports_dir``.
        """
        self.config = config
        eval_cfg = config.get("evaluation", {})
        # Threshold used when the caller does not pick one
        self.default_threshold = float(eval_cfg.get("default_threshold", 0.5))
        # Number of thresholds in the ROC/PR sweep
        self.curve_points = int(eval_cfg.get("curve_points", 101))
        # Thresholds swept between event-loop yields in evaluate_async
        self.sweep_chunk = max(1, int(eval_cfg.get("sweep_chunk", 10)))
        # Candidate thresholds for the F1 search
        grid_cfg = eval_cfg.get("optimal_threshold_grid", {})
        self.optimal_grid = optimal_threshold_grid(
            grid_cfg.get("start", 0.10), grid_cfg.get("stop", 0.90), grid_cfg.get("step", 0.05)
        )
        self.output_dir = Path(output_dir or eval_cfg.get("reports_dir", "reports"))
        logger.info(f"ModelEvaluator initialized. Curve points: {self.curve_points}")

    def confusion_counts(self, probabilities, labels, threshold: Optional[float] = None) -> ConfusionCounts:
        return confusion_counts(probabilities, labels, self.default_threshold if threshold is None else threshold)

    def compute_metrics(self, counts: ConfusionCounts) -> Dict[str, float]:
        return compute_metrics(counts)

    def roc_curve(self, probabilities, labels) -> List[CurvePoint]:
        return roc_curve(probabilities, labels, self.curve_points)

    def pr_curve(self, probabilities, labels) -> List[CurvePoint]:
        return pr_curve(probabilities, labels, self.curve_points)

    def auc(self, points: Sequence[CurvePoint]) -> float:
        return auc(points)

    def find_optimal_threshold(self, probabilities, labels) -> Tuple[float, float]:
        threshold, f1 = find_optimal_threshold(probabilities, labels, self.optimal_grid)
        logger.info(f"Optimal threshold: {threshold:.2f} (F1={f1:.4f})")
        return threshold, f1

    def evaluate(self, probabilities, labels, threshold: Optional[float] = None) -> EvaluationReport:
        """
        Full evaluation at one threshold.

        Parameters
        ----------
        probabilities : array-like
            Validation probabilities from the current model.
        labels : array-like
            Validation labels from the same split.
        threshold : float, optional
            Decision threshold; defaults to ``evaluation.default_threshold``.

        Returns
        -------
        EvaluationReport
        """
        threshold = self.default_threshold if threshold is None else float(threshold)
        probs, truth = _as_arrays(probabilities, labels)
        roc = roc_curve(probs, truth, self.curve_points)
        pr = pr_curve(probs, truth, self.curve_points)
        return self._report(probs, truth, threshold, roc, pr)

    async def evaluate_async(self, probabilities, labels, threshold: Optional[float] = None) -> EvaluationReport:
        """
        Same report as ``evaluate``, but the ROC/PR sweeps yield to the
        event loop every ``evaluation.sweep_chunk`` thresholds.
        """
        threshold = self.default_threshold if threshold is None else float(threshold)
        probs, truth = _as_arrays(probabilities, labels)
        roc = await roc_curve_async(probs, truth, self.curve_points, self.sweep_chunk)
        pr = await pr_curve_async(probs, truth, self.curve_points, self.sweep_chunk)
        return self._report(probs, truth, threshold, roc, pr)

    def _report(self, probs, truth, threshold: float, roc, pr) -> EvaluationReport:
        counts = _count(probs, truth, threshold)
        metrics = compute_metrics(counts)
        best_threshold, best_f1 = find_optimal_threshold(probs, truth, self.optimal_grid)
        report = EvaluationReport(
            threshold=threshold,
            counts=counts,
            metrics=metrics,
            roc=roc,
            pr=pr,
            auc=auc(roc),
            optimal_threshold=best_threshold,
            optimal_f1=best_f1,
        )

        logger.info(f"Metrics (threshold={threshold:.2f}):")
        logger.info(f"  Confusion: TP={counts.tp} FN={counts.fn} FP={counts.fp} TN={counts.tn}")
        logger.info(f"  Accuracy: {metrics['accuracy']:.4f}  Precision: {metrics['precision']:.4f}")
        logger.info(f"  Recall:   {metrics['recall']:.4f}  F1: {metrics['f1']:.4f}")
        logger.info(f"  AUC:      {report.auc:.4f}")
        return report

    def plot_roc_curve(self, report: EvaluationReport, filename: str = "roc_curve.png") -> str:
        """Plot the ROC sweep against the random baseline; returns the file path."""
        fig, ax = plt.subplots(figsize=(8, 7))
        ax.plot([p.x for p in report.roc], [p.y for p in report.roc], linewidth=2,
                label=f"ROC (AUC={report.auc:.3f})")
        ax.plot([0, 1], [0, 1], "k--", label="Random (AUC=0.500)", linewidth=1)
        ax.set_xlabel("False Positive Rate", fontsize=12)
        ax.set_ylabel("True Positive Rate", fontsize=12)
        ax.set_title("ROC Curve", fontsize=14)
        ax.legend(loc="lower right", fontsize=10)
        ax.grid(True, alpha=0.3)
        return self._save(fig, filename, "ROC curve")

    def plot_precision_recall_curve(self, report: EvaluationReport, filename: str = "pr_curve.png") -> str:
        """Plot the PR sweep; returns the file path."""
        fig, ax = plt.subplots(figsize=(8, 7))
        ax.plot([p.x for p in report.pr], [p.y for p in report.pr], linewidth=2, label="Precision-Recall")
        ax.set_xlabel("Recall", fontsize=12)
        ax.set_ylabel("Precision", fontsize=12)
        ax.set_title("Precision-Recall Curve", fontsize=14)
        ax.legend(loc="upper right", fontsize=10)
        ax.grid(True, alpha=0.3)
        return self._save(fig, filename, "PR curve")

    def plot_confusion_matrix(self, report: EvaluationReport, filename: str = "confusion_matrix.png") -> str:
        """Heatmap with actual rows (Pos, Neg) and predicted columns (Pos, Neg)."""
        counts = report.counts
        matrix = np.array([[counts.tp, counts.fn], [counts.fp, counts.tn]])
        fig, ax = plt.subplots(figsize=(6, 5))
        sns.heatmap(
            matrix, annot=True, fmt="d", cmap="Blues", cbar=False, ax=ax,
            xticklabels=["Pred Pos", "Pred Neg"], yticklabels=["Actual Pos", "Actual Neg"],
        )
        ax.set_title(f"Confusion Matrix (threshold={report.threshold:.2f})", fontsize=13)
        return self._save(fig, filename, "Confusion matrix")

    def _save(self, fig, filename: str, label: str) -> str:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        filepath = self.output_dir / filename
        fig.savefig(filepath, dpi=150, bbox_inches="tight")
        # Free the figure
        plt.close(fig)
        logger.info(f"{label} plot saved to: {filepath}")
        return str(filepath)
