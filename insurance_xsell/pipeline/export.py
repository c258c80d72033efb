# ============================================================
# insurance_xsell/pipeline/export.py
# Writes scored test records to submission.csv (id,Response)
# and probabilities.csv (id,Probability).
# ============================================================

import numpy as np                                 # Thresholding
import pandas as pd                                # CSV writing
from pathlib import Path                           # Output paths
from loguru import logger                          # Structured logging
from typing import Any, Dict, Sequence, Union      # Type hints

SUBMISSION_FILE = "submission.csv"
PROBABILITIES_FILE = "probabilities.csv"


def _clean_id(value: Any) -> Any:
    """Integral floats (parsed from CSV as 17.0) are written back as 17."""
    if isinstance(value, (float, np.floating)) and np.isfinite(value) and float(value).is_integer():
        return int(value)
    return value


def build_prediction_frame(ids: Sequence, probabilities, threshold: float) -> pd.DataFrame:
    """
    One row per record: ``id``, binary ``Response`` and ``Probability``.

    Parameters
    ----------
    ids : sequence
        Record identifiers, in prediction order.
    probabilities : array-like
        Positive-class probabilities aligned with ``ids``.
    threshold : float
        ``probability >= threshold`` is written as 1.

    Returns
    -------
    pd.DataFrame
    """
    probs = np.asarray(probabilities, dtype=np.float64).reshape(-1)
    if len(ids) != probs.shape[0]:
        raise ValueError(f"{len(ids)} ids but {probs.shape[0]} probabilities")
    return pd.DataFrame({
        # object dtype keeps 2 as 2 next to a non-integral id
        "id": pd.Series([_clean_id(value) for value in ids], dtype=object),
        "Response": (probs >= threshold).astype(int),
        "Probability": probs,
    })


def export_predictions(
    ids: Sequence,
    probabilities,
    threshold: float,
    output_dir: Union[str, Path],
) -> Dict[str, Path]:
    """
    Write ``submission.csv`` and ``probabilities.csv`` into ``output_dir``.

    Returns
    -------
    dict
        ``{"submission": path, "probabilities": path}``
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    frame = build_prediction_frame(ids, probabilities, threshold)

    submission_path = output_dir / SUBMISSION_FILE
    frame[["id", "Response"]].to_csv(submission_path, index=False)
    probabilities_path = output_dir / PROBABILITIES_FILE
    # Six fixed decimals on Probability only; ids keep their own form
    probability_text = frame["Probability"].map("{:.6f}".format)
    frame[["id"]].assign(Probability=probability_text).to_csv(probabilities_path, index=False)

    logger.info(f"Exported {len(frame)} predictions (threshold={threshold:.2f})")
    logger.info(f"  Submission:    {submission_path}")
    logger.info(f"  Probabilities: {probabilities_path}")
    return {"submission": submission_path, "probabilities": probabilities_path}


def summarize_predictions(probabilities, threshold: float) -> Dict[str, float]:
    """Total, predicted-positive count and positive rate (percent)."""
    probs = np.asarray(probabilities, dtype=np.float64).reshape(-1)
    total = int(probs.shape[0])
    positives = int(np.sum(probs >= threshold))
    return {
        "total": total,
        "predicted_positive": positives,
        "positive_rate": 100.0 * positives / total if total else 0.0,
    }
