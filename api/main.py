# ============================================================
# api/main.py
# FastAPI application entry point.
# Loads the trained cross-sell bundle at startup and serves
# single and batch predictions with the training statistics.
# ============================================================

import sys                                         # System-specific parameters
from pathlib import Path                           # Object-oriented paths

# Add the project root to the Python path so we can import project modules
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from fastapi import FastAPI, HTTPException         # FastAPI framework and HTTP errors
from fastapi.middleware.cors import CORSMiddleware  # CORS middleware for cross-origin requests
from contextlib import asynccontextmanager         # Async context manager for lifespan events
import numpy as np                                 # Probability arrays
from typing import List, Tuple                     # Type hints
from loguru import logger                          # Structured logging

from api.schemas import (                          # Request/response schemas
    PolicyholderRecord,                            # Single record input
    PredictionResponse,                            # Single prediction output
    BatchPredictionRequest,                        # Batch input
    BatchPredictionResponse,                       # Batch output
    HealthResponse,                                # Health check output
    ModelInfoResponse,                             # Bundle description
)
from insurance_xsell.utils.helpers import load_config, load_model  # Config and bundle loading
from insurance_xsell.features.encoder import FeatureEncoder  # Record -> vector
from insurance_xsell.models.trainer import FeatureDimensionError  # Layout mismatch
from insurance_xsell.pipeline.export import summarize_predictions  # Batch summary
from insurance_xsell.pipeline.session import InputAbsentError  # Missing model

API_VERSION = "1.0.0"


# ============================================================
# Global state for the loaded bundle and config
# ============================================================
# Populated at startup and used by all endpoints
app_state = {
    "config": None,                                # The loaded config
    "bundle": None,                                # {"stats", "model", "threshold", ...}
    "encoder": None,                               # Encoder bound to the bundle's schema
}


def install_bundle(bundle: dict, config: dict) -> None:
    """Make ``bundle`` the active model (also used by tests)."""
    app_state["config"] = config
    app_state["bundle"] = bundle
    app_state["encoder"] = FeatureEncoder(config, schema=bundle["stats"].schema)
    logger.info(f"Model bundle active: {bundle['model'].algorithm}, threshold={bundle.get('threshold', 0.5):.2f}")


def clear_bundle() -> None:
    app_state["bundle"] = None
    app_state["encoder"] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler: runs on startup and shutdown.

    On startup: loads the config and the model bundle if one exists.
    """
    # --- STARTUP ---
    logger.info("Starting API server...")
    config = load_config()
    app_state["config"] = config
    model_path = Path(config.get("api", {}).get("model_path", "models/xsell_bundle.joblib"))
    if not model_path.is_absolute():
        model_path = project_root / model_path
    if model_path.exists():
        install_bundle(load_model(model_path), config)
    else:
        logger.warning(f"Model file not found at: {model_path}. API will start but predictions disabled.")

    yield

    # --- SHUTDOWN ---
    logger.info("Shutting down API server...")


# ============================================================
# Create the FastAPI application instance
# ============================================================
app = FastAPI(
    title="Health Insurance Cross-Sell API",
    description=(
        "Scores existing health-insurance customers for interest in "
        "vehicle insurance, using the statistics and model saved at training time."
    ),
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================
# Helper Functions
# ============================================================

def require_bundle() -> dict:
    """Return the active bundle or raise InputAbsentError."""
    if app_state["bundle"] is None:
        raise InputAbsentError("Model not loaded. Train and deploy a model first.")
    return app_state["bundle"]


def score_probabilities(records: List[PolicyholderRecord]) -> Tuple[List[dict], np.ndarray, float]:
    """
    Encode and score records with the active bundle.

    Returns
    -------
    tuple
        (raw records, unrounded probabilities, threshold)

    Raises
    ------
    InputAbsentError
        No bundle is loaded.
    FeatureDimensionError
        The bundle's model and statistics disagree on the vector width.
    """
    bundle = require_bundle()
    encoder = app_state["encoder"]
    threshold = float(bundle.get("threshold", 0.5))

    raw = [record.model_dump() for record in records]
    features = encoder.encode_many(raw, bundle["stats"])
    probabilities = np.asarray(bundle["model"].predict(features), dtype=np.float64).reshape(-1)
    return raw, probabilities, threshold


def build_responses(raw: List[dict], probabilities: np.ndarray, threshold: float) -> List[PredictionResponse]:
    """Decisions use the unrounded probability; only the reported value is rounded."""
    return [
        PredictionResponse(
            id=record.get("id"),
            probability=round(float(prob), 6),
            interested=bool(prob >= threshold),
            threshold_used=threshold,
        )
        for record, prob in zip(raw, probabilities)
    ]


def score_records(records: List[PolicyholderRecord]) -> List[PredictionResponse]:
    """Score records into API responses (see ``score_probabilities``)."""
    return build_responses(*score_probabilities(records))


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, InputAbsentError):
        return HTTPException(status_code=503, detail=str(exc))
    logger.error(f"Prediction error: {exc}")
    return HTTPException(status_code=500, detail=f"Prediction failed: {exc}")


# ============================================================
# API Endpoints
# ============================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """Report API status and whether a model is loaded."""
    return HealthResponse(
        status="healthy",
        model_loaded=app_state["bundle"] is not None,
        version=API_VERSION,
    )


@app.get("/model/info", response_model=ModelInfoResponse, tags=["System"])
async def model_info():
    """Describe the loaded model: algorithm, vector layout, threshold, metrics."""
    try:
        bundle = require_bundle()
    except InputAbsentError as e:
        raise _http_error(e)
    model = bundle["model"]
    return ModelInfoResponse(
        algorithm=model.algorithm,
        input_dim=model.input_dim,
        feature_names=bundle["stats"].feature_names,
        threshold=float(bundle.get("threshold", 0.5)),
        metrics=bundle.get("metrics", {}),
    )


@app.post("/predict", response_model=PredictionResponse, tags=["Predictions"])
async def predict(record: PolicyholderRecord):
    """
    Predict cross-sell interest for a single policyholder.

    Raises 503 if no model is loaded and 500 if the saved model and
    statistics disagree on the feature layout.
    """
    try:
        prediction = score_records([record])[0]
    except (InputAbsentError, FeatureDimensionError) as e:
        raise _http_error(e)
    logger.info(f"Prediction: P(interested)={prediction.probability:.3f}, threshold={prediction.threshold_used}")
    return prediction


@app.post("/predict/batch", response_model=BatchPredictionResponse, tags=["Predictions"])
async def predict_batch(request: BatchPredictionRequest):
    """Score many policyholders in one request, preserving order."""
    try:
        raw, probabilities, threshold = score_probabilities(request.records)
    except (InputAbsentError, FeatureDimensionError) as e:
        raise _http_error(e)

    predictions = build_responses(raw, probabilities, threshold)
    summary = summarize_predictions(probabilities, threshold)
    logger.info(f"Batch prediction: {summary}")
    return BatchPredictionResponse(predictions=predictions, summary=summary)


# ============================================================
# Run the server (when executed directly)
# ============================================================
if __name__ == "__main__":
    import uvicorn                                 # ASGI server
    api_cfg = load_config().get("api", {})
    uvicorn.run(
        "api.main:app",
        host=api_cfg.get("host", "0.0.0.0"),
        port=int(api_cfg.get("port", 8000)),
        reload=False,
    )
