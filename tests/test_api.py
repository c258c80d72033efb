# ============================================================
# tests/test_api.py
# Tests for the FastAPI service using the TestClient.
# A small logistic-regression bundle is installed per test.
# ============================================================

import sys                                         # System-specific parameters
from pathlib import Path                           # Object-oriented file paths

# Add the project root to Python path for module imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest                                      # Testing framework
import numpy as np                                 # Fixed probabilities
from fastapi.testclient import TestClient          # In-process HTTP client

from api.main import app, clear_bundle, install_bundle  # Application under test
from insurance_xsell.data.dataset import DatasetBuilder  # Training matrices
from insurance_xsell.features.encoder import FeatureEncoder  # Statistics
from insurance_xsell.models.trainer import ModelTrainer  # Bundle model
from insurance_xsell.utils.helpers import load_config  # Config loader


RECORD = {
    "id": 11,
    "Gender": "Male",
    "Age": 44,
    "Driving_License": 1,
    "Region_Code": 28.0,
    "Previously_Insured": 0,
    "Vehicle_Age": "> 2 Years",
    "Vehicle_Damage": "Yes",
    "Annual_Premium": 40454.0,
    "Policy_Sales_Channel": 26.0,
    "Vintage": 217,
}


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def config():
    """Load and return the project configuration."""
    return load_config()


@pytest.fixture
def training_records():
    """Forty records alternating between responders and non-responders."""
    records = []
    for i in range(40):
        positive = i % 2 == 0
        records.append({
            **RECORD,
            "id": float(i),
            "Age": float(25 + i),
            "Previously_Insured": 0.0 if positive else 1.0,
            "Vehicle_Damage": "Yes" if positive else "No",
            "Response": 1.0 if positive else 0.0,
        })
    return records


@pytest.fixture
def bundle(config, training_records):
    """Statistics, model and threshold as saved by the training script."""
    encoder = FeatureEncoder(config)
    stats = encoder.fit(training_records)
    dataset = DatasetBuilder(config, encoder=encoder).build_labeled(training_records, stats)
    model = ModelTrainer(config).train(dataset.features, dataset.labels, algorithm="logistic_regression")
    return {"stats": stats, "model": model, "threshold": 0.5, "metrics": {"roc_auc": 1.0}}


@pytest.fixture
def client(config, bundle):
    """TestClient with the bundle installed; cleared afterwards."""
    install_bundle(bundle, config)
    yield TestClient(app)
    clear_bundle()


# ============================================================
# Tests
# ============================================================

class TestAPI:
    """Test suite for the HTTP endpoints."""

    def test_health(self, client):
        """Health reports a loaded model."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["model_loaded"] is True

    def test_predict(self, client):
        """A damaged, uninsured customer is scored as interested."""
        response = client.post("/predict", json=RECORD)
        assert response.status_code == 200
        body = response.json()
        assert body["id"] == 11
        assert 0.0 <= body["probability"] <= 1.0
        assert body["interested"] is True
        assert body["threshold_used"] == 0.5

    def test_predict_sparse_record(self, client):
        """Missing fields are imputed rather than rejected."""
        response = client.post("/predict", json={"Age": 30})
        assert response.status_code == 200

    def test_predict_batch(self, client):
        """Batch predictions keep request order and carry a summary."""
        insured = {**RECORD, "id": 12, "Previously_Insured": 1, "Vehicle_Damage": "No"}
        response = client.post("/predict/batch", json={"records": [RECORD, insured]})
        assert response.status_code == 200
        body = response.json()
        assert [p["id"] for p in body["predictions"]] == [11, 12]
        assert body["summary"]["total"] == 2

    def test_batch_summary_uses_unrounded_probabilities(self, config, bundle, client):
        """A probability that only rounds up to the threshold is not counted as positive."""

        class FixedModel:
            algorithm = "logistic_regression"
            input_dim = 19

            def predict(self, features):
                return np.array([0.4999996, 0.9])[: len(features)]

        install_bundle({**bundle, "model": FixedModel()}, config)
        response = client.post("/predict/batch", json={"records": [RECORD, {**RECORD, "id": 12}]})
        assert response.status_code == 200
        body = response.json()
        assert [p["interested"] for p in body["predictions"]] == [False, True]
        assert body["summary"]["predicted_positive"] == 1

    def test_model_info(self, client):
        """Model info exposes the vector layout and saved threshold."""
        body = client.get("/model/info").json()
        assert body["algorithm"] == "logistic_regression"
        assert body["input_dim"] == 19
        assert len(body["feature_names"]) == 19
        assert body["threshold"] == 0.5

    def test_invalid_binary_rejected(self, client):
        """Binary fields outside 0/1 fail validation."""
        response = client.post("/predict", json={**RECORD, "Driving_License": 3})
        assert response.status_code == 422

    def test_no_model_is_503(self, client):
        """Without a bundle every scoring endpoint answers 503."""
        clear_bundle()
        assert client.post("/predict", json=RECORD).status_code == 503
        assert client.get("/model/info").status_code == 503
        assert client.get("/health").json()["model_loaded"] is False

    def test_dimension_mismatch_is_500(self, config, bundle, training_records):
        """A model trained on a different width is refused, not silently scored."""
        encoder = FeatureEncoder(config)
        features = DatasetBuilder(config, encoder=encoder).build_labeled(training_records, bundle["stats"]).features
        narrow = ModelTrainer(config).train(
            features[:, :5], [r["Response"] for r in training_records], algorithm="logistic_regression",
        )
        install_bundle({**bundle, "model": narrow}, config)
        try:
            response = TestClient(app).post("/predict", json=RECORD)
            assert response.status_code == 500
            assert "expects 5 features" in response.json()["detail"]
        finally:
            clear_bundle()
