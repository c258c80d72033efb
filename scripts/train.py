# ============================================================
# scripts/train.py
# End-to-end training pipeline orchestrator.
# Loads policyholder data, inspects it, encodes features,
# trains the cross-sell classifier, evaluates and picks a
# threshold, exports test predictions and saves the bundle.
# ============================================================

import sys                                         # System-specific parameters
from pathlib import Path                           # Object-oriented file paths

# Add the project root to Python path for module imports
project_root = Path(__file__).resolve().parent.parent  # Navigate up from scripts/
sys.path.insert(0, str(project_root))              # Insert at beginning of path

import argparse                                    # Command-line argument parsing
import json                                        # Metrics report
import warnings                                    # Warning control module
warnings.filterwarnings("ignore")                  # Suppress non-critical warnings

import numpy as np                                 # Numerical computing library
import pandas as pd                                # Synthetic data frame
from loguru import logger                          # Structured logging library
from datetime import datetime                      # Date and time utilities

# Import project modules
from insurance_xsell.utils.helpers import (        # Utility functions
    load_config,                                   # YAML config loader
    setup_logging,                                 # Logging configuration
    ensure_directory,                              # Directory creator
    save_model,                                    # Bundle serializer
    set_global_seed,                               # Reproducibility
)
from insurance_xsell.data.loader import DataLoader  # CSV loading
from insurance_xsell.data.inspector import DataInspector  # Exploration summaries
from insurance_xsell.data.dataset import REBALANCE_STRATEGIES  # Valid --rebalance values
from insurance_xsell.models.trainer import ALGORITHMS  # Valid --algorithm values
from insurance_xsell.models.evaluator import ModelEvaluator  # Report plots
from insurance_xsell.pipeline.session import InputAbsentError, PipelineSession  # Workflow


def parse_threshold(value):
    """argparse type: ``auto`` or a float in [0, 1]."""
    if value == "auto":
        return value
    try:
        threshold = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"threshold must be 'auto' or a number, got {value!r}")
    if not 0.0 <= threshold <= 1.0:
        raise argparse.ArgumentTypeError(f"threshold must lie in [0, 1], got {threshold}")
    return threshold


def parse_args(argv=None):
    """
    Parse command-line arguments for the training script.

    Returns
    -------
    argparse.Namespace
    """
    parser = argparse.ArgumentParser(description="Train the health insurance cross-sell classifier")

    parser.add_argument("--train", type=str, default=None,
                        help="Labeled training CSV (default: data.train_path)")
    parser.add_argument("--test", type=str, default=None,
                        help="Unlabeled CSV to score (default: a copy of the training data)")
    parser.add_argument("--config", type=str, default=None,
                        help="Path to config.yaml (default: config/config.yaml)")
    parser.add_argument("--threshold", type=parse_threshold, default="auto",
                        help="Decision threshold, or 'auto' for the F1-optimal one (default: auto)")
    parser.add_argument("--rebalance", choices=REBALANCE_STRATEGIES, default=None,
                        help="Minority-class rebalancing (default: preprocessing.rebalance_strategy)")
    parser.add_argument("--algorithm", choices=ALGORITHMS, default=None,
                        help="Model type (default: model.algorithm)")
    parser.add_argument("--epochs", type=int, default=None,
                        help="Training epochs for the feed-forward network")
    parser.add_argument("--sample", action="store_true",
                        help="Stride-sample the training file down to data.max_samples rows")
    parser.add_argument("--output-dir", type=str, default="outputs",
                        help="Directory for submission.csv and probabilities.csv")

    return parser.parse_args(argv)


def generate_synthetic_data(n_samples=5000, random_state=42):
    """
    Generate synthetic policyholder records for demonstration.

    Parameters
    ----------
    n_samples : int, default=5000
        Number of customers to generate.
    random_state : int, default=42
        Random seed for reproducibility.

    Returns
    -------
    pd.DataFrame
        A DataFrame with the health insurance cross-sell columns.
    """
    rng = np.random.default_rng(random_state)
    logger.info(f"Generating {n_samples} synthetic policyholder records...")

    # Demographics
    gender = rng.choice(["Male", "Female"], n_samples, p=[0.54, 0.46])
    age = rng.integers(20, 86, n_samples)
    driving_license = rng.choice([1, 0], n_samples, p=[0.998, 0.002])
    region_code = rng.integers(0, 53, n_samples)

    # Vehicle and history
    vehicle_age = rng.choice(["< 1 Year", "1-2 Year", "> 2 Years"], n_samples, p=[0.43, 0.53, 0.04])
    vehicle_damage = rng.choice(["Yes", "No"], n_samples, p=[0.5, 0.5])
    # Customers with a damaged vehicle are rarely already insured
    previously_insured = np.where(
        vehicle_damage == "Yes",
        rng.choice([1, 0], n_samples, p=[0.03, 0.97]),
        rng.choice([1, 0], n_samples, p=[0.9, 0.1]),
    )

    # Commercial fields
    annual_premium = np.round(np.clip(rng.normal(30500, 17000, n_samples), 2630, 540000), 1)
    policy_sales_channel = rng.choice([26, 124, 152, 160, 156], n_samples)
    vintage = rng.integers(10, 300, n_samples)

    # Response probability driven by damage, insurance history and vehicle age
    response_prob = np.full(n_samples, 0.02)
    response_prob += np.where((vehicle_damage == "Yes") & (previously_insured == 0), 0.20, 0)
    response_prob += np.where(vehicle_age == "> 2 Years", 0.10, 0)
    response_prob += np.where((age >= 30) & (age <= 55), 0.05, 0)
    response_prob = np.clip(response_prob + rng.normal(0, 0.02, n_samples), 0.0, 0.9)
    response = (rng.random(n_samples) < response_prob).astype(int)

    df = pd.DataFrame({
        "id": np.arange(1, n_samples + 1),
        "Gender": gender,
        "Age": age,
        "Driving_License": driving_license,
        "Region_Code": region_code.astype(float),
        "Previously_Insured": previously_insured,
        "Vehicle_Age": vehicle_age,
        "Vehicle_Damage": vehicle_damage,
        "Annual_Premium": annual_premium,
        "Policy_Sales_Channel": policy_sales_channel.astype(float),
        "Vintage": vintage,
        "Response": response,
    })
    logger.info(f"Synthetic data response rate: {response.mean():.1%}")
    return df


def run_training_pipeline(args):
    """
    Execute the full training pipeline.

    Steps:
    1. Load the training (and optional test) file
    2. Inspect the data
    3. Fit statistics, encode, split and rebalance
    4. Train the classifier
    5. Evaluate on the validation split and settle the threshold
    6. Score and export the test set
    7. Save the model bundle and metrics
    """
    # ----------------------------------------------------------
    # Step 0: Setup
    # ----------------------------------------------------------
    config = load_config(args.config)
    log_cfg = config.get("logging", {})
    setup_logging(log_cfg.get("dir", "logs"), log_cfg.get("file", "xsell.log"))
    set_global_seed(int(config.get("data", {}).get("random_state", 42)))

    logger.info("=" * 60)
    logger.info("CROSS-SELL TRAINING PIPELINE")
    logger.info(f"Started at: {datetime.now().isoformat()}")
    logger.info("=" * 60)

    reports_dir = config.get("evaluation", {}).get("reports_dir", "reports")
    model_path = Path(config.get("api", {}).get("model_path", "models/xsell_bundle.joblib"))
    ensure_directory(model_path.parent)
    ensure_directory(reports_dir)

    # ----------------------------------------------------------
    # Step 1: Load Data
    # ----------------------------------------------------------
    logger.info("Step 1: Loading data...")
    loader = DataLoader(config)
    train_path = args.train or loader.train_path
    test_path = args.test or (loader.test_path if loader.test_path and Path(loader.test_path).exists() else None)

    if not Path(train_path).exists():
        if args.train:
            # An explicit path that does not exist is a user error
            raise FileNotFoundError(f"Training file not found: {train_path}")
        logger.warning(f"Data file not found at {train_path}. Generating synthetic data...")
        df = generate_synthetic_data(random_state=int(config.get("data", {}).get("random_state", 42)))
        ensure_directory(Path(train_path).parent)
        df.to_csv(train_path, index=False)
        logger.info(f"Synthetic data saved to {train_path}")

    train_records, test_records = loader.load_train_test(train_path, test_path)
    if args.sample or config.get("data", {}).get("use_sampling", False):
        train_records = loader.sample_records(train_records)

    # ----------------------------------------------------------
    # Step 2: Inspect Data
    # ----------------------------------------------------------
    logger.info("Step 2: Inspecting data...")
    inspector = DataInspector(config)
    summary = inspector.summarize(train_records)
    for column, rates in summary["response_rate_by"].items():
        formatted = ", ".join(f"{key}={rate:.1f}%" for key, rate in rates.items())
        logger.info(f"  Response rate by {column}: {formatted}")

    # ----------------------------------------------------------
    # Step 3: Preprocess
    # ----------------------------------------------------------
    logger.info("Step 3: Preprocessing...")

    def report_progress(done, total):
        logger.debug(f"  Encoded {done}/{total} records")

    session = PipelineSession.create(config).load(train_records, test_records)
    session = session.preprocess(rebalance=args.rebalance, progress=report_progress)

    # ----------------------------------------------------------
    # Step 4: Train
    # ----------------------------------------------------------
    logger.info("Step 4: Training model...")
    session = session.train(
        on_trained=lambda model: logger.info(f"Trained {model.algorithm}: {model.summary()['parameters']} parameters"),
        algorithm=args.algorithm,
        epochs=args.epochs,
    )

    # ----------------------------------------------------------
    # Step 5: Evaluate
    # ----------------------------------------------------------
    logger.info("Step 5: Evaluating on the validation split...")
    session = session.evaluate()
    if args.threshold == "auto":
        session = session.with_optimal_threshold()
    else:
        session = session.with_threshold(args.threshold)
    report = session.report
    logger.info(f"Decision threshold: {session.threshold:.2f}")

    evaluator = ModelEvaluator(config)
    try:
        evaluator.plot_roc_curve(report)
        evaluator.plot_precision_recall_curve(report)
        evaluator.plot_confusion_matrix(report)
    except (OSError, ValueError) as e:
        logger.warning(f"Plot generation failed: {e}")

    # ----------------------------------------------------------
    # Step 6: Predict and Export
    # ----------------------------------------------------------
    logger.info("Step 6: Scoring the test set...")
    session = session.predict()
    outputs = session.export(args.output_dir)

    # ----------------------------------------------------------
    # Step 7: Save Bundle
    # ----------------------------------------------------------
    logger.info("Step 7: Saving model bundle...")
    bundle = {
        "stats": session.stats,
        "model": session.model,
        "threshold": session.threshold,
        "feature_names": session.stats.feature_names,
        "metrics": report.as_dict(),
        "trained_at": datetime.now().isoformat(),
    }
    save_model(bundle, model_path)

    metrics_path = Path(reports_dir) / "metrics.json"
    with open(metrics_path, "w") as f:
        json.dump(report.as_dict(), f, indent=2)
    logger.info(f"Metrics saved to {metrics_path}")

    # ----------------------------------------------------------
    # Summary
    # ----------------------------------------------------------
    logger.info("=" * 60)
    logger.info("TRAINING PIPELINE COMPLETE")
    logger.info(f"Algorithm: {session.model.algorithm}")
    logger.info(f"AUC: {report.auc:.4f}")
    logger.info(f"F1 at threshold {session.threshold:.2f}: {report.metrics['f1']:.4f}")
    logger.info(f"Completed at: {datetime.now().isoformat()}")
    logger.info("=" * 60)

    return {
        "session": session,
        "bundle_path": model_path,
        "outputs": outputs,
    }


# ============================================================
# Entry Point
# ============================================================
if __name__ == "__main__":
    args = parse_args()
    try:
        result = run_training_pipeline(args)
    except (InputAbsentError, FileNotFoundError) as e:
        logger.error(str(e))
        sys.exit(1)
    session = result["session"]
    print(f"\n{'='*60}")
    print("Training complete!")
    print(f"Algorithm: {session.model.algorithm}")
    print(f"AUC: {session.report.auc:.4f}")
    print(f"Threshold: {session.threshold:.2f}")
    print(f"Submission: {result['outputs']['submission']}")
    print(f"{'='*60}")
