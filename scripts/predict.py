# ============================================================
# scripts/predict.py
# Batch scoring script for the cross-sell classifier.
# Loads a saved model bundle, encodes new policyholder
# records with the training statistics and exports
# submission.csv / probabilities.csv.
# ============================================================

import sys                                         # System-specific parameters
from pathlib import Path                           # Object-oriented file paths

# Add the project root to Python path for module imports
project_root = Path(__file__).resolve().parent.parent  # Navigate up from scripts/
sys.path.insert(0, str(project_root))              # Insert at beginning of path

import argparse                                    # Command-line argument parsing
import warnings                                    # Warning control module
warnings.filterwarnings("ignore")                  # Suppress non-critical warnings

from loguru import logger                          # Structured logging library
from datetime import datetime                      # Date and time utilities

# Import project modules
from insurance_xsell.utils.helpers import (        # Utility functions
    load_config,                                   # YAML config loader
    setup_logging,                                 # Logging configuration
    load_model,                                    # Bundle loader
)
from insurance_xsell.data.loader import DataLoader  # CSV loading
from insurance_xsell.data.dataset import DatasetBuilder  # Inference matrices
from insurance_xsell.features.encoder import FeatureEncoder  # Record encoding
from insurance_xsell.models.trainer import FeatureDimensionError  # Layout mismatch
from insurance_xsell.pipeline.export import export_predictions, summarize_predictions  # CSV output


def parse_args(argv=None):
    """
    Parse command-line arguments for the prediction script.

    Returns
    -------
    argparse.Namespace
        Parsed arguments with input, model, output_dir and threshold.
    """
    parser = argparse.ArgumentParser(description="Batch cross-sell prediction script")

    parser.add_argument("--input", "-i", type=str, required=True,
                        help="Path to the CSV file with policyholder records")
    parser.add_argument("--model", "-m", type=str, default=None,
                        help="Path to the model bundle (default: api.model_path)")
    parser.add_argument("--output-dir", "-o", type=str, default="outputs",
                        help="Directory for submission.csv and probabilities.csv (default: outputs)")
    parser.add_argument("--threshold", "-t", type=float, default=None,
                        help="Decision threshold (default: the one saved with the model)")
    parser.add_argument("--config", type=str, default=None,
                        help="Path to config.yaml (default: config/config.yaml)")

    return parser.parse_args(argv)


def run_batch_prediction(args):
    """
    Execute the batch prediction pipeline.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command-line arguments.

    Returns
    -------
    dict
        Paths of the written files.
    """
    config = load_config(args.config)
    log_cfg = config.get("logging", {})
    setup_logging(log_cfg.get("dir", "logs"), log_cfg.get("file", "xsell.log"))
    logger.info("=" * 60)
    logger.info("BATCH PREDICTION PIPELINE")
    logger.info(f"Started at: {datetime.now().isoformat()}")
    logger.info(f"Input file: {args.input}")
    logger.info("=" * 60)

    # ----------------------------------------------------------
    # Step 1: Load Resources
    # ----------------------------------------------------------
    model_path = args.model or config.get("api", {}).get("model_path", "models/xsell_bundle.joblib")
    bundle = load_model(model_path)
    stats, model = bundle["stats"], bundle["model"]
    threshold = bundle.get("threshold", 0.5)
    if args.threshold is not None:
        threshold = args.threshold
        logger.info(f"Using command-line threshold: {threshold:.3f}")

    # ----------------------------------------------------------
    # Step 2: Load and Encode Input Data
    # ----------------------------------------------------------
    records = DataLoader(config).load_csv(args.input)
    # The bundle's schema fixes the layout, not the current config
    encoder = FeatureEncoder(config, schema=stats.schema)
    dataset = DatasetBuilder(config, encoder=encoder).build_inference(records, stats)

    # ----------------------------------------------------------
    # Step 3: Predict and Export
    # ----------------------------------------------------------
    probabilities = model.predict(dataset.features)
    summary = summarize_predictions(probabilities, threshold)
    outputs = export_predictions(dataset.ids, probabilities, threshold, args.output_dir)

    logger.info("=" * 60)
    logger.info("BATCH PREDICTION COMPLETE")
    logger.info(f"Total customers: {summary['total']}")
    logger.info(f"Predicted interested: {summary['predicted_positive']} ({summary['positive_rate']:.1f}%)")
    logger.info(f"Completed at: {datetime.now().isoformat()}")
    logger.info("=" * 60)
    return outputs


# ============================================================
# Entry Point
# ============================================================
if __name__ == "__main__":
    args = parse_args()
    try:
        run_batch_prediction(args)
    except (FileNotFoundError, FeatureDimensionError) as e:
        logger.error(str(e))
        sys.exit(1)
