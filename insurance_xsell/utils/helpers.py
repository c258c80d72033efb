# ============================================================
# insurance_xsell/utils/helpers.py
# Shared utilities: config loading, logging setup, artifact
# persistence and seeding for the cross-sell pipeline.
# ============================================================

import random                                      # Python RNG (seeded alongside numpy/torch)
import sys                                         # stderr sink for console logging
import yaml                                        # YAML parser for config files
import joblib                                      # Serialization for model bundles
import numpy as np                                 # NumPy RNG seeding
import torch                                       # Torch RNG seeding
from pathlib import Path                           # Object-oriented filesystem paths
from loguru import logger                          # Structured logging
from typing import Any, Optional, Union            # Type hints


def get_project_root() -> Path:
    """
    Return the absolute path to the project root directory.

    Walks up from this file until a directory containing ``config/``
    is found.
    """
    # Start at the folder holding helpers.py
    current = Path(__file__).resolve().parent
    # Walk upward until the config/ marker shows up
    while current != current.parent:
        if (current / "config").exists():
            return current
        current = current.parent
    # Fallback: package root is two levels above utils/
    return Path(__file__).resolve().parent.parent.parent


def load_config(config_path: Optional[Union[str, Path]] = None) -> dict:
    """
    Load the YAML configuration file and return it as a dictionary.

    Parameters
    ----------
    config_path : str or Path, optional
        Explicit path to a config file. If None, uses
        ``<project_root>/config/config.yaml``.

    Returns
    -------
    dict
        Parsed configuration with all project settings.
    """
    # Resolve the default location when no path is given
    if config_path is None:
        config_path = get_project_root() / "config" / "config.yaml"
    else:
        config_path = Path(config_path)

    # Fail loudly on a missing config file
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found at: {config_path}")

    # safe_load refuses arbitrary Python object tags
    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f)

    logger.info(f"Configuration loaded from: {config_path}")
    return config


def save_model(model: Any, filepath: Union[str, Path]) -> Path:
    """
    Serialize a model bundle to disk with joblib.

    Parameters
    ----------
    model : object
        Anything picklable: a trained model, fitted statistics, or a
        dict bundling both.
    filepath : str or Path
        Destination file.

    Returns
    -------
    Path
        The path that was written.
    """
    filepath = Path(filepath)
    # Create models/ (or whatever parent) on first save
    filepath.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(model, filepath)
    logger.info(f"Model saved to: {filepath}")
    return filepath


def load_model(filepath: Union[str, Path]) -> Any:
    """
    Load a joblib-serialized model bundle from disk.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Model file not found at: {filepath}")
    model = joblib.load(filepath)
    logger.info(f"Model loaded from: {filepath}")
    return model


def setup_logging(log_dir: str = "logs", log_file: str = "xsell.log", level: str = "INFO") -> Path:
    """
    Configure loguru with a colourised console sink and a rotated file sink.

    Parameters
    ----------
    log_dir : str
        Directory (relative to the project root) for log files.
    log_file : str
        Name of the log file.
    level : str
        Minimum level for the console sink. The file sink always
        captures DEBUG.

    Returns
    -------
    Path
        Location of the log file.
    """
    # Build the log file location under the project root
    log_path = get_project_root() / log_dir / log_file
    log_path.parent.mkdir(parents=True, exist_ok=True)
    # Drop the default handler so messages are not duplicated
    logger.remove()
    # Console sink
    logger.add(
        sink=sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
               "<level>{level: <8}</level> | "
               "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
               "<level>{message}</level>",
        level=level,
        colorize=True,
    )
    # File sink with rotation and retention
    logger.add(
        sink=str(log_path),
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}",
        level="DEBUG",
        rotation="10 MB",
        retention="30 days",
        compression="zip",
    )
    logger.info("Logging configured successfully.")
    return log_path


def ensure_directory(path: Union[str, Path]) -> Path:
    """Create ``path`` (and parents) if missing and return it as a Path."""
    dir_path = Path(path)
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path


def set_global_seed(seed: int) -> None:
    """Seed Python, NumPy and Torch RNGs for reproducible runs."""
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    logger.debug(f"Global seed set to {seed}")
