# ============================================================
# insurance_xsell/data/loader.py
# Turns raw delimited text into typed records (null-aware,
# numeric coercion) and loads train/test CSV files from disk.
# ============================================================

import re                                          # Line splitting and numeric literal matching
import pandas as pd                                # DataFrame view of parsed records
from pathlib import Path                           # Object-oriented file paths
from loguru import logger                          # Structured logging
from typing import Dict, List, Optional, Tuple, Union  # Type hints

# A parsed cell: number, string, or missing
Value = Union[float, str, None]
# One parsed row keyed by header name
Record = Dict[str, Value]

# Lines end in \n or \r\n
_LINE_BREAK = re.compile(r"\r?\n")
# A complete decimal literal: sign, digits, optional fraction and exponent
_NUMERIC_LITERAL = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def parse_csv_line(line: str) -> List[str]:
    """
    Split one CSV line on commas, honouring double-quoted fields.

    A double quote toggles the in-quotes state and is itself dropped;
    commas inside quotes are kept as text. Every field is trimmed.
    Unbalanced quotes are tolerated: the rest of the line is read as
    one quoted field.

    Parameters
    ----------
    line : str
        A single line of CSV text (no line terminator).

    Returns
    -------
    list of str
        The trimmed field values.
    """
    fields = []                                    # Completed fields
    current = []                                   # Characters of the field being read
    in_quotes = False                              # Inside a quoted section?

    for char in line:
        if char == '"':
            # Toggle quote state; the quote itself is not content
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            # Field boundary
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)

    # The last field has no trailing comma
    fields.append("".join(current).strip())
    return fields


def coerce_value(text: Optional[str]) -> Value:
    """
    Convert one raw field to a typed value.

    Empty text becomes ``None``, a complete decimal literal becomes a
    ``float``, anything else is returned as the trimmed string.
    """
    if text is None:
        return None
    text = text.strip()
    if text == "":
        return None
    # fullmatch: "12abc" or "nan" stay strings
    if _NUMERIC_LITERAL.fullmatch(text):
        return float(text)
    return text


def parse_csv_text(text: str) -> List[Record]:
    """
    Parse CSV text into a list of records keyed by the header row.

    Blank lines are skipped. Rows shorter than the header are padded
    with ``None``; extra trailing fields are ignored. Empty input
    yields an empty list.

    Parameters
    ----------
    text : str
        Complete CSV document, header first.

    Returns
    -------
    list of dict
        One record per data row, every record sharing the header keys.
    """
    # Keep only lines with visible content
    lines = [line for line in _LINE_BREAK.split(text or "") if line.strip() != ""]
    if not lines:
        return []

    # First non-blank line defines the column names
    headers = parse_csv_line(lines[0])

    records = []
    for line in lines[1:]:
        values = parse_csv_line(line)
        record = {}
        for i, header in enumerate(headers):
            # Missing trailing fields read as null
            raw = values[i] if i < len(values) else ""
            record[header] = coerce_value(raw)
        records.append(record)

    return records


class DataLoader:
    """
    Loads raw health-insurance customer files into parsed records.

    File reading is the only operation here that can fail: a missing
    file raises ``FileNotFoundError``. Parsing itself never raises.
    """

    def __init__(self, config: dict):
        """
        Initialize the DataLoader with project configuration.

        Parameters
        ----------
        config : dict
            The parsed config.yaml dictionary.
        """
        self.config = config
        data_cfg = config.get("data", {})
        # Default locations for the train and test files
        self.train_path = data_cfg.get("train_path")
        self.test_path = data_cfg.get("test_path")
        # Target and identifier column names
        self.target = data_cfg.get("target_column", "Response")
        self.id_column = data_cfg.get("id_column", "id")
        # Sampling cap for very large files
        self.max_samples = data_cfg.get("max_samples", 20000)
        logger.info(f"DataLoader initialized. Train path: {self.train_path}")

    def read_text(self, filepath: Union[str, Path]) -> str:
        """Read a whole file as UTF-8 text; raises if it does not exist."""
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Data file not found: {path}")
        # utf-8-sig strips a BOM that would otherwise prefix the first header
        return path.read_text(encoding="utf-8-sig")

    def load_csv(self, filepath: Optional[Union[str, Path]] = None) -> List[Record]:
        """
        Load and parse a CSV file.

        Parameters
        ----------
        filepath : str or Path, optional
            File to read. Defaults to the configured training file.

        Returns
        -------
        list of dict
            Parsed records.
        """
        path = Path(filepath) if filepath else Path(self.train_path)
        logger.info(f"Loading data from: {path}")
        records = parse_csv_text(self.read_text(path))
        columns = len(records[0]) if records else 0
        logger.info(f"Data loaded successfully. Rows: {len(records)}, columns: {columns}")
        return records

    def load_train_test(
        self,
        train_path: Optional[Union[str, Path]] = None,
        test_path: Optional[Union[str, Path]] = None,
    ) -> Tuple[List[Record], List[Record]]:
        """
        Load the training file and, optionally, a separate test file.

        Without a test file the test set is a copy of the training
        records, so the workflow can still run predict/export.

        Returns
        -------
        tuple of (list, list)
            (train_records, test_records)
        """
        train_records = self.load_csv(train_path)
        if test_path:
            test_records = self.load_csv(test_path)
        else:
            # Shallow copies keep the training records untouched
            test_records = [dict(record) for record in train_records]
            logger.info("No test file given; scoring a copy of the training records")
        logger.info(f"Loaded! Train: {len(train_records)} rows, Test: {len(test_records)} rows")
        return train_records, test_records

    def sample_records(self, records: List[Record], max_samples: Optional[int] = None) -> List[Record]:
        """
        Stride-sample ``records`` down to at most ``max_samples`` rows.

        Keeps every ``ceil(n / max_samples)``-th record, preserving order.
        Inputs already within the cap are returned unchanged.
        """
        cap = max_samples if max_samples is not None else self.max_samples
        if cap is None or cap <= 0 or len(records) <= cap:
            return records
        # Ceiling division without floats
        step = -(-len(records) // cap)
        sampled = records[::step][:cap]
        logger.info(f"Sampled {len(sampled)} of {len(records)} records (every {step}th row)")
        return sampled

    @staticmethod
    def to_frame(records: List[Record]) -> pd.DataFrame:
        """Return the records as a DataFrame (None becomes NaN in numeric columns)."""
        return pd.DataFrame.from_records(records)
