# ============================================================
# insurance_xsell/data/inspector.py
# Exploratory summaries of loaded records: shape, positive rate,
# missing values, response rate by category and label-split
# histograms. Also flags schema columns absent from the data.
# ============================================================

import numpy as np                                 # Histogram binning
import pandas as pd                                # Grouped aggregations
from loguru import logger                          # Structured logging
from typing import Any, Dict, List, Mapping, Sequence, Tuple  # Type hints

from insurance_xsell.features.schema import FeatureSchema  # Expected columns


def _category_key(value) -> str:
    """Stable text key for a category cell (1.0 -> "1", None -> "None")."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class DataInspector:
    """
    Read-only exploration of parsed records.

    Every method accepts an empty record list and answers with zeros or
    empty containers instead of raising.
    """

    def __init__(self, config: dict, schema: FeatureSchema = None):
        """
        Initialize the inspector with the expected schema.

        Parameters
        ----------
        config : dict
            Project configuration dictionary from config.yaml.
        schema : FeatureSchema, optional
            Explicit schema; built from ``config`` when omitted.
        """
        self.config = config
        self.schema = schema or FeatureSchema.from_config(config)
        self.target = self.schema.target
        # Problems found by check_schema, newest last
        self.issues: List[str] = []
        logger.info("DataInspector initialized with expected schema")

    @staticmethod
    def _frame(records: Sequence[Mapping]) -> pd.DataFrame:
        return pd.DataFrame.from_records(list(records))

    def shape(self, records: Sequence[Mapping]) -> Tuple[int, int]:
        """(rows, columns) of the record set."""
        if not records:
            return 0, 0
        return len(records), len(records[0])

    def positive_rate(self, records: Sequence[Mapping]) -> float:
        """Percent of records whose target equals 1."""
        if not records:
            return 0.0
        positives = sum(1 for record in records if record.get(self.target) == 1)
        return 100.0 * positives / len(records)

    def missing_report(self, records: Sequence[Mapping]) -> Dict[str, float]:
        """
        Percent of null cells per column, in header order.

        Returns
        -------
        dict
            Column name -> percent missing (0-100).
        """
        if not records:
            return {}
        df = self._frame(records)
        # isna covers None and NaN alike
        report = (df.isna().mean() * 100.0).round(4).to_dict()
        for column, pct in report.items():
            if pct > 0:
                logger.info(f"Column '{column}' has {pct:.2f}% missing values")
        return report

    def response_rate_by(self, records: Sequence[Mapping], column: str) -> Dict[str, float]:
        """
        Percent of positive targets within each value of ``column``.

        Parameters
        ----------
        records : sequence of mapping
            Parsed records.
        column : str
            Grouping column, e.g. ``Vehicle_Damage``.

        Returns
        -------
        dict
            Category key -> response rate (0-100), in first-seen order.
        """
        if not records:
            return {}
        df = pd.DataFrame({
            "key": [_category_key(record.get(column)) for record in records],
            "positive": [record.get(self.target) == 1 for record in records],
        })
        rates = df.groupby("key", sort=False)["positive"].mean() * 100.0
        return {key: float(rate) for key, rate in rates.items()}

    def histogram_by_label(
        self,
        records: Sequence[Mapping],
        column: str,
        bins: int = 10,
    ) -> Dict[str, List[float]]:
        """
        Equal-width histogram of ``column`` split by target label.

        Returns
        -------
        dict
            ``edges`` (left edge of each bin), ``positive`` and
            ``negative`` counts per bin. Empty lists when the column has
            no numeric values.
        """
        pairs = [
            (float(record.get(column)), record.get(self.target) == 1)
            for record in records
            if isinstance(record.get(column), (int, float))
            and not isinstance(record.get(column), bool)
            and np.isfinite(record.get(column))
        ]
        if not pairs or bins <= 0:
            return {"edges": [], "positive": [], "negative": []}

        values = np.asarray([value for value, _ in pairs])
        is_positive = np.asarray([flag for _, flag in pairs])
        low, high = float(values.min()), float(values.max())
        step = (high - low) / bins
        edges = [low + i * step for i in range(bins)]

        if step == 0:
            # Constant column: everything lands in the first bin
            index = np.zeros(len(values), dtype=int)
        else:
            index = np.clip(np.floor((values - low) / step).astype(int), 0, bins - 1)

        positive = np.bincount(index[is_positive], minlength=bins)
        negative = np.bincount(index[~is_positive], minlength=bins)
        return {
            "edges": edges,
            "positive": positive.astype(int).tolist(),
            "negative": negative.astype(int).tolist(),
        }

    def check_schema(self, records: Sequence[Mapping]) -> bool:
        """
        Check that every column the encoder reads is present.

        Missing columns are logged as warnings and recorded in ``issues``;
        the encoder still runs (missing numerics impute to the median).
        """
        if not records:
            issue = "No records loaded"
            self.issues.append(issue)
            logger.warning(issue)
            return False
        actual = set(records[0].keys())
        missing = [column for column in self.schema.expected_columns if column not in actual]
        if missing:
            issue = f"Missing columns: {missing}"
            self.issues.append(issue)
            logger.warning(issue)
        return not missing

    def summarize(self, records: Sequence[Mapping], histogram_bins: int = 10) -> Dict[str, Any]:
        """
        Run every summary and return them in one dictionary.

        Mirrors the exploration step: shape, positive rate, missing
        values, response rate for the key categorical drivers and
        label-split histograms for age and premium.
        """
        rows, columns = self.shape(records)
        summary = {
            "rows": rows,
            "columns": columns,
            "positive_rate": round(self.positive_rate(records), 4),
            "missing": self.missing_report(records),
            "schema_ok": self.check_schema(records),
            "response_rate_by": {
                column: self.response_rate_by(records, column)
                for column in (self.schema.damage_column, self.schema.insured_column, "Gender")
            },
            "histograms": {
                self.schema.age_column: self.histogram_by_label(records, self.schema.age_column, histogram_bins),
                self.schema.premium_column: self.histogram_by_label(
                    records, self.schema.premium_column, histogram_bins + 2
                ),
            },
        }
        logger.info(
            f"Inspection: {rows} rows x {columns} cols, positive rate {summary['positive_rate']:.2f}%"
        )
        return summary
