# ============================================================
# tests/test_data.py
# Unit tests for CSV parsing, file loading, data inspection
# and dataset building (split and rebalance).
# Uses pytest for test discovery and assertion.
# ============================================================

import sys                                         # System-specific parameters
from pathlib import Path                           # Object-oriented file paths

# Add the project root to Python path for module imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest                                      # Testing framework
import numpy as np                                 # Numerical computing

from insurance_xsell.data.loader import (          # Parsing and loading
    DataLoader,
    coerce_value,
    parse_csv_line,
    parse_csv_text,
)
from insurance_xsell.data.inspector import DataInspector  # Exploration summaries
from insurance_xsell.data.dataset import (         # Matrices, split, rebalance
    DatasetBuilder,
    LabeledDataset,
    class_counts,
    split_train_validation,
    to_label,
)
from insurance_xsell.features.encoder import FeatureEncoder  # Fitting for builder tests
from insurance_xsell.utils.helpers import load_config  # Config loader


HEADER = (
    "id,Gender,Age,Driving_License,Region_Code,Previously_Insured,"
    "Vehicle_Age,Vehicle_Damage,Annual_Premium,Policy_Sales_Channel,Vintage,Response"
)


# ============================================================
# Fixtures: Reusable test data
# ============================================================

@pytest.fixture
def config():
    """Load and return the project configuration."""
    return load_config()


@pytest.fixture
def sample_csv_text():
    """A small training file: 10 rows, 3 positives, one missing Age."""
    rows = [
        "1,Male,44,1,28,0,> 2 Years,Yes,40454,26,217,1",
        "2,Male,76,1,3,0,1-2 Year,No,33536,26,183,0",
        "3,Male,47,1,28,0,> 2 Years,Yes,38294,26,27,1",
        "4,Male,21,1,11,1,< 1 Year,No,28619,152,203,0",
        "5,Female,29,1,41,1,< 1 Year,No,27496,152,39,0",
        "6,Female,24,1,33,0,< 1 Year,Yes,2630,160,176,0",
        "7,Male,,1,11,0,< 1 Year,Yes,23367,152,249,0",
        "8,Female,56,1,28,0,1-2 Year,Yes,32031,26,72,1",
        "9,Female,24,1,3,1,< 1 Year,No,27619,152,28,0",
        "10,Female,32,1,6,1,< 1 Year,No,28771,152,80,0",
    ]
    return "\n".join([HEADER] + rows) + "\n"


@pytest.fixture
def sample_records(sample_csv_text):
    """Parsed records from the sample file."""
    return parse_csv_text(sample_csv_text)


# ============================================================
# Tests for the CSV parser
# ============================================================

class TestParser:
    """Test suite for parse_csv_line / coerce_value / parse_csv_text."""

    def test_quoted_comma_is_not_a_delimiter(self):
        """A comma inside double quotes stays inside the field."""
        assert parse_csv_line('a,"b,c",d') == ["a", "b,c", "d"]

    def test_fields_are_trimmed(self):
        """Surrounding whitespace is removed from every field."""
        assert parse_csv_line(" a , b ,c ") == ["a", "b", "c"]

    def test_unbalanced_quote_is_tolerated(self):
        """An unclosed quote swallows the rest of the line without raising."""
        assert parse_csv_line('a,"b,c') == ["a", "b,c"]

    def test_coerce_value(self):
        """Empty -> None, numeric literal -> float, anything else -> string."""
        assert coerce_value("") is None
        assert coerce_value("   ") is None
        assert coerce_value("42") == 42.0
        assert coerce_value("-3.5e2") == -350.0
        assert coerce_value("< 1 Year") == "< 1 Year"
        assert coerce_value("12abc") == "12abc"

    def test_parse_text_types(self):
        """Header keys every record; values are typed per cell."""
        records = parse_csv_text("Age,Gender,Region\n25,Male,\n")
        assert records == [{"Age": 25.0, "Gender": "Male", "Region": None}]

    def test_short_rows_are_padded(self):
        """Missing trailing fields read as None."""
        records = parse_csv_text("a,b,c\n1\n")
        assert records == [{"a": 1.0, "b": None, "c": None}]

    def test_blank_lines_and_crlf(self):
        """CRLF endings and blank lines do not create records."""
        records = parse_csv_text("a,b\r\n1,2\r\n\r\n3,4\r\n")
        assert [r["a"] for r in records] == [1.0, 3.0]

    def test_empty_text(self):
        """Empty input yields no records."""
        assert parse_csv_text("") == []
        assert parse_csv_text("\n\n") == []

    def test_sample_file(self, sample_records):
        """The sample file parses with a missing Age on row 7."""
        assert len(sample_records) == 10
        assert sample_records[6]["Age"] is None
        assert sample_records[0]["Vehicle_Age"] == "> 2 Years"


# ============================================================
# Tests for DataLoader
# ============================================================

class TestDataLoader:
    """Test suite for the DataLoader class."""

    def test_load_csv(self, config, sample_csv_text, tmp_path):
        """Loading a file gives the same records as parsing its text."""
        path = tmp_path / "train.csv"
        path.write_text(sample_csv_text, encoding="utf-8")
        records = DataLoader(config).load_csv(path)
        assert records == parse_csv_text(sample_csv_text)

    def test_missing_file_raises(self, config, tmp_path):
        """A missing file is the one loading error that surfaces."""
        with pytest.raises(FileNotFoundError):
            DataLoader(config).load_csv(tmp_path / "absent.csv")

    def test_test_set_falls_back_to_train_copy(self, config, sample_csv_text, tmp_path):
        """Without a test file the test records copy the training records."""
        path = tmp_path / "train.csv"
        path.write_text(sample_csv_text, encoding="utf-8")
        train, test = DataLoader(config).load_train_test(path)
        assert test == train
        # Copies, not the same dict objects
        test[0]["Age"] = -1
        assert train[0]["Age"] == 44.0

    def test_sample_records_stride(self, config):
        """Stride sampling keeps every ceil(n/cap)-th record, in order."""
        records = [{"i": float(i)} for i in range(10)]
        sampled = DataLoader(config).sample_records(records, max_samples=4)
        assert [r["i"] for r in sampled] == [0.0, 3.0, 6.0, 9.0]

    def test_sample_records_within_cap(self, config, sample_records):
        """Inputs already under the cap come back unchanged."""
        assert DataLoader(config).sample_records(sample_records, max_samples=100) is sample_records


# ============================================================
# Tests for DataInspector
# ============================================================

class TestDataInspector:
    """Test suite for the DataInspector class."""

    def test_shape_and_positive_rate(self, config, sample_records):
        """Shape counts rows/columns; positive rate is a percentage."""
        inspector = DataInspector(config)
        assert inspector.shape(sample_records) == (10, 12)
        assert inspector.positive_rate(sample_records) == pytest.approx(30.0)

    def test_missing_report(self, config, sample_records):
        """One missing Age out of ten rows is 10%."""
        report = DataInspector(config).missing_report(sample_records)
        assert report["Age"] == pytest.approx(10.0)
        assert report["Gender"] == 0.0

    def test_response_rate_by_damage(self, config, sample_records):
        """Response rate is computed within each category."""
        rates = DataInspector(config).response_rate_by(sample_records, "Vehicle_Damage")
        assert rates["Yes"] == pytest.approx(60.0)
        assert rates["No"] == pytest.approx(0.0)

    def test_response_rate_numeric_keys(self, config, sample_records):
        """Float category cells are keyed without a trailing .0."""
        rates = DataInspector(config).response_rate_by(sample_records, "Previously_Insured")
        assert set(rates) == {"0", "1"}

    def test_histogram_by_label(self, config, sample_records):
        """Bin counts add up to the rows with a numeric value."""
        hist = DataInspector(config).histogram_by_label(sample_records, "Age", bins=5)
        assert len(hist["edges"]) == 5
        assert sum(hist["positive"]) == 3
        assert sum(hist["negative"]) == 6

    def test_constant_column_histogram(self, config, sample_records):
        """A constant column lands entirely in the first bin."""
        hist = DataInspector(config).histogram_by_label(sample_records, "Driving_License", bins=4)
        assert hist["negative"][0] + hist["positive"][0] == 10

    def test_check_schema_reports_missing(self, config, sample_records):
        """Dropping an expected column is flagged, not raised."""
        inspector = DataInspector(config)
        assert inspector.check_schema(sample_records) is True
        trimmed = [{k: v for k, v in r.items() if k != "Vintage"} for r in sample_records]
        assert inspector.check_schema(trimmed) is False
        assert "Vintage" in inspector.issues[-1]

    def test_empty_input(self, config):
        """Every summary answers empty input with zeros."""
        inspector = DataInspector(config)
        assert inspector.shape([]) == (0, 0)
        assert inspector.positive_rate([]) == 0.0
        assert inspector.missing_report([]) == {}
        assert inspector.response_rate_by([], "Gender") == {}
        assert inspector.histogram_by_label([], "Age")["edges"] == []

    def test_summarize(self, config, sample_records):
        """The summary bundles every exploration result."""
        summary = DataInspector(config).summarize(sample_records)
        assert summary["rows"] == 10
        assert summary["schema_ok"] is True
        assert "Vehicle_Damage" in summary["response_rate_by"]
        assert "Age" in summary["histograms"]


# ============================================================
# Tests for DatasetBuilder
# ============================================================

class TestDatasetBuilder:
    """Test suite for dataset building, splitting and rebalancing."""

    def test_to_label(self):
        """Only a target equal to 1 is positive."""
        assert to_label(1.0) == 1
        assert to_label(0.0) == 0
        assert to_label(None) == 0
        assert to_label("Yes") == 0

    def test_ordered_split(self):
        """First floor(n*0.8) rows train, the rest validate, no shuffling."""
        features = np.arange(10, dtype=np.float32).reshape(10, 1)
        labels = np.arange(10, dtype=np.float32)
        train, validation = split_train_validation(features, labels, 0.8)
        assert len(train) == 8
        assert len(validation) == 2
        assert train.labels.tolist() == list(range(8))
        assert validation.features[:, 0].tolist() == [8.0, 9.0]

    def test_split_floor(self):
        """Seven rows at 0.8 gives five training rows."""
        train, validation = split_train_validation(np.zeros((7, 2)), np.zeros(7), 0.8)
        assert (len(train), len(validation)) == (5, 2)

    def test_build_labeled(self, config, sample_records):
        """Labels follow record order; matrix width matches the schema."""
        encoder = FeatureEncoder(config)
        builder = DatasetBuilder(config, encoder=encoder)
        stats = encoder.fit(sample_records)
        dataset = builder.build_labeled(sample_records, stats)
        assert dataset.shape == (10, encoder.schema.width)
        assert dataset.labels.tolist() == [1, 0, 1, 0, 0, 0, 0, 1, 0, 0]

    def test_build_inference_keeps_ids(self, config, sample_records):
        """Inference datasets carry ids in record order."""
        encoder = FeatureEncoder(config)
        stats = encoder.fit(sample_records)
        dataset = DatasetBuilder(config, encoder=encoder).build_inference(sample_records, stats)
        assert dataset.ids == [float(i) for i in range(1, 11)]

    def test_oversample_balances(self, config):
        """Oversampling keeps every row and tops up the minority class."""
        builder = DatasetBuilder(config)
        features = np.arange(20, dtype=np.float32).reshape(10, 2)
        labels = np.array([1, 0, 0, 0, 0, 0, 0, 0, 1, 0], dtype=np.float32)
        result = builder.rebalance(LabeledDataset(features, labels), "oversample", np.random.default_rng(0))
        assert class_counts(result.labels) == (8, 8)
        # Originals are all still present
        original_rows = {tuple(row) for row in features}
        assert original_rows <= {tuple(row) for row in result.features}

    def test_synthetic_balances_and_keeps_binary(self, config):
        """Synthetic rows level the classes and binary columns stay 0/1."""
        builder = DatasetBuilder(config)
        rng = np.random.default_rng(1)
        features = np.column_stack([
            rng.normal(size=12).astype(np.float32),
            rng.integers(0, 2, size=12).astype(np.float32),
        ])
        labels = np.array([1, 1] + [0] * 10, dtype=np.float32)
        result = builder.rebalance(
            LabeledDataset(features, labels), "synthetic", rng, binary_mask=[False, True]
        )
        assert class_counts(result.labels) == (10, 10)
        assert set(np.unique(result.features[:, 1])) <= {0.0, 1.0}

    def test_rebalanced_rows_are_shuffled(self, config):
        """Minority copies are spread through the output, not appended as one block."""
        builder = DatasetBuilder(config)
        features = np.arange(200, dtype=np.float32).reshape(200, 1)
        labels = np.zeros(200, dtype=np.float32)
        labels[::20] = 1
        result = builder.rebalance(LabeledDataset(features, labels), "oversample", np.random.default_rng(5))
        assert class_counts(result.labels) == (190, 190)
        # Unshuffled, the first 190 rows would be the originals with only 10 positives
        assert int(np.sum(result.labels[:190] == 1)) > 50
        assert not np.all(result.labels[-180:] == 1)

    def test_synthetic_jitter_is_bounded(self, config):
        """Each synthetic continuous value lies within +/- jitter of a minority source value."""
        builder = DatasetBuilder(config)
        features = np.column_stack([
            np.array([100.0, 200.0] + [-float(i + 1) for i in range(10)], dtype=np.float32),
            np.zeros(12, dtype=np.float32),
        ])
        labels = np.array([1, 1] + [0] * 10, dtype=np.float32)
        result = builder.rebalance(
            LabeledDataset(features, labels), "synthetic", np.random.default_rng(2), binary_mask=[False, True]
        )
        positives = result.features[result.labels == 1, 0]
        assert len(positives) == 10
        for value in positives:
            assert any(
                abs(value - source) <= builder.jitter * source * (1 + 1e-5)
                for source in (100.0, 200.0)
            )
        # Noise was actually applied to the copies
        assert len(set(positives.tolist()) - {100.0, 200.0}) > 0

    def test_rebalance_none_and_single_class(self, config):
        """'none' and single-class inputs come back unchanged."""
        builder = DatasetBuilder(config)
        dataset = LabeledDataset(np.zeros((4, 2), dtype=np.float32), np.zeros(4, dtype=np.float32))
        assert builder.rebalance(dataset, "none") is dataset
        assert builder.rebalance(dataset, "oversample") is dataset

    def test_unknown_strategy(self, config):
        """An unknown strategy name is rejected."""
        dataset = LabeledDataset(np.zeros((2, 1)), np.array([0.0, 1.0]))
        with pytest.raises(ValueError):
            DatasetBuilder(config).rebalance(dataset, "smote")
