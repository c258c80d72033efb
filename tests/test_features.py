# ============================================================
# tests/test_features.py
# Unit tests for column statistics, the feature schema and
# the record encoder. Uses pytest for testing.
# ============================================================

import sys                                         # System-specific parameters
from pathlib import Path                           # Object-oriented file paths

# Add the project root to Python path for module imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio                                     # Running the async encoder
import copy                                        # Config variants
import pytest                                      # Testing framework
import numpy as np                                 # Numerical computing

from insurance_xsell.features.statistics import (  # Column statistics
    STD_FLOOR,
    clean_numeric,
    fit_column,
    floored_std,
    mean,
    median,
    standard_deviation,
)
from insurance_xsell.features.schema import FeatureSchema  # Vector layout
from insurance_xsell.features.encoder import (     # Record encoding
    FeatureEncoder,
    one_hot,
    premium_segment,
)
from insurance_xsell.utils.helpers import load_config  # Config loader


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def config():
    """Load and return the project configuration."""
    return load_config()


@pytest.fixture
def encoder(config):
    """Encoder built from the project configuration."""
    return FeatureEncoder(config)


@pytest.fixture
def training_records():
    """Four complete training records with ages 20, 30, 40, 50."""
    base = {
        "Gender": "Male",
        "Driving_License": 1.0,
        "Region_Code": 28.0,
        "Previously_Insured": 0.0,
        "Vehicle_Age": "1-2 Year",
        "Vehicle_Damage": "No",
        "Annual_Premium": 30000.0,
        "Policy_Sales_Channel": 26.0,
        "Vintage": 100.0,
        "Response": 0.0,
    }
    return [{**base, "id": float(i), "Age": age} for i, age in enumerate([20.0, 30.0, 40.0, 50.0], start=1)]


@pytest.fixture
def stats(encoder, training_records):
    """Statistics fit on the training records."""
    return encoder.fit(training_records)


# ============================================================
# Tests for column statistics
# ============================================================

class TestStatistics:
    """Test suite for median/mean/std and the std floor."""

    def test_median_odd_and_even(self):
        """Odd counts take the middle value, even counts average the two central ones."""
        assert median([3.0, 1.0, 2.0]) == 2.0
        assert median([20.0, 30.0, 40.0, 50.0]) == 35.0

    def test_population_std(self):
        """Standard deviation divides by N, not N-1."""
        assert standard_deviation([20.0, 30.0, 40.0, 50.0]) == pytest.approx(np.sqrt(125.0))

    def test_single_value_has_zero_std(self):
        """One observation has no spread."""
        assert standard_deviation([42.0]) == 0.0

    def test_median_ignores_order(self):
        """Shuffling the input does not change the median."""
        values = [7.0, 1.0, 9.0, 3.0, 5.0, 2.0]
        rng = np.random.default_rng(0)
        assert median(list(rng.permutation(values))) == median(values) == 4.0

    def test_empty_inputs_are_zero(self):
        """Empty columns give zeros instead of raising."""
        assert median([]) == 0.0
        assert mean([]) == 0.0
        assert standard_deviation([]) == 0.0

    def test_clean_numeric(self):
        """None, strings, booleans and non-finite numbers are dropped."""
        assert clean_numeric([1.0, None, "x", True, float("nan"), float("inf"), 2]) == [1.0, 2.0]

    def test_std_floor(self):
        """Zero, small and non-finite deviations are floored at 1."""
        assert floored_std(0.0) == STD_FLOOR
        assert floored_std(0.3) == STD_FLOOR
        assert floored_std(float("nan")) == STD_FLOOR
        assert floored_std(4.0) == 4.0

    def test_fit_column_skips_missing(self):
        """Missing values do not move the fitted statistics."""
        stat = fit_column([20.0, None, 30.0, 40.0, 50.0])
        assert stat.median == 35.0
        assert stat.mean == 35.0

    def test_constant_column(self):
        """A constant column has std 0 and scale 1."""
        stat = fit_column([5.0, 5.0, 5.0])
        assert stat.std == 0.0
        assert stat.scale == 1.0


# ============================================================
# Tests for FeatureSchema
# ============================================================

class TestFeatureSchema:
    """Test suite for the vector layout."""

    def test_width(self, config):
        """5 numerics + 2 binaries + 7 one-hot + 2 flags + 3 premium segments."""
        schema = FeatureSchema.from_config(config)
        assert schema.width == 19
        assert len(schema.feature_names) == 19

    def test_layout_order(self, config):
        """Numerics first, then binaries, then one-hot blocks in domain order."""
        names = FeatureSchema.from_config(config).feature_names
        assert names[:5] == ["Age", "Annual_Premium", "Region_Code", "Policy_Sales_Channel", "Vintage"]
        assert names[5:7] == ["Driving_License", "Previously_Insured"]
        assert names[7:9] == ["Gender=Male", "Gender=Female"]
        assert names[-3:] == ["premium_lt_20000", "premium_20000_50000", "premium_ge_50000"]

    def test_block_slice(self, config):
        """Vehicle_Age occupies the three positions after Gender."""
        schema = FeatureSchema.from_config(config)
        assert schema.block_slice("Vehicle_Age") == slice(9, 12)
        with pytest.raises(KeyError):
            schema.block_slice("Age")

    def test_binary_mask(self, config):
        """Only the standardized numerics are non-binary."""
        mask = FeatureSchema.from_config(config).binary_mask
        assert mask[:5] == [False] * 5
        assert all(mask[5:])

    def test_defaults_without_config(self):
        """An empty config falls back to the insurance defaults."""
        assert FeatureSchema.from_config({}).width == 19


# ============================================================
# Tests for FeatureEncoder
# ============================================================

class TestFeatureEncoder:
    """Test suite for record encoding."""

    def test_fit_on_training_ages(self, stats):
        """Ages 20..50 fit to median 35 and mean 35."""
        age = stats.columns["Age"]
        assert age.median == 35.0
        assert age.mean == 35.0

    def test_standardize_at_mean_is_zero(self, encoder, stats, training_records):
        """A record aged 35 standardizes Age to exactly 0."""
        vector = encoder.encode({**training_records[0], "Age": 35.0}, stats)
        assert vector[0] == 0.0

    def test_missing_age_imputes_median(self, encoder, stats, training_records):
        """A missing Age takes the median, which here also standardizes to 0."""
        vector = encoder.encode({**training_records[0], "Age": None}, stats)
        assert vector[0] == 0.0
        assert not np.isnan(vector).any()

    def test_huge_value_degrades_to_zero(self, encoder, stats, training_records):
        """A value whose standardized form overflows float32 encodes as 0, not inf."""
        vector = encoder.encode({**training_records[0], "Age": 1e40}, stats)
        assert np.isfinite(vector).all()
        assert vector[0] == 0.0

    def test_zero_variance_column(self, encoder, stats, training_records):
        """Region_Code is constant in training, so it divides by 1."""
        vector = encoder.encode({**training_records[0], "Region_Code": 30.0}, stats)
        assert vector[2] == pytest.approx(2.0)

    def test_vehicle_age_one_hot(self, encoder, stats, training_records):
        """'1-2 Year' sets only the middle position of its block."""
        vector = encoder.encode(training_records[0], stats)
        block = vector[encoder.schema.block_slice("Vehicle_Age")]
        assert block.tolist() == [0.0, 1.0, 0.0]

    def test_unknown_category_is_all_zero(self, encoder, stats, training_records):
        """A value outside the domain encodes as zeros and decodes as None."""
        vector = encoder.encode({**training_records[0], "Vehicle_Age": "3+ Years"}, stats)
        block = vector[encoder.schema.block_slice("Vehicle_Age")]
        assert block.tolist() == [0.0, 0.0, 0.0]
        assert encoder.decode_category(vector, "Vehicle_Age") is None

    def test_decode_round_trip(self, encoder, stats, training_records):
        """Every domain value decodes back to itself."""
        for value in encoder.schema.domains["Vehicle_Age"]:
            vector = encoder.encode({**training_records[0], "Vehicle_Age": value}, stats)
            assert encoder.decode_category(vector, "Vehicle_Age") == value

    def test_fixed_width(self, encoder, stats, training_records):
        """Complete, sparse and empty records all encode to the same width."""
        widths = {
            encoder.encode(training_records[0], stats).shape[0],
            encoder.encode({"Age": 22.0}, stats).shape[0],
            encoder.encode({}, stats).shape[0],
        }
        assert widths == {19}

    def test_engineered_flags(self, encoder, stats, training_records):
        """Young damaged drivers and damaged insured customers are flagged."""
        names = encoder.feature_names
        young = names.index("young_risky_driver")
        lapsed = names.index("lapsed_customer")

        vector = encoder.encode({**training_records[0], "Age": 25.0, "Vehicle_Damage": "Yes"}, stats)
        assert vector[young] == 1.0
        assert vector[lapsed] == 0.0

        vector = encoder.encode(
            {**training_records[0], "Age": 45.0, "Vehicle_Damage": "Yes", "Previously_Insured": 1.0}, stats
        )
        assert vector[young] == 0.0
        assert vector[lapsed] == 1.0

    def test_premium_segments(self):
        """Bucket edges are inclusive on the left."""
        edges = (20000.0, 50000.0)
        assert premium_segment(15000.0, edges) == [1.0, 0.0, 0.0]
        assert premium_segment(20000.0, edges) == [0.0, 1.0, 0.0]
        assert premium_segment(50000.0, edges) == [0.0, 0.0, 1.0]

    def test_one_hot_non_string(self):
        """Numbers and None never match a text domain."""
        assert one_hot(1.0, ("Yes", "No")) == [0.0, 0.0]
        assert one_hot(None, ("Yes", "No")) == [0.0, 0.0]

    def test_encode_many_progress(self, config, training_records):
        """Progress is reported once per chunk and at the end."""
        small_chunks = copy.deepcopy(config)
        small_chunks["preprocessing"]["chunk_size"] = 3
        encoder = FeatureEncoder(small_chunks)
        stats = encoder.fit(training_records)
        records = training_records * 3
        calls = []
        matrix = encoder.encode_many(records, stats, progress=lambda done, total: calls.append((done, total)))
        assert matrix.shape == (12, 19)
        assert calls == [(3, 12), (6, 12), (9, 12), (12, 12)]

    def test_encode_many_async_matches_sync(self, encoder, stats, training_records):
        """The async encoder produces the same matrix as the sync one."""
        expected = encoder.encode_many(training_records, stats)
        result = asyncio.run(encoder.encode_many_async(training_records, stats))
        np.testing.assert_array_equal(result, expected)

    def test_statistics_come_from_training_only(self, encoder, training_records):
        """Encoding other records never changes the fitted statistics."""
        stats = encoder.fit(training_records)
        before = dict(stats.columns)
        encoder.encode_many([{"Age": 90.0}, {"Age": 10.0}], stats)
        assert dict(stats.columns) == before
