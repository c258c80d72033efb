# ============================================================
# insurance_xsell/features/schema.py
# Design-time feature schema: numeric, binary and categorical
# columns, category domains, and the canonical vector layout
# shared by training, scoring and single-record prediction.
# ============================================================

from dataclasses import dataclass, field           # Immutable schema container
from typing import Dict, List, Optional, Tuple     # Type hints

DEFAULT_NUMERIC: Tuple[str, ...] = (
    "Age",
    "Annual_Premium",
    "Region_Code",
    "Policy_Sales_Channel",
    "Vintage",
)

DEFAULT_BINARY: Tuple[str, ...] = (
    "Driving_License",
    "Previously_Insured",
)

DEFAULT_DOMAINS: Dict[str, Tuple[str, ...]] = {
    "Gender": ("Male", "Female"),
    "Vehicle_Age": ("< 1 Year", "1-2 Year", "> 2 Years"),
    "Vehicle_Damage": ("Yes", "No"),
}

# Engineered 0/1 flags, in vector order
ENGINEERED_FLAGS: Tuple[str, ...] = ("young_risky_driver", "lapsed_customer")


@dataclass(frozen=True)
class FeatureSchema:
    """
    Fixed description of how a record becomes a feature vector.

    The vector layout is::

        [standardized numerics] ++ [binaries] ++ [one-hot blocks]
        ++ [engineered flags] ++ [premium-segment one-hot]

    Domains are defined here, never learned from data, so the width
    only changes when the schema itself changes.
    """

    numeric_columns: Tuple[str, ...] = DEFAULT_NUMERIC
    binary_columns: Tuple[str, ...] = DEFAULT_BINARY
    categorical_domains: Tuple[Tuple[str, Tuple[str, ...]], ...] = tuple(DEFAULT_DOMAINS.items())
    young_driver_age: float = 30.0
    premium_edges: Tuple[float, ...] = (20000.0, 50000.0)
    target: str = "Response"
    id_column: str = "id"
    # Column names the engineered features read from
    age_column: str = "Age"
    premium_column: str = "Annual_Premium"
    damage_column: str = "Vehicle_Damage"
    insured_column: str = "Previously_Insured"
    _names: Tuple[str, ...] = field(init=False, repr=False, compare=False, default=())

    def __post_init__(self):
        # Cache the names once; the dataclass is frozen so bypass __setattr__
        object.__setattr__(self, "_names", tuple(self._build_feature_names()))

    @classmethod
    def from_config(cls, config: Optional[dict] = None) -> "FeatureSchema":
        """
        Build a schema from the ``features`` section of config.yaml.

        Missing keys fall back to the health-insurance defaults.
        """
        config = config or {}
        features = config.get("features", {})
        data = config.get("data", {})
        engineered = features.get("engineered", {})
        domains = features.get("categorical_domains") or DEFAULT_DOMAINS
        return cls(
            numeric_columns=tuple(features.get("numerical_columns", DEFAULT_NUMERIC)),
            binary_columns=tuple(features.get("binary_columns", DEFAULT_BINARY)),
            categorical_domains=tuple((col, tuple(values)) for col, values in domains.items()),
            young_driver_age=float(engineered.get("young_driver_age", 30)),
            premium_edges=tuple(float(e) for e in engineered.get("premium_edges", (20000, 50000))),
            target=features.get("target", data.get("target_column", "Response")),
            id_column=data.get("id_column", "id"),
        )

    @property
    def domains(self) -> Dict[str, Tuple[str, ...]]:
        """Categorical domains as an ordered dict."""
        return dict(self.categorical_domains)

    @property
    def premium_segments(self) -> List[str]:
        """Labels for the premium buckets, lowest first."""
        edges = [f"{edge:g}" for edge in self.premium_edges]
        if not edges:
            return ["premium_all"]
        labels = [f"premium_lt_{edges[0]}"]
        for low, high in zip(edges, edges[1:]):
            labels.append(f"premium_{low}_{high}")
        labels.append(f"premium_ge_{edges[-1]}")
        return labels

    def _build_feature_names(self) -> List[str]:
        names = list(self.numeric_columns)
        names.extend(self.binary_columns)
        for column, domain in self.categorical_domains:
            names.extend(f"{column}={value}" for value in domain)
        names.extend(ENGINEERED_FLAGS)
        names.extend(self.premium_segments)
        return names

    @property
    def feature_names(self) -> List[str]:
        """Names of every vector position, in vector order."""
        return list(self._names)

    @property
    def width(self) -> int:
        """Length of every feature vector produced under this schema."""
        return len(self._names)

    def block_slice(self, column: str) -> slice:
        """Positions of ``column``'s one-hot block inside the vector."""
        start = len(self.numeric_columns) + len(self.binary_columns)
        for name, domain in self.categorical_domains:
            if name == column:
                return slice(start, start + len(domain))
            start += len(domain)
        raise KeyError(f"'{column}' is not a categorical column of this schema")

    @property
    def binary_mask(self) -> List[bool]:
        """True for every position that only ever holds 0 or 1."""
        n_numeric = len(self.numeric_columns)
        return [False] * n_numeric + [True] * (self.width - n_numeric)

    @property
    def expected_columns(self) -> List[str]:
        """Raw input columns the encoder reads."""
        return (
            list(self.numeric_columns)
            + list(self.binary_columns)
            + [column for column, _ in self.categorical_domains]
        )
