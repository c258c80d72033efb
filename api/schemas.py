# ============================================================
# api/schemas.py
# Pydantic models for API request/response validation.
# Defines the exact shape of data flowing in and out of the API.
# ============================================================

from pydantic import BaseModel, Field              # Pydantic for data validation
from typing import List, Dict, Any, Optional, Union  # Type hints


class PolicyholderRecord(BaseModel):
    """
    Input schema for a single health-insurance policyholder.

    Numeric fields may be omitted: the encoder imputes them with the
    training median. Categorical values outside the known domain are
    accepted and encode to an all-zero block.
    """
    id: Optional[Union[int, str]] = Field(
        None,
        description="Customer identifier, echoed back in the response",
        examples=[381110],
    )

    # --- Demographics ---
    Gender: Optional[str] = Field(None, description="'Male' or 'Female'", examples=["Male"])
    Age: Optional[float] = Field(None, ge=0, description="Age in years", examples=[25])
    Driving_License: Optional[int] = Field(None, ge=0, le=1, description="Holds a licence: 0 or 1", examples=[1])
    Region_Code: Optional[float] = Field(None, description="Region code", examples=[11.0])

    # --- Vehicle and insurance history ---
    Previously_Insured: Optional[int] = Field(
        None, ge=0, le=1, description="Already has vehicle insurance: 0 or 1", examples=[0],
    )
    Vehicle_Age: Optional[str] = Field(
        None, description="'< 1 Year', '1-2 Year' or '> 2 Years'", examples=["< 1 Year"],
    )
    Vehicle_Damage: Optional[str] = Field(
        None, description="Vehicle damaged in the past: 'Yes' or 'No'", examples=["Yes"],
    )

    # --- Commercial ---
    Annual_Premium: Optional[float] = Field(None, ge=0, description="Annual premium", examples=[35786.0])
    Policy_Sales_Channel: Optional[float] = Field(None, description="Outreach channel code", examples=[152.0])
    Vintage: Optional[float] = Field(None, ge=0, description="Days associated with the company", examples=[53])


class PredictionResponse(BaseModel):
    """Output schema for a single cross-sell prediction."""
    id: Optional[Union[int, str]] = Field(None, description="Customer identifier from the request")
    probability: float = Field(..., ge=0, le=1, description="Probability the customer is interested")
    interested: bool = Field(..., description="probability >= threshold_used")
    threshold_used: float = Field(..., description="Decision threshold applied")


class BatchPredictionRequest(BaseModel):
    """Input schema for batch predictions."""
    records: List[PolicyholderRecord] = Field(
        ...,
        min_length=1,
        max_length=10000,
        description="Policyholder records to score",
    )


class BatchPredictionResponse(BaseModel):
    """Output schema for batch predictions."""
    predictions: List[PredictionResponse] = Field(..., description="One prediction per record, in order")
    summary: Dict[str, Any] = Field(..., description="Total, predicted-positive count and rate")


class HealthResponse(BaseModel):
    """Output schema for the health check endpoint."""
    status: str = Field(..., description="API status")
    model_loaded: bool = Field(..., description="Whether a model bundle is loaded")
    version: str = Field(..., description="API version")


class ModelInfoResponse(BaseModel):
    """Output schema describing the loaded model bundle."""
    algorithm: str = Field(..., description="feedforward or logistic_regression")
    input_dim: int = Field(..., description="Feature vector width the model expects")
    feature_names: List[str] = Field(..., description="Feature vector layout, in order")
    threshold: float = Field(..., description="Saved decision threshold")
    metrics: Dict[str, Any] = Field(default_factory=dict, description="Validation metrics at training time")
