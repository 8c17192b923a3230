"""
Pydantic schemas for request/response validation.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


# Request schemas
class ToggleRequest(BaseModel):
    """Switch a host to another coverage tier."""
    target_tier: str = Field(description="Target tier: P2P or COMMERCIAL")


class ReviewRequest(BaseModel):
    """Admin review of a pending insurance submission."""
    action: str = Field(description="approve or reject")
    insurance_type: str = Field("P2P", description="P2P or COMMERCIAL")
    reason: Optional[str] = Field(None, description="Required when rejecting")


# Response schemas
class ProviderSummary(BaseModel):
    """Provider and its eligibility rules."""
    id: str
    name: str
    type: str
    vehicle_value_min: Optional[float]
    vehicle_value_max: Optional[float]
    excluded_makes: List[str]
    excluded_models: List[str]


class CoverageVerdictResponse(BaseModel):
    has_coverage: bool
    source: str = Field(description="PROVIDER, OVERRIDE or NONE")
    provider: Optional[ProviderSummary]
    warnings: List[str]
    eligible_providers: List[ProviderSummary]


class VehicleCoverageResponse(BaseModel):
    vehicle_id: str
    make: str
    model: str
    year: int
    estimated_value: float
    is_active: bool
    coverage: CoverageVerdictResponse


class HostCoverageResponse(BaseModel):
    host_id: str
    host_name: str
    provider: Optional[ProviderSummary]
    total_vehicles: int
    total_covered: int
    total_gaps: int
    vehicles: List[VehicleCoverageResponse]


class GapSummary(BaseModel):
    total_vehicles: int
    total_covered: int
    total_gaps: int
    host_gaps: int
    vehicle_rule_gaps: int
    critical_gaps: int
    warning_gaps: int
    active_providers: int
    critical_issue: bool


class GapReportResponse(BaseModel):
    """Fleet-wide coverage gap report."""
    summary: GapSummary
    host_gaps: List[Dict[str, Any]]
    vehicle_rule_gaps: List[Dict[str, Any]]
    all_gaps: List[Dict[str, Any]]
    critical_gaps: List[Dict[str, Any]]
    warning_gaps: List[Dict[str, Any]]
    providers: List[ProviderSummary]
    recommendations: List[str]


class SlotResponse(BaseModel):
    status: Optional[str]
    provider_id: Optional[str]
    provider_name: Optional[str]
    policy_number: Optional[str]


class TierResponse(BaseModel):
    """Host tier after a transition."""
    host_id: str
    new_tier: str
    host_earnings_fraction: float
    platform_commission_fraction: float
    p2p_slot: SlotResponse
    commercial_slot: SlotResponse
    message: str


class TierHistoryEntry(BaseModel):
    action: str
    insurance_type: str
    from_tier: str
    to_tier: str
    previous_commission: float
    new_commission: float
    reason: Optional[str]
    actor: str
    created_at: str


class HostTierResponse(TierResponse):
    coverage_state: str
    consistency_issues: List[str]
    history: List[TierHistoryEntry]
