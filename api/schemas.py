"""
Pydantic models for API request/response validation.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, ConfigDict


# =============================================================================
# IMPORTS
# =============================================================================

class ImportOutcomeResponse(BaseModel):
    """Result of one bulk import run."""
    flow: str
    total_rows: int = Field(..., ge=0)
    blank_rows: int = Field(..., ge=0)
    inserted: int = Field(..., ge=0)
    updated: int = Field(..., ge=0)
    skipped: int = Field(..., ge=0)
    failed: int = Field(..., ge=0)
    succeeded: int = Field(..., ge=0)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    error_count: int = 0
    warning_count: int = 0
    total_amount: float = 0.0
    skipped_amount: float = 0.0
    type_counts: Dict[str, int] = Field(default_factory=dict)
    created_clients: int = 0


class BatchWriteErrorDetail(BaseModel):
    """Body of a 502 response when the grouped insert failed."""
    message: str
    table: str
    outcome: ImportOutcomeResponse


class BatchWriteErrorResponse(BaseModel):
    detail: BatchWriteErrorDetail


class ActivityEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None


# =============================================================================
# ANALYTICS
# =============================================================================

class LossRatioResponse(BaseModel):
    as_of: str
    since: str
    policy_count: int
    claim_count: int
    earned_premium: float
    paid_claims: float
    loss_ratio: float = Field(..., description="Paid claims / earned premium, in percent")
