from pydantic import BaseModel, Field
from typing import List, Dict, Any, Optional

class WorkflowSummary(BaseModel):
    invoice_id: Optional[str] = None
    status: str  # "completed", "review_required", "error", "no_invoice"
    action: Optional[str] = None
    confidence: float = 0.0
    reasons: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    requires_human_intervention: bool = False
    is_new_contact: bool = False
    manual_conversion_required: bool = False
    processing_timestamp: Optional[str] = None
    processing_duration_seconds: float = 0.0
    agent_execution_trace: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "invoice_id": "4211598471093388271",
                "status": "review_required",
                "action": "alert_user",
                "confidence": 81.25,
                "reasons": ["new_supplier", "transaction_match_uncertain"],
                "errors": [],
                "requires_human_intervention": True,
                "processing_timestamp": "2026-03-02T09:00:04Z",
                "processing_duration_seconds": 14.2,
                "agent_execution_trace": {
                    "contact_resolution_agent": {"duration_ms": 2310.4, "status": "success", "confidence": 95.0}
                }
            }
        }
