"""
Agents Package

One agent per pipeline stage:
- DetectionAgent: Picks the next unprocessed purchase invoice
- CompletenessAgent: Lists missing required fields
- ExtractionAgent: Reads the invoice document into structured fields
- ContactResolutionAgent: Matches or creates the supplier contact
- ValidationAgent: Checks amount and BTW arithmetic
- ClassificationAgent: Selects the kostenpost using supplier memory
- TransactionMatchingAgent: Links a bank transaction
- ConfidenceGateAgent: Chooses auto_book, flag_review or alert_user
- BookingAgent / AlertAgent: Terminal stages
"""

from moneybird_agent.agents.detection_agent import DetectionAgent
from moneybird_agent.agents.completeness_agent import CompletenessAgent
from moneybird_agent.agents.extraction_agent import ExtractionAgent
from moneybird_agent.agents.contact_resolution_agent import ContactResolutionAgent
from moneybird_agent.agents.validation_agent import ValidationAgent
from moneybird_agent.agents.classification_agent import ClassificationAgent
from moneybird_agent.agents.transaction_matching_agent import TransactionMatchingAgent
from moneybird_agent.agents.confidence_gate import ConfidenceGateAgent, evaluate_confidence
from moneybird_agent.agents.booking_agent import BookingAgent
from moneybird_agent.agents.alert_agent import AlertAgent

__all__ = [
    "DetectionAgent",
    "CompletenessAgent",
    "ExtractionAgent",
    "ContactResolutionAgent",
    "ValidationAgent",
    "ClassificationAgent",
    "TransactionMatchingAgent",
    "ConfidenceGateAgent",
    "evaluate_confidence",
    "BookingAgent",
    "AlertAgent",
]
