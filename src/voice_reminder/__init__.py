from .intent_classifier import InputClassification, classify_gather_input
from .outcome_classifier import OutcomeClass, OutcomeClassification, classify_call_status

__all__ = [
    "InputClassification",
    "OutcomeClass",
    "OutcomeClassification",
    "classify_call_status",
    "classify_gather_input",
]
