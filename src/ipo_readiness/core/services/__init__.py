"""Services package for the IPO readiness engine."""

from ipo_readiness.core.services.lifecycle_service import TRANSITIONS, AssessmentLifecycle
from ipo_readiness.core.services.template_service import TemplateBankService

__all__ = [
    "AssessmentLifecycle",
    "TemplateBankService",
    "TRANSITIONS",
]
