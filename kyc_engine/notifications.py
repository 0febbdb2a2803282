import logging
from enum import Enum
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    KYC_INITIATED = "kyc-initiated"
    DOCUMENTS_ACCEPTED = "documents-accepted"
    DOCUMENTS_REJECTED = "documents-rejected"
    FACE_VERIFICATION_SUCCESS = "face-verification-success"
    FACE_VERIFICATION_FAILED = "face-verification-failed"
    KYC_APPROVED = "kyc-approved"
    KYC_UNDER_REVIEW = "kyc-under-review"
    KYC_REJECTED = "kyc-rejected"
    KYC_CANCELLED = "kyc-cancelled"
    KYC_EXPIRED = "kyc-expired"


class Notifier(Protocol):
    def emit(self, event: NotificationEvent, application_id: str, user_id: str,
             payload: Optional[Dict[str, Any]] = None):
        ...


class LoggingNotifier:
    """Default notifier: the delivery system reads events from the log"""

    def emit(self, event: NotificationEvent, application_id: str, user_id: str,
             payload: Optional[Dict[str, Any]] = None):
        logger.info("Notification %s application=%s user=%s payload=%s",
                    event.value, application_id, user_id, payload or {})
