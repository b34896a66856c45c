"""
Audit logging for the red packet service.

Money movements and security-relevant events go to a dedicated ``audit``
logger so they can be shipped and retained separately from application logs.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_logger = logging.getLogger("audit")
_audit_logger = None  # Will be initialized by init_audit_logger


def init_audit_logger():
    """Initialize the audit logger."""
    global _audit_logger

    _logger.setLevel(logging.INFO)

    # Add console handler if not already present
    if not _logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - AUDIT - %(levelname)s - %(message)s"))
        _logger.addHandler(handler)

    _audit_logger = AuditLogger()

    _logger.info("Audit logger initialized")


def get_audit_logger():
    """Get the audit logger instance."""
    global _audit_logger

    if _audit_logger is None:
        init_audit_logger()
    return _audit_logger


class AuditLogger:
    """
    Audit logging interface for account and money events.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or _logger

    def log_event(self, event: str, **details: Any) -> None:
        """Generic structured audit event."""

        payload = {"event": event, **details, "timestamp": datetime.now(timezone.utc).isoformat()}
        self.logger.info(json.dumps(payload, default=str))

    def log_login_attempt(self, nickname: str, success: bool, created: bool = False,
                          ip_address: Optional[str] = None):
        """Log a login or first-time registration."""
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(
            f"LOGIN_ATTEMPT | nickname={nickname} | status={status} | created={created} | ip={ip_address}"
        )

    def log_envelope_created(self, envelope_id: str, sender_id: str, amount: str, total_count: int):
        self.logger.info(
            f"ENVELOPE_CREATED | envelope={envelope_id} | sender={sender_id} | amount={amount} | count={total_count}"
        )

    def log_claim_attempt(self, envelope_id: str, user_id: str, success: bool, amount: Optional[str] = None,
                          reason: Optional[str] = None):
        status = "SUCCESS" if success else "FAILURE"
        msg = f"CLAIM_ATTEMPT | envelope={envelope_id} | user={user_id} | status={status}"
        if amount is not None:
            msg += f" | amount={amount}"
        if reason:
            msg += f" | reason={reason}"
        self.logger.info(msg)

    def log_refund(self, envelope_id: str, sender_id: str, amount: str):
        self.logger.info(f"ENVELOPE_REFUND | envelope={envelope_id} | sender={sender_id} | amount={amount}")

    def log_wallet_mutation(self, user_id: str, kind: str, amount: str, envelope_id: Optional[str] = None):
        self.logger.info(f"WALLET_MUTATION | user={user_id} | kind={kind} | amount={amount} | envelope={envelope_id}")

    def log_security_event(self, event_type: str, severity: str, details: Dict[str, Any]):
        """Log security event."""
        self.logger.warning(f"SECURITY_EVENT | type={event_type} | severity={severity} | details={details}")

    def log_error(self, error_type: str, error_msg: str, context: Optional[Dict[str, Any]] = None):
        """Log application error."""
        msg = f"ERROR | type={error_type} | msg={error_msg}"
        if context:
            msg += f" | context={context}"
        self.logger.error(msg)
