"""Audit trail writer.

Each record is written in its own session so an audit failure can never
roll back, or be rolled back by, the operation being audited. A failed
write is logged as audit.write_failed and the caller carries on.
"""

import logging
from functools import lru_cache
from typing import Any, Callable, Optional

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crux_api.db.models import AuditLog

logger = logging.getLogger(__name__)


class AuditAction:
    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"
    USER_REGISTER = "user_register"
    PASSWORD_SET = "password_set"
    USER_INVITED = "user_invited"
    USER_INVITATION_ACCEPTED = "user_invitation_accepted"
    USER_INVITATION_CANCELLED = "user_invitation_cancelled"
    USER_ROLE_CHANGED = "user_role_changed"
    USER_TENANT_CHANGED = "user_tenant_changed"
    USER_SUSPENDED = "user_suspended"
    USER_REMOVED_FROM_TENANT = "user_removed_from_tenant"
    TENANT_CREATED = "tenant_created"
    TENANT_UPDATED = "tenant_updated"
    TENANT_SUSPENDED = "tenant_suspended"
    TENANT_ACTIVATED = "tenant_activated"
    REVIEW_CREATED = "review_created"
    REVIEW_DELETED = "review_deleted"
    INVOICE_CREATED = "invoice_created"
    INVOICE_UPDATED = "invoice_updated"
    INVOICE_DELETED = "invoice_deleted"
    SETTINGS_UPDATED = "settings_updated"


class AuditRecorder:
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory

    def _new_session(self) -> Session:
        if self._session_factory is None:
            from crux_api.db.session import SessionLocal

            self._session_factory = SessionLocal
        return self._session_factory()

    def record(
        self,
        action: str,
        *,
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        request: Optional[Request] = None,
    ) -> bool:
        """Persist one audit row. Returns False if the write failed."""
        entry = AuditLog(
            action=action,
            tenant_id=tenant_id,
            user_id=user_id,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details or {},
            ip_address=request.client.host if request is not None and request.client else None,
            user_agent=request.headers.get("user-agent") if request is not None else None,
        )

        db = self._new_session()
        try:
            db.add(entry)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.error(
                "Audit write failed",
                exc_info=True,
                extra={"event": "audit.write_failed", "action": action, "resource_id": resource_id},
            )
            return False
        finally:
            db.close()

        logger.info(
            "Audit event recorded",
            extra={
                "event": "audit.recorded",
                "action": action,
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        return True


@lru_cache(maxsize=1)
def get_audit_recorder() -> AuditRecorder:
    """FastAPI dependency (overridden in tests with a recorder bound to the test DB)."""
    return AuditRecorder()
