from sqlalchemy.orm import Session
from fastapi import Request
from typing import Optional, Dict, Any

from .audit_models import AuditLog

async def create_audit_log(
    db: Session,
    action: str,
    session_id: Optional[str] = None,
    client_id: Optional[str] = None,
    request: Optional[Request] = None,
    details: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Creates an audit log entry for a registration event.

    Args:
        db: The database session.
        action: A string describing the event (e.g., 'REGISTRATION_STEP_ADVANCED', 'EMAIL_CODE_REQUESTED').
        session_id: The registration session the event belongs to (if one exists).
        client_id: The browser client that triggered the event.
        request: The FastAPI request object to extract IP address (if available).
        details: A dictionary containing additional context related to the event.

    Returns:
        The created AuditLog object.
    """
    ip_address = None
    if request and request.client:
        ip_address = request.client.host

    audit_entry = AuditLog(
        session_id=session_id,
        client_id=client_id,
        action=action,
        ip_address=ip_address,
        details=details
    )
    db.add(audit_entry)
    db.commit()
    db.refresh(audit_entry)
    return audit_entry
