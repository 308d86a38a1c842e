from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from ....core.dependencies import get_delivery_queue
from ....domain.exceptions import EmailNotFoundError, InvalidStateError
from ....domain.models import EmailStatus, QueuedEmail
from ....services.delivery_queue import DeliveryQueue
from ...api.dependencies import require_operator
from ...api.schemas.email_schemas import EmailCancelPayload

router = APIRouter(prefix="/api/admin/emails", tags=["Email Queue"], dependencies=[Depends(require_operator)])


@router.get("")
def list_emails(
    status_filter: Optional[EmailStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    queue: DeliveryQueue = Depends(get_delivery_queue),
) -> Dict[str, Any]:
    items = [_serialize_email(email) for email in queue.list(status_filter, limit)]
    return {"items": items, "count": len(items)}


@router.get("/{email_id}")
def get_email(email_id: str, queue: DeliveryQueue = Depends(get_delivery_queue)) -> Dict[str, Any]:
    try:
        return _serialize_email(queue.get(email_id))
    except EmailNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.post("/{email_id}/cancel")
def cancel_email(
    email_id: str,
    payload: Optional[EmailCancelPayload] = Body(default=None),
    queue: DeliveryQueue = Depends(get_delivery_queue),
) -> Dict[str, Any]:
    reason = payload.reason if payload else "cancelled by operator"
    try:
        email = queue.cancel(email_id, reason)
    except EmailNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InvalidStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _serialize_email(email)


def _serialize_email(email: QueuedEmail) -> Dict[str, Any]:
    return {
        "id": email.id,
        "to_address": email.to_address,
        "subject": email.subject,
        "template": email.template.value,
        "user_id": email.user_id,
        "status": email.status.value,
        "attempts": email.attempts,
        "max_attempts": email.max_attempts,
        "next_retry_at": email.next_retry_at.isoformat() if email.next_retry_at else None,
        "error_message": email.error_message,
        "sent_at": email.sent_at.isoformat() if email.sent_at else None,
        "created_at": email.created_at.isoformat(),
        "updated_at": email.updated_at.isoformat(),
    }
