"""
webhooks.py — Mail Ingestion Webhooks

Called by the email workflow service, not by users: inbound supplier
mail, and the outbound mail the workflow sends on our behalf.

Business Rules:
- Authenticated with the shared Bearer token (when configured)
- Inbound: the message is stored first; everything that happens after
  (order sync) is best-effort and never fails the webhook
- Outbound: creates the email thread on first sight so the thread linker
  can match it to a supplier; repeated deliveries are no-ops

Called by: main.py (router mount)
Depends on: services/email_ledger
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import require_webhook_token
from ..schemas.webhooks import InboundEmail, OutboundEmail
from ..services.email_ledger import record_inbound_message, record_workflow_outbound

router = APIRouter(tags=["webhooks"], dependencies=[Depends(require_webhook_token)])


@router.post("/api/webhooks/email/inbound")
async def inbound_email(payload: InboundEmail, db: Session = Depends(get_db)):
    msg = record_inbound_message(db, payload)
    details = msg.details or {}
    return {
        "success": True,
        "message_id": msg.id,
        "thread_id": msg.thread_id,
        "order_id": details.get("order_id"),
    }


@router.post("/api/webhooks/email/outbound")
async def outbound_email(payload: OutboundEmail, db: Session = Depends(get_db)):
    msg = record_workflow_outbound(db, payload)
    return {"success": True, "message_id": msg.id, "thread_id": msg.thread_id}
