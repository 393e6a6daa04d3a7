"""
Dispatch API

FastAPI app exposing the dispatch core to the CRM.

Responsibilities:
- Send text, attachments and uploads to conversations
- Manage lead attachments
- Expose the credit ledger (balance, consume, add, usage, transactions)
- Record inbound messages from Evolution API webhooks

The calling company comes from the X-Company-Id header, set by the upstream
gateway after authentication.
"""

import functools
import json
import logging
from typing import Any
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from crmcore.db import get_db
from crmcore.logging import setup_logging
from crmcore.settings import Settings, get_settings
from messaging_dispatch.contracts import (
    AddCreditsRequest,
    AttachmentUploadRequest,
    ConsumeCreditsRequest,
    MarkReadRequest,
    SendAttachmentRequest,
    SendTextRequest,
    UploadAndSendRequest,
)
from messaging_dispatch.errors import DispatchError, InvalidArgumentError
from messaging_dispatch.persistence import Attachment, CreditTransaction, Message
from messaging_dispatch.providers.evolution import validate_api_key
from messaging_dispatch.service import (
    AttachmentPipeline,
    CompensationRunner,
    CreditLedger,
    DispatchOrchestrator,
    DispatchResult,
    InboundHandler,
    OutboundDispatcher,
)
from messaging_dispatch.storage import BlobStorage, get_storage

setup_logging()
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "not_found": 404,
    "invalid_argument": 400,
    "invalid_encoding": 400,
    "payload_too_large": 413,
    "endpoint_unavailable": 409,
    "ledger_conflict": 409,
    "duplicate_message": 409,
    "insufficient_balance": 402,
    "provider_rejected": 502,
    "provider_unreachable": 503,
    "storage_error": 502,
    "internal": 500,
}

app = FastAPI(
    title="Dispatch API",
    description="Credit-metered messaging dispatch",
    version="1.0.0",
)


# =============================================================================
# Error handling
# =============================================================================


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    status_code = ERROR_STATUS.get(exc.code, 500)
    if status_code >= 500:
        logger.error(
            f"Request failed: {exc.message}",
            extra={"path": request.url.path, "code": exc.code},
        )
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": exc.to_dict()},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    error = InvalidArgumentError("Invalid request", details={"errors": errors})
    return JSONResponse(status_code=400, content={"success": False, "error": error.to_dict()})


# =============================================================================
# Dependencies
# =============================================================================


def get_company_id(x_company_id: str = Header(..., alias="X-Company-Id")) -> UUID:
    """Company of the caller."""
    try:
        return UUID(x_company_id)
    except ValueError:
        raise InvalidArgumentError("X-Company-Id must be a UUID")


@functools.lru_cache()
def get_blob_storage() -> BlobStorage:
    """Process-scoped blob storage."""
    return get_storage()


@functools.lru_cache()
def get_compensation() -> CompensationRunner:
    """Process-scoped compensation runner."""
    return CompensationRunner(attempts=get_settings().COMPENSATION_ATTEMPTS)


def get_dispatcher(settings: Settings = Depends(get_settings)) -> OutboundDispatcher:
    return OutboundDispatcher(settings=settings)


def get_orchestrator(
    db: Session = Depends(get_db),
    dispatcher: OutboundDispatcher = Depends(get_dispatcher),
    storage: BlobStorage = Depends(get_blob_storage),
    compensation: CompensationRunner = Depends(get_compensation),
    settings: Settings = Depends(get_settings),
) -> DispatchOrchestrator:
    return DispatchOrchestrator(
        db,
        dispatcher=dispatcher,
        storage=storage,
        compensation=compensation,
        settings=settings,
    )


def get_attachment_pipeline(
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
    compensation: CompensationRunner = Depends(get_compensation),
    settings: Settings = Depends(get_settings),
) -> AttachmentPipeline:
    return AttachmentPipeline(db, storage, compensation, settings)


def get_credit_ledger(db: Session = Depends(get_db)) -> CreditLedger:
    return CreditLedger(db)


@app.on_event("shutdown")
async def shutdown():
    """Let pending cleanup tasks finish."""
    await get_compensation().drain()
    await get_blob_storage().close()


# =============================================================================
# Rendering
# =============================================================================


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _message_to_dict(message: Message) -> dict[str, Any]:
    return {
        "id": str(message.id),
        "direction": message.direction,
        "type": message.message_type,
        "content": message.content,
        "attachment": message.attachment,
        "sent_by_ai": message.sent_by_ai,
        "status": message.status,
        "external_id": message.external_id,
        "error_code": message.error_code,
        "error_message": message.error_message,
        "sent_at": _iso(message.sent_at),
        "created_at": _iso(message.created_at),
    }


def _attachment_to_dict(attachment: Attachment) -> dict[str, Any]:
    return {
        "attachment_id": str(attachment.id),
        "owner_type": attachment.owner_type,
        "owner_id": str(attachment.owner_id),
        "file_name": attachment.file_name,
        "file_type": attachment.file_type,
        "file_size": attachment.file_size,
        "file_size_formatted": f"{round(attachment.file_size / 1024)} KB",
        "file_url": attachment.file_url,
        "category": attachment.category,
        "description": attachment.description,
        "uploaded_at": _iso(attachment.created_at),
    }


def _transaction_to_dict(transaction: CreditTransaction) -> dict[str, Any]:
    return {
        "id": str(transaction.id),
        "type": transaction.type,
        "amount": transaction.amount,
        "balance_after": transaction.balance_after,
        "sequence": transaction.sequence,
        "description": transaction.description,
        "service_type": transaction.service_type,
        "feature": transaction.feature,
        "reference": transaction.reference,
        "request_id": transaction.request_id,
        "conversation_id": str(transaction.conversation_id) if transaction.conversation_id else None,
        "created_at": _iso(transaction.created_at),
    }


def _send_response(result: DispatchResult) -> dict[str, Any]:
    response: dict[str, Any] = {"success": True, "data": result.to_dict()}
    if result.delivered_unbilled:
        response["warning"] = "delivered_unbilled"
    return response


# =============================================================================
# Routes
# =============================================================================


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "service": "dispatch-api"}


@app.post("/conversation/send-text")
async def send_text(
    body: SendTextRequest,
    company_id: UUID = Depends(get_company_id),
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.dispatch_text(
        body.conversation_id,
        company_id,
        body.message,
        is_automated=body.is_automated,
        user_id=body.user_id,
    )
    return _send_response(result)


@app.post("/conversation/send-attachment")
async def send_attachment(
    body: SendAttachmentRequest,
    company_id: UUID = Depends(get_company_id),
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.dispatch_attachment(
        body.conversation_id,
        company_id,
        reference=body.attachment_url,
        caption=body.caption,
        file_name=body.file_name,
        mime_type=body.mime_type,
        attachment_id=body.attachment_id,
        is_automated=body.is_automated,
        user_id=body.user_id,
    )
    return _send_response(result)


@app.post("/conversation/upload")
async def upload_and_send(
    body: UploadAndSendRequest,
    company_id: UUID = Depends(get_company_id),
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.send_upload(
        body.conversation_id,
        company_id,
        body.file_base64,
        body.file_name,
        body.file_type,
        caption=body.caption,
        user_id=body.user_id,
    )
    return _send_response(result)


@app.post("/conversation/mark-read")
async def mark_read(
    body: MarkReadRequest,
    company_id: UUID = Depends(get_company_id),
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
):
    marked = await orchestrator.mark_read(body.conversation_id, company_id, body.message_id)
    return {"success": True, "data": {"marked": marked is not None, "message_id": marked}}


@app.get("/conversation/{conversation_id}")
async def get_conversation(
    conversation_id: UUID,
    limit: int = Query(20, ge=1, le=100),
    company_id: UUID = Depends(get_company_id),
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
):
    view = orchestrator.get_conversation(conversation_id, company_id, limit)
    conversation = view.conversation
    return {
        "success": True,
        "data": {
            "conversation": {
                "id": str(conversation.id),
                "title": conversation.title,
                "status": conversation.status,
                "external_id": conversation.external_id,
                "last_message_at": _iso(conversation.last_message_at),
            },
            "contact": {
                "id": str(view.contact.id),
                "name": view.contact.display_name,
                "phone": view.contact.phone,
            }
            if view.contact
            else None,
            "instance": {
                "id": str(view.instance.id),
                "name": view.instance.name,
                "provider": view.instance.provider,
                "status": view.instance.status,
            },
            "messages": [_message_to_dict(m) for m in view.messages],
        },
    }


@app.post("/attachments/{lead_id}")
async def upload_attachment(
    lead_id: UUID,
    body: AttachmentUploadRequest,
    company_id: UUID = Depends(get_company_id),
    pipeline: AttachmentPipeline = Depends(get_attachment_pipeline),
):
    attachment = await pipeline.ingest(
        owner_id=lead_id,
        company_id=company_id,
        payload=body.file_base64,
        file_name=body.file_name,
        file_type=body.file_type,
        category=body.category,
        description=body.description,
        uploaded_by=body.uploaded_by,
    )
    return {"success": True, "data": _attachment_to_dict(attachment)}


@app.get("/attachments/{lead_id}")
def list_attachments(
    lead_id: UUID,
    company_id: UUID = Depends(get_company_id),
    pipeline: AttachmentPipeline = Depends(get_attachment_pipeline),
):
    attachments = pipeline.list_attachments(lead_id, company_id)
    return {
        "success": True,
        "data": {
            "attachments": [_attachment_to_dict(a) for a in attachments],
            "total": len(attachments),
        },
    }


@app.delete("/attachments/{lead_id}/{attachment_id}")
async def delete_attachment(
    lead_id: UUID,
    attachment_id: UUID,
    company_id: UUID = Depends(get_company_id),
    pipeline: AttachmentPipeline = Depends(get_attachment_pipeline),
):
    attachment = await pipeline.delete_attachment(attachment_id, company_id, owner_id=lead_id)
    return {
        "success": True,
        "data": {"attachment_id": str(attachment.id), "file_name": attachment.file_name},
    }


@app.get("/credits/balance")
def get_balance(
    company_id: UUID = Depends(get_company_id),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    account = ledger.get_account(company_id)
    return {
        "balance": account.balance,
        "updated_at": _iso(account.updated_at),
        "credit_details": account.credit_details or {},
    }


@app.post("/credits/consume")
def consume_credits(
    body: ConsumeCreditsRequest,
    company_id: UUID = Depends(get_company_id),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    context = body.context()
    new_balance = ledger.consume(
        company_id,
        body.credits_to_consume,
        body.service_type,
        body.description,
        context=context,
    )
    return {
        "success": True,
        "credits_consumed": body.credits_to_consume,
        "service_type": body.service_type,
        "new_balance": new_balance,
        "transaction_details": {
            "feature": context["feature"],
            "description": body.description,
            "tokens_used": body.tokens_used,
            "model_used": body.model_used,
        },
    }


@app.post("/credits/add")
def add_credits(
    body: AddCreditsRequest,
    company_id: UUID = Depends(get_company_id),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    new_balance = ledger.add(
        company_id,
        body.credits_to_add,
        body.description,
        reference=body.reference,
        transaction_type=body.type,
        user_id=body.user_id,
    )
    return {
        "success": True,
        "credits_added": body.credits_to_add,
        "new_balance": new_balance,
        "transaction_details": {"description": body.description, "reference": body.reference},
    }


@app.get("/credits/usage-stats")
def usage_stats(
    company_id: UUID = Depends(get_company_id),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    stats = ledger.usage_stats(company_id)
    current_start, current_end = stats.current_period
    prior_start, prior_end = stats.prior_period
    return {
        "total_usage_this_month": stats.total_this_period,
        "total_usage_last_month": stats.total_prior_period,
        "average_daily_usage": stats.average_daily,
        "top_services": [
            {
                "service_type": usage.service_type,
                "credits_used": usage.credits_used,
                "percentage": usage.percentage,
            }
            for usage in stats.top_service_types
        ],
        "period": {
            "current_month": {"start": _iso(current_start), "end": _iso(current_end)},
            "last_month": {"start": _iso(prior_start), "end": _iso(prior_end)},
        },
    }


@app.get("/credits/transactions")
def list_transactions(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    type: str | None = Query(None),
    company_id: UUID = Depends(get_company_id),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    transactions = ledger.list_transactions(company_id, limit=limit, offset=offset, type_filter=type)
    return {
        "transactions": [_transaction_to_dict(t) for t in transactions],
        "pagination": {"limit": limit, "offset": offset, "total": len(transactions)},
        "filters": {"type": type},
    }


@app.post("/webhook/evolution")
async def receive_evolution_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Receive webhook from Evolution API.

    Unknown instances and conversations are acknowledged and ignored so the
    provider does not retry them.
    """
    if settings.EVOLUTION_WEBHOOK_KEY:
        if not validate_api_key(dict(request.headers), settings.EVOLUTION_WEBHOOK_KEY):
            logger.warning("Invalid Evolution webhook key")
            raise HTTPException(status_code=403, detail="Invalid API key")

    body = await request.body()
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        logger.warning("Invalid JSON payload")
        raise HTTPException(status_code=400, detail="Invalid JSON")

    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")

    result = InboundHandler(db).handle_webhook(payload)
    logger.info("Processed Evolution webhook", extra=result)
    return result


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
