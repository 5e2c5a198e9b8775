"""POST /api/actions: unified mutation endpoint."""

from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.base import success_response
from core.models import ActorContext, InvoiceCreate, InvoiceUpdate


class ActionRequest(BaseModel):
    domain: str
    action: str
    data: dict


def create_actions_router(services: dict) -> APIRouter:
    router = APIRouter()

    handlers = {
        "invoice": InvoiceHandler(services["invoice"]),
        "payment": PaymentHandler(services["settlement"]),
    }

    @router.post("/actions")
    def perform_action(request: Request, body: ActionRequest):
        handler = handlers.get(body.domain)
        if handler is None:
            raise ValueError(
                f"Unknown domain '{body.domain}'. "
                f"Valid domains: {', '.join(sorted(handlers.keys()))}"
            )

        if body.action not in handler.ALLOWED_ACTIONS:
            raise ValueError(
                f"Action '{body.action}' not allowed on '{body.domain}'. "
                f"Allowed: {', '.join(sorted(handler.ALLOWED_ACTIONS))}"
            )

        method = getattr(handler, f"_handle_{body.action}")
        result = method(dict(body.data), request.state.actor)
        return success_response(result, getattr(request.state, "request_id", None)).model_dump(mode="json")

    return router


def _require_id(data: dict, key: str = "id") -> UUID:
    if key not in data:
        raise ValueError(f"'{key}' is required")
    return UUID(str(data.pop(key)))


# =============================================================================
# HANDLER CLASSES
# =============================================================================


class InvoiceHandler:
    ALLOWED_ACTIONS = {"create", "update", "send", "cancel", "delete"}

    def __init__(self, service):
        self.service = service

    def _handle_create(self, data: dict, actor: ActorContext):
        invoice = self.service.create(InvoiceCreate(**data), actor)
        return invoice.model_dump(mode="json")

    def _handle_update(self, data: dict, actor: ActorContext):
        invoice_id = _require_id(data)
        invoice = self.service.update(invoice_id, InvoiceUpdate(**data), actor)
        return invoice.model_dump(mode="json")

    def _handle_send(self, data: dict, actor: ActorContext):
        invoice = self.service.send(_require_id(data), actor)
        return invoice.model_dump(mode="json")

    def _handle_cancel(self, data: dict, actor: ActorContext):
        invoice = self.service.cancel(_require_id(data), actor)
        return invoice.model_dump(mode="json")

    def _handle_delete(self, data: dict, actor: ActorContext):
        self.service.delete(_require_id(data), actor)
        return {"deleted": True}


class PaymentHandler:
    ALLOWED_ACTIONS = {"create_order", "capture", "reconcile"}

    def __init__(self, settlement):
        self.settlement = settlement

    def _handle_create_order(self, data: dict, actor: ActorContext):
        return self.settlement.create_order(_require_id(data, "invoice_id"), actor)

    def _handle_capture(self, data: dict, actor: ActorContext):
        invoice_id = _require_id(data, "invoice_id")
        if not data.get("order_id"):
            raise ValueError("'order_id' is required")
        result = self.settlement.capture(invoice_id, data["order_id"], actor)
        return result.to_dict()

    def _handle_reconcile(self, data: dict, actor: ActorContext):
        invoice_id = _require_id(data, "invoice_id")
        result = self.settlement.reconcile(invoice_id, data.get("order_id"), actor)
        return result.to_dict()
