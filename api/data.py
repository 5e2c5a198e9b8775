"""GET /api/data: unified read endpoint."""

from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import success_response
from core.documents import invoice_document
from core.models import InvoiceFilter, InvoiceStatus
from core.money import format_cents


VALID_TYPES = {"invoices"}
VALID_FORMATS = {"full", "document"}


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def create_data_router(services: dict) -> APIRouter:
    router = APIRouter()

    invoice_svc = services["invoice"]

    # -------------------------------------------------------------------------
    # Convenience routes (must be registered before the generic /data route)
    # -------------------------------------------------------------------------

    @router.get("/data/invoices/stats")
    def invoice_stats(request: Request):
        stats = invoice_svc.get_stats()
        data = {
            **stats,
            "total_revenue": format_cents(stats["total_revenue_cents"]),
            "this_month_revenue": format_cents(stats["this_month_revenue_cents"]),
        }
        return success_response(data, _request_id(request)).model_dump(mode="json")

    # -------------------------------------------------------------------------
    # Generic data endpoint
    # -------------------------------------------------------------------------

    @router.get("/data")
    def get_data(
        request: Request,
        type: str | None = Query(None),
        id: str | None = Query(None),
        format: str = Query("full"),
        client_id: str | None = Query(None),
        project_id: str | None = Query(None),
        status: str | None = Query(None),
        filter: str | None = Query(None),
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ):
        if type is None:
            raise ValueError("'type' query parameter is required")

        if type not in VALID_TYPES:
            raise ValueError(f"Unknown type '{type}'. Valid types: {', '.join(sorted(VALID_TYPES))}")

        if format not in VALID_FORMATS:
            raise ValueError(f"Unknown format '{format}'. Valid formats: {', '.join(sorted(VALID_FORMATS))}")

        render = invoice_document if format == "document" else (
            lambda invoice: invoice.model_dump(mode="json")
        )

        data = _handle_invoices(
            invoice_svc, render, id, client_id, project_id, status, filter, limit, offset,
        )
        return success_response(data, _request_id(request)).model_dump(mode="json")

    return router


def _handle_invoices(invoice_svc, render, id, client_id, project_id, status, filter, limit, offset):
    if id:
        invoice = invoice_svc.get_by_id(UUID(id))
        if invoice is None:
            raise ValueError(f"Invoice {id} not found")
        return render(invoice)

    if filter == "unpaid":
        return [render(i) for i in invoice_svc.list_unpaid(limit)]

    if filter is not None:
        raise ValueError(f"Unknown filter '{filter}'. Valid filters: unpaid")

    statuses = None
    if status:
        try:
            statuses = [InvoiceStatus(s) for s in status.split(",")]
        except ValueError:
            raise ValueError(
                f"Unknown status '{status}'. "
                f"Valid statuses: {', '.join(s.value for s in InvoiceStatus)}"
            )

    invoices = invoice_svc.list_invoices(InvoiceFilter(
        client_id=UUID(client_id) if client_id else None,
        project_id=UUID(project_id) if project_id else None,
        statuses=statuses,
        limit=limit,
        offset=offset,
    ))
    return [render(i) for i in invoices]
