"""Invoice endpoints (tenant members)."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from crux_api.audit.recorder import AuditAction, AuditRecorder, get_audit_recorder
from crux_api.auth.roles import Role
from crux_api.auth.route_guard import AccessContext
from crux_api.data.change_feed import ChangeEvent, ChangeFeed, get_change_feed
from crux_api.data.scope import TenantScope, tenant_scope
from crux_api.db.models import Invoice
from crux_api.db.repo_invoices import InvoiceRepository
from crux_api.db.session import get_db
from crux_api.errors import AccessDenied, InvalidRequest
from crux_api.schemas import InvoiceCreate, InvoiceOut, InvoiceUpdate, Page

router = APIRouter(prefix="/v1/invoices", tags=["invoices"])
logger = logging.getLogger(__name__)

INVOICE_STATUSES = ("draft", "sent", "paid", "overdue", "cancelled")

member_scope = tenant_scope(Role.USER)


def _values(body: InvoiceCreate | InvoiceUpdate) -> dict:
    values = body.model_dump(exclude_unset=True)
    if values.get("status") is not None and values["status"] not in INVOICE_STATUSES:
        raise InvalidRequest(f"status must be one of {', '.join(INVOICE_STATUSES)}.")
    if "metadata" in values:
        metadata = values.pop("metadata")
        if metadata is not None:
            values["metadata_json"] = metadata
    return values


def _publish(feed: ChangeFeed, operation: str, row: Invoice) -> None:
    feed.publish(
        ChangeEvent(
            "invoices",
            operation,
            row.tenant_id,
            row.id,
            InvoiceOut.model_validate(row).model_dump(mode="json"),
        )
    )


@router.get("", response_model=Page[InvoiceOut])
def list_invoices(
    invoice_status: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    access: tuple[AccessContext, TenantScope] = Depends(member_scope),
    db: Session = Depends(get_db),
) -> Page[InvoiceOut]:
    _, scope = access
    repo = InvoiceRepository(db, scope)
    rows = repo.search(status=invoice_status, limit=limit, offset=offset)
    criteria = [Invoice.status == invoice_status] if invoice_status else []
    return Page[InvoiceOut](
        items=[InvoiceOut.model_validate(row) for row in rows],
        total=repo.count(*criteria),
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=InvoiceOut, status_code=status.HTTP_201_CREATED)
def create_invoice(
    body: InvoiceCreate,
    request: Request,
    access: tuple[AccessContext, TenantScope] = Depends(member_scope),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> InvoiceOut:
    ctx, scope = access
    row = InvoiceRepository(db, scope).create(_values(body))
    _publish(feed, "INSERT", row)
    audit.record(
        AuditAction.INVOICE_CREATED,
        tenant_id=scope.tenant_id,
        user_id=ctx.user_id,
        resource_type="invoice",
        resource_id=row.id,
        request=request,
    )
    return InvoiceOut.model_validate(row)


@router.get("/{invoice_id}", response_model=InvoiceOut)
def get_invoice(
    invoice_id: str,
    access: tuple[AccessContext, TenantScope] = Depends(member_scope),
    db: Session = Depends(get_db),
) -> InvoiceOut:
    _, scope = access
    row = InvoiceRepository(db, scope).get(invoice_id)
    if row is None:
        raise AccessDenied()
    return InvoiceOut.model_validate(row)


@router.patch("/{invoice_id}", response_model=InvoiceOut)
def update_invoice(
    invoice_id: str,
    body: InvoiceUpdate,
    request: Request,
    access: tuple[AccessContext, TenantScope] = Depends(member_scope),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> InvoiceOut:
    ctx, scope = access
    values = _values(body)
    row = InvoiceRepository(db, scope).update(invoice_id, values)
    if row is None:
        raise AccessDenied()
    _publish(feed, "UPDATE", row)
    audit.record(
        AuditAction.INVOICE_UPDATED,
        tenant_id=scope.tenant_id,
        user_id=ctx.user_id,
        resource_type="invoice",
        resource_id=invoice_id,
        details={"fields": sorted(values)},
        request=request,
    )
    return InvoiceOut.model_validate(row)


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_invoice(
    invoice_id: str,
    request: Request,
    access: tuple[AccessContext, TenantScope] = Depends(member_scope),
    db: Session = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> Response:
    ctx, scope = access
    if not InvoiceRepository(db, scope).delete(invoice_id):
        raise AccessDenied()
    feed.publish(ChangeEvent("invoices", "DELETE", scope.tenant_id, invoice_id))
    audit.record(
        AuditAction.INVOICE_DELETED,
        tenant_id=scope.tenant_id,
        user_id=ctx.user_id,
        resource_type="invoice",
        resource_id=invoice_id,
        request=request,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
