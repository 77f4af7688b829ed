"""Refund routes. Guests and hotels can see their refunds; only admins resolve them."""

from fastapi import APIRouter, Depends, Query

from staybook.core.auth import Actor
from staybook.core.container import Services
from staybook.core.dependencies import get_current_actor, get_services, require_admin
from staybook.models.refund import RefundStatus
from staybook.schemas import RefundOut, RefundProcessRequest, RefundRejectRequest

router = APIRouter(prefix="/refunds", tags=["refunds"])


@router.get("", response_model=list[RefundOut])
async def list_refunds(
    status_filter: RefundStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    return await services.cancellations.list_refunds(actor, status_filter, limit, offset)


@router.post("/{refund_id}/process", response_model=RefundOut)
async def process_refund(
    refund_id: int,
    body: RefundProcessRequest,
    admin: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return await services.cancellations.process_refund(admin, refund_id, body.method)


@router.post("/{refund_id}/reject", response_model=RefundOut)
async def reject_refund(
    refund_id: int,
    body: RefundRejectRequest,
    admin: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return await services.cancellations.reject_refund(admin, refund_id, body.reason)
