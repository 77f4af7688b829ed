"""Wallet routes: balance, history, and admin credit grants."""

from fastapi import APIRouter, Depends, Query, status

from staybook.core.auth import Actor
from staybook.core.container import Services
from staybook.core.dependencies import get_current_actor, get_services, require_admin
from staybook.models.wallet import TransactionSource, TransactionType
from staybook.schemas import AdminWalletCredit, WalletOut, WalletTransactionOut

router = APIRouter(tags=["wallet"])


@router.get("/wallet", response_model=WalletOut)
async def get_wallet(
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    return await services.wallet.get_summary(actor.user_id)


@router.get("/wallet/transactions", response_model=list[WalletTransactionOut])
async def list_wallet_transactions(
    transaction_type: TransactionType | None = Query(default=None, alias="type"),
    source: TransactionSource | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    return await services.wallet.list_transactions(actor.user_id, transaction_type, source, limit, offset)


@router.post(
    "/admin/wallet/credit",
    response_model=WalletTransactionOut,
    status_code=status.HTTP_201_CREATED,
)
async def admin_credit_wallet(
    body: AdminWalletCredit,
    admin: Actor = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return await services.wallet.admin_credit(admin, body.user_id, body.amount_paise, body.reason)
