"""Wallet ledger.

Balance is cached on Wallet.balance_paise for fast reads. The authoritative
audit trail is the wallet_transactions table. All mutations go through
``apply_credit`` / ``apply_debit`` to keep the two in sync; payment and refund
flows call them with their own session so the wallet change commits or rolls
back with the write that caused it.
"""

import logging

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from staybook.core.auth import Actor
from staybook.core.errors import ForbiddenError, InsufficientBalanceError, ValidationError
from staybook.models.wallet import TransactionSource, TransactionType, Wallet, WalletTransaction

logger = logging.getLogger(__name__)


async def _create_wallet_if_missing(db: AsyncSession, user_id: int) -> None:
    """INSERT ... ON CONFLICT DO NOTHING, so two first-time writers cannot collide."""
    insert = postgresql.insert if db.get_bind().dialect.name == "postgresql" else sqlite.insert
    await db.execute(
        insert(Wallet)
        .values(user_id=user_id, balance_paise=0, total_earned_paise=0, total_spent_paise=0)
        .on_conflict_do_nothing(index_elements=["user_id"])
    )


async def lock_wallet(db: AsyncSession, user_id: int) -> Wallet:
    """Fetch the user's wallet with SELECT ... FOR UPDATE, creating it on first use."""
    query = (
        select(Wallet)
        .where(Wallet.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    wallet = (await db.execute(query)).scalar_one_or_none()
    if wallet is None:
        await _create_wallet_if_missing(db, user_id)
        wallet = (await db.execute(query)).scalar_one()
    return wallet


async def _apply(
    db: AsyncSession,
    user_id: int,
    amount_paise: int,
    txn_type: TransactionType,
    source: TransactionSource,
    reference_id: str | None,
    reference_type: str | None,
    description: str,
) -> WalletTransaction:
    """Core wallet mutation: adjust balance and append a transaction."""
    if amount_paise <= 0:
        raise ValidationError(f"Wallet amount must be positive, got {amount_paise} paise.", rule="wallet_amount")

    wallet = await lock_wallet(db, user_id)

    if txn_type == TransactionType.DEBIT:
        if wallet.balance_paise < amount_paise:
            raise InsufficientBalanceError(wallet.balance_paise, amount_paise)
        wallet.balance_paise -= amount_paise
        wallet.total_spent_paise += amount_paise
    else:
        wallet.balance_paise += amount_paise
        wallet.total_earned_paise += amount_paise

    txn = WalletTransaction(
        wallet_id=wallet.id,
        user_id=user_id,
        transaction_type=txn_type,
        source=source,
        amount_paise=amount_paise,
        balance_after_paise=wallet.balance_paise,
        reference_id=reference_id,
        reference_type=reference_type,
        description=description,
    )
    db.add(txn)
    await db.flush()
    return txn


async def apply_credit(
    db: AsyncSession,
    user_id: int,
    amount_paise: int,
    source: TransactionSource,
    description: str,
    reference_id: str | None = None,
    reference_type: str | None = None,
) -> WalletTransaction:
    return await _apply(
        db, user_id, amount_paise, TransactionType.CREDIT, source, reference_id, reference_type, description
    )


async def apply_debit(
    db: AsyncSession,
    user_id: int,
    amount_paise: int,
    source: TransactionSource,
    description: str,
    reference_id: str | None = None,
    reference_type: str | None = None,
) -> WalletTransaction:
    """Debit the wallet. Raises InsufficientBalanceError rather than going negative."""
    return await _apply(
        db, user_id, amount_paise, TransactionType.DEBIT, source, reference_id, reference_type, description
    )


async def get_balance(db: AsyncSession, user_id: int) -> int:
    """Read the cached balance in paise. A user with no wallet has 0."""
    result = await db.execute(select(Wallet.balance_paise).where(Wallet.user_id == user_id))
    return result.scalar_one_or_none() or 0


class WalletLedger:
    """Standalone wallet operations, each in its own transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def credit(
        self,
        user_id: int,
        amount_paise: int,
        source: TransactionSource,
        description: str,
        reference_id: str | None = None,
        reference_type: str | None = None,
    ) -> WalletTransaction:
        async with self._sessions.begin() as db:
            return await apply_credit(db, user_id, amount_paise, source, description, reference_id, reference_type)

    async def debit(
        self,
        user_id: int,
        amount_paise: int,
        source: TransactionSource,
        description: str,
        reference_id: str | None = None,
        reference_type: str | None = None,
    ) -> WalletTransaction:
        async with self._sessions.begin() as db:
            return await apply_debit(db, user_id, amount_paise, source, description, reference_id, reference_type)

    async def admin_credit(self, actor: Actor, user_id: int, amount_paise: int, reason: str) -> WalletTransaction:
        """Grant wallet credit to a user (admin action)."""
        if not actor.is_admin:
            raise ForbiddenError("Only admins can credit wallets.")
        txn = await self.credit(
            user_id,
            amount_paise,
            TransactionSource.ADMIN_CREDIT,
            description=reason,
            reference_id=str(actor.user_id),
            reference_type="admin",
        )
        logger.info("Admin %s credited %s paise to user %s wallet", actor.user_id, amount_paise, user_id)
        return txn

    async def get_summary(self, user_id: int) -> Wallet:
        async with self._sessions.begin() as db:
            return await lock_wallet(db, user_id)

    async def list_transactions(
        self,
        user_id: int,
        transaction_type: TransactionType | None = None,
        source: TransactionSource | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[WalletTransaction]:
        """Newest first."""
        query = select(WalletTransaction).where(WalletTransaction.user_id == user_id)
        if transaction_type is not None:
            query = query.where(WalletTransaction.transaction_type == transaction_type)
        if source is not None:
            query = query.where(WalletTransaction.source == source)
        query = query.order_by(WalletTransaction.id.desc()).limit(limit).offset(offset)

        async with self._sessions() as db:
            result = await db.execute(query)
            return list(result.scalars().all())
