"""Wallet and wallet transaction models.

The balance on Wallet is the fast read; wallet_transactions is the audit
trail that explains it. Only the wallet ledger service writes either.
"""

import enum

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from staybook.models.base import Base, TimestampMixin, str_enum


class TransactionType(enum.StrEnum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionSource(enum.StrEnum):
    REFUND = "refund"
    BOOKING_PAYMENT = "booking_payment"
    ADMIN_CREDIT = "admin_credit"
    PAYMENT_REVERSAL = "payment_reversal"


class Wallet(TimestampMixin, Base):
    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True, nullable=False)
    balance_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_earned_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_spent_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (CheckConstraint("balance_paise >= 0", name="ck_wallet_balance_non_negative"),)

    def __repr__(self) -> str:
        return f"<Wallet user={self.user_id} {self.balance_paise}p>"


class WalletTransaction(TimestampMixin, Base):
    """A single wallet movement. Amount is always positive; type gives the direction."""

    __tablename__ = "wallet_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    wallet_id: Mapped[int] = mapped_column(ForeignKey("wallets.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    transaction_type: Mapped[TransactionType] = mapped_column(
        str_enum(TransactionType, "wallet_transaction_type"), nullable=False
    )
    source: Mapped[TransactionSource] = mapped_column(str_enum(TransactionSource, "wallet_source"), nullable=False)
    amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(100))
    reference_type: Mapped[str | None] = mapped_column(String(30))  # booking, refund, payment
    description: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (Index("ix_wallet_txn_user", "user_id", "id"),)

    def __repr__(self) -> str:
        return f"<WalletTransaction {self.transaction_type.value} {self.amount_paise}p user={self.user_id}>"
