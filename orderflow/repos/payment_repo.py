# orderflow/repos/payment_repo.py
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from orderflow.data.models.payment import PaymentTransactionModel
from orderflow.domain.enums import TransactionStatus, TransactionType

Txn = PaymentTransactionModel


class PaymentRepo:
    def __init__(self, db: Session):
        self.db = db

    def add(self, txn: PaymentTransactionModel) -> PaymentTransactionModel:
        self.db.add(txn)
        self.db.flush()
        return txn

    def for_order(self, order_id: str) -> list[PaymentTransactionModel]:
        stmt = select(Txn).where(Txn.order_id == order_id).order_by(Txn.id)
        return list(self.db.execute(stmt).scalars().all())

    def latest_pending_payment(self, order_id: str) -> PaymentTransactionModel | None:
        stmt = (
            select(Txn)
            .where(
                Txn.order_id == order_id,
                Txn.type == TransactionType.PAYMENT.value,
                Txn.status == TransactionStatus.PENDING.value,
            )
            .order_by(Txn.id.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def find_payment(self, order_id: str, provider_transaction_id: str | None) -> PaymentTransactionModel | None:
        """Payment row a gateway callback refers to, falling back to the newest pending one."""
        if provider_transaction_id:
            stmt = select(Txn).where(
                Txn.order_id == order_id,
                Txn.type == TransactionType.PAYMENT.value,
                Txn.provider_transaction_id == provider_transaction_id,
            )
            found = self.db.execute(stmt).scalars().first()
            if found:
                return found
        return self.latest_pending_payment(order_id)

    def find_by_provider_reference(self, provider_transaction_id: str) -> PaymentTransactionModel | None:
        stmt = (
            select(Txn)
            .where(Txn.provider_transaction_id == provider_transaction_id, Txn.type == TransactionType.PAYMENT.value)
            .order_by(Txn.id.desc())
        )
        return self.db.execute(stmt).scalars().first()

    def successful(self, order_id: str, txn_type: TransactionType) -> list[PaymentTransactionModel]:
        stmt = select(Txn).where(
            Txn.order_id == order_id,
            Txn.type == txn_type.value,
            Txn.status == TransactionStatus.SUCCESS.value,
        )
        return list(self.db.execute(stmt).scalars().all())

    def settle(self, txn_id: int, status: TransactionStatus, **values) -> int:
        """Move a pending transaction to a final status; 0 if it was already settled."""
        stmt = (
            update(Txn)
            .where(Txn.id == txn_id, Txn.status == TransactionStatus.PENDING.value)
            .values(status=status.value, **values)
        )
        return self.db.execute(stmt, execution_options={"synchronize_session": "fetch"}).rowcount

    def fail_pending(self, order_id: str) -> int:
        stmt = (
            update(Txn)
            .where(
                Txn.order_id == order_id,
                Txn.type == TransactionType.PAYMENT.value,
                Txn.status == TransactionStatus.PENDING.value,
            )
            .values(status=TransactionStatus.FAILED.value)
        )
        return self.db.execute(stmt, execution_options={"synchronize_session": "fetch"}).rowcount
