"""Keeps stored account balances equal to the signed sum of their ledger.

Every mutation inserts/removes the transaction row and shifts the owning
account's balance inside one database transaction. The shift is a single
conditional ``UPDATE ... SET balance_cents = balance_cents + :delta`` so the
store applies it atomically; nothing reads the balance first.
"""

import logging
from typing import Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from cache import derived_views
from errors import InactiveAccountError, NotFoundError
from models import Account, Category, Transaction, TransactionType
from schemas import TransactionIn


logger = logging.getLogger(__name__)


def signed_effect(txn_type: TransactionType, amount_cents: int) -> int:
    if TransactionType(txn_type) == TransactionType.income:
        return amount_cents
    return -amount_cents


class BalanceMaintainer:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _account(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFoundError("Account not found")
        return account

    def _check_category(
        self, category_id: Optional[int], txn_type: TransactionType
    ) -> None:
        if category_id is None:
            return
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        if category.type != txn_type:
            raise ValueError("Category type mismatch")

    def _shift(self, account_id: int, delta: int, *, require_active: bool) -> None:
        stmt = (
            update(Account)
            .where(Account.id == account_id, Account.user_id == self.user_id)
            .values(balance_cents=Account.balance_cents + delta)
            .execution_options(synchronize_session=False)
        )
        if require_active:
            stmt = stmt.where(Account.is_active.is_(True))
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            if require_active:
                raise InactiveAccountError("Account is inactive or missing")
            raise NotFoundError("Account not found")
        loaded = self.session.identity_map.get(
            Session.identity_key(Account, account_id)
        )
        if loaded is not None:
            self.session.expire(loaded, ["balance_cents"])
        logger.debug(
            f"balance_shift: user={self.user_id} account={account_id} delta={delta}"
        )

    def _build(self, data: TransactionIn) -> Transaction:
        account = self._account(data.account_id)
        if not account.is_active:
            raise InactiveAccountError(
                "Cannot record transactions on an inactive account"
            )
        self._check_category(data.category_id, data.type)
        return Transaction(
            user_id=self.user_id,
            account_id=data.account_id,
            category_id=data.category_id,
            amount_cents=data.amount_cents,
            type=data.type,
            description=data.description,
            date=data.date,
            notes=data.notes or "",
        )

    def post(self, txn: Transaction) -> Transaction:
        """Stage ``txn`` and its balance effect without committing."""
        if txn.amount_cents is None or txn.amount_cents <= 0:
            raise ValueError("Amount must be positive")
        self.session.add(txn)
        self.session.flush()
        self._shift(
            txn.account_id,
            signed_effect(txn.type, txn.amount_cents),
            require_active=True,
        )
        return txn

    def _unpost(self, txn: Transaction) -> None:
        self._shift(
            txn.account_id,
            -signed_effect(txn.type, txn.amount_cents),
            require_active=False,
        )
        self.session.delete(txn)
        self.session.flush()

    def _get_transaction(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFoundError("Transaction not found")
        return txn

    def _commit(self) -> None:
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        derived_views.invalidate(self.user_id)

    def apply_create(self, data: TransactionIn) -> Transaction:
        try:
            txn = self.post(self._build(data))
        except Exception:
            self.session.rollback()
            raise
        self._commit()
        self.session.refresh(txn)
        return txn

    def apply_delete(self, transaction_id: int) -> None:
        try:
            self._unpost(self._get_transaction(transaction_id))
        except Exception:
            self.session.rollback()
            raise
        self._commit()

    def replace(self, transaction_id: int, data: TransactionIn) -> Transaction:
        """Swap a transaction for a corrected one as a single unit."""
        try:
            old = self._get_transaction(transaction_id)
            new = self._build(data)
            new.recurring_transaction_id = old.recurring_transaction_id
            self._unpost(old)
            self.post(new)
        except Exception:
            self.session.rollback()
            raise
        self._commit()
        self.session.refresh(new)
        return new

    def expected_balance(self, account_id: int) -> int:
        account = self._account(account_id)
        effects = self.session.execute(
            select(
                func.coalesce(
                    func.sum(
                        case(
                            (
                                Transaction.type == TransactionType.income,
                                Transaction.amount_cents,
                            ),
                            else_=-Transaction.amount_cents,
                        )
                    ),
                    0,
                )
            ).where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account_id,
            )
        ).scalar_one()
        return int(account.opening_balance_cents) + int(effects or 0)

    def reconcile(self, account_id: int) -> int:
        expected = self.expected_balance(account_id)
        account = self._account(account_id)
        if account.balance_cents != expected:
            logger.warning(
                f"balance_divergence: user={self.user_id} account={account_id} "
                f"stored={account.balance_cents} expected={expected}"
            )
            account.balance_cents = expected
            self._commit()
        return expected
