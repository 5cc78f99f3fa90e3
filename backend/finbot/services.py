"""Finance operations behind the chat dialogue."""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.orm import Session, sessionmaker

from . import crud
from .domain.entities import FinanceReport
from .models import TransactionKind, UserModel
from .schemas import TransactionCreate

logger = logging.getLogger(__name__)


class UnregisteredUserError(LookupError):
    """Raised when a chat has no user row yet."""

    def __init__(self, chat_id: int) -> None:
        super().__init__(f"No user registered for chat {chat_id}.")
        self.chat_id = chat_id


class FinanceService:
    """Register users, record transactions and compute the running report.

    Every operation opens its own short-lived session. Database errors are
    not caught and reach the caller as raised by SQLAlchemy.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def register_user(self, chat_id: int) -> tuple[UserModel, bool]:
        with self._session_factory() as db:
            user = crud.get_user_by_chat_id(db, chat_id)
            if user is not None:
                return user, False
            user = crud.create_user(db, chat_id)
            logger.info("Registered user %s for chat %s", user.id, chat_id)
            return user, True

    def add_income(self, chat_id: int, amount: Decimal, category: str) -> None:
        self._add_transaction(chat_id, amount, category, TransactionKind.INCOME)

    def add_expense(self, chat_id: int, amount: Decimal, category: str) -> None:
        self._add_transaction(chat_id, amount, category, TransactionKind.EXPENSE)

    def clear_data(self, chat_id: int) -> int:
        with self._session_factory() as db:
            user = crud.get_user_by_chat_id(db, chat_id)
            if user is None:
                return 0
            deleted = crud.delete_transactions_for_user(db, user.id)
        logger.info("Cleared %s transaction(s) for chat %s", deleted, chat_id)
        return deleted

    def get_report(self, chat_id: int) -> FinanceReport:
        with self._session_factory() as db:
            user = self._require_user(db, chat_id)
            transactions = crud.list_transactions(db, user.id)
        return FinanceReport.from_transactions(transactions)

    def _add_transaction(
        self, chat_id: int, amount: Decimal, category: str, kind: TransactionKind
    ) -> None:
        data = TransactionCreate(amount=amount, category=category, type=kind.value)
        with self._session_factory() as db:
            user = self._require_user(db, chat_id)
            crud.create_transaction(db, user.id, data)

    @staticmethod
    def _require_user(db: Session, chat_id: int) -> UserModel:
        user = crud.get_user_by_chat_id(db, chat_id)
        if user is None:
            raise UnregisteredUserError(chat_id)
        return user
