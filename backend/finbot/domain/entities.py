from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from ..models import TransactionKind, TransactionModel

ZERO = Decimal("0.00")


@dataclass(frozen=True, slots=True)
class FinanceReport:
    """Running totals over every transaction of a user."""

    income_total: Decimal = ZERO
    expense_total: Decimal = ZERO

    @property
    def balance(self) -> Decimal:
        return self.income_total - self.expense_total

    @classmethod
    def from_transactions(cls, transactions: Iterable[TransactionModel]) -> FinanceReport:
        income = ZERO
        expense = ZERO
        for tx in transactions:
            amount = Decimal(tx.amount)
            if tx.kind == TransactionKind.INCOME:
                income += amount
            elif tx.kind == TransactionKind.EXPENSE:
                expense += amount
        return cls(income_total=income, expense_total=expense)

    def to_dict(self) -> dict[str, str]:
        return {
            "income_total": f"{self.income_total:.2f}",
            "expense_total": f"{self.expense_total:.2f}",
            "balance": f"{self.balance:.2f}",
        }

    def format(self) -> str:
        totals = self.to_dict()
        return (
            f"📈 Income: {totals['income_total']}\n"
            f"📉 Expenses: {totals['expense_total']}\n"
            f"💰 Balance: {totals['balance']}"
        )
