"""Button layouts and the category catalog.

Layouts are plain ``(label, callback_data)`` rows so the dialogue stays free
of Telegram types; ``telegram_bot`` turns them into inline keyboards.
"""

from __future__ import annotations

from .models import TransactionKind

Button = tuple[str, str]
Layout = list[list[Button]]

INCOME_CATEGORIES: dict[str, str] = {
    "salary": "Salary 💸",
    "debit": "Debtor 🫴",
    "prize": "Bonus 💰",
    "addinc": "Side job 🤑",
    "invest": "Investments 💹",
    "deposit": "Deposit 🏦",
}

EXPENSE_CATEGORIES: dict[str, str] = {
    "phar": "Pharmacy 🏥",
    "avia": "Flights 🛫",
    "access": "Accessories 🕶️",
    "analys": "Lab tests 💉",
    "rent": "Rent 🔑",
    "household": "Household 🧹",
    "vitamin": "Vitamins 💊",
    "state": "Public services 🏢",
    "repair": "Home & repair 🛠️",
    "rail": "Train tickets 🚂",
    "animal": "Pets 🐾",
    "service": "Utilities 👾",
    "invest": "Investments 💹",
    "network": "Internet 🌐",
    "office": "Stationery 📝",
    "carsh": "Car sharing 🏎️",
    "book": "Books 📚",
    "beauty": "Beauty 😻",
    "loan": "Loans 💸",
    "medic": "Medicine 🩺",
    "mobile": "Mobile 📞",
    "cash": "Cash 🗞️",
    "educ": "Education 🎓",
    "clothes": "Clothes & shoes 👟",
    "trans": "Transfers 📤",
    "gift": "Gifts 🎁",
    "subscript": "Subscriptions 🤳",
    "fun": "Entertainment 🎢",
    "eat": "Food 🍜",
    "mall": "Supermarket 🛒",
    "taxi": "Taxi 🚕",
    "oil": "Fuel ⛽️",
    "transport": "Transport 🚌",
    "flowers": "Flowers 💐",
    "sport": "Sport 💪",
    "other": "Other 🙉",
}

CATEGORIES: dict[TransactionKind, dict[str, str]] = {
    TransactionKind.INCOME: INCOME_CATEGORIES,
    TransactionKind.EXPENSE: EXPENSE_CATEGORIES,
}

ALL_CATEGORY_TOKENS = frozenset(INCOME_CATEGORIES) | frozenset(EXPENSE_CATEGORIES)


def _in_rows(buttons: list[Button], width: int = 2) -> Layout:
    return [buttons[i:i + width] for i in range(0, len(buttons), width)]


def main_menu() -> Layout:
    return [
        [("Income 📈", "income"), ("Expense 📉", "expense")],
        [("Report 📊", "report")],
    ]


def options_menu() -> Layout:
    return [[("Clear data 🧹", "clear")]]


def category_menu(kind: TransactionKind) -> Layout:
    return _in_rows([(label, token) for token, label in CATEGORIES[kind].items()])


def category_label(kind: TransactionKind, token: str) -> str:
    return CATEGORIES[kind].get(token, token)
