"""Per-chat dialogue for recording transactions.

A chat moves through ``Idle -> AwaitingAmount -> AwaitingCategory -> Idle``.
Commands and the report/clear buttons are answered from any state. Every
inbound event yields exactly one :class:`Reply`; the Telegram adapter only
renders it.
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import AsyncIterator, Union

from sqlalchemy.exc import SQLAlchemyError

from .keyboards import (
    ALL_CATEGORY_TOKENS,
    CATEGORIES,
    Layout,
    category_label,
    category_menu,
    main_menu,
    options_menu,
)
from .models import TransactionKind
from .services import FinanceService, UnregisteredUserError

logger = logging.getLogger(__name__)

AMOUNT_PATTERN = re.compile(r"\d+(?:\.\d+)?")
AMOUNT_QUANTUM = Decimal("0.01")
MAX_AMOUNT = Decimal("10000000000")

MENU_TEXT = "Choose an action:"
OPTIONS_TEXT = "Choose an option:"
WELCOME_TEXT = "👋 Welcome! Record income and expenses with the buttons below."
HELP_TEXT = (
    "📌 How it works:\n"
    "• Press Income or Expense, send the amount, then pick a category\n"
    "• Report shows your totals and balance\n"
    "• /options lets you clear all recorded transactions\n"
    "• /cancel aborts the current entry\n"
    "• /menu shows the main menu again"
)
CANCELLED_TEXT = "Action cancelled. Back to the main menu."
INVALID_AMOUNT_TEXT = "Please enter a valid positive amount, for example 250 or 12.50."
PICK_CATEGORY_TEXT = "Please pick a category from the buttons."
NO_PENDING_TEXT = "Nothing to categorise yet. Choose Income or Expense first."
UNKNOWN_TEXT = "I didn't get that. Choose an action:"
UNREGISTERED_TEXT = "I don't know you yet. Please send /start to register."
FAILURE_TEXT = "❌ Something went wrong while saving your data. Please try again later."
CLEARED_TEXT = "🧹 Data cleared."

AMOUNT_PROMPTS = {
    TransactionKind.INCOME: "Enter the income amount:",
    TransactionKind.EXPENSE: "Enter the expense amount:",
}
CATEGORY_PROMPTS = {
    TransactionKind.INCOME: "Choose the income category:",
    TransactionKind.EXPENSE: "Choose the expense category:",
}


class Stage(str, Enum):
    NONE = "none"
    AWAITING_AMOUNT_INCOME = "awaiting_amount_income"
    AWAITING_AMOUNT_EXPENSE = "awaiting_amount_expense"
    AWAITING_CATEGORY_INCOME = "awaiting_category_income"
    AWAITING_CATEGORY_EXPENSE = "awaiting_category_expense"


@dataclass(frozen=True, slots=True)
class Idle:
    @property
    def stage(self) -> Stage:
        return Stage.NONE


@dataclass(frozen=True, slots=True)
class AwaitingAmount:
    kind: TransactionKind

    @property
    def stage(self) -> Stage:
        return Stage(f"awaiting_amount_{self.kind.value}")


@dataclass(frozen=True, slots=True)
class AwaitingCategory:
    kind: TransactionKind
    amount: Decimal

    @property
    def stage(self) -> Stage:
        return Stage(f"awaiting_category_{self.kind.value}")


ConversationState = Union[Idle, AwaitingAmount, AwaitingCategory]

IDLE = Idle()


@dataclass(frozen=True, slots=True)
class Reply:
    text: str
    keyboard: Layout | None = None


def parse_amount(text: str) -> Decimal | None:
    """Parse a user-typed amount; ``None`` unless it is a positive decimal."""
    candidate = text.strip()
    if candidate.count(",") == 1 and "." not in candidate:
        candidate = candidate.replace(",", ".")
    if not AMOUNT_PATTERN.fullmatch(candidate):
        return None
    try:
        value = Decimal(candidate).quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None
    if value <= 0 or value >= MAX_AMOUNT:
        return None
    return value


class ConversationStore:
    """In-memory dialogue state keyed by chat id.

    Each chat has its own lock; holding it serialises transitions for that
    chat without blocking any other chat. A chat's lock is dropped once no
    transition holds or waits for it and the chat is back to idle.
    """

    def __init__(self) -> None:
        self._states: dict[int, ConversationState] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._pending: dict[int, int] = {}

    def get(self, chat_id: int) -> ConversationState:
        return self._states.get(chat_id, IDLE)

    def set(self, chat_id: int, state: ConversationState) -> None:
        if isinstance(state, Idle):
            self._states.pop(chat_id, None)
        else:
            self._states[chat_id] = state

    def reset(self, chat_id: int) -> None:
        self._states.pop(chat_id, None)

    @asynccontextmanager
    async def transition(self, chat_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(chat_id, asyncio.Lock())
        self._pending[chat_id] = self._pending.get(chat_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._pending[chat_id] -= 1
            if not self._pending[chat_id]:
                del self._pending[chat_id]
                if chat_id not in self._states:
                    self._locks.pop(chat_id, None)

    def has_lock(self, chat_id: int) -> bool:
        return chat_id in self._locks

    def clear(self) -> None:
        self._states.clear()
        self._locks.clear()
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._states)


class DialogueManager:
    def __init__(self, service: FinanceService, store: ConversationStore | None = None) -> None:
        self.service = service
        self.store = store if store is not None else ConversationStore()

    def state_of(self, chat_id: int) -> ConversationState:
        return self.store.get(chat_id)

    async def handle_text(self, chat_id: int, text: str) -> Reply:
        async with self.store.transition(chat_id):
            return await self._on_text(chat_id, text.strip())

    async def handle_button(self, chat_id: int, data: str) -> Reply:
        async with self.store.transition(chat_id):
            return await self._on_button(chat_id, data)

    async def _on_text(self, chat_id: int, text: str) -> Reply:
        if text.startswith("/"):
            command = text.split()[0].split("@")[0].lower()
            if command == "/start":
                return await self._register(chat_id)
            if command == "/menu":
                return Reply(MENU_TEXT, main_menu())
            if command == "/options":
                return Reply(OPTIONS_TEXT, options_menu())
            if command == "/help":
                return Reply(HELP_TEXT, main_menu())
            if command == "/cancel":
                self.store.reset(chat_id)
                return Reply(CANCELLED_TEXT, main_menu())

        state = self.store.get(chat_id)
        if isinstance(state, AwaitingAmount):
            amount = parse_amount(text)
            if amount is None:
                return Reply(INVALID_AMOUNT_TEXT)
            self.store.set(chat_id, AwaitingCategory(state.kind, amount))
            return Reply(CATEGORY_PROMPTS[state.kind], category_menu(state.kind))
        if isinstance(state, AwaitingCategory):
            return Reply(PICK_CATEGORY_TEXT, category_menu(state.kind))
        return Reply(UNKNOWN_TEXT, main_menu())

    async def _on_button(self, chat_id: int, data: str) -> Reply:
        if data in (TransactionKind.INCOME.value, TransactionKind.EXPENSE.value):
            kind = TransactionKind(data)
            self.store.set(chat_id, AwaitingAmount(kind))
            return Reply(AMOUNT_PROMPTS[kind])
        if data == "report":
            return await self._report(chat_id)
        if data == "clear":
            return await self._clear(chat_id)

        state = self.store.get(chat_id)
        if isinstance(state, AwaitingCategory):
            if data in CATEGORIES[state.kind]:
                return await self._record(chat_id, state, data)
            return Reply(PICK_CATEGORY_TEXT, category_menu(state.kind))
        if data in ALL_CATEGORY_TOKENS:
            return Reply(NO_PENDING_TEXT, main_menu())
        logger.warning("Unknown button %r from chat %s", data, chat_id)
        return Reply(UNKNOWN_TEXT, main_menu())

    async def _register(self, chat_id: int) -> Reply:
        try:
            await asyncio.to_thread(self.service.register_user, chat_id)
        except SQLAlchemyError:
            logger.exception("Failed to register chat %s", chat_id)
            self.store.reset(chat_id)
            return Reply(FAILURE_TEXT)
        return Reply(f"{WELCOME_TEXT}\n\n{MENU_TEXT}", main_menu())

    async def _record(self, chat_id: int, state: AwaitingCategory, token: str) -> Reply:
        add = self.service.add_income if state.kind == TransactionKind.INCOME else self.service.add_expense
        self.store.reset(chat_id)
        try:
            await asyncio.to_thread(add, chat_id, state.amount, token)
        except UnregisteredUserError:
            return Reply(UNREGISTERED_TEXT)
        except SQLAlchemyError:
            logger.exception("Failed to record %s for chat %s", state.kind.value, chat_id)
            return Reply(FAILURE_TEXT, main_menu())
        label = category_label(state.kind, token)
        return Reply(
            f"✅ {state.kind.value.capitalize()} of {state.amount:.2f} recorded under {label}.\n\n{MENU_TEXT}",
            main_menu(),
        )

    async def _report(self, chat_id: int) -> Reply:
        try:
            report = await asyncio.to_thread(self.service.get_report, chat_id)
        except UnregisteredUserError:
            return Reply(UNREGISTERED_TEXT)
        except SQLAlchemyError:
            logger.exception("Failed to build report for chat %s", chat_id)
            self.store.reset(chat_id)
            return Reply(FAILURE_TEXT, main_menu())
        return Reply(report.format())

    async def _clear(self, chat_id: int) -> Reply:
        try:
            await asyncio.to_thread(self.service.clear_data, chat_id)
        except SQLAlchemyError:
            logger.exception("Failed to clear data for chat %s", chat_id)
            self.store.reset(chat_id)
            return Reply(FAILURE_TEXT, main_menu())
        return Reply(CLEARED_TEXT)
