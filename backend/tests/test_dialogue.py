import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from finbot.dialogue import (
    CANCELLED_TEXT,
    CLEARED_TEXT,
    FAILURE_TEXT,
    IDLE,
    INVALID_AMOUNT_TEXT,
    NO_PENDING_TEXT,
    PICK_CATEGORY_TEXT,
    UNREGISTERED_TEXT,
    AwaitingAmount,
    AwaitingCategory,
    DialogueManager,
    Stage,
    parse_amount,
)
from finbot.keyboards import category_menu, main_menu
from finbot.models import TransactionKind

INCOME = TransactionKind.INCOME
EXPENSE = TransactionKind.EXPENSE


class BrokenService:
    """Service double whose every database call fails."""

    def _fail(self, *args):
        raise OperationalError("SELECT 1", {}, Exception("connection lost"))

    register_user = add_income = add_expense = clear_data = get_report = _fail


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("100", Decimal("100.00")),
        ("12.5", Decimal("12.50")),
        ("12,50", Decimal("12.50")),
        ("  7 ", Decimal("7.00")),
        ("0.005", Decimal("0.01")),
    ],
)
def test_parse_amount_accepts_positive_decimals(raw, expected):
    assert parse_amount(raw) == expected


@pytest.mark.parametrize(
    "raw", ["", "abc", "0", "0.00", "0.001", "-5", "1e3", "nan", "Infinity", "1.2.3", "1,000.50", "10000000000"]
)
def test_parse_amount_rejects_invalid_input(raw):
    assert parse_amount(raw) is None


def test_states_expose_stage_labels():
    assert IDLE.stage == Stage.NONE
    assert AwaitingAmount(INCOME).stage == Stage.AWAITING_AMOUNT_INCOME
    assert AwaitingAmount(EXPENSE).stage == Stage.AWAITING_AMOUNT_EXPENSE
    assert AwaitingCategory(INCOME, Decimal("1")).stage == Stage.AWAITING_CATEGORY_INCOME
    assert AwaitingCategory(EXPENSE, Decimal("1")).stage == Stage.AWAITING_CATEGORY_EXPENSE


@pytest.mark.asyncio
async def test_start_registers_and_shows_menu(dialogue, service):
    reply = await dialogue.handle_text(1, "/start")

    assert reply.keyboard == main_menu()
    assert service.get_report(1).balance == Decimal("0")
    assert dialogue.state_of(1) == IDLE


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", [INCOME, EXPENSE])
@pytest.mark.parametrize("raw, amount", [("100", Decimal("100.00")), ("0.5", Decimal("0.50")), ("1999,99", Decimal("1999.99"))])
async def test_valid_amount_moves_to_category(dialogue, kind, raw, amount):
    await dialogue.handle_button(1, kind.value)

    reply = await dialogue.handle_text(1, raw)

    assert dialogue.state_of(1) == AwaitingCategory(kind, amount)
    assert reply.keyboard == category_menu(kind)


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", [INCOME, EXPENSE])
@pytest.mark.parametrize("raw", ["ten", "0", "-3", "", "12abc"])
async def test_invalid_amount_keeps_state(dialogue, kind, raw):
    await dialogue.handle_button(1, kind.value)

    reply = await dialogue.handle_text(1, raw)

    assert reply.text == INVALID_AMOUNT_TEXT
    assert dialogue.state_of(1) == AwaitingAmount(kind)


@pytest.mark.asyncio
async def test_full_flow_records_transactions(dialogue, service):
    await dialogue.handle_text(1, "/start")

    await dialogue.handle_button(1, "income")
    await dialogue.handle_text(1, "100")
    saved = await dialogue.handle_button(1, "salary")
    assert saved.keyboard == main_menu()
    assert "100.00" in saved.text
    assert dialogue.state_of(1) == IDLE

    await dialogue.handle_button(1, "expense")
    await dialogue.handle_text(1, "40")
    await dialogue.handle_button(1, "eat")

    report = await dialogue.handle_button(1, "report")
    assert "Balance: 60.00" in report.text
    assert dialogue.state_of(1) == IDLE


@pytest.mark.asyncio
async def test_clear_then_report_shows_zero(dialogue):
    await dialogue.handle_text(1, "/start")
    await dialogue.handle_button(1, "expense")
    await dialogue.handle_text(1, "15")
    await dialogue.handle_button(1, "taxi")

    cleared = await dialogue.handle_button(1, "clear")
    report = await dialogue.handle_button(1, "report")

    assert cleared.text == CLEARED_TEXT
    assert "Income: 0.00" in report.text
    assert "Expenses: 0.00" in report.text
    assert "Balance: 0.00" in report.text


@pytest.mark.asyncio
@pytest.mark.parametrize("prepare", [[], ["income"], ["expense", "25"]])
async def test_cancel_returns_to_idle_from_any_state(dialogue, prepare):
    if prepare:
        await dialogue.handle_button(1, prepare[0])
    for text in prepare[1:]:
        await dialogue.handle_text(1, text)

    reply = await dialogue.handle_text(1, "/cancel")

    assert reply.text == CANCELLED_TEXT
    assert reply.keyboard == main_menu()
    assert dialogue.state_of(1) == IDLE


@pytest.mark.asyncio
async def test_report_does_not_alter_pending_stage(dialogue):
    await dialogue.handle_text(1, "/start")
    await dialogue.handle_button(1, "expense")

    await dialogue.handle_button(1, "report")
    await dialogue.handle_text(1, "/menu")

    assert dialogue.state_of(1) == AwaitingAmount(EXPENSE)


@pytest.mark.asyncio
async def test_start_action_mid_flow_starts_over(dialogue):
    await dialogue.handle_button(1, "expense")
    await dialogue.handle_text(1, "25")

    await dialogue.handle_button(1, "income")

    assert dialogue.state_of(1) == AwaitingAmount(INCOME)


@pytest.mark.asyncio
async def test_category_of_other_kind_is_refused(dialogue):
    await dialogue.handle_text(1, "/start")
    await dialogue.handle_button(1, "expense")
    await dialogue.handle_text(1, "25")

    reply = await dialogue.handle_button(1, "salary")

    assert reply.text == PICK_CATEGORY_TEXT
    assert reply.keyboard == category_menu(EXPENSE)
    assert dialogue.state_of(1) == AwaitingCategory(EXPENSE, Decimal("25.00"))


@pytest.mark.asyncio
async def test_text_while_awaiting_category_repeats_menu(dialogue):
    await dialogue.handle_button(1, "income")
    await dialogue.handle_text(1, "25")

    reply = await dialogue.handle_text(1, "salary please")

    assert reply.text == PICK_CATEGORY_TEXT
    assert dialogue.state_of(1) == AwaitingCategory(INCOME, Decimal("25.00"))


@pytest.mark.asyncio
async def test_category_without_pending_amount(dialogue):
    reply = await dialogue.handle_button(1, "eat")

    assert reply.text == NO_PENDING_TEXT
    assert dialogue.state_of(1) == IDLE


@pytest.mark.asyncio
async def test_unregistered_chat_is_told_to_start(dialogue):
    await dialogue.handle_button(1, "income")
    await dialogue.handle_text(1, "10")

    saved = await dialogue.handle_button(1, "salary")
    report = await dialogue.handle_button(1, "report")

    assert saved.text == UNREGISTERED_TEXT
    assert report.text == UNREGISTERED_TEXT
    assert dialogue.state_of(1) == IDLE


@pytest.mark.asyncio
async def test_persistence_error_resets_state():
    dialogue = DialogueManager(BrokenService())
    await dialogue.handle_button(1, "expense")
    await dialogue.handle_text(1, "10")

    reply = await dialogue.handle_button(1, "eat")

    assert reply.text == FAILURE_TEXT
    assert dialogue.state_of(1) == IDLE


@pytest.mark.asyncio
async def test_persistence_error_on_report_resets_state():
    dialogue = DialogueManager(BrokenService())
    await dialogue.handle_button(1, "income")

    reply = await dialogue.handle_button(1, "report")

    assert reply.text == FAILURE_TEXT
    assert dialogue.state_of(1) == IDLE


@pytest.mark.asyncio
async def test_chats_do_not_block_each_other(dialogue):
    async with dialogue.store.transition(1):
        reply = await asyncio.wait_for(dialogue.handle_button(2, "income"), timeout=1)

    assert reply.keyboard is None
    assert dialogue.state_of(2) == AwaitingAmount(INCOME)


@pytest.mark.asyncio
async def test_same_chat_transitions_are_serialised(dialogue):
    release = asyncio.Event()

    async def hold():
        async with dialogue.store.transition(1):
            await release.wait()

    holder = asyncio.create_task(hold())
    await asyncio.sleep(0)
    task = asyncio.create_task(dialogue.handle_button(1, "income"))
    await asyncio.sleep(0)

    assert not task.done()
    assert dialogue.state_of(1) == IDLE

    release.set()
    await holder
    await task
    assert dialogue.state_of(1) == AwaitingAmount(INCOME)


@pytest.mark.asyncio
async def test_lock_is_kept_while_entry_pending_and_dropped_when_idle(dialogue):
    await dialogue.handle_button(1, "expense")
    assert dialogue.store.has_lock(1)

    await dialogue.handle_text(1, "/cancel")
    assert not dialogue.store.has_lock(1)

    await dialogue.handle_text(1, "/menu")
    assert not dialogue.store.has_lock(1)


@pytest.mark.asyncio
async def test_lock_survives_while_another_transition_waits(dialogue):
    release = asyncio.Event()
    seen = []

    async def hold():
        async with dialogue.store.transition(1):
            await release.wait()

    async def wait_then_check():
        async with dialogue.store.transition(1):
            seen.append(dialogue.store.has_lock(1))

    holder = asyncio.create_task(hold())
    await asyncio.sleep(0)
    waiter = asyncio.create_task(wait_then_check())
    await asyncio.sleep(0)
    release.set()
    await asyncio.gather(holder, waiter)

    assert seen == [True]
    assert not dialogue.store.has_lock(1)
