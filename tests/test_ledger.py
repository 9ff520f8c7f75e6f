from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select, text
from sqlalchemy.orm import Session

from database import Base
from models import UNCATEGORIZED, Category, Transaction, TransactionType
from services import InvalidInput, Ledger, NotFound


def make_ledger() -> Ledger:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Ledger(Session(engine))


def add_expense(ledger: Ledger, day: date, amount: str = "10", category_id=None):
    return ledger.create_transaction(
        amount=Decimal(amount),
        description=f"spent on {day.isoformat()}",
        date=day,
        type=TransactionType.expense,
        category_id=category_id,
    )


def test_create_category_returns_full_record() -> None:
    ledger = make_ledger()

    food = ledger.create_category(
        name="  Food ", type=TransactionType.expense, color="bg-orange-500", icon="🍔"
    )

    assert food.id is not None
    assert food.name == "Food"
    assert food.type == TransactionType.expense
    assert food.color == "bg-orange-500"
    assert food.icon == "🍔"
    assert food.transaction_count == 0


def test_create_category_rejects_blank_name() -> None:
    ledger = make_ledger()

    with pytest.raises(InvalidInput):
        ledger.create_category(name="   ", type=TransactionType.expense)


def test_categories_are_listed_by_name_with_transaction_counts() -> None:
    ledger = make_ledger()
    transport = ledger.create_category(name="Transport", type=TransactionType.expense)
    food = ledger.create_category(name="Food", type=TransactionType.expense)
    salary = ledger.create_category(name="Salary", type=TransactionType.income)
    add_expense(ledger, date(2024, 3, 1), category_id=food.id)
    add_expense(ledger, date(2024, 3, 2), category_id=food.id)
    add_expense(ledger, date(2024, 3, 3), category_id=transport.id)

    categories = ledger.list_categories()

    assert [c.name for c in categories] == ["Food", "Salary", "Transport"]
    counts = {c.id: c.transaction_count for c in categories}
    assert counts == {food.id: 2, salary.id: 0, transport.id: 1}


def test_transactions_are_ordered_by_date_then_id_descending() -> None:
    ledger = make_ledger()
    first = add_expense(ledger, date(2024, 1, 1))
    second = add_expense(ledger, date(2024, 1, 2))
    third = add_expense(ledger, date(2024, 1, 1))

    listed = ledger.list_transactions()

    assert [t.id for t in listed] == [second.id, third.id, first.id]


def test_limit_returns_most_recent_transaction_only() -> None:
    ledger = make_ledger()
    for day in range(1, 6):
        add_expense(ledger, date(2024, 3, day))
    latest = add_expense(ledger, date(2024, 4, 2))

    listed = ledger.list_transactions("2024-03", limit=1)
    assert len(listed) == 1
    assert listed[0].date == date(2024, 3, 5)

    assert [t.id for t in ledger.list_transactions(limit=1)] == [latest.id]


def test_month_filter_keeps_only_that_month() -> None:
    ledger = make_ledger()
    add_expense(ledger, date(2024, 2, 29))
    inside = add_expense(ledger, date(2024, 3, 31))
    add_expense(ledger, date(2024, 4, 1))

    assert [t.id for t in ledger.list_transactions("2024-03")] == [inside.id]


def test_listing_rejects_non_positive_limit() -> None:
    ledger = make_ledger()

    with pytest.raises(InvalidInput, match="Limit"):
        ledger.list_transactions(limit=0)


def test_listing_rejects_malformed_month() -> None:
    ledger = make_ledger()

    with pytest.raises(InvalidInput, match="YYYY-MM"):
        ledger.list_transactions("03-2024")


def test_enriched_transactions_carry_category_display_fields() -> None:
    ledger = make_ledger()
    food = ledger.create_category(
        name="Food", type=TransactionType.expense, color="bg-orange-500", icon="🍔"
    )
    add_expense(ledger, date(2024, 3, 1), category_id=food.id)
    add_expense(ledger, date(2024, 3, 2))

    uncategorized, categorized = ledger.list_transactions("2024-03")

    assert categorized.category_id == food.id
    assert categorized.category_name == "Food"
    assert categorized.category_color == "bg-orange-500"
    assert categorized.category_icon == "🍔"
    assert uncategorized.category_id is None
    assert uncategorized.category_name == UNCATEGORIZED
    assert uncategorized.category_color == ""
    assert uncategorized.category_icon == ""


def test_deleting_category_keeps_transactions_as_uncategorized() -> None:
    ledger = make_ledger()
    food = ledger.create_category(name="Food", type=TransactionType.expense)
    txn = add_expense(ledger, date(2024, 3, 1), category_id=food.id)

    ledger.delete_category(food.id)

    listed = ledger.list_transactions()
    assert [t.id for t in listed] == [txn.id]
    assert listed[0].category_name == UNCATEGORIZED
    assert listed[0].category_id is None
    stored = ledger.session.get(Transaction, txn.id)
    assert stored.category_id is None
    assert ledger.list_categories() == []


def test_dangling_category_reference_resolves_to_uncategorized() -> None:
    ledger = make_ledger()
    session = ledger.session
    session.add(
        Transaction(
            amount=Decimal("12.50"),
            description="legacy row",
            date=date(2024, 3, 4),
            type=TransactionType.expense,
            category_id=999,
        )
    )
    session.commit()

    (txn,) = ledger.list_transactions("2024-03")

    assert txn.category_name == UNCATEGORIZED
    assert txn.category_id is None
    assert txn.amount == Decimal("12.50")


def test_deleting_missing_records_is_not_an_error() -> None:
    ledger = make_ledger()

    ledger.delete_category(42)
    ledger.delete_transaction(42)


def test_delete_transaction_removes_it() -> None:
    ledger = make_ledger()
    keep = add_expense(ledger, date(2024, 3, 1))
    drop = add_expense(ledger, date(2024, 3, 2))

    ledger.delete_transaction(drop.id)

    assert [t.id for t in ledger.list_transactions()] == [keep.id]


def test_update_replaces_every_field() -> None:
    ledger = make_ledger()
    food = ledger.create_category(name="Food", type=TransactionType.expense)
    salary = ledger.create_category(name="Salary", type=TransactionType.income)
    txn = add_expense(ledger, date(2024, 3, 1), amount="10", category_id=food.id)

    updated = ledger.update_transaction(
        txn.id,
        amount=Decimal("2500.00"),
        description=None,
        date=date(2024, 4, 25),
        type=TransactionType.income,
        category_id=salary.id,
    )

    assert updated.id == txn.id
    assert updated.amount == Decimal("2500.00")
    assert updated.note is None
    assert updated.date == date(2024, 4, 25)
    assert updated.type == TransactionType.income
    assert updated.category_id == salary.id

    cleared = ledger.update_transaction(
        txn.id,
        amount=Decimal("1"),
        description="no category",
        date=date(2024, 4, 25),
        type=TransactionType.income,
        category_id=None,
    )
    assert cleared.category_id is None


def test_update_of_unknown_transaction_raises_not_found() -> None:
    ledger = make_ledger()

    with pytest.raises(NotFound):
        ledger.update_transaction(
            7,
            amount=Decimal("1"),
            description=None,
            date=date(2024, 3, 1),
            type=TransactionType.expense,
        )


def test_transaction_with_unknown_category_is_rejected() -> None:
    ledger = make_ledger()

    with pytest.raises(InvalidInput, match="Category not found"):
        add_expense(ledger, date(2024, 3, 1), category_id=5)


def test_negative_amount_is_rejected() -> None:
    ledger = make_ledger()

    with pytest.raises(InvalidInput):
        add_expense(ledger, date(2024, 3, 1), amount="-1")


def test_category_type_is_not_checked_against_transaction_type() -> None:
    ledger = make_ledger()
    salary = ledger.create_category(name="Salary", type=TransactionType.income)

    txn = add_expense(ledger, date(2024, 3, 1), category_id=salary.id)

    assert txn.type == TransactionType.expense
    assert txn.category_id == salary.id


def test_zero_category_id_means_uncategorized() -> None:
    ledger = make_ledger()

    txn = add_expense(ledger, date(2024, 3, 1), category_id=0)

    assert txn.category_id is None


def test_malformed_stored_rows_are_skipped() -> None:
    ledger = make_ledger()
    good = add_expense(ledger, date(2024, 3, 1))
    ledger.session.execute(
        text(
            "INSERT INTO transactions (amount, description, date, type, created_at, updated_at) "
            "VALUES (5, 'bad date', 'not-a-date', 'expense', '2024-03-01', '2024-03-01'), "
            "(5, 'bad type', '2024-03-02', 'refund', '2024-03-01', '2024-03-01')"
        )
    )
    ledger.session.commit()

    assert [t.id for t in ledger.list_transactions()] == [good.id]
    assert [t.id for t in ledger.list_transactions("2024-03")] == [good.id]


def test_malformed_category_rows_are_skipped() -> None:
    ledger = make_ledger()
    ledger.create_category(name="Food", type=TransactionType.expense)
    ledger.session.execute(
        text(
            "INSERT INTO categories (name, type, color, icon, created_at, updated_at) "
            "VALUES ('Broken', 'savings', '', '', '2024-03-01', '2024-03-01')"
        )
    )
    ledger.session.commit()

    assert [c.name for c in ledger.list_categories()] == ["Food"]
    names = ledger.session.scalars(select(Category.name)).all()
    assert "Broken" in names
