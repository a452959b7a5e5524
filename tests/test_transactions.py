from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pydantic
import pytest
from sqlalchemy import select

from errors import NotFoundError, ValidationError
from models import DefaultCategory, TransactionType
from schemas import CategoryIn, TransactionIn, TransactionUpdate
from services import (
    CategoryService,
    TransactionFilters,
    TransactionService,
    cents_from_amount,
    seed_default_categories,
)


def first_default(session) -> DefaultCategory:
    seed_default_categories(session)
    return session.scalars(select(DefaultCategory).order_by(DefaultCategory.id)).first()


def expense(category_id: int, amount: str, description: str, when: datetime) -> TransactionIn:
    return TransactionIn(
        amount=Decimal(amount),
        description=description,
        type=TransactionType.expense,
        category=category_id,
        date=when,
    )


def test_negative_amount_is_stored_as_absolute_value(session, make_user) -> None:
    alice = make_user("alice@example.com")
    food = first_default(session)

    txn = TransactionService(session, alice.id).create(
        expense(food.id, "-50", "Groceries", datetime(2025, 1, 5, 12, 0))
    )

    assert txn.amount_cents == 5000
    assert txn.amount == 50
    assert txn.category.name == food.name


def test_date_defaults_to_now(session, make_user) -> None:
    alice = make_user("alice@example.com")
    food = first_default(session)
    before = datetime.utcnow() - timedelta(seconds=1)

    txn = TransactionService(session, alice.id).create(
        TransactionIn(
            amount=Decimal("12.30"),
            description="Lunch",
            type=TransactionType.expense,
            category=food.id,
        )
    )

    assert before <= txn.date <= datetime.utcnow() + timedelta(seconds=1)


def test_aware_dates_are_stored_as_utc(session, make_user) -> None:
    alice = make_user("alice@example.com")
    food = first_default(session)
    cet = timezone(timedelta(hours=1))

    txn = TransactionService(session, alice.id).create(
        expense(food.id, "10", "Dinner", datetime(2025, 1, 5, 20, 0, tzinfo=cet))
    )

    assert txn.date == datetime(2025, 1, 5, 19, 0)


def test_amount_precision_and_range_are_validated() -> None:
    for amount in ("0", "0.001", "10.005", "1000000000000", "1e17", "-1e30"):
        with pytest.raises(pydantic.ValidationError):
            expense(1, amount, "Bad amount", datetime(2025, 1, 5))

    assert expense(1, "10.500", "Trailing zero", datetime(2025, 1, 5)).amount == Decimal("10.5")
    largest = expense(1, "999999999999.99", "Largest", datetime(2025, 1, 5))
    assert largest.amount == Decimal("999999999999.99")


def test_cents_conversion_rejects_amounts_that_round_to_zero() -> None:
    assert cents_from_amount(Decimal("-12.34")) == 1234
    with pytest.raises(ValidationError):
        cents_from_amount(Decimal("0.004"))


def test_foreign_category_is_rejected_on_create_and_update(session, make_user) -> None:
    alice = make_user("alice@example.com")
    bob = make_user("bob@example.com")
    food = first_default(session)
    garden = CategoryService(session, bob.id).create(CategoryIn(name="Garden"))
    service = TransactionService(session, alice.id)

    with pytest.raises(ValidationError, match="Invalid category"):
        service.create(expense(garden.id, "5", "Seeds", datetime(2025, 1, 5)))

    txn = service.create(expense(food.id, "5", "Snack", datetime(2025, 1, 5)))
    with pytest.raises(ValidationError, match="Invalid category"):
        service.update(txn.id, TransactionUpdate(category=garden.id))
    assert service.get(txn.id).category_id == food.id


def test_partial_update_changes_only_supplied_fields(session, make_user) -> None:
    alice = make_user("alice@example.com")
    food = first_default(session)
    pets = CategoryService(session, alice.id).create(CategoryIn(name="Pets"))
    service = TransactionService(session, alice.id)
    txn = service.create(expense(food.id, "20", "Vet", datetime(2025, 1, 5)))

    updated = service.update(
        txn.id, TransactionUpdate(amount=Decimal("-35.5"), category=pets.id)
    )

    assert updated.amount_cents == 3550
    assert updated.category.name == "Pets"
    assert updated.description == "Vet"
    assert updated.type == TransactionType.expense
    assert updated.date == datetime(2025, 1, 5)


def test_other_users_transaction_is_not_found(session, make_user) -> None:
    alice = make_user("alice@example.com")
    bob = make_user("bob@example.com")
    food = first_default(session)
    txn = TransactionService(session, alice.id).create(
        expense(food.id, "5", "Snack", datetime(2025, 1, 5))
    )
    bobs = TransactionService(session, bob.id)

    with pytest.raises(NotFoundError):
        bobs.get(txn.id)
    with pytest.raises(NotFoundError):
        bobs.update(txn.id, TransactionUpdate(description="Mine"))
    with pytest.raises(NotFoundError):
        bobs.delete(txn.id)


def test_delete_removes_transaction(session, make_user) -> None:
    alice = make_user("alice@example.com")
    food = first_default(session)
    service = TransactionService(session, alice.id)
    txn = service.create(expense(food.id, "5", "Snack", datetime(2025, 1, 5)))

    service.delete(txn.id)

    with pytest.raises(NotFoundError):
        service.get(txn.id)


def test_list_filters_and_paginates(session, make_user) -> None:
    alice = make_user("alice@example.com")
    bob = make_user("bob@example.com")
    food = first_default(session)
    service = TransactionService(session, alice.id)
    for day in range(1, 13):
        service.create(expense(food.id, "1", f"Coffee #{day}", datetime(2025, 1, day)))
    service.create(
        TransactionIn(
            amount=Decimal("1000"),
            description="Salary January",
            type=TransactionType.income,
            category=food.id,
            date=datetime(2025, 1, 31),
        )
    )
    TransactionService(session, bob.id).create(
        expense(food.id, "3", "Coffee for Bob", datetime(2025, 1, 3))
    )

    page_one, total = service.list(TransactionFilters(), page=1, limit=5)
    assert total == 13
    assert [t.description for t in page_one][:2] == ["Salary January", "Coffee #12"]

    last_page, _ = service.list(TransactionFilters(), page=3, limit=5)
    assert len(last_page) == 3

    coffees, total = service.list(TransactionFilters(query="COFFEE"))
    assert total == 12

    incomes, total = service.list(TransactionFilters(type=TransactionType.income))
    assert total == 1 and incomes[0].description == "Salary January"

    ranged, total = service.list(
        TransactionFilters(start=datetime(2025, 1, 3), end=datetime(2025, 1, 5, 23, 59))
    )
    assert total == 3


def test_search_treats_wildcards_literally(session, make_user) -> None:
    alice = make_user("alice@example.com")
    food = first_default(session)
    service = TransactionService(session, alice.id)
    service.create(expense(food.id, "1", "Tip 100%", datetime(2025, 1, 1)))
    service.create(expense(food.id, "1", "Tip 1000", datetime(2025, 1, 2)))
    service.create(expense(food.id, "1", "snake_case", datetime(2025, 1, 3)))
    service.create(expense(food.id, "1", "snakeXcase", datetime(2025, 1, 4)))

    percent, total = service.list(TransactionFilters(query="100%"))
    assert total == 1 and percent[0].description == "Tip 100%"

    underscore, total = service.list(TransactionFilters(query="e_c"))
    assert total == 1 and underscore[0].description == "snake_case"


def test_search_folds_case_beyond_ascii(session, make_user) -> None:
    alice = make_user("alice@example.com")
    food = first_default(session)
    service = TransactionService(session, alice.id)
    service.create(expense(food.id, "4.20", "CAFÉ Latte", datetime(2025, 1, 1)))
    service.create(expense(food.id, "3.10", "über eats", datetime(2025, 1, 2)))

    cafe, total = service.list(TransactionFilters(query="café"))
    assert total == 1 and cafe[0].description == "CAFÉ Latte"

    uber, total = service.list(TransactionFilters(query="ÜBER"))
    assert total == 1 and uber[0].description == "über eats"


def test_recent_is_newest_first(session, make_user) -> None:
    alice = make_user("alice@example.com")
    food = first_default(session)
    service = TransactionService(session, alice.id)
    for day in (3, 1, 7, 5):
        service.create(expense(food.id, "1", f"Day {day}", datetime(2025, 2, day)))

    assert [t.description for t in service.recent(limit=3)] == ["Day 7", "Day 5", "Day 3"]
