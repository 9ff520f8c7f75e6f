from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from functools import wraps
from typing import Iterator, Optional

from pydantic import ValidationError
from sqlalchemy import String, delete, func, select, type_coerce, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from models import UNCATEGORIZED, Category, Transaction, TransactionType, User
from periods import month_predicate
from schemas import CategoryIn, TransactionIn


logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

DEFAULT_CATEGORIES: list[tuple[str, TransactionType, str, str]] = [
    ("Salary", TransactionType.income, "bg-emerald-500", "💰"),
    ("Freelance", TransactionType.income, "bg-blue-500", "💻"),
    ("Food", TransactionType.expense, "bg-orange-500", "🍔"),
    ("Transport", TransactionType.expense, "bg-indigo-500", "🚌"),
    ("Utilities", TransactionType.expense, "bg-yellow-500", "⚡"),
    ("Entertainment", TransactionType.expense, "bg-pink-500", "🎬"),
]


class InvalidInput(ValueError):
    pass


class NotFound(ValueError):
    pass


class StoreUnavailable(RuntimeError):
    pass


class RowDecodeError(ValueError):
    pass


@contextmanager
def store_errors(session: Session, operation: str) -> Iterator[None]:
    try:
        yield
    except IntegrityError as exc:
        session.rollback()
        raise InvalidInput(f"Rejected by the store: {exc.orig}") from exc
    except DBAPIError as exc:
        session.rollback()
        logger.exception(f"store_error: operation={operation}")
        raise StoreUnavailable("Ledger store is unavailable") from exc


@dataclass
class CategoryRecord:
    id: int
    name: str
    type: TransactionType
    color: str
    icon: str
    transaction_count: int = 0


@dataclass
class TransactionRecord:
    id: int
    amount: Decimal
    note: Optional[str]
    date: date
    type: TransactionType
    category_id: Optional[int]


@dataclass
class EnrichedTransaction(TransactionRecord):
    category_name: str = UNCATEGORIZED
    category_color: str = ""
    category_icon: str = ""


@dataclass
class MonthlySummary:
    income: Decimal
    expense: Decimal
    balance: Decimal


@dataclass
class CategoryStat:
    name: str
    color: str
    icon: str
    amount: Decimal
    percentage: float = 0.0


def _decode_amount(raw: object) -> Decimal:
    if raw is None:
        raise RowDecodeError("amount is missing")
    try:
        amount = Decimal(str(raw))
    except InvalidOperation as exc:
        raise RowDecodeError(f"invalid amount {raw!r}") from exc
    if not amount.is_finite() or amount < 0:
        raise RowDecodeError(f"invalid amount {raw!r}")
    return amount.quantize(CENTS)


def _decode_date(raw: object) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw))
    except ValueError as exc:
        raise RowDecodeError(f"invalid date {raw!r}") from exc


def _decode_type(raw: object) -> TransactionType:
    if isinstance(raw, TransactionType):
        return raw
    try:
        return TransactionType(raw)
    except ValueError as exc:
        raise RowDecodeError(f"invalid type {raw!r}") from exc


def resolve_transaction_row(row) -> EnrichedTransaction:
    """Decode a ledger row and attach its category display fields.

    The row comes from an outer join, so ``joined_category_id`` is ``None``
    both when the transaction has no category and when it points at a
    category that no longer exists. Both cases resolve to the
    "Uncategorized" sentinel.
    """
    amount = _decode_amount(row.amount)
    txn_date = _decode_date(row.date)
    txn_type = _decode_type(row.type)

    if row.joined_category_id is None:
        return EnrichedTransaction(
            id=row.id,
            amount=amount,
            note=row.description,
            date=txn_date,
            type=txn_type,
            category_id=None,
            category_name=UNCATEGORIZED,
            category_color="",
            category_icon="",
        )
    return EnrichedTransaction(
        id=row.id,
        amount=amount,
        note=row.description,
        date=txn_date,
        type=txn_type,
        category_id=row.joined_category_id,
        category_name=row.category_name,
        category_color=row.category_color or "",
        category_icon=row.category_icon or "",
    )


def to_category_record(category: Category, transaction_count: int = 0) -> CategoryRecord:
    return CategoryRecord(
        id=category.id,
        name=category.name,
        type=category.type,
        color=category.color or "",
        icon=category.icon or "",
        transaction_count=transaction_count,
    )


def to_transaction_record(txn: Transaction) -> TransactionRecord:
    return TransactionRecord(
        id=txn.id,
        amount=Decimal(txn.amount).quantize(CENTS),
        note=txn.description,
        date=txn.date,
        type=txn.type,
        category_id=txn.category_id,
    )


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[CategoryRecord]:
        stmt = (
            select(
                Category.id,
                Category.name,
                type_coerce(Category.type, String).label("type"),
                Category.color,
                Category.icon,
                func.count(Transaction.id).label("transaction_count"),
            )
            .outerjoin(Transaction, Transaction.category_id == Category.id)
            .group_by(
                Category.id, Category.name, Category.type, Category.color, Category.icon
            )
            .order_by(Category.name, Category.id)
        )
        records: list[CategoryRecord] = []
        for row in self.session.execute(stmt).all():
            try:
                category_type = _decode_type(row.type)
            except RowDecodeError as exc:
                logger.warning(f"skipped_category_row: id={row.id} reason={exc}")
                continue
            records.append(
                CategoryRecord(
                    id=row.id,
                    name=row.name,
                    type=category_type,
                    color=row.color or "",
                    icon=row.icon or "",
                    transaction_count=int(row.transaction_count or 0),
                )
            )
        return records

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFound("Category not found")
        return category

    def exists(self, category_id: int) -> bool:
        return self.session.get(Category, category_id) is not None

    def create(self, data: CategoryIn) -> Category:
        category = Category(
            name=data.name.strip(),
            type=data.type,
            color=data.color,
            icon=data.icon,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        logger.info(
            f"category_created: id={category.id} type={category.type.value} name={category.name!r}"
        )
        return category

    def delete(self, category_id: int) -> None:
        cleared = self.session.execute(
            update(Transaction)
            .where(Transaction.category_id == category_id)
            .values(category_id=None)
        ).rowcount
        removed = self.session.execute(
            delete(Category).where(Category.id == category_id)
        ).rowcount
        self.session.commit()
        logger.info(
            f"category_deleted: id={category_id} removed={removed} transactions_uncategorized={cleared}"
        )

    def seed_defaults(self) -> int:
        if self.session.scalar(select(func.count(Category.id))):
            return 0
        for name, category_type, color, icon in DEFAULT_CATEGORIES:
            self.session.add(
                Category(name=name, type=category_type, color=color, icon=icon)
            )
        self.session.commit()
        logger.info(f"categories_seeded: count={len(DEFAULT_CATEGORIES)}")
        return len(DEFAULT_CATEGORIES)


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _enriched_select(self):
        return (
            select(
                Transaction.id,
                type_coerce(Transaction.amount, String).label("amount"),
                Transaction.description,
                type_coerce(Transaction.date, String).label("date"),
                type_coerce(Transaction.type, String).label("type"),
                Transaction.category_id,
                Category.id.label("joined_category_id"),
                Category.name.label("category_name"),
                Category.color.label("category_color"),
                Category.icon.label("category_icon"),
            )
            .select_from(Transaction)
            .outerjoin(Category, Category.id == Transaction.category_id)
        )

    def _resolve_rows(self, stmt) -> list[EnrichedTransaction]:
        items: list[EnrichedTransaction] = []
        for row in self.session.execute(stmt).all():
            try:
                items.append(resolve_transaction_row(row))
            except RowDecodeError as exc:
                logger.warning(f"skipped_transaction_row: id={row.id} reason={exc}")
        return items

    def _check_category(self, category_id: Optional[int]) -> None:
        if category_id is None:
            return
        if not CategoryService(self.session).exists(category_id):
            raise InvalidInput("Category not found")

    def _month_filter(self, month: Optional[str]):
        try:
            return month_predicate(Transaction.date, month)
        except ValueError as exc:
            raise InvalidInput(str(exc)) from exc

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def list(
        self, month: Optional[str] = None, limit: Optional[int] = None
    ) -> list[EnrichedTransaction]:
        if limit is not None and limit < 1:
            raise InvalidInput("Limit must be a positive integer")
        stmt = self._enriched_select()
        if month:
            stmt = stmt.where(self._month_filter(month))
        stmt = stmt.order_by(Transaction.date.desc(), Transaction.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return self._resolve_rows(stmt)

    def for_month(
        self,
        month: Optional[str],
        transaction_type: Optional[TransactionType] = None,
    ) -> list[EnrichedTransaction]:
        stmt = self._enriched_select().where(self._month_filter(month))
        if transaction_type:
            stmt = stmt.where(Transaction.type == transaction_type)
        return self._resolve_rows(stmt.order_by(Transaction.id))

    def create(self, data: TransactionIn) -> Transaction:
        self._check_category(data.category_id)
        txn = Transaction(
            amount=data.amount,
            description=data.description,
            date=data.date,
            type=data.type,
            category_id=data.category_id,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: id={txn.id} type={txn.type.value} date={txn.date.isoformat()}"
        )
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        self._check_category(data.category_id)
        txn.amount = data.amount
        txn.description = data.description
        txn.date = data.date
        txn.type = data.type
        txn.category_id = data.category_id
        self.session.commit()
        self.session.refresh(txn)
        logger.info(f"transaction_updated: id={txn.id}")
        return txn

    def delete(self, transaction_id: int) -> None:
        removed = self.session.execute(
            delete(Transaction).where(Transaction.id == transaction_id)
        ).rowcount
        self.session.commit()
        logger.info(f"transaction_deleted: id={transaction_id} removed={removed}")


class MetricsService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.transactions = TransactionService(session)

    def summary(self, month: Optional[str]) -> MonthlySummary:
        income = ZERO
        expense = ZERO
        for txn in self.transactions.for_month(month):
            if txn.type == TransactionType.income:
                income += txn.amount
            else:
                expense += txn.amount
        return MonthlySummary(income=income, expense=expense, balance=income - expense)

    def category_breakdown(self, month: Optional[str]) -> list[CategoryStat]:
        total = ZERO
        groups: dict[int, CategoryStat] = {}
        for txn in self.transactions.for_month(month, TransactionType.expense):
            total += txn.amount
            if txn.category_id is None:
                continue
            stat = groups.get(txn.category_id)
            if stat is None:
                stat = CategoryStat(
                    name=txn.category_name,
                    color=txn.category_color,
                    icon=txn.category_icon,
                    amount=ZERO,
                )
                groups[txn.category_id] = stat
            stat.amount += txn.amount

        # largest first, lower category id wins ties
        ordered = sorted(groups.items(), key=lambda item: (-item[1].amount, item[0]))
        breakdown = [stat for _, stat in ordered]
        for stat in breakdown:
            stat.percentage = float(stat.amount / total * 100) if total else 0.0
        return breakdown


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def authenticate(self, username: str, password: str) -> Optional[User]:
        user = self.session.scalar(select(User).where(User.username == username))
        if not user or not check_password_hash(user.password_hash, password):
            return None
        return user

    def find(self, username: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.username == username))

    def ensure_user(self, username: str, password: str) -> User:
        user = self.find(username)
        if user:
            return user
        user = User(username=username, password_hash=generate_password_hash(password))
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_seeded: username={username}")
        return user


def _validated(model, **fields):
    try:
        return model(**fields)
    except ValidationError as exc:
        raise InvalidInput(str(exc)) from exc


def _store_operation(func):
    @wraps(func)
    def wrapper(self: "Ledger", *args, **kwargs):
        with store_errors(self.session, func.__name__):
            return func(self, *args, **kwargs)

    return wrapper


class Ledger:
    """Entry point for everything the HTTP layer asks of the ledger.

    Each call runs against the given session and recomputes from the store;
    nothing is cached between calls.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self.categories = CategoryService(session)
        self.transactions = TransactionService(session)
        self.metrics = MetricsService(session)

    @_store_operation
    def list_categories(self) -> list[CategoryRecord]:
        return self.categories.list_all()

    @_store_operation
    def create_category(
        self, name: str, type: TransactionType, color: str = "", icon: str = ""
    ) -> CategoryRecord:
        data = _validated(CategoryIn, name=name, type=type, color=color, icon=icon)
        return to_category_record(self.categories.create(data))

    @_store_operation
    def delete_category(self, category_id: int) -> None:
        self.categories.delete(category_id)

    @_store_operation
    def list_transactions(
        self, period: Optional[str] = None, limit: Optional[int] = None
    ) -> list[EnrichedTransaction]:
        return self.transactions.list(period, limit)

    @_store_operation
    def create_transaction(
        self,
        amount: Decimal,
        description: Optional[str],
        date: date,
        type: TransactionType,
        category_id: Optional[int] = None,
    ) -> TransactionRecord:
        data = _validated(
            TransactionIn,
            amount=amount,
            description=description,
            date=date,
            type=type,
            category_id=category_id,
        )
        return to_transaction_record(self.transactions.create(data))

    @_store_operation
    def update_transaction(
        self,
        transaction_id: int,
        amount: Decimal,
        description: Optional[str],
        date: date,
        type: TransactionType,
        category_id: Optional[int] = None,
    ) -> TransactionRecord:
        data = _validated(
            TransactionIn,
            amount=amount,
            description=description,
            date=date,
            type=type,
            category_id=category_id,
        )
        return to_transaction_record(self.transactions.update(transaction_id, data))

    @_store_operation
    def delete_transaction(self, transaction_id: int) -> None:
        self.transactions.delete(transaction_id)

    @_store_operation
    def get_summary(self, period: Optional[str]) -> MonthlySummary:
        return self.metrics.summary(period)

    @_store_operation
    def get_category_stats(self, period: Optional[str]) -> list[CategoryStat]:
        return self.metrics.category_breakdown(period)
