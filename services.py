from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from errors import AuthError, ConflictError, NotFoundError, ValidationError
from models import (
    CUSTOM_CATEGORY_ICON,
    DEFAULT_CATEGORY_COLOR,
    Category,
    CustomCategory,
    DefaultCategory,
    Transaction,
    TransactionType,
    User,
)
from periods import Period
from schemas import (
    CategoryIn,
    LoginIn,
    RegisterIn,
    TransactionIn,
    TransactionUpdate,
)
from security import (
    REFRESH,
    TokenPair,
    decode_token,
    hash_password,
    issue_token_pair,
    verify_password,
)

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: list[tuple[str, str, str]] = [
    ("Food & Dining", "🍽️", "#FF6B6B"),
    ("Transportation", "🚗", "#4ECDC4"),
    ("Shopping", "🛍️", "#45B7D1"),
    ("Entertainment", "🎬", "#96CEB4"),
    ("Bills & Utilities", "⚡", "#FFEAA7"),
    ("Healthcare", "🏥", "#DDA0DD"),
    ("Education", "📚", "#98D8C8"),
    ("Travel", "✈️", "#F7DC6F"),
    ("Salary", "💰", "#82E0AA"),
    ("Investment", "📈", "#85C1E9"),
    ("Other Income", "💵", "#F8C471"),
    ("Other Expense", "💸", "#EC7063"),
]


def cents_from_amount(amount: Decimal) -> int:
    cents = int((abs(amount) * 100).quantize(Decimal("1")))
    if cents == 0:
        raise ValidationError("Amount must be a non-zero number")
    return cents


def cents_to_amount(cents: int) -> float:
    return cents / 100


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def seed_default_categories(session: Session) -> int:
    existing = session.scalar(
        select(func.count(Category.id)).where(Category.is_custom.is_(False))
    )
    if existing:
        return 0
    session.add_all(
        DefaultCategory(name=name, icon=icon, color=color)
        for name, icon, color in DEFAULT_CATEGORIES
    )
    session.commit()
    logger.info(f"seed_defaults: inserted={len(DEFAULT_CATEGORIES)}")
    return len(DEFAULT_CATEGORIES)


class AuthService:
    """Credential checks and the refresh-token lifecycle.

    A user holds at most one valid refresh token. Login and registration
    overwrite it, refresh swaps it with a compare-and-set on the user row,
    logout clears it. Access tokens are never tracked here.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def register(self, data: RegisterIn) -> tuple[User, TokenPair]:
        existing = self.session.scalar(select(User).where(User.email == data.email))
        if existing:
            raise ConflictError("User already exists")
        user = User(
            name=data.name,
            email=data.email,
            password_hash=hash_password(data.password),
        )
        self.session.add(user)
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("User already exists") from exc
        tokens = issue_token_pair(user.id)
        user.refresh_token = tokens.refresh_token
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"auth_register: user_id={user.id}")
        return user, tokens

    def login(self, data: LoginIn) -> tuple[User, TokenPair]:
        user = self.session.scalar(select(User).where(User.email == data.email))
        if not user or not verify_password(data.password, user.password_hash):
            raise AuthError("Invalid credentials")
        tokens = issue_token_pair(user.id)
        user.refresh_token = tokens.refresh_token
        self.session.commit()
        logger.info(f"auth_login: user_id={user.id}")
        return user, tokens

    def refresh(self, refresh_token: Optional[str]) -> TokenPair:
        if not refresh_token:
            raise AuthError("Refresh token required")
        user_id = decode_token(refresh_token, REFRESH, "Invalid refresh token")
        tokens = issue_token_pair(user_id)
        result = self.session.execute(
            update(User)
            .where(User.id == user_id, User.refresh_token == refresh_token)
            .values(refresh_token=tokens.refresh_token)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.rollback()
            logger.warning(f"auth_refresh_rejected: user_id={user_id}")
            raise AuthError("Invalid refresh token")
        self.session.commit()
        logger.info(f"auth_refresh: user_id={user_id}")
        return tokens

    def logout(self, user_id: int) -> None:
        self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(refresh_token=None)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        logger.info(f"auth_logout: user_id={user_id}")

    def get_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _visible(self):
        return or_(Category.is_custom.is_(False), Category.user_id == self.user_id)

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(self._visible())
            .order_by(Category.is_custom, Category.name, Category.id)
        )
        return self.session.scalars(stmt).all()

    def get_visible(self, category_id: int) -> Category:
        category = self.session.scalar(
            select(Category).where(Category.id == category_id, self._visible())
        )
        if not category:
            raise ValidationError("Invalid category")
        return category

    def _get_owned(self, category_id: int, message: str) -> CustomCategory:
        category = self.session.scalar(
            select(CustomCategory).where(
                CustomCategory.id == category_id,
                CustomCategory.user_id == self.user_id,
            )
        )
        if not category:
            raise NotFoundError(message)
        return category

    def create(self, data: CategoryIn) -> CustomCategory:
        name = (data.name or "").strip()
        if not name:
            raise ValidationError("Category name is required")
        category = CustomCategory(
            name=name,
            icon=data.icon or CUSTOM_CATEGORY_ICON,
            color=data.color or DEFAULT_CATEGORY_COLOR,
            user_id=self.user_id,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> CustomCategory:
        category = self._get_owned(category_id, "Category not found or not editable")
        name = (data.name or "").strip()
        category.name = name or category.name
        category.icon = data.icon or category.icon
        category.color = data.color or category.color
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self._get_owned(category_id, "Category not found or not deletable")
        self.session.delete(category)
        self.session.commit()
        logger.info(f"category_deleted: user_id={self.user_id} category_id={category_id}")


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    query: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


def _like_pattern(text: str) -> str:
    escaped = (
        text.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    )
    return f"%{escaped}%"


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _filtered(self, stmt, filters: TransactionFilters):
        stmt = stmt.where(Transaction.user_id == self.user_id)
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.start:
            stmt = stmt.where(Transaction.date >= filters.start)
        if filters.end:
            stmt = stmt.where(Transaction.date <= filters.end)
        if filters.query:
            stmt = stmt.where(
                func.lower(Transaction.description).like(
                    _like_pattern(filters.query), escape="\\"
                )
            )
        return stmt

    def create(self, data: TransactionIn) -> Transaction:
        category = CategoryService(self.session, self.user_id).get_visible(
            data.category
        )
        txn = Transaction(
            user_id=self.user_id,
            amount_cents=cents_from_amount(data.amount),
            description=data.description,
            type=data.type,
            category_id=category.id,
            date=to_naive_utc(data.date) if data.date else datetime.utcnow(),
        )
        self.session.add(txn)
        self.session.commit()
        return self.get(txn.id)

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        if data.category is not None:
            category = CategoryService(self.session, self.user_id).get_visible(
                data.category
            )
            txn.category_id = category.id
        if data.amount is not None:
            txn.amount_cents = cents_from_amount(data.amount)
        if data.description is not None:
            txn.description = data.description
        if data.type is not None:
            txn.type = data.type
        if data.date is not None:
            txn.date = to_naive_utc(data.date)
        self.session.commit()
        self.session.expire(txn)
        return self.get(transaction_id)

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()

    def list(
        self, filters: TransactionFilters, page: int = 1, limit: int = 10
    ) -> tuple[list[Transaction], int]:
        total = self.session.scalar(
            self._filtered(select(func.count(Transaction.id)), filters)
        )
        stmt = (
            self._filtered(select(Transaction), filters)
            .options(joinedload(Transaction.category))
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return self.session.scalars(stmt).all(), int(total or 0)

    def all_matching(self, filters: TransactionFilters) -> list[Transaction]:
        stmt = (
            self._filtered(select(Transaction), filters)
            .options(joinedload(Transaction.category))
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return self.session.scalars(stmt).all()

    def recent(self, limit: int = 5) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()


class MetricsService:
    """Read-only aggregates over one user's transactions, computed per call."""

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _type_totals(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> dict[TransactionType, tuple[int, int]]:
        stmt = (
            select(
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
                func.count(Transaction.id).label("txn_count"),
            )
            .where(Transaction.user_id == self.user_id)
            .group_by(Transaction.type)
        )
        if start:
            stmt = stmt.where(Transaction.date >= start)
        if end:
            stmt = stmt.where(Transaction.date <= end)
        totals = {t: (0, 0) for t in TransactionType}
        for row in self.session.execute(stmt).all():
            totals[row.type] = (int(row.total or 0), int(row.txn_count or 0))
        return totals

    def _period_stats(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> dict[str, object]:
        totals = self._type_totals(start, end)
        income_cents, income_count = totals[TransactionType.income]
        expense_cents, expense_count = totals[TransactionType.expense]
        return {
            "income": cents_to_amount(income_cents),
            "expense": cents_to_amount(expense_cents),
            "balance": cents_to_amount(income_cents - expense_cents),
            "income_count": income_count,
            "expense_count": expense_count,
        }

    def summary(self, period: Period) -> dict[str, object]:
        current = self._period_stats(period.start, period.end)
        current["period"] = period.slug
        return {"current": current, "all_time": self._period_stats()}

    def totals(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> dict[str, object]:
        totals = self._type_totals(start, end)
        income_cents, income_count = totals[TransactionType.income]
        expense_cents, expense_count = totals[TransactionType.expense]
        return {
            "income": {"total": cents_to_amount(income_cents), "count": income_count},
            "expense": {
                "total": cents_to_amount(expense_cents),
                "count": expense_count,
            },
            "balance": cents_to_amount(income_cents - expense_cents),
        }

    def category_breakdown(
        self,
        period: Period,
        transaction_type: TransactionType = TransactionType.expense,
    ) -> list[dict[str, object]]:
        total = func.sum(Transaction.amount_cents)
        stmt = (
            select(
                Category.id.label("category_id"),
                Category.name,
                Category.icon,
                Category.color,
                total.label("total"),
                func.count(Transaction.id).label("txn_count"),
            )
            .join(Category, Category.id == Transaction.category_id)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == transaction_type,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Category.id, Category.name, Category.icon, Category.color)
            .order_by(total.desc(), Category.id)
        )
        return [
            {
                "category_id": row.category_id,
                "name": row.name,
                "icon": row.icon,
                "color": row.color,
                "total": cents_to_amount(int(row.total or 0)),
                "count": int(row.txn_count),
            }
            for row in self.session.execute(stmt).all()
        ]

    def trend(self, period: Period) -> list[dict[str, object]]:
        bucket = func.strftime(period.bucket, Transaction.date).label("bucket")
        income = func.sum(
            case(
                (Transaction.type == TransactionType.income, Transaction.amount_cents),
                else_=0,
            )
        ).label("income")
        expense = func.sum(
            case(
                (Transaction.type == TransactionType.expense, Transaction.amount_cents),
                else_=0,
            )
        ).label("expense")
        stmt = (
            select(bucket, income, expense)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(bucket)
            .order_by(bucket)
        )
        points = []
        for row in self.session.execute(stmt).all():
            income_cents = int(row.income or 0)
            expense_cents = int(row.expense or 0)
            points.append(
                {
                    "date": row.bucket,
                    "income": cents_to_amount(income_cents),
                    "expense": cents_to_amount(expense_cents),
                    "balance": cents_to_amount(income_cents - expense_cents),
                }
            )
        return points
