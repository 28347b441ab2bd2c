"""
queries.py — Read-Side Projections of Orders

Paginated, filtered and sorted listings for customers, sellers and admins,
plus the single-order loaders the mutation workflows share. Nothing in this
module writes.

Listing conventions:
    • page >= 1, limit clamped to [1, MAX_PAGE_SIZE], skip = (page - 1) * limit
    • sortBy restricted to an allow-list; unknown fields fall back to createdAt
    • sortOrder "asc" sorts ascending, anything else descending
    • search is a case-insensitive substring match
"""

import math
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.orm import selectinload

from . import config
from .entities import Medicine, Order, OrderItem, OrderStatus, Role, User
from .errors import ForbiddenError, NotFoundError, ValidationError
from .identity import Identity, ensure_authenticated, ensure_role
from .models import OrderListQuery

ORDER_SORT_FIELDS = ("createdAt", "total", "status")

_SORT_COLUMNS = {
    "createdAt": Order.created_at,
    "total": Order.total,
    "status": Order.status,
}

_ORDER_LOAD_OPTIONS = (
    selectinload(Order.items).selectinload(OrderItem.medicine),
    selectinload(Order.customer),
)


# --- Loaders ---

def load_order(session, order_id: str, for_update: bool = False) -> Optional[Order]:
    """
    Loads an order with its items, their medicines and the customer, always
    refreshing from the database. With `for_update` the order row is locked
    until the surrounding transaction ends (no-op on SQLite).
    """
    stmt = (
        select(Order)
        .where(Order.id == order_id)
        .options(*_ORDER_LOAD_OPTIONS)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update(of=Order)
    return session.scalars(stmt).first()


def get_order_or_404(session, order_id: str, for_update: bool = False) -> Order:
    order = load_order(session, order_id, for_update=for_update)
    if order is None:
        raise NotFoundError("Order not found")
    return order


# --- Query helpers ---

def _to_int(value, default: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def _to_decimal(value) -> Optional[Decimal]:
    if value is None or str(value).strip() == "":
        return None
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def get_pagination(query: OrderListQuery, max_limit: int = None) -> Tuple[int, int, int]:
    max_limit = max_limit or config.MAX_PAGE_SIZE
    page = max(_to_int(query.page, 1), 1)
    # 0 means "not given", same as an unparsable value
    limit = _to_int(query.limit, config.DEFAULT_PAGE_SIZE) or config.DEFAULT_PAGE_SIZE
    limit = min(max(limit, 1), max_limit)
    return page, limit, (page - 1) * limit


def build_meta(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPage": math.ceil(total / limit),
    }


def build_sort(query: OrderListQuery, allowed=ORDER_SORT_FIELDS, default: str = "createdAt"):
    """Returns the ORDER BY expression for an allow-listed sort field."""
    if not allowed:
        raise ValueError("allowed sort fields cannot be empty")
    sort_by = query.sortBy if query.sortBy in allowed else default
    column = _SORT_COLUMNS[sort_by]
    return column.asc() if query.sortOrder == "asc" else column.desc()


def parse_status_filter(status) -> Optional[OrderStatus]:
    if status is None or str(status).strip() == "":
        return None
    try:
        return OrderStatus(str(status).strip())
    except ValueError:
        raise ValidationError("Invalid status filter")


def build_order_search(search) -> Optional[object]:
    """Search over order id, address, phone and the customer's name and email."""
    term = str(search or "").strip()
    if not term:
        return None
    return or_(
        Order.id.icontains(term, autoescape=True),
        Order.address.icontains(term, autoescape=True),
        Order.phone.icontains(term, autoescape=True),
        Order.customer.has(
            or_(
                User.name.icontains(term, autoescape=True),
                User.email.icontains(term, autoescape=True),
            )
        ),
    )


def build_seller_search(search) -> Optional[object]:
    """Search over a seller's line items: order id, medicine name, order and customer fields."""
    term = str(search or "").strip()
    if not term:
        return None
    return or_(
        OrderItem.order_id.icontains(term, autoescape=True),
        OrderItem.medicine.has(Medicine.name.icontains(term, autoescape=True)),
        Order.address.icontains(term, autoescape=True),
        Order.phone.icontains(term, autoescape=True),
        Order.customer.has(
            or_(
                User.name.icontains(term, autoescape=True),
                User.email.icontains(term, autoescape=True),
            )
        ),
    )


def _paginate_orders(session, conditions: list, query: OrderListQuery) -> Tuple[List[Order], dict]:
    page, limit, skip = get_pagination(query)
    total = session.scalar(select(func.count(Order.id)).where(*conditions))
    rows = session.scalars(
        select(Order)
        .where(*conditions)
        .options(*_ORDER_LOAD_OPTIONS)
        .order_by(build_sort(query), Order.id)
        .offset(skip)
        .limit(limit)
    ).all()
    return list(rows), build_meta(page, limit, total)


# --- Listings ---

def get_my_orders(session, identity: Identity, query: OrderListQuery):
    """The caller's own orders, optionally filtered by status."""
    ensure_authenticated(identity)
    status = parse_status_filter(query.status)

    conditions = [Order.customer_id == identity.user_id]
    if status is not None:
        conditions.append(Order.status == status)
    return _paginate_orders(session, conditions, query)


def get_all_orders(session, identity: Identity, query: OrderListQuery):
    """
    Global order view for admins.

    Filters: status, customerId, minTotal/maxTotal (inclusive, unparsable
    bounds ignored) and free-text search.
    """
    ensure_role(identity, Role.ADMIN, message="Admin only")
    status = parse_status_filter(query.status)

    conditions = []
    if status is not None:
        conditions.append(Order.status == status)
    if query.customerId:
        conditions.append(Order.customer_id == query.customerId.strip())

    min_total = _to_decimal(query.minTotal)
    max_total = _to_decimal(query.maxTotal)
    if min_total is not None:
        conditions.append(Order.total >= min_total)
    if max_total is not None:
        conditions.append(Order.total <= max_total)

    search = build_order_search(query.search)
    if search is not None:
        conditions.append(search)
    return _paginate_orders(session, conditions, query)


def get_single_order(session, identity: Identity, order_id: str) -> Order:
    """
    One order with items. Readable by its customer, by admins, and by any
    seller who has a line item in it.
    """
    ensure_authenticated(identity)
    order = get_order_or_404(session, order_id)

    if identity.is_admin or order.customer_id == identity.user_id:
        return order
    if identity.role == Role.SELLER and any(i.seller_id == identity.user_id for i in order.items):
        return order
    raise ForbiddenError("Forbidden")


def get_seller_orders(session, identity: Identity, query: OrderListQuery):
    """
    The caller's line items across all orders, each with its parent order.

    Filtering and sorting apply to the parent order's fields.
    """
    ensure_role(identity, Role.SELLER, Role.ADMIN, message="Only seller can view seller orders")
    status = parse_status_filter(query.status)
    page, limit, skip = get_pagination(query)

    conditions = [OrderItem.seller_id == identity.user_id]
    if status is not None:
        conditions.append(Order.status == status)
    search = build_seller_search(query.search)
    if search is not None:
        conditions.append(search)

    total = session.scalar(
        select(func.count(OrderItem.id)).join(OrderItem.order).where(*conditions)
    )
    rows = session.scalars(
        select(OrderItem)
        .join(OrderItem.order)
        .where(*conditions)
        .options(
            selectinload(OrderItem.medicine),
            selectinload(OrderItem.order).selectinload(Order.customer),
        )
        .order_by(build_sort(query), OrderItem.id)
        .offset(skip)
        .limit(limit)
    ).all()
    return list(rows), build_meta(page, limit, total)
