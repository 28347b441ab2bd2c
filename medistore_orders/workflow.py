"""
workflow.py — Core Orchestration Logic for Orders and Stock

This module contains every workflow that writes orders or touches the stock
ledger. Each one runs as a single database transaction: the order header,
its line items, stock adjustments and status flips either all commit or are
all rolled back.

Workflow Overview:
1. Checkout: validate cart → price against the catalog → create order and
   reserve stock with conditional decrements
2. Item edit: re-price and re-reserve/release stock while the order is PLACED
3. Cancellation: flip to CANCELLED once and return every reserved unit
4. Status transition: fulfillment lifecycle for admins and sellers

Concurrency:
    Catalog reads are only an optimistic pre-check. The guarded UPDATE in
    ledger.reserve_stock decides; losing that race aborts the whole
    transaction with a ConflictError. Medicines are always touched in id
    order so concurrent transactions acquire row locks in the same order.
"""

from decimal import Decimal
from typing import Dict, Iterable

from sqlalchemy import update

from . import config, ledger
from .database import transaction
from .entities import (
    CANCELLABLE_STATUSES,
    MedicineStatus,
    Order,
    OrderItem,
    OrderStatus,
    Role,
    can_transition,
    utc_now,
)
from .errors import BusinessRuleError, ConflictError, ForbiddenError, ValidationError
from .identity import Identity, ensure_role
from .logging_config import get_logger
from .models import CheckoutRequest, UpdateOrderItemsRequest
from .queries import get_order_or_404, load_order

log = get_logger(__name__)

SELLER_CAN_SET = frozenset({OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED})


# --- Helpers ---

def normalize_items(items: Iterable) -> Dict[str, int]:
    """
    Collapses cart lines into one reservation request per medicine.

    Duplicate medicine ids are merged by summing their quantities.

    Raises:
        ValidationError: On an empty medicine id or a quantity that is not a
            positive integer.
    """
    merged: Dict[str, int] = {}
    for item in items:
        medicine_id = str(item.medicineId or "").strip()
        quantity = item.quantity
        if not medicine_id:
            raise ValidationError("medicineId is required")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("quantity must be a positive integer")
        merged[medicine_id] = merged.get(medicine_id, 0) + quantity
    return merged


def parse_status(status) -> OrderStatus:
    try:
        return OrderStatus(str(status or "").strip())
    except ValueError:
        raise ValidationError("Invalid status")


def _require_text(value, message: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(message)
    return text


def _ensure_owner_or_admin(order: Order, identity: Identity):
    if not identity.is_admin and order.customer_id != identity.user_id:
        raise ForbiddenError("Forbidden")


def _ensure_transition(order: Order, target: OrderStatus):
    if not can_transition(order.status, target):
        raise BusinessRuleError(
            f"Cannot change order status from {order.status.value} to {target.value}"
        )


def _build_items(quantities: Dict[str, int], medicines) -> list:
    """Line items with seller and price snapshots taken from the given catalog rows."""
    return [
        OrderItem(
            medicine_id=medicine_id,
            seller_id=medicines[medicine_id].seller_id,
            quantity=quantity,
            price=medicines[medicine_id].price,
        )
        for medicine_id, quantity in sorted(quantities.items())
    ]


def _fetch_known_medicines(session, medicine_ids):
    medicines = ledger.fetch_medicines(session, medicine_ids)
    missing = sorted(set(medicine_ids) - set(medicines))
    if missing:
        raise ValidationError(f"Invalid medicineId found: {', '.join(missing)}")
    return medicines


def _reload(session, order_id: str) -> Order:
    # Ledger updates bypass the identity map
    session.expire_all()
    return load_order(session, order_id)


# --- Checkout ---

def checkout(session, identity: Identity, request: CheckoutRequest) -> Order:
    """
    Converts a cart into a PLACED order with reserved stock.

    Args:
        session: Database session owned by the caller.
        identity (Identity): Verified caller; must be CUSTOMER or ADMIN.
        request (CheckoutRequest): Address, phone and cart lines.

    Returns:
        Order: The committed order with items, medicines and customer loaded.

    Raises:
        UnauthorizedError / ForbiddenError: Missing identity or wrong role.
        ValidationError: Empty address/phone/cart, bad quantity, unknown medicine.
        BusinessRuleError: A medicine is not ACTIVE.
        ConflictError: Not enough stock, either at pre-check or at the
            conditional decrement. Nothing is committed.
        InfrastructureError: Database failure; safe to retry.

    Steps:
        1. Normalize lines (merge duplicates), validate address and phone.
        2. Batch-load medicines, require ACTIVE and enough stock, compute the
           total from the checkout-time prices.
        3. Insert order header and line items with seller/price snapshots.
        4. Conditionally decrement stock per medicine; zero rows → abort.
        5. Flip medicines that reached zero to OUT_OF_STOCK.
    """
    ensure_role(identity, Role.CUSTOMER, Role.ADMIN, message="Only customer can place order")
    address = _require_text(request.address, "Address is required")
    phone = _require_text(request.phone, "Phone is required")
    quantities = normalize_items(request.items)
    if not quantities:
        raise ValidationError("No items provided")

    log_prefix = f"[Checkout: {identity.user_id}]"
    log.info(f"{log_prefix} Checkout requested for {len(quantities)} medicine(s).")

    with transaction(session, log_prefix):
        medicines = _fetch_known_medicines(session, quantities)

        total = Decimal("0")
        for medicine_id, quantity in quantities.items():
            medicine = medicines[medicine_id]
            if medicine.status != MedicineStatus.ACTIVE:
                raise BusinessRuleError(f"Medicine not available: {medicine.name}")
            if medicine.stock < quantity:
                raise ConflictError(f"Insufficient stock: {medicine.name}")
            total += medicine.price * quantity

        order = Order(
            customer_id=identity.user_id,
            address=address,
            phone=phone,
            total=total,
            status=OrderStatus.PLACED,
            items=_build_items(quantities, medicines),
        )
        session.add(order)
        session.flush()
        order_id = order.id

        for medicine_id in sorted(quantities):
            ledger.reserve_stock(session, medicine_id, quantities[medicine_id], medicines[medicine_id].name)
        ledger.mark_out_of_stock(session, quantities)

        order = _reload(session, order_id)

    log.info(f"[Order: {order_id}] Placed by {identity.user_id}, total {order.total}.")
    return order


# --- Item edit ---

def update_order_items(session, identity: Identity, order_id: str, request: UpdateOrderItemsRequest) -> Order:
    """
    Replaces the item set of an order that is still PLACED.

    Stock moves by the per-medicine difference between the old and new
    quantities: released first, then reserved with the same conditional
    decrement as checkout. Items are re-created with edit-time price and
    seller snapshots and the total is recomputed from them. Every medicine in
    the new item set must be ACTIVE, including lines kept unchanged.

    Raises:
        ForbiddenError: Caller is neither the owning customer nor an admin.
        NotFoundError: Unknown order.
        BusinessRuleError: Order left PLACED, or a medicine is not available.
        ValidationError / ConflictError: As in checkout.
    """
    ensure_role(identity, Role.CUSTOMER, Role.ADMIN, message="Only customer can edit order items")
    quantities = normalize_items(request.items)
    if not quantities:
        raise ValidationError("No items provided")

    log_prefix = f"[Order: {order_id}]"

    with transaction(session, log_prefix):
        order = get_order_or_404(session, order_id, for_update=True)
        _ensure_owner_or_admin(order, identity)
        if order.status != OrderStatus.PLACED:
            raise BusinessRuleError("Only placed orders can be edited")

        previous = {item.medicine_id: item.quantity for item in order.items}
        deltas = {
            medicine_id: quantities.get(medicine_id, 0) - previous.get(medicine_id, 0)
            for medicine_id in set(previous) | set(quantities)
        }

        medicines = _fetch_known_medicines(session, quantities)
        for medicine_id, quantity in quantities.items():
            medicine = medicines[medicine_id]
            if medicine.status != MedicineStatus.ACTIVE:
                raise BusinessRuleError(f"Medicine not available: {medicine.name}")
            if deltas[medicine_id] > medicine.stock:
                raise ConflictError(f"Insufficient stock: {medicine.name}")

        for medicine_id in sorted(deltas):
            if deltas[medicine_id] < 0:
                ledger.release_stock(session, medicine_id, -deltas[medicine_id])
        reserved = [medicine_id for medicine_id in sorted(deltas) if deltas[medicine_id] > 0]
        for medicine_id in reserved:
            ledger.reserve_stock(session, medicine_id, deltas[medicine_id], medicines[medicine_id].name)
        ledger.mark_out_of_stock(session, reserved)

        # Old rows must be gone before the unique (order, medicine) rows are re-inserted
        order.items.clear()
        session.flush()
        order.items.extend(_build_items(quantities, medicines))
        order.total = sum((item.line_total for item in order.items), Decimal("0"))
        order.updated_at = utc_now()
        session.flush()

        order = _reload(session, order_id)

    log.info(f"{log_prefix} Items replaced by {identity.user_id}, new total {order.total}.")
    return order


# --- Cancellation and status ---

def _cancel(session, order: Order, log_prefix: str) -> Order:
    """Cancels inside the caller's transaction and returns the reloaded order."""
    if order.status == OrderStatus.CANCELLED:
        log.info(f"{log_prefix} Already cancelled, nothing to restore.")
        return order
    if order.status not in CANCELLABLE_STATUSES:
        raise BusinessRuleError("Cannot cancel shipped/delivered order")

    # Compare-and-set so concurrent cancels restore stock only once
    result = session.execute(
        update(Order)
        .where(Order.id == order.id, Order.status.in_(list(CANCELLABLE_STATUSES)))
        .values(status=OrderStatus.CANCELLED, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConflictError("Order status changed concurrently, please retry")

    for item in sorted(order.items, key=lambda i: i.medicine_id):
        ledger.release_stock(
            session,
            item.medicine_id,
            item.quantity,
            reactivate_disabled=config.CANCEL_REACTIVATES_DISABLED,
        )
    log.info(f"{log_prefix} Cancelled, {len(order.items)} item(s) returned to stock.")
    return _reload(session, order.id)


def _set_status(session, order: Order, target: OrderStatus, log_prefix: str) -> Order:
    result = session.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == order.status)
        .values(status=target, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConflictError("Order status changed concurrently, please retry")
    log.info(f"{log_prefix} Status {order.status.value} -> {target.value}.")
    return _reload(session, order.id)


def cancel_order(session, identity: Identity, order_id: str) -> Order:
    """
    Cancels an order on behalf of its customer (or an admin) and restores stock.

    Cancelling an already cancelled order returns it unchanged.

    Raises:
        ForbiddenError: Caller does not own the order and is not an admin.
        NotFoundError: Unknown order.
        BusinessRuleError: Order is SHIPPED or DELIVERED.
    """
    ensure_role(identity, Role.CUSTOMER, Role.ADMIN, message="Only customer can cancel order")
    log_prefix = f"[Order: {order_id}]"

    with transaction(session, log_prefix):
        order = get_order_or_404(session, order_id, for_update=True)
        _ensure_owner_or_admin(order, identity)
        order = _cancel(session, order, log_prefix)
    return order


def update_order_status(session, identity: Identity, order_id: str, status) -> Order:
    """
    Admin status change along the fulfillment lifecycle.

    Setting CANCELLED runs the cancellation workflow, so stock is restored.

    Raises:
        ForbiddenError: Caller is not an admin.
        ValidationError: Unknown status value.
        NotFoundError: Unknown order.
        BusinessRuleError: Target not reachable from the current status.
    """
    ensure_role(identity, Role.ADMIN, message="Admin only")
    target = parse_status(status)
    log_prefix = f"[Order: {order_id}]"

    with transaction(session, log_prefix):
        order = get_order_or_404(session, order_id, for_update=True)
        _ensure_transition(order, target)
        if target == OrderStatus.CANCELLED:
            order = _cancel(session, order, log_prefix)
        else:
            order = _set_status(session, order, target, log_prefix)
    return order


def update_order_status_by_seller(session, identity: Identity, order_id: str, status) -> Order:
    """
    Seller status change, limited to PROCESSING, SHIPPED and DELIVERED on
    orders that contain at least one of the seller's line items. Admins may
    use this route as well and are not limited to their own items.

    Raises:
        ForbiddenError: Wrong role, disallowed target status, or no own line item.
        ValidationError: Unknown status value.
        NotFoundError: Unknown order.
        BusinessRuleError: Order is DELIVERED/CANCELLED or the move skips a step.
    """
    ensure_role(identity, Role.SELLER, Role.ADMIN, message="Only seller can update order status")
    target = parse_status(status)
    if identity.role == Role.SELLER and target not in SELLER_CAN_SET:
        raise ForbiddenError(f"Seller cannot set status to {target.value}")

    log_prefix = f"[Order: {order_id}]"

    with transaction(session, log_prefix):
        order = get_order_or_404(session, order_id, for_update=True)
        if not identity.is_admin and not any(i.seller_id == identity.user_id for i in order.items):
            raise ForbiddenError("You cannot update this order")
        if order.status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
            raise BusinessRuleError("Cannot update delivered/cancelled order")
        _ensure_transition(order, target)
        if target == OrderStatus.CANCELLED:
            order = _cancel(session, order, log_prefix)
        else:
            order = _set_status(session, order, target, log_prefix)
    return order
