from decimal import Decimal

import pytest

from conftest import cart
from medistore_orders import workflow
from medistore_orders.entities import Medicine, MedicineStatus, Order, OrderStatus
from medistore_orders.errors import BusinessRuleError, ConflictError, ForbiddenError, NotFoundError
from medistore_orders.models import UpdateOrderItemsRequest


def edit(*lines):
    return UpdateOrderItemsRequest(
        items=[{"medicineId": medicine_id, "quantity": quantity} for medicine_id, quantity in lines]
    )


def set_price(session, medicine_id, price):
    session.get(Medicine, medicine_id).price = Decimal(price)
    session.commit()


def test_raising_quantity_reserves_delta_at_edit_time_price(session, customer, make_medicine, ledger_state):
    medicine_id = make_medicine(stock=12, price="4.00")
    order = workflow.checkout(session, customer, cart((medicine_id, 2)))
    assert ledger_state(medicine_id) == (10, MedicineStatus.ACTIVE)
    set_price(session, medicine_id, "5.00")

    updated = workflow.update_order_items(session, customer, order.id, edit((medicine_id, 5)))

    assert ledger_state(medicine_id) == (7, MedicineStatus.ACTIVE)
    assert updated.items[0].quantity == 5
    assert updated.items[0].price == Decimal("5")
    assert updated.total == Decimal("25")


def test_lowering_quantity_releases_stock(session, customer, make_medicine, ledger_state):
    medicine_id = make_medicine(stock=5, price="2.00")
    order = workflow.checkout(session, customer, cart((medicine_id, 3)))
    assert ledger_state(medicine_id) == (2, MedicineStatus.ACTIVE)

    updated = workflow.update_order_items(session, customer, order.id, edit((medicine_id, 1)))

    assert ledger_state(medicine_id) == (4, MedicineStatus.ACTIVE)
    assert updated.total == Decimal("2")


def test_swapping_medicines_moves_stock_both_ways(session, customer, make_medicine, ledger_state):
    dropped = make_medicine(name="Paracetamol", stock=5, price="1.00")
    added = make_medicine(name="Omeprazole", stock=4, price="3.00")
    order = workflow.checkout(session, customer, cart((dropped, 2)))

    updated = workflow.update_order_items(session, customer, order.id, edit((added, 4)))

    assert [item.medicine_id for item in updated.items] == [added]
    assert updated.total == Decimal("12")
    assert ledger_state(dropped) == (5, MedicineStatus.ACTIVE)
    assert ledger_state(added) == (0, MedicineStatus.OUT_OF_STOCK)


def test_total_matches_items_after_edit(session, customer, users, make_medicine):
    first = make_medicine(price="2.50", stock=20)
    second = make_medicine(price="7.25", stock=20, seller=users.other_seller)
    order = workflow.checkout(session, customer, cart((first, 1)))

    updated = workflow.update_order_items(session, customer, order.id, edit((first, 3), (second, 2), (first, 1)))

    assert updated.total == sum(item.price * item.quantity for item in updated.items)
    assert {item.medicine_id: item.quantity for item in updated.items} == {first: 4, second: 2}


def test_edit_short_on_stock_has_no_side_effects(session, customer, make_medicine, ledger_state):
    kept = make_medicine(stock=10, price="1.00")
    scarce = make_medicine(name="Vitamin C", stock=1, price="8.00")
    order = workflow.checkout(session, customer, cart((kept, 4)))

    with pytest.raises(ConflictError, match="Insufficient stock: Vitamin C"):
        workflow.update_order_items(session, customer, order.id, edit((kept, 1), (scarce, 2)))

    reloaded = workflow.load_order(session, order.id)
    assert [(i.medicine_id, i.quantity) for i in reloaded.items] == [(kept, 4)]
    assert reloaded.total == Decimal("4")
    assert ledger_state(kept) == (6, MedicineStatus.ACTIVE)
    assert ledger_state(scarce) == (1, MedicineStatus.ACTIVE)


def test_edit_rejects_newly_added_disabled_medicine(session, customer, make_medicine):
    kept = make_medicine(stock=10)
    disabled = make_medicine(name="Loratadine", status=MedicineStatus.DISABLED)
    order = workflow.checkout(session, customer, cart((kept, 1)))

    with pytest.raises(BusinessRuleError, match="Loratadine"):
        workflow.update_order_items(session, customer, order.id, edit((kept, 1), (disabled, 1)))


def test_edit_rejects_unchanged_line_once_sold_out(
        session, customer, other_customer, make_medicine, ledger_state):
    sold_out = make_medicine(name="Vitamin C", stock=4, price="5.00")
    extra = make_medicine(stock=5, price="1.00")
    order = workflow.checkout(session, customer, cart((sold_out, 1)))
    workflow.checkout(session, other_customer, cart((sold_out, 3)))
    assert ledger_state(sold_out) == (0, MedicineStatus.OUT_OF_STOCK)

    with pytest.raises(BusinessRuleError, match="Medicine not available: Vitamin C"):
        workflow.update_order_items(session, customer, order.id, edit((sold_out, 1), (extra, 1)))

    reloaded = workflow.load_order(session, order.id)
    assert [(i.medicine_id, i.quantity) for i in reloaded.items] == [(sold_out, 1)]
    assert reloaded.total == Decimal("5")
    assert ledger_state(extra) == (5, MedicineStatus.ACTIVE)


def test_edit_is_limited_to_placed_orders(session, customer, admin, make_medicine):
    medicine_id = make_medicine(stock=10)
    order = workflow.checkout(session, customer, cart((medicine_id, 1)))
    workflow.update_order_status(session, admin, order.id, OrderStatus.PROCESSING.value)

    with pytest.raises(BusinessRuleError, match="Only placed orders"):
        workflow.update_order_items(session, customer, order.id, edit((medicine_id, 2)))


def test_only_owner_or_admin_may_edit(session, customer, other_customer, admin, make_medicine, ledger_state):
    medicine_id = make_medicine(stock=10)
    order = workflow.checkout(session, customer, cart((medicine_id, 1)))

    with pytest.raises(ForbiddenError):
        workflow.update_order_items(session, other_customer, order.id, edit((medicine_id, 3)))

    updated = workflow.update_order_items(session, admin, order.id, edit((medicine_id, 3)))
    assert updated.items[0].quantity == 3
    assert ledger_state(medicine_id) == (7, MedicineStatus.ACTIVE)


def test_editing_unknown_order_is_not_found(session, customer, make_medicine):
    medicine_id = make_medicine()

    with pytest.raises(NotFoundError):
        workflow.update_order_items(session, customer, "missing-order", edit((medicine_id, 1)))


def test_edit_keeps_single_order_row(session, customer, make_medicine):
    medicine_id = make_medicine(stock=10)
    order = workflow.checkout(session, customer, cart((medicine_id, 1)))

    workflow.update_order_items(session, customer, order.id, edit((medicine_id, 2)))

    assert session.query(Order).count() == 1
