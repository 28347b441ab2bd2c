"""
ledger.py — Stock Ledger Operations

Stock and availability status of a medicine are only changed through the
statements in this module. Reads are advisory; the authoritative check is the
guarded UPDATE in `reserve_stock`, evaluated by the database at write time,
so concurrent checkouts can never push stock below zero.
"""

from typing import Dict, Iterable

from sqlalchemy import select, update

from .entities import Medicine, MedicineStatus
from .errors import ConflictError
from .logging_config import get_logger

log = get_logger(__name__)


def fetch_medicines(session, medicine_ids: Iterable[str]) -> Dict[str, Medicine]:
    """Batch-loads medicines by id. Missing ids are simply absent from the result."""
    ids = list(medicine_ids)
    if not ids:
        return {}
    rows = session.scalars(
        select(Medicine)
        .where(Medicine.id.in_(ids))
        .execution_options(populate_existing=True)
    ).all()
    return {m.id: m for m in rows}


def reserve_stock(session, medicine_id: str, quantity: int, name: str = None):
    """
    Conditional decrement: takes `quantity` units only if the medicine is still
    ACTIVE and has at least that much stock at the moment of the write.

    Raises:
        ConflictError: If the guard matched no row (stock raced away or the
            listing stopped being ACTIVE).
    """
    result = session.execute(
        update(Medicine)
        .where(
            Medicine.id == medicine_id,
            Medicine.status == MedicineStatus.ACTIVE,
            Medicine.stock >= quantity,
        )
        .values(stock=Medicine.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        log.warning(f"[Ledger] Conditional decrement of {quantity} rejected for medicine {medicine_id}")
        raise ConflictError(f"Insufficient stock: {name or medicine_id}")


def release_stock(session, medicine_id: str, quantity: int, reactivate_disabled: bool = False):
    """
    Returns `quantity` units to stock and makes the listing purchasable again.

    OUT_OF_STOCK always flips back to ACTIVE since stock is now positive.
    DISABLED is only lifted when `reactivate_disabled` is set.
    """
    session.execute(
        update(Medicine)
        .where(Medicine.id == medicine_id)
        .values(stock=Medicine.stock + quantity)
        .execution_options(synchronize_session=False)
    )

    reactivatable = [MedicineStatus.OUT_OF_STOCK]
    if reactivate_disabled:
        reactivatable.append(MedicineStatus.DISABLED)

    session.execute(
        update(Medicine)
        .where(Medicine.id == medicine_id, Medicine.status.in_(reactivatable), Medicine.stock > 0)
        .values(status=MedicineStatus.ACTIVE)
        .execution_options(synchronize_session=False)
    )


def mark_out_of_stock(session, medicine_ids: Iterable[str]):
    """Flips every listed ACTIVE medicine whose stock reached exactly zero to OUT_OF_STOCK."""
    ids = list(medicine_ids)
    if not ids:
        return
    session.execute(
        update(Medicine)
        .where(
            Medicine.id.in_(ids),
            Medicine.stock == 0,
            Medicine.status == MedicineStatus.ACTIVE,
        )
        .values(status=MedicineStatus.OUT_OF_STOCK)
        .execution_options(synchronize_session=False)
    )
