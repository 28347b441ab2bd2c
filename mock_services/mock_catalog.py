"""
mock_catalog.py — Demo Catalog and Accounts for Local Runs

The identity and catalog modules are separate systems. For local testing of
the order service this script stands in for them: it creates the schema and
seeds an admin, a customer, two sellers and a handful of medicines covering
the interesting ledger states.

Seeded scenarios:
    • ACTIVE medicines with plenty of stock
    • An ACTIVE medicine with a single unit left (sells out on first order)
    • An OUT_OF_STOCK medicine
    • A DISABLED medicine

Running it twice is safe: existing accounts are detected by email and the
seed is skipped.

Usage:
    DATABASE_URL=sqlite:///./medistore.db python -m mock_services.mock_catalog
"""

from decimal import Decimal

from sqlalchemy import select

from medistore_orders.database import SessionLocal, init_db, transaction
from medistore_orders.entities import Medicine, MedicineStatus, Role, User
from medistore_orders.logging_config import get_logger, setup_logging

log = get_logger(__name__)

ADMIN_EMAIL = "admin@medistore.com"

USERS = [
    {"name": "Super Admin", "email": ADMIN_EMAIL, "role": Role.ADMIN},
    {"name": "Demo Customer", "email": "customer@medistore.com", "role": Role.CUSTOMER},
    {"name": "City Pharmacy", "email": "city@medistore.com", "role": Role.SELLER},
    {"name": "Green Cross", "email": "greencross@medistore.com", "role": Role.SELLER},
]

# (seller email, name, price, stock, status)
MEDICINES = [
    ("city@medistore.com", "Paracetamol 500mg", "2.50", 120, MedicineStatus.ACTIVE),
    ("city@medistore.com", "Ibuprofen 200mg", "4.20", 60, MedicineStatus.ACTIVE),
    ("city@medistore.com", "Vitamin C 1000mg", "7.90", 1, MedicineStatus.ACTIVE),
    ("greencross@medistore.com", "Cetirizine 10mg", "3.10", 0, MedicineStatus.OUT_OF_STOCK),
    ("greencross@medistore.com", "Loratadine 10mg", "5.00", 25, MedicineStatus.DISABLED),
    ("greencross@medistore.com", "Omeprazole 20mg", "9.75", 40, MedicineStatus.ACTIVE),
]


def seed(session):
    """Inserts the demo accounts and catalog unless the admin account already exists."""
    exists = session.scalar(select(User).where(User.email == ADMIN_EMAIL))
    if exists:
        log.info("[Seed] Admin already exists, skipping.")
        return False

    with transaction(session, "[Seed]"):
        users = {u["email"]: User(**u) for u in USERS}
        session.add_all(users.values())
        session.flush()

        for seller_email, name, price, stock, status in MEDICINES:
            session.add(Medicine(
                name=name,
                price=Decimal(price),
                stock=stock,
                status=status,
                seller_id=users[seller_email].id,
            ))

    for user in users.values():
        log.info(f"[Seed] {user.role.value:<8} {user.email} -> X-User-Id: {user.id}")
    log.info(f"[Seed] {len(MEDICINES)} medicines created.")
    return True


def main():
    setup_logging()
    init_db()
    session = SessionLocal()
    try:
        seed(session)
    finally:
        session.close()


if __name__ == '__main__':
    main()
