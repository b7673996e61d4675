# orderflow/data/seed.py
from sqlalchemy.orm import Session

from orderflow.data.database import SessionLocal, unit_of_work
from orderflow.services.inventory_ledger import InventoryLedger
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)

# starting stock for the variants served by catalog_service
DEV_STOCK = {
    "kb-black": 25,
    "mouse-white": 100,
    "monitor-27": 5,
}


def seed(db: Session, stock: dict[str, int] = DEV_STOCK) -> int:
    """Restock variants that have no stock yet. Returns how many were seeded."""
    ledger = InventoryLedger(db)
    seeded = 0
    with unit_of_work(db):
        for variant_id, quantity in stock.items():
            # not forcing: only seed if empty
            if ledger.levels(variant_id)["on_hand"] > 0:
                continue
            ledger.adjust(variant_id, quantity, reason="initial stock")
            seeded += 1
    logger.info(f"Seeded stock for {seeded} variant(s)")
    return seeded


if __name__ == "__main__":
    session = SessionLocal()
    try:
        seed(session)
    finally:
        session.close()
