# orderflow/api/routers/inventory.py
from fastapi import APIRouter, Depends

from orderflow.api.deps import get_ledger, require_admin
from orderflow.data.database import unit_of_work
from orderflow.data.models.inventory import DEFAULT_WAREHOUSE
from orderflow.domain.schemas import InventoryAdjustIn, InventoryLevelsOut
from orderflow.services.inventory_ledger import InventoryLedger

router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.get("/{variant_id}", response_model=InventoryLevelsOut)
def get_levels(variant_id: str, ledger: InventoryLedger = Depends(get_ledger)):
    return ledger.levels(variant_id)


@router.post("/{variant_id}/adjust", response_model=InventoryLevelsOut, dependencies=[Depends(require_admin)])
def adjust_stock(variant_id: str, payload: InventoryAdjustIn, ledger: InventoryLedger = Depends(get_ledger)):
    with unit_of_work(ledger.db):
        return ledger.adjust(variant_id, payload.delta, payload.reason, payload.warehouse_id or DEFAULT_WAREHOUSE)
