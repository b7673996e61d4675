# catalog_service/main.py
from fastapi import FastAPI, HTTPException

app = FastAPI(title="Catalog Service (dev mock)")


VARIANTS = {
    "kb-black": {"id": "kb-black", "sku": "KB-001-BLK", "name": "Keyboard, black", "price": "450000",
                 "is_active": True, "parent_active": True},
    "mouse-white": {"id": "mouse-white", "sku": "MS-002-WHT", "name": "Mouse, white", "price": "120000",
                    "is_active": True, "parent_active": True},
    "monitor-27": {"id": "monitor-27", "sku": "MN-027", "name": "Monitor 27\"", "price": "4990000",
                   "is_active": True, "parent_active": True},
    "cable-legacy": {"id": "cable-legacy", "sku": "CB-OLD", "name": "Legacy cable", "price": "30000",
                     "is_active": False, "parent_active": True},
}


@app.get("/variants/{variant_id}")
def get_variant(variant_id: str):
    variant = VARIANTS.get(variant_id)
    if not variant:
        raise HTTPException(status_code=404, detail="Variant not found")
    return variant
