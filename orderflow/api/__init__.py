# orderflow/api/__init__.py
from fastapi import FastAPI

from orderflow.api.errors import register_error_handlers
from orderflow.api.routers import carts, health, inventory, orders, payments


def create_app() -> FastAPI:
    app = FastAPI(
        title="Orderflow",
        version="1.0.0",
    )
    register_error_handlers(app)

    app.include_router(health.router)
    app.include_router(carts.router)
    app.include_router(orders.router)
    app.include_router(payments.router)
    app.include_router(inventory.router)

    return app
