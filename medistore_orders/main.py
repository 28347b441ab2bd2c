"""
main.py — FastAPI Entry Point for the Order Service

This module provides the REST API of the MediStore order core. It maps HTTP
requests onto the workflows in workflow.py and the listings in queries.py and
renders every result in the common response envelope.

Responsibilities:
    • Resolve the caller identity forwarded by the authentication gateway
    • Validate payloads and hand them to the order workflows
    • Translate the error taxonomy into HTTP status codes
    • Provide system health information

Envelope:
    success → {"success": true, "message": ..., "meta": ..., "data": ...}
    failure → {"success": false, "message": ..., "errors": [...]}
"""

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from . import config, queries, workflow
from .database import get_session, init_db, translate_db_error
from .entities import Role
from .errors import ApiError
from .identity import Identity, get_identity, require_roles
from .logging_config import get_logger, setup_logging
from .models import (
    CheckoutRequest,
    OrderListQuery,
    OrderOut,
    PageMeta,
    SellerOrderItemOut,
    StatusUpdateRequest,
    UpdateOrderItemsRequest,
)

# Initialization
# Configure logging and initialize FastAPI app
setup_logging()
log = get_logger(__name__)
app = FastAPI(title="MediStore Order Service")


def send_response(data=None, message: str = "Request successful", status_code: int = 200, meta=None):
    body = {"success": True, "message": message}
    if meta is not None:
        body["meta"] = meta
    body["data"] = data
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def _order(order) -> OrderOut:
    return OrderOut.model_validate(order)


# Startup Event: schema bootstrap
@app.on_event("startup")
def on_startup():
    """
    FastAPI startup event handler.

    Creates missing tables when CREATE_SCHEMA_ON_STARTUP is enabled, so a
    fresh local database is usable immediately.
    """
    log.info("Order service starting...")
    if config.CREATE_SCHEMA_ON_STARTUP:
        init_db()
        log.info("Database schema ensured.")


# --- Error handling ---

@app.exception_handler(ApiError)
def handle_api_error(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        log.error(f"{request.method} {request.url.path} failed ({exc.kind}): {exc.message}")
    else:
        log.warning(f"{request.method} {request.url.path} rejected ({exc.kind}): {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message},
    )


@app.exception_handler(DBAPIError)
def handle_database_error(request: Request, exc: DBAPIError):
    # Reads run outside transaction(); their driver failures are mapped here
    return handle_api_error(request, translate_db_error(exc, f"[{request.method} {request.url.path}]"))


@app.exception_handler(RequestValidationError)
def handle_request_validation_error(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err["loc"][1:]) or str(err["loc"][0]),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    log.warning(f"{request.method} {request.url.path} rejected (validation): {errors}")
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation error", "errors": errors},
    )


@app.exception_handler(Exception)
def handle_unexpected_error(request: Request, exc: Exception):
    log.critical(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Something went wrong"},
    )


# --- Customer / admin ---

@app.post("/api/orders/checkout")
def checkout(
        payload: CheckoutRequest,
        identity: Identity = Depends(require_roles(Role.CUSTOMER, Role.ADMIN)),
        session: Session = Depends(get_session)
):
    """Places an order from the submitted cart. Responds 201 with the materialized order."""
    order = workflow.checkout(session, identity, payload)
    return send_response(_order(order), "Order placed successfully", status_code=201)


@app.get("/api/orders/me")
def my_orders(
        query: OrderListQuery = Depends(),
        identity: Identity = Depends(get_identity),
        session: Session = Depends(get_session)
):
    orders, meta = queries.get_my_orders(session, identity, query)
    return send_response(
        [_order(o) for o in orders], "My orders fetched successfully", meta=PageMeta(**meta)
    )


# --- Admin ---

@app.get("/api/orders")
def all_orders(
        query: OrderListQuery = Depends(),
        identity: Identity = Depends(require_roles(Role.ADMIN)),
        session: Session = Depends(get_session)
):
    orders, meta = queries.get_all_orders(session, identity, query)
    return send_response(
        [_order(o) for o in orders], "All orders fetched successfully", meta=PageMeta(**meta)
    )


# --- Seller (must be registered before "/api/orders/{order_id}") ---

@app.get("/api/orders/seller/me")
def seller_orders(
        query: OrderListQuery = Depends(),
        identity: Identity = Depends(require_roles(Role.SELLER, Role.ADMIN)),
        session: Session = Depends(get_session)
):
    items, meta = queries.get_seller_orders(session, identity, query)
    return send_response(
        [SellerOrderItemOut.model_validate(i) for i in items],
        "Seller orders fetched successfully",
        meta=PageMeta(**meta),
    )


@app.patch("/api/orders/seller/{order_id}/status")
def seller_update_status(
        order_id: str,
        payload: StatusUpdateRequest,
        identity: Identity = Depends(require_roles(Role.SELLER, Role.ADMIN)),
        session: Session = Depends(get_session)
):
    order = workflow.update_order_status_by_seller(session, identity, order_id, payload.status)
    return send_response(_order(order), "Order status updated successfully")


# --- Single order ---

@app.get("/api/orders/{order_id}")
def get_order(
        order_id: str,
        identity: Identity = Depends(get_identity),
        session: Session = Depends(get_session)
):
    order = queries.get_single_order(session, identity, order_id)
    return send_response(_order(order), "Order fetched successfully")


@app.patch("/api/orders/{order_id}/items")
def update_items(
        order_id: str,
        payload: UpdateOrderItemsRequest,
        identity: Identity = Depends(require_roles(Role.CUSTOMER, Role.ADMIN)),
        session: Session = Depends(get_session)
):
    order = workflow.update_order_items(session, identity, order_id, payload)
    return send_response(_order(order), "Order items updated successfully")


@app.patch("/api/orders/{order_id}/cancel")
def cancel(
        order_id: str,
        identity: Identity = Depends(require_roles(Role.CUSTOMER, Role.ADMIN)),
        session: Session = Depends(get_session)
):
    order = workflow.cancel_order(session, identity, order_id)
    return send_response(_order(order), "Order cancelled successfully")


@app.patch("/api/orders/{order_id}/status")
def update_status(
        order_id: str,
        payload: StatusUpdateRequest,
        identity: Identity = Depends(require_roles(Role.ADMIN)),
        session: Session = Depends(get_session)
):
    order = workflow.update_order_status(session, identity, order_id, payload.status)
    return send_response(_order(order), "Order status updated successfully")


# Health Check Endpoint
@app.get("/health")
def health_check():
    """
    Simple health check endpoint for monitoring systems and container orchestrators.

    Returns:
        dict: A basic JSON object indicating service availability.
    """
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
