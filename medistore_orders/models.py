"""
models.py — Request and Response Models

Pydantic models for the payloads the order service accepts and returns.
Request models are validated before a workflow ever sees them; response
models are built straight from the persistence entities (from_attributes)
and serialize with the camelCase field names clients expect.

Models:
    - OrderItemRequest / CheckoutRequest / UpdateOrderItemsRequest / StatusUpdateRequest
    - OrderListQuery: paging, sorting, filtering and search parameters.
    - MedicineOut / CustomerOut / OrderItemOut / OrderOut / SellerOrderItemOut
    - PageMeta: pagination block of list responses.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .entities import MedicineStatus, OrderStatus


# --- Requests ---

class OrderItemRequest(BaseModel):
    """
    A single cart line.

    Attributes:
        medicineId (str): Catalog id of the medicine.
        quantity (int): Units requested. Must be a positive integer.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    medicineId: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)


class CheckoutRequest(BaseModel):
    """
    Cart submitted for checkout.

    Address and phone are trimmed here and checked for emptiness by the
    checkout workflow, which also merges duplicate medicine lines.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    address: str
    phone: str
    items: List[OrderItemRequest] = Field(..., min_length=1)


class UpdateOrderItemsRequest(BaseModel):
    """Replacement item set for an order that is still PLACED."""
    items: List[OrderItemRequest] = Field(..., min_length=1)


class StatusUpdateRequest(BaseModel):
    # Kept as plain string so an unknown value is reported as "Invalid status"
    status: str


class OrderListQuery(BaseModel):
    """
    Query string of the order listings.

    Numeric parameters are taken as raw strings and parsed leniently:
    unparsable page/limit fall back to defaults, unparsable total bounds
    are ignored.
    """
    page: Optional[str] = None
    limit: Optional[str] = None
    sortBy: Optional[str] = None
    sortOrder: Optional[str] = None
    status: Optional[str] = None
    search: Optional[str] = None
    customerId: Optional[str] = None
    minTotal: Optional[str] = None
    maxTotal: Optional[str] = None


# --- Responses ---

class _Projection(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class MedicineOut(_Projection):
    id: str
    name: str
    price: float
    stock: int
    status: MedicineStatus
    sellerId: str = Field(validation_alias="seller_id")


class CustomerOut(_Projection):
    id: str
    name: str
    email: str


class OrderItemOut(_Projection):
    id: str
    orderId: str = Field(validation_alias="order_id")
    medicineId: str = Field(validation_alias="medicine_id")
    sellerId: str = Field(validation_alias="seller_id")
    quantity: int
    price: float
    medicine: Optional[MedicineOut] = None


class OrderSummaryOut(_Projection):
    id: str
    customerId: str = Field(validation_alias="customer_id")
    address: str
    phone: str
    total: float
    status: OrderStatus
    createdAt: datetime = Field(validation_alias="created_at")
    customer: Optional[CustomerOut] = None


class OrderOut(OrderSummaryOut):
    items: List[OrderItemOut] = []


class SellerOrderItemOut(OrderItemOut):
    """A seller's line item together with the order it belongs to."""
    order: OrderSummaryOut


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    totalPage: int
