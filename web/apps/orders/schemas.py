"""Pydantic schemas for order intake and order reads.

Creation payloads carry only references and quantities; prices come from the
menu on the server side so a client can never choose its own total.
"""

import datetime as dt
from decimal import Decimal
from uuid import UUID

from django.utils import timezone
from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_QUANTITY = 100


class OrderItemIn(BaseModel):
    """Input schema for a single order line.

    Attributes:
        menu_item_id: Menu item reference.
        quantity: Portions requested, between 1 and ``MAX_QUANTITY``.
    """

    menu_item_id: UUID
    quantity: int = Field(ge=1, le=MAX_QUANTITY)


class CreateOrderDTO(BaseModel):
    """Schema for creating a pending order for one recipient and one day.

    Attributes:
        recipient_id: Recipient (child) owned by the caller.
        delivery_date: Day the meal is delivered; today or later.
        items: Non-empty list of ``OrderItemIn``. Repeated menu items are
            merged by summing their quantities.
        notes: Optional free text for the kitchen.
    """

    recipient_id: UUID
    delivery_date: dt.date
    items: list[OrderItemIn] = Field(min_length=1)
    notes: str = Field(default="", max_length=500)

    @field_validator("delivery_date")
    @classmethod
    def validate_delivery_date(cls, v: dt.date) -> dt.date:
        if v < timezone.localdate():
            raise ValueError("delivery_date is in the past")
        return v

    @field_validator("items")
    @classmethod
    def merge_duplicate_items(cls, v: list[OrderItemIn]) -> list[OrderItemIn]:
        merged: dict[UUID, int] = {}
        for it in v:
            merged[it.menu_item_id] = merged.get(it.menu_item_id, 0) + it.quantity
        if any(q > MAX_QUANTITY for q in merged.values()):
            raise ValueError(f"quantity per menu item cannot exceed {MAX_QUANTITY}")
        return [OrderItemIn(menu_item_id=k, quantity=q) for k, q in merged.items()]


class OrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    menu_item_id: UUID | None = None
    menu_item_name: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


class OrderReadDTO(BaseModel):
    """Read model returned by the list and detail endpoints.

    ``snap_token`` and ``payment_url`` let a client resume an unfinished
    payment; ``status`` is the authoritative value set by the webhook.
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    recipient_id: UUID
    recipient_name: str
    delivery_date: dt.date
    status: str
    total_amount: Decimal
    notes: str = ""
    snap_token: str | None = None
    payment_url: str | None = None
    transaction_id: str | None = None
    items: list[OrderItemRead] = []
    created_at: dt.datetime
    updated_at: dt.datetime
