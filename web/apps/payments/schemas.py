"""Pydantic schemas for the payment endpoints.

Field names follow the wire contracts: camelCase for the client-facing
initiation API, the gateway's snake_case for notifications.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CreatePaymentIn(BaseModel):
    """Initiation request: one ``orderId`` or a list of ``orderIds``.

    Both may be given; they are merged. At least one id is required.
    """

    order_id: Optional[str] = Field(default=None, alias="orderId")
    order_ids: list[str] = Field(default_factory=list, alias="orderIds")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def require_some_id(self):
        if not self.order_id and not self.order_ids:
            raise ValueError("orderId or orderIds is required")
        return self

    def all_ids(self) -> list[str]:
        ids = list(self.order_ids)
        if self.order_id:
            ids.insert(0, self.order_id)
        return ids


class CreatePaymentOut(BaseModel):
    success: bool = True
    snap_token: str = Field(serialization_alias="snapToken")
    redirect_url: str = Field(serialization_alias="redirectUrl")
    order_ids: list[str] = Field(serialization_alias="orderIds")
    total_amount: int = Field(serialization_alias="totalAmount")


class NotificationIn(BaseModel):
    """Gateway HTTP notification.

    Values stay strings exactly as sent because the signature is computed
    over their textual form. Unknown extra fields (payment_type,
    transaction_time, ...) are kept but not used.
    """

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    order_id: str = ""
    status_code: str = ""
    gross_amount: str = ""
    transaction_status: str = ""
    fraud_status: Optional[str] = None
    signature_key: str = ""
