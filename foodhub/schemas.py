"""
Pydantic Schemas for Request/Response Validation

Request bodies are validated here for shape; business rules (positive
quantities, non-empty orders, menu ownership) are enforced by the services
so they surface as the same 400 ValidationError everywhere.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, StrictInt, model_validator

from foodhub.models import IncidentKind, OrderStatus, PaymentStatus


# =============================================================================
# ORDER SCHEMAS
# =============================================================================

class OrderLineCreate(BaseModel):
    """Single line in an order request."""
    item_id: uuid.UUID
    quantity: StrictInt = Field(..., examples=[2])


class OrderCreate(BaseModel):
    """Request schema for creating a new order."""
    restaurant_id: uuid.UUID
    customer_id: uuid.UUID
    lines: List[OrderLineCreate]


class OrderLineResponse(BaseModel):
    item_name: str
    item_price: int
    quantity: int
    subtotal: int

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    id: uuid.UUID
    restaurant_id: uuid.UUID
    customer_id: uuid.UUID
    total: int
    status: OrderStatus
    lines: List[OrderLineResponse]
    payment_status: Optional[PaymentStatus] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderCreateResponse(BaseModel):
    """Response after successfully creating an order."""
    success: bool = True
    order_id: uuid.UUID
    status: OrderStatus
    total: int


class OrderListResponse(BaseModel):
    """Response for listing multiple orders."""
    total: int
    orders: List[OrderResponse]


class ItemSalesResponse(BaseModel):
    item_name: str
    quantity: int

    class Config:
        from_attributes = True


class RestaurantStatsResponse(BaseModel):
    """Sales figures over paid orders; the grid is [weekday][hour], Monday first."""
    restaurant_id: uuid.UUID
    total_orders: int
    total_revenue: int
    average_order_value: float
    top_items: List[ItemSalesResponse]
    bottom_items: List[ItemSalesResponse]
    orders_per_hour_by_weekday: List[List[int]]
    timezone: str

    class Config:
        from_attributes = True


class TransitionRequest(BaseModel):
    """
    A restaurant or customer action on an order.

    Restaurant actions (accept, mark_ready, complete, cancel) carry
    restaurant_id; a customer cancelling an unpaid order carries
    customer_id.
    """
    action: str = Field(..., pattern="^(accept|mark_ready|complete|cancel)$")
    restaurant_id: Optional[uuid.UUID] = None
    customer_id: Optional[uuid.UUID] = None

    @model_validator(mode="after")
    def exactly_one_actor(self) -> "TransitionRequest":
        if (self.restaurant_id is None) == (self.customer_id is None):
            raise ValueError("Provide exactly one of restaurant_id or customer_id")
        return self


class TransitionResponse(BaseModel):
    success: bool = True
    order_id: uuid.UUID
    from_status: OrderStatus
    status: OrderStatus


# =============================================================================
# PAYMENT SCHEMAS
# =============================================================================

class PaymentSessionResponse(BaseModel):
    """Returned when a session is opened; session_id drives client checkout."""
    session_id: str
    order_id: uuid.UUID
    status: PaymentStatus
    gateway_order_ref: str
    amount: int


class PaymentSessionStatusResponse(BaseModel):
    order_id: uuid.UUID
    order_status: OrderStatus
    session_id: Optional[str] = None
    session_status: Optional[PaymentStatus] = None
    gateway_order_ref: Optional[str] = None

    class Config:
        from_attributes = True


class PaymentCallbackRequest(BaseModel):
    """Gateway-reported outcome for a session."""
    status: str = Field(..., examples=["success"])
    gateway_order_ref: str


class PaymentCallbackResponse(BaseModel):
    """Callbacks are acknowledged whether or not they changed anything."""
    received: bool = True
    session_id: str
    order_id: uuid.UUID
    changed: bool
    session_status: PaymentStatus
    order_status: OrderStatus
    incident_id: Optional[uuid.UUID] = None

    class Config:
        from_attributes = True


class PaymentIncidentResponse(BaseModel):
    id: uuid.UUID
    kind: IncidentKind
    session_id: Optional[str]
    order_id: Optional[uuid.UUID]
    recorded_status: Optional[str]
    reported_status: Optional[str]
    reported_gateway_ref: Optional[str]
    detail: str
    created_at: datetime

    class Config:
        from_attributes = True


# =============================================================================
# NOTIFICATION SCHEMAS
# =============================================================================

class NotificationTokenRequest(BaseModel):
    device_id: str = Field(..., min_length=1, max_length=255)
    token: str = Field(..., min_length=1, max_length=255, examples=["ExponentPushToken[xxxxxxxx]"])


class NotificationTokenResponse(BaseModel):
    user_id: uuid.UUID
    device_id: str
    token: str

    class Config:
        from_attributes = True


class BroadcastRequest(BaseModel):
    """A restaurant broadcast to every user."""
    title: str = Field(..., min_length=1, max_length=200)
    body: str = Field(..., min_length=1)
    ttl_minutes: Optional[int] = Field(None, ge=1)


class NotificationResponse(BaseModel):
    id: uuid.UUID
    recipient_id: Optional[uuid.UUID]
    sender_id: Optional[uuid.UUID]
    order_id: Optional[uuid.UUID]
    title: str
    body: str
    ttl_minutes: int
    created_at: datetime

    class Config:
        from_attributes = True


class DeliveryFailureResponse(BaseModel):
    user_id: uuid.UUID
    token: str
    error: str
    error_code: Optional[str] = None

    class Config:
        from_attributes = True


class DeliveryReportResponse(BaseModel):
    notification_id: Optional[uuid.UUID]
    duplicate: bool
    attempted: int
    succeeded: int
    failed: int
    per_user: dict[uuid.UUID, int]
    failures: List[DeliveryFailureResponse]


# =============================================================================
# SYSTEM SCHEMAS
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    payment_service: str
    notification_service: str
    timestamp: datetime
