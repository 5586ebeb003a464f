from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from entro.domain.permissions import Role
from entro.domain.plans import PricingPlan
from entro.domain.state_machine import EventStatus, OrderStatus, ScanResult, TicketStatus
from entro.domain.vat import VatRate


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Organizations

class OrganizationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    slug: str = Field(min_length=1, max_length=64)
    email: str | None = None


class OrganizationResponse(ORMModel):
    id: str
    name: str
    slug: str
    email: str | None
    plan: PricingPlan
    branding_removed: bool
    payment_provider_connected: bool
    payment_timeout_minutes: int


class OrganizationSettingsUpdate(BaseModel):
    payment_timeout_minutes: int | None = None
    branding_removed: bool | None = None


class PaymentProviderConnectionRequest(BaseModel):
    connected: bool


class MemberCreate(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    role: Role = Role.MEMBER


class MemberRoleUpdate(BaseModel):
    role: Role


class MemberResponse(ORMModel):
    id: str
    organization_id: str
    user_id: str
    role: Role


# Events

class EventCreate(BaseModel):
    organization_id: str
    title: str
    starts_at: datetime
    ends_at: datetime
    description: str | None = None
    location: str | None = None
    pass_payment_fees_to_buyer: bool = False


class EventUpdate(BaseModel):
    title: str | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    description: str | None = None
    location: str | None = None
    pass_payment_fees_to_buyer: bool | None = None


class EventStatusUpdate(BaseModel):
    status: EventStatus


class EventResponse(ORMModel):
    id: str
    organization_id: str
    title: str
    slug: str
    description: str | None
    location: str | None
    starts_at: datetime
    ends_at: datetime
    status: EventStatus
    pass_payment_fees_to_buyer: bool


class EventStatsResponse(BaseModel):
    ticket_type_count: int
    total_capacity: int
    total_sold: int


# Ticket types

class TicketTypeCreate(BaseModel):
    name: str
    price: int = Field(description="Cents, VAT inclusive")
    capacity: int
    vat_rate: VatRate = VatRate.STANDARD_21
    description: str | None = None
    sale_start: datetime | None = None
    sale_end: datetime | None = None


class TicketTypeUpdate(BaseModel):
    name: str | None = None
    price: int | None = None
    capacity: int | None = None
    vat_rate: VatRate | None = None
    description: str | None = None
    sale_start: datetime | None = None
    sale_end: datetime | None = None


class TicketTypeReorderRequest(BaseModel):
    ordered_ids: list[str]


class TicketTypeResponse(ORMModel):
    id: str
    event_id: str
    name: str
    description: str | None
    price: int
    vat_rate: VatRate
    capacity: int
    sold_count: int
    sale_start: datetime | None
    sale_end: datetime | None
    sort_order: int


class AvailabilityResponse(BaseModel):
    ticket_type_id: str
    total: int
    sold: int
    available: int
    is_on_sale: bool


class PublicTicketTypeResponse(BaseModel):
    id: str
    name: str
    description: str | None
    price: int
    price_excl_vat: int
    vat_amount: int
    vat_rate: VatRate
    vat_label: str
    available: int
    is_on_sale: bool


class PublicEventResponse(BaseModel):
    id: str
    title: str
    slug: str
    description: str | None
    location: str | None
    starts_at: datetime
    ends_at: datetime
    organization_name: str
    ticket_types: list[PublicTicketTypeResponse]


# Checkout & orders

class CheckoutItem(BaseModel):
    ticket_type_id: str
    quantity: int = Field(ge=0)


class CheckoutSummaryRequest(BaseModel):
    event_slug: str
    organization_slug: str | None = None
    items: list[CheckoutItem]


class CheckoutLineResponse(BaseModel):
    ticket_type_id: str
    name: str
    quantity: int
    unit_price: int
    total_price: int


class CheckoutSummaryResponse(BaseModel):
    event_id: str
    lines: list[CheckoutLineResponse]
    ticket_total: int
    service_fee: int
    payment_fee: int
    total_amount: int


class OrderCreate(BaseModel):
    event_slug: str
    organization_slug: str | None = None
    buyer_email: str
    buyer_name: str | None = None
    items: list[CheckoutItem]
    idempotency_key: str | None = Field(default=None, max_length=128)


class OrderItemResponse(ORMModel):
    ticket_type_id: str
    quantity: int
    unit_price: int
    total_price: int


class OrderResponse(ORMModel):
    id: str
    order_number: str
    event_id: str
    buyer_email: str
    buyer_name: str | None
    status: OrderStatus
    ticket_total: int
    service_fee: int
    payment_fee: int
    total_amount: int
    currency: str
    expires_at: datetime | None
    paid_at: datetime | None
    items: list[OrderItemResponse]


class ExpireOrdersResponse(BaseModel):
    expired: int


# Payments

class PaymentStartRequest(BaseModel):
    payment_method: str | None = None


class PaymentStartResponse(BaseModel):
    order_id: str
    payment_id: str
    amount: str
    currency: str
    description: str


class PaymentWebhookRequest(BaseModel):
    payment_id: str
    status: Literal["paid", "failed", "canceled", "expired"]


class PaymentWebhookResponse(BaseModel):
    order_id: str
    status: OrderStatus


# Tickets & scanning

class TicketResponse(BaseModel):
    id: str
    code: str
    status: TicketStatus
    event_id: str
    ticket_type_id: str
    used_at: datetime | None
    qr_data: str | None = None


class TicketStatsResponse(BaseModel):
    total: int
    valid: int
    used: int
    refunded: int
    used_percentage: int


class TicketOverrideRequest(BaseModel):
    status: TicketStatus
    reason: str | None = None


class ScanRequest(BaseModel):
    organization_id: str
    qr_data: str
    device_id: str | None = Field(default=None, max_length=64)


class ScanResponse(BaseModel):
    result: ScanResult
    message: str
    ticket_id: str | None = None
    ticket_code: str | None = None
    ticket_type_name: str | None = None
    first_scanned_at: datetime | None = None


class ScanLogResponse(ORMModel):
    id: str
    ticket_id: str
    scanned_by: str
    device_id: str | None
    result: ScanResult
    scanned_at: datetime


# Payouts & platform

class PayoutResponse(BaseModel):
    event_id: str
    order_count: int
    ticket_count: int
    gross_revenue: int
    platform_fee_bps: int
    platform_fee: int
    overage_fee: int
    net_payout: int
    service_fees_collected: int
    payment_fees_collected: int


class PlanUpdateRequest(BaseModel):
    plan: PricingPlan


class FeeOverrideRequest(BaseModel):
    platform_fee_bps: int | None = None
    overage_fee: int | None = None


class OutboxEventResponse(BaseModel):
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    status: str
    attempts: int
    created_at: str
