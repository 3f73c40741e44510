"""Pydantic schemas for API request/response validation."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tradelink.data.schema import (
    ConversationType,
    DisputePriority,
    DisputeStatus,
    DisputeType,
    MembershipTier,
    OrderStatus,
    PayoutMethod,
    UserRole,
)


class ORMModel(BaseModel):
    """Base for responses read straight from ORM rows."""

    model_config = ConfigDict(from_attributes=True)


class Page(BaseModel):
    total: int
    limit: int
    offset: int


# ============================================================================
# Users
# ============================================================================


class UserCreateRequest(BaseModel):
    """Register a marketplace account (admin only)."""

    email: str = Field(..., min_length=3, max_length=255)
    name: str = Field(..., min_length=1, max_length=255)
    role: UserRole
    business_name: str | None = None
    membership_tier: MembershipTier = MembershipTier.FREE

    model_config = {
        "json_schema_extra": {
            "example": {
                "email": "sales@acme-fasteners.com",
                "name": "Acme Fasteners",
                "role": "supplier",
                "business_name": "Acme Fasteners Ltd",
                "membership_tier": "silver",
            }
        }
    }


class UserResponse(ORMModel):
    id: int
    email: str
    name: str
    role: str
    created_at: datetime | None = None


class SupplierProfileUpdate(BaseModel):
    business_name: str | None = None
    membership_tier: MembershipTier | None = None
    bank_name: str | None = None
    account_number: str | None = None
    paypal_email: str | None = None


class SupplierProfileResponse(ORMModel):
    user_id: int
    business_name: str
    membership_tier: str
    custom_commission_rate: float | None = None
    commission_credit_limit: float
    is_restricted: bool
    restriction_reason: str | None = None
    last_payment_date: datetime | None = None
    payment_reminder_sent_at: datetime | None = None
    bank_name: str | None = None
    account_number: str | None = None
    paypal_email: str | None = None


# ============================================================================
# RFQs and quotations
# ============================================================================


class RFQCreateRequest(BaseModel):
    """Post a new request for quotation."""

    title: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(..., gt=0)
    description: str = ""
    category_id: int | None = None
    target_price: float | None = Field(None, ge=0)
    delivery_location: str | None = None
    expires_at: datetime | None = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "title": "M8 stainless hex bolts",
                "quantity": 5000,
                "description": "A2-70, DIN 933, boxed in 500s",
                "target_price": 0.12,
                "delivery_location": "Rotterdam, NL",
            }
        }
    }


class RFQUpdateRequest(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    quantity: int | None = Field(None, gt=0)
    category_id: int | None = None
    target_price: float | None = Field(None, ge=0)
    delivery_location: str | None = None


class ExtendExpirationRequest(BaseModel):
    expires_at: datetime


class RFQResponse(ORMModel):
    id: int
    buyer_id: int
    category_id: int | None = None
    title: str
    description: str | None = ""
    quantity: int
    target_price: float | None = None
    delivery_location: str | None = None
    status: str
    expires_at: datetime
    created_at: datetime | None = None
    updated_at: datetime | None = None


class RFQDetailResponse(RFQResponse):
    quotation_count: int = 0
    has_quoted: bool | None = None


class QuotationCreateRequest(BaseModel):
    price_per_unit: float = Field(..., gt=0)
    total_price: float | None = Field(None, gt=0)
    moq: int | None = Field(None, gt=0)
    lead_time_days: int | None = Field(None, ge=0)
    validity_days: int | None = Field(None, gt=0)
    terms: str | None = None


class QuotationUpdateRequest(BaseModel):
    price_per_unit: float | None = Field(None, gt=0)
    total_price: float | None = Field(None, gt=0)
    moq: int | None = Field(None, gt=0)
    lead_time_days: int | None = Field(None, ge=0)
    validity_days: int | None = Field(None, gt=0)
    terms: str | None = None


class RejectQuotationRequest(BaseModel):
    reason: str | None = None


class QuotationResponse(ORMModel):
    id: int
    rfq_id: int
    supplier_id: int
    price_per_unit: float
    total_price: float
    moq: int | None = None
    lead_time_days: int | None = None
    validity_days: int | None = None
    terms: str | None = None
    status: str
    rejection_reason: str | None = None
    order_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ============================================================================
# Orders
# ============================================================================


class OrderStatusRequest(BaseModel):
    status: OrderStatus


class OrderResponse(ORMModel):
    id: int
    order_number: str
    buyer_id: int
    supplier_id: int
    quotation_id: int | None = None
    category_id: int | None = None
    total_amount: float
    status: str
    payment_status: str
    commission_rate: float | None = None
    commission_amount: float | None = None
    supplier_amount: float | None = None
    refunded_amount: float | None = 0.0
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ============================================================================
# Commission and credit
# ============================================================================


class CommissionSettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""

    default_rate: float | None = None
    free_rate: float | None = None
    silver_rate: float | None = None
    gold_rate: float | None = None
    platinum_rate: float | None = None
    category_rates: dict[str, float] | None = None
    vendor_overrides: dict[str, float] | None = None


class SupplierRateRequest(BaseModel):
    rate: float | None = Field(None, description="Custom rate (%); null clears it")


class CommissionCalculationRequest(BaseModel):
    supplier_id: int
    order_amount: float = Field(..., ge=0)
    category_id: int | None = None


class CommissionResponse(ORMModel):
    id: int
    order_id: int
    supplier_id: int
    order_amount: float
    commission_rate: float
    commission_amount: float
    status: str
    due_date: datetime
    payment_date: datetime | None = None
    created_at: datetime | None = None


class PaymentSubmissionRequest(BaseModel):
    amount: float = Field(..., gt=0)
    commission_ids: list[int] = Field(..., min_length=1)
    payment_method: str = "bank_transfer"


class RejectPaymentRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class PaymentSubmissionResponse(ORMModel):
    id: int
    supplier_id: int
    amount: float
    commission_ids: list[int]
    payment_method: str
    status: str
    submitted_at: datetime | None = None
    verified_at: datetime | None = None
    verified_by: int | None = None
    rejection_reason: str | None = None


class CreditLimitRequest(BaseModel):
    limit: float = Field(..., ge=0)


class RestrictionRequest(BaseModel):
    is_restricted: bool
    reason: str | None = None


# ============================================================================
# Payouts and refunds
# ============================================================================


class SchedulePayoutRequest(BaseModel):
    supplier_id: int | None = Field(None, description="Required for admins")
    method: PayoutMethod = PayoutMethod.BANK_TRANSFER


class PayoutResponse(ORMModel):
    id: int
    supplier_id: int
    order_id: int | None = None
    amount: float
    commission_amount: float
    net_amount: float
    method: str
    status: str
    scheduled_date: datetime
    processed_date: datetime | None = None
    transaction_id: str | None = None
    failure_reason: str | None = None
    created_at: datetime | None = None


class RefundRequest(BaseModel):
    order_id: int
    amount: float = Field(..., gt=0)
    reason: str = Field(..., min_length=1)
    dispute_id: int | None = None


class RefundResponse(ORMModel):
    id: int
    order_id: int
    dispute_id: int | None = None
    buyer_id: int
    supplier_id: int
    admin_id: int
    refund_amount: float
    original_amount: float
    refund_type: str
    reason: str
    status: str
    transaction_id: str | None = None
    commission_adjustment: float | None = 0.0
    failure_reason: str | None = None
    created_at: datetime | None = None
    processed_at: datetime | None = None


# ============================================================================
# Disputes
# ============================================================================


class DisputeCreateRequest(BaseModel):
    order_id: int
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    type: DisputeType
    priority: DisputePriority = DisputePriority.MEDIUM
    amount: float | None = Field(None, gt=0)


class DisputeResponse(ORMModel):
    id: int
    order_id: int
    buyer_id: int
    supplier_id: int
    raised_by: int
    title: str
    description: str
    type: str
    status: str
    priority: str
    amount: float | None = None
    assigned_mediator: int | None = None
    escalation_level: int | None = 0
    escalated_at: datetime | None = None
    escalation_reason: str | None = None
    resolution_type: str | None = None
    resolution_summary: str | None = None
    resolved_at: datetime | None = None
    closed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DisputePage(Page):
    items: list[DisputeResponse]


class DisputeStatusRequest(BaseModel):
    status: DisputeStatus


class AssignMediatorRequest(BaseModel):
    mediator_id: int


class ReasonRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class DisputeMessageRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=5000)
    attachments: list[str] = Field(default_factory=list)
    is_internal: bool = False


class DisputeMessageResponse(ORMModel):
    id: int
    dispute_id: int
    sender_id: int
    sender_type: str
    message: str
    attachments: list[str] | None = None
    is_internal: bool
    created_at: datetime | None = None


class EvidenceUploadRequest(BaseModel):
    """Evidence file sent inline as base64."""

    filename: str = Field(..., min_length=1, max_length=255)
    mimetype: str
    content_base64: str = Field(..., min_length=1)
    notes: str | None = None


class EvidenceResponse(ORMModel):
    id: int
    dispute_id: int
    filename: str
    original_name: str
    size: int
    mimetype: str
    uploaded_by: int
    user_type: str
    notes: str | None = None
    uploaded_at: datetime | None = None


class EvidenceListResponse(BaseModel):
    buyer: list[EvidenceResponse] = Field(default_factory=list)
    supplier: list[EvidenceResponse] = Field(default_factory=list)
    admin: list[EvidenceResponse] = Field(default_factory=list)


class CompletenessResponse(BaseModel):
    is_complete: bool
    missing_evidence: list[str]
    recommendations: list[str]


# ============================================================================
# Chat and notifications
# ============================================================================


class ConversationCreateRequest(BaseModel):
    type: ConversationType
    participant_id: int
    subject: str | None = Field(None, max_length=255)
    product_id: int | None = None
    initial_message: str | None = Field(None, max_length=5000)


class ConversationResponse(ORMModel):
    id: int
    type: str
    buyer_id: int | None = None
    supplier_id: int | None = None
    admin_id: int | None = None
    subject: str | None = None
    product_id: int | None = None
    status: str
    assigned_admin: int | None = None
    last_message_at: datetime | None = None
    created_at: datetime | None = None


class ChatMessageRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=5000)
    attachments: list[str] = Field(default_factory=list)


class ChatMessageResponse(ORMModel):
    id: int
    conversation_id: int
    sender_id: int
    sender_type: str
    message: str
    attachments: list[str] | None = None
    is_read: bool
    created_at: datetime | None = None


class AssignConversationRequest(BaseModel):
    admin_id: int


class UnreadCountsResponse(BaseModel):
    total: int
    conversations: int
    by_conversation: dict[int, int] = Field(default_factory=dict)


class NotificationResponse(ORMModel):
    id: int
    user_id: int
    type: str
    title: str
    message: str
    related_id: int | None = None
    related_type: str | None = None
    is_read: bool
    created_at: datetime | None = None


class CountResponse(BaseModel):
    count: int


# ============================================================================
# Health Check Schemas
# ============================================================================


class ServiceHealth(BaseModel):
    """Health status of a service."""

    name: str
    status: str  # "healthy", "degraded", "unhealthy"
    latency_ms: float | None = None
    message: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str  # "healthy", "degraded", "unhealthy"
    version: str
    timestamp: datetime = Field(default_factory=datetime.now)
    services: list[ServiceHealth] = Field(default_factory=list)


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    checks: dict[str, bool] = Field(default_factory=dict)


# ============================================================================
# Error Schemas
# ============================================================================


class ErrorDetail(BaseModel):
    """Details of an error."""

    code: str
    message: str
    field: str | None = None


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    details: list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)


class MessageResponse(BaseModel):
    message: str
    data: dict[str, Any] | None = None
