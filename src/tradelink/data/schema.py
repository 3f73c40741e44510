"""SQLAlchemy schema for marketplace data."""

from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

from tradelink.utils.helpers import utcnow

Base = declarative_base()


# ============================================================================
# Enums
# ============================================================================


class UserRole(str, Enum):
    BUYER = "buyer"
    SUPPLIER = "supplier"
    ADMIN = "admin"


class MembershipTier(str, Enum):
    FREE = "free"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class RFQStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    EXPIRED = "expired"


class QuotationStatus(str, Enum):
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


class CommissionStatus(str, Enum):
    UNPAID = "unpaid"
    OVERDUE = "overdue"
    PAYMENT_SUBMITTED = "payment_submitted"
    PAID = "paid"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PayoutMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    PAYPAL = "paypal"
    STRIPE = "stripe"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DisputeType(str, Enum):
    PRODUCT_QUALITY = "product_quality"
    SHIPPING_DELAY = "shipping_delay"
    WRONG_ITEM = "wrong_item"
    PAYMENT_ISSUE = "payment_issue"
    COMMUNICATION = "communication"
    OTHER = "other"


class DisputeStatus(str, Enum):
    OPEN = "open"
    UNDER_REVIEW = "under_review"
    MEDIATION = "mediation"
    RESOLVED = "resolved"
    CLOSED = "closed"


class DisputePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ResolutionType(str, Enum):
    REFUND = "refund"
    REPLACEMENT = "replacement"
    PARTIAL_REFUND = "partial_refund"
    NO_ACTION = "no_action"
    CUSTOM = "custom"


class RefundType(str, Enum):
    FULL = "full"
    PARTIAL = "partial"


class RefundStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ConversationType(str, Enum):
    BUYER_SUPPLIER = "buyer_supplier"
    BUYER_ADMIN = "buyer_admin"
    SUPPLIER_ADMIN = "supplier_admin"


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    CLOSED = "closed"


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# ============================================================================
# Accounts
# ============================================================================


class User(Base):
    """Marketplace account (buyer, supplier or admin)."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)

    supplier_profile = relationship("SupplierProfile", back_populates="user", uselist=False)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, role='{self.role}')>"


class SupplierProfile(Base):
    """Supplier-specific commercial settings, keyed by the supplier's user id."""

    __tablename__ = "supplier_profiles"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    business_name = Column(String(255), nullable=False)
    membership_tier = Column(String(20), default=MembershipTier.FREE.value, index=True)
    custom_commission_rate = Column(Float, nullable=True)
    commission_credit_limit = Column(Float, default=10000.0)
    is_restricted = Column(Boolean, default=False)
    restriction_reason = Column(Text)
    last_payment_date = Column(DateTime)
    payment_reminder_sent_at = Column(DateTime)
    bank_name = Column(String(255))
    account_number = Column(String(64))
    paypal_email = Column(String(255))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="supplier_profile")

    def __repr__(self) -> str:
        return f"<SupplierProfile(user_id={self.user_id}, tier='{self.membership_tier}')>"


class Category(Base):
    """Product category."""

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)


# ============================================================================
# RFQs, quotations, orders
# ============================================================================


class RFQ(Base):
    """Request for quotation posted by a buyer."""

    __tablename__ = "rfqs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, default="")
    quantity = Column(Integer, nullable=False)
    target_price = Column(Float)
    delivery_location = Column(String(255))
    status = Column(String(20), default=RFQStatus.OPEN.value, index=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    quotations = relationship("Quotation", back_populates="rfq", lazy="dynamic")

    def __repr__(self) -> str:
        return f"<RFQ(id={self.id}, status='{self.status}')>"


class Quotation(Base):
    """A supplier's offer against an RFQ."""

    __tablename__ = "quotations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    rfq_id = Column(Integer, ForeignKey("rfqs.id"), nullable=False, index=True)
    supplier_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    price_per_unit = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)
    moq = Column(Integer)
    lead_time_days = Column(Integer)
    validity_days = Column(Integer)
    terms = Column(Text)
    status = Column(String(20), default=QuotationStatus.SENT.value, index=True)
    rejection_reason = Column(Text)
    order_id = Column(Integer)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    rfq = relationship("RFQ", back_populates="quotations")

    __table_args__ = (Index("ix_quotation_rfq_supplier", "rfq_id", "supplier_id", unique=True),)


class Order(Base):
    """Order created from an accepted quotation."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(32), unique=True, nullable=False)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    supplier_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    quotation_id = Column(Integer, ForeignKey("quotations.id"))
    category_id = Column(Integer, ForeignKey("categories.id"))
    total_amount = Column(Float, nullable=False)
    status = Column(String(20), default=OrderStatus.PENDING.value, index=True)
    payment_status = Column(String(20), default=PaymentStatus.PENDING.value, index=True)
    commission_rate = Column(Float)
    commission_amount = Column(Float)
    supplier_amount = Column(Float)
    refunded_amount = Column(Float, default=0.0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Order(number='{self.order_number}', total={self.total_amount})>"


# ============================================================================
# Commission, credit, payouts
# ============================================================================


class CommissionSettings(Base):
    """Single-row table of platform commission rates."""

    __tablename__ = "commission_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    default_rate = Column(Float, nullable=False)
    free_rate = Column(Float, nullable=False)
    silver_rate = Column(Float, nullable=False)
    gold_rate = Column(Float, nullable=False)
    platinum_rate = Column(Float, nullable=False)
    category_rates = Column(JSON, default=dict)
    vendor_overrides = Column(JSON, default=dict)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    updated_by = Column(Integer, ForeignKey("users.id"))


class Commission(Base):
    """Commission owed by a supplier to the platform for one paid order."""

    __tablename__ = "commissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, unique=True)
    supplier_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    order_amount = Column(Float, nullable=False)
    commission_rate = Column(Float, nullable=False)
    commission_amount = Column(Float, nullable=False)
    status = Column(String(20), default=CommissionStatus.UNPAID.value, index=True)
    due_date = Column(DateTime, nullable=False)
    payment_date = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)


class PaymentSubmission(Base):
    """Supplier's payment against a set of outstanding commissions."""

    __tablename__ = "payment_submissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    supplier_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    commission_ids = Column(JSON, nullable=False)
    payment_method = Column(String(32), default="bank_transfer")
    status = Column(String(20), default=SubmissionStatus.PENDING.value, index=True)
    submitted_at = Column(DateTime, default=utcnow)
    verified_at = Column(DateTime)
    verified_by = Column(Integer, ForeignKey("users.id"))
    rejection_reason = Column(Text)


class Payout(Base):
    """Transfer of an order's net amount from the platform to a supplier."""

    __tablename__ = "payouts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    supplier_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True)
    amount = Column(Float, nullable=False)
    commission_amount = Column(Float, nullable=False)
    net_amount = Column(Float, nullable=False)
    method = Column(String(20), nullable=False)
    status = Column(String(20), default=PayoutStatus.PENDING.value, index=True)
    scheduled_date = Column(DateTime, nullable=False)
    processed_date = Column(DateTime)
    transaction_id = Column(String(128))
    failure_reason = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# ============================================================================
# Disputes and refunds
# ============================================================================


class Dispute(Base):
    """Order dispute between a buyer and a supplier, mediated by an admin."""

    __tablename__ = "disputes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    supplier_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    raised_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    type = Column(String(32), nullable=False, index=True)
    status = Column(String(20), default=DisputeStatus.OPEN.value, index=True)
    priority = Column(String(10), default=DisputePriority.MEDIUM.value, index=True)
    amount = Column(Float)
    assigned_mediator = Column(Integer, ForeignKey("users.id"), index=True)
    escalation_level = Column(Integer, default=0)
    escalated_at = Column(DateTime)
    escalation_reason = Column(Text)
    resolution_type = Column(String(20))
    resolution_summary = Column(Text)
    resolved_at = Column(DateTime)
    closed_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Dispute(id={self.id}, status='{self.status}')>"


class DisputeMessage(Base):
    """Message in a dispute thread; internal messages are admin-only."""

    __tablename__ = "dispute_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    dispute_id = Column(Integer, ForeignKey("disputes.id"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    sender_type = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    attachments = Column(JSON, default=list)
    is_internal = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)


class DisputeEvidence(Base):
    """Evidence file uploaded to a dispute."""

    __tablename__ = "dispute_evidence"

    id = Column(Integer, primary_key=True, autoincrement=True)
    dispute_id = Column(Integer, ForeignKey("disputes.id"), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    original_name = Column(String(255), nullable=False)
    size = Column(Integer, nullable=False)
    mimetype = Column(String(128), nullable=False)
    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    user_type = Column(String(20), nullable=False)
    notes = Column(Text)
    uploaded_at = Column(DateTime, default=utcnow)


class Refund(Base):
    """Refund issued against a paid order."""

    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    dispute_id = Column(Integer, ForeignKey("disputes.id"), index=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    supplier_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    admin_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    refund_amount = Column(Float, nullable=False)
    original_amount = Column(Float, nullable=False)
    refund_type = Column(String(10), nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(String(20), default=RefundStatus.PENDING.value, index=True)
    transaction_id = Column(String(128))
    commission_adjustment = Column(Float, default=0.0)
    failure_reason = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    processed_at = Column(DateTime)


# ============================================================================
# Chat and notifications
# ============================================================================


class Conversation(Base):
    """Chat conversation between two marketplace roles."""

    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(20), nullable=False)
    buyer_id = Column(Integer, ForeignKey("users.id"), index=True)
    supplier_id = Column(Integer, ForeignKey("users.id"), index=True)
    admin_id = Column(Integer, ForeignKey("users.id"), index=True)
    subject = Column(String(255))
    product_id = Column(Integer)
    status = Column(String(20), default=ConversationStatus.ACTIVE.value, index=True)
    assigned_admin = Column(Integer, ForeignKey("users.id"))
    last_message_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ChatMessage(Base):
    """Message within a conversation."""

    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    sender_type = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    attachments = Column(JSON, default=list)
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (Index("ix_chat_message_conversation", "conversation_id", "created_at"),)


class Notification(Base):
    """Persisted user notification; also pushed over WebSocket."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(10), default=NotificationType.INFO.value)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    related_id = Column(Integer)
    related_type = Column(String(32))
    is_read = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime, default=utcnow)
