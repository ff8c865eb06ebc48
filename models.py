"""
SMM Reseller Panel - Provider Integration Schema
================================================

Schema for the parts of the panel that talk to upstream fulfillment providers:
- Providers and their API dialect configuration
- Services linked to provider catalog entries
- Orders forwarded to and reconciled against providers
- Refill / cancel requests
- Append-only provider audit log
- Balance-bearing users and affiliate commissions

Statuses are stored as plain strings, with the allowed values listed in the enums below.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from sqlalchemy import (
    BigInteger, Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer,
    JSON, Numeric, String, Text, func
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class ProviderStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TRASH = "trash"


class OrderStatus(Enum):
    """Canonical, provider-agnostic order lifecycle"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    FAILED = "failed"


class RequestStatus(Enum):
    """Refill and cancel request lifecycle"""
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    FAILED = "failed"
    REFILLING = "refilling"
    COMPLETED = "completed"
    ERROR = "error"


# A refill/cancel request in one of these states blocks a new one for the same order
LIVE_REQUEST_STATUSES = (RequestStatus.PENDING.value, RequestStatus.APPROVED.value)


class ProviderLogAction(Enum):
    FORWARD_ORDER = "forward_order"
    FORWARD_REFILL_ORDER = "forward_refill_order"
    FORWARD_CANCEL_ORDER = "forward_cancel_order"
    REFILL_STATUS_SYNC = "refill_status_sync"
    MANUAL_SYNC = "manual_sync"
    CRON_SYNC = "cron_sync"


class ProviderLogStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    ERROR = "error"


class CommissionStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CANCELLED = "cancelled"


# Sub-state recorded in provider_status when the initial forward failed
FORWARD_FAILED_PROVIDER_STATUS = "forward_failed"


# ============================================================================
# PROVIDER CATALOG
# ============================================================================

class Provider(Base):
    """Upstream fulfillment provider and its API dialect configuration"""
    __tablename__ = 'api_providers'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    api_url: Mapped[str] = mapped_column(String(500), nullable=False)
    api_key: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ProviderStatus.ACTIVE.value, nullable=False)

    # Transport
    http_method: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)  # GET / POST, default POST
    timeout_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Dialect: 'standard' / 'json' / 'legacy_v1' or the legacy integer codes '1' / '2' / '3'
    api_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    api_key_param: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    action_param: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    auth_header_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Optional per-provider overrides, keyed by operation / concept name
    endpoint_overrides: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    action_overrides: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    param_overrides: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    field_overrides: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    services: Mapped[list["Service"]] = relationship("Service", back_populates="provider")

    __table_args__ = (
        CheckConstraint("status IN ('active', 'inactive', 'trash')", name='ck_provider_status_valid'),
    )

    @property
    def is_active(self) -> bool:
        return self.status == ProviderStatus.ACTIVE.value


class Category(Base):
    __tablename__ = 'categories'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)

    services: Mapped[list["Service"]] = relationship("Service", back_populates="category")


class Service(Base):
    """Sellable service, optionally fulfilled by a provider catalog entry"""
    __tablename__ = 'services'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey('categories.id'), nullable=True, index=True)
    provider_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey('api_providers.id'), nullable=True, index=True)
    provider_service_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    rate: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=0, nullable=False)  # USD per 1000
    min_order: Mapped[int] = mapped_column(BigInteger, default=1, nullable=False)
    max_order: Mapped[int] = mapped_column(BigInteger, default=1000000, nullable=False)

    refill: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancel: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    refill_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)

    provider: Mapped[Optional["Provider"]] = relationship("Provider", back_populates="services")
    category: Mapped[Optional["Category"]] = relationship("Category", back_populates="services")


# ============================================================================
# USERS AND ORDERS
# ============================================================================

class User(Base):
    """Balance-bearing panel user"""
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    balance: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=0, nullable=False)
    total_spent: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=0, nullable=False)
    currency: Mapped[str] = mapped_column(String(10), default="USD", nullable=False)
    dollar_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 8), nullable=True)

    # Affiliate program
    referred_by_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey('users.id'), nullable=True)
    affiliate_balance: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), server_default=func.now(), nullable=False)

    orders: Mapped[list["Order"]] = relationship("Order", back_populates="user")


class Order(Base):
    """A user order, forwarded to a provider and reconciled against it"""
    __tablename__ = 'orders'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    service_id: Mapped[int] = mapped_column(Integer, ForeignKey('services.id'), nullable=False, index=True)
    category_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey('categories.id'), nullable=True)

    link: Mapped[str] = mapped_column(Text, nullable=False)
    qty: Mapped[int] = mapped_column(BigInteger, nullable=False)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    dripfeed_runs: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    dripfeed_interval: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Pricing, fixed at order time
    usd_price: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=0, nullable=False)
    currency: Mapped[str] = mapped_column(String(10), default="USD", nullable=False)

    # Local lifecycle vs last known upstream status
    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.PENDING.value, nullable=False)
    provider_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    provider_order_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Owned by the reconciliation engine
    start_count: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    remains: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    charge: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 8), nullable=True)
    api_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    # Set exactly once, by the transaction that refunds a cancelled order
    refund_applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    user: Mapped["User"] = relationship("User", back_populates="orders")
    service: Mapped["Service"] = relationship("Service")
    category: Mapped[Optional["Category"]] = relationship("Category")

    __table_args__ = (
        CheckConstraint("qty >= 0", name='ck_order_qty_non_negative'),
        CheckConstraint("remains >= 0", name='ck_order_remains_non_negative'),
        Index('ix_orders_provider_order_id', 'provider_order_id'),
        Index('ix_orders_status_last_sync', 'status', 'last_sync_at'),
    )


class RefillRequest(Base):
    __tablename__ = 'refill_requests'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey('orders.id'), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=RequestStatus.PENDING.value, nullable=False)
    provider_refill_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), server_default=func.now(), nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    order: Mapped["Order"] = relationship("Order")

    __table_args__ = (
        Index('ix_refill_requests_order_status', 'order_id', 'status'),
    )


class CancelRequest(Base):
    __tablename__ = 'cancel_requests'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey('orders.id'), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=RequestStatus.PENDING.value, nullable=False)
    provider_cancel_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), server_default=func.now(), nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    order: Mapped["Order"] = relationship("Order")

    __table_args__ = (
        Index('ix_cancel_requests_order_status', 'order_id', 'status'),
    )


# ============================================================================
# AUDIT AND AFFILIATES
# ============================================================================

class ProviderOrderLog(Base):
    """Append-only record of every forward / sync attempt - never updated or deleted"""
    __tablename__ = 'provider_order_logs'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey('orders.id'), nullable=False, index=True)
    provider_id: Mapped[int] = mapped_column(Integer, ForeignKey('api_providers.id'), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('success', 'failed', 'error')", name='ck_provider_log_status_valid'),
        Index('ix_provider_order_logs_order_created', 'order_id', 'created_at'),
    )


class AffiliateCommission(Base):
    __tablename__ = 'affiliate_commissions'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey('orders.id'), nullable=False, unique=True)
    affiliate_user_id: Mapped[int] = mapped_column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=CommissionStatus.PENDING.value, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'approved', 'cancelled')", name='ck_affiliate_commission_status_valid'),
    )
