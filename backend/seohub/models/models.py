from sqlalchemy import JSON

# SQLAlchemy core imports
from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Float
from sqlalchemy import ForeignKey
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy.ext.mutable import MutableDict
from sqlalchemy.ext.mutable import MutableList
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

# Local helpers / enums
from seohub.database import Base
from seohub.models.enums import AgencyPlan
from seohub.models.enums import ExecutionStatus
from seohub.models.enums import InviteStatus
from seohub.models.enums import OnboardingStatus
from seohub.models.enums import OrderStatus
from seohub.models.enums import ReportType
from seohub.models.enums import ScheduleStatus
from seohub.models.enums import UserRole


def _enum_column(enum_cls, name: str):
    """Non-native enum persisted by *value* (``"pending"``) instead of name."""

    return SAEnum(enum_cls, native_enum=False, name=name, values_callable=lambda e: [m.value for m in e])


# ---------------------------------------------------------------------------
# Tenancy – Agency / User / UserInvite
# ---------------------------------------------------------------------------


class Agency(Base):
    """Tenant organisation owning users, orders and report schedules."""

    __tablename__ = "agencies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False, index=True)
    domain = Column(String, nullable=True)
    plan = Column(_enum_column(AgencyPlan, "agency_plan_enum"), nullable=False, default=AgencyPlan.STARTER.value)
    status = Column(String, nullable=False, default="active")

    # White-label branding ---------------------------------------------------
    primary_color = Column(String, nullable=True)
    secondary_color = Column(String, nullable=True)
    logo = Column(String, nullable=True)

    # Connected GA4 property (set via /api/ga4/connect)
    ga4_property_id = Column(String, nullable=True)
    ga4_property_name = Column(String, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    users = relationship("User", back_populates="agency")
    orders = relationship("Order", back_populates="agency")
    report_schedules = relationship("ReportSchedule", back_populates="agency", cascade="all, delete-orphan")


class User(Base):
    """Application user signing in with Google."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    provider = Column(String, nullable=True, default="google")
    provider_user_id = Column(String, nullable=True, index=True)

    # Core identity ----------------------------------------------------------
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    image = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Role / permission level – backed by :class:`seohub.models.enums.UserRole`.
    role = Column(
        SAEnum(UserRole, native_enum=False, name="user_role_enum"),
        nullable=False,
        default=UserRole.USER.value,
    )
    is_super_admin = Column(Boolean, default=False, nullable=False)

    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=True, index=True)

    # UI theme (companyName, primaryColor, secondaryColor, logo)
    theme = Column(MutableDict.as_mutable(JSON), nullable=True, default={})
    onboarding_completed = Column(Boolean, default=False, nullable=False)

    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    agency = relationship("Agency", back_populates="users")


class UserInvite(Base):
    __tablename__ = "user_invites"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, nullable=False, index=True)
    role = Column(String, nullable=False, default="user")
    is_super_admin = Column(Boolean, default=False, nullable=False)
    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=True)
    invited_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    token = Column(String, unique=True, nullable=False, index=True)
    status = Column(_enum_column(InviteStatus, "invite_status_enum"), nullable=False, default=InviteStatus.PENDING.value)
    expires_at = Column(DateTime, nullable=False)
    accepted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    agency = relationship("Agency")
    invited_by_user = relationship("User", foreign_keys=[invited_by])


# ---------------------------------------------------------------------------
# Orders (a.k.a. requests) and their messages
# ---------------------------------------------------------------------------


class Order(Base):
    """A unit of SEO deliverable work moving through the status lifecycle."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    user_email = Column(String, nullable=True)
    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=True, index=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    task_type = Column(String, nullable=False)
    task_category = Column(String, nullable=True)
    priority = Column(String, nullable=False, default="medium")
    status = Column(_enum_column(OrderStatus, "order_status_enum"), nullable=False, default=OrderStatus.PENDING.value)

    assigned_to = Column(String, nullable=True)
    estimated_hours = Column(Float, nullable=True)
    actual_hours = Column(Float, nullable=True)

    # List of deliverable dicts (uploads, vendor links, ...)
    deliverables = Column(MutableList.as_mutable(JSON), nullable=True, default=list)
    completion_notes = Column(Text, nullable=True)
    quality_score = Column(Integer, nullable=True)

    keywords = Column(MutableList.as_mutable(JSON), nullable=True, default=list)
    target_url = Column(String, nullable=True)
    word_count = Column(Integer, nullable=True)
    page_title = Column(String, nullable=True)
    content_url = Column(String, nullable=True)

    seoworks_task_id = Column(String, nullable=True, index=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User")
    agency = relationship("Agency", back_populates="orders")
    messages = relationship(
        "OrderMessage",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderMessage.id",
    )


class OrderMessage(Base):
    __tablename__ = "order_messages"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    content = Column(Text, nullable=False)
    type = Column(String, nullable=False, default="comment")
    created_at = Column(DateTime, server_default=func.now())

    order = relationship("Order", back_populates="messages")
    user = relationship("User")


class SEOWorksTask(Base):
    """Task record mirrored from the SEOWorks fulfilment webhook."""

    __tablename__ = "seoworks_tasks"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String, unique=True, nullable=False, index=True)
    task_type = Column(String, nullable=False)
    status = Column(String, nullable=False)
    completion_date = Column(DateTime, nullable=True)
    post_title = Column(String, nullable=False)
    post_url = Column(String, nullable=True)
    completion_notes = Column(Text, nullable=True)
    is_weekly = Column(Boolean, default=False, nullable=False)
    payload = Column(MutableDict.as_mutable(JSON), nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    order = relationship("Order")


# ---------------------------------------------------------------------------
# Escalations raised from chat
# ---------------------------------------------------------------------------


class Escalation(Base):
    __tablename__ = "escalations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=True)

    original_question = Column(Text, nullable=False)
    ai_response = Column(Text, nullable=True)
    user_context = Column(Text, nullable=True)
    conversation_id = Column(Integer, nullable=True)
    contact_preference = Column(String, nullable=True)
    priority = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")
    tags = Column(MutableList.as_mutable(JSON), nullable=True, default=list)

    assigned_to = Column(String, nullable=True)
    assigned_at = Column(DateTime, nullable=True)
    resolution = Column(Text, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(String, nullable=True)
    resolution_time = Column(Integer, nullable=True)  # minutes

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User")
    agency = relationship("Agency")


# ---------------------------------------------------------------------------
# Chat – Conversation / Message
# ---------------------------------------------------------------------------


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=True)
    title = Column(String, nullable=False, default="New Conversation")
    model = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.id",
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=True)
    role = Column(String, nullable=False)  # user / assistant / system
    content = Column(Text, nullable=False)
    model = Column(String, nullable=True)
    tokens = Column(Integer, nullable=True)
    cost = Column(Float, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    conversation = relationship("Conversation", back_populates="messages")


# ---------------------------------------------------------------------------
# Report scheduling
# ---------------------------------------------------------------------------


class ReportSchedule(Base):
    """Cron-driven GA4 report schedule with failure tracking."""

    __tablename__ = "report_schedules"

    id = Column(Integer, primary_key=True, index=True)
    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    cron_pattern = Column(String, nullable=False)
    ga4_property_id = Column(String, nullable=False)
    report_type = Column(_enum_column(ReportType, "report_type_enum"), nullable=False)
    email_recipients = Column(MutableList.as_mutable(JSON), nullable=False, default=list)
    branding_options = Column(MutableDict.as_mutable(JSON), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    # Pause / failure tracking ------------------------------------------------
    is_paused = Column(Boolean, default=False, nullable=False)
    paused_reason = Column(String, nullable=True)
    consecutive_failures = Column(Integer, default=0, nullable=False)
    last_success_at = Column(DateTime, nullable=True)
    last_failure_at = Column(DateTime, nullable=True)
    last_execution_id = Column(Integer, nullable=True)

    # Manual-retry bookkeeping
    status = Column(_enum_column(ScheduleStatus, "schedule_status_enum"), nullable=False, default=ScheduleStatus.IDLE.value)
    error_message = Column(Text, nullable=True)

    last_run = Column(DateTime, nullable=True)
    next_run = Column(DateTime, nullable=True, index=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    agency = relationship("Agency", back_populates="report_schedules")
    user = relationship("User")
    executions = relationship(
        "ReportExecution",
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="ReportExecution.id",
    )


class ReportExecution(Base):
    """One attempt at generating and delivering a scheduled report."""

    __tablename__ = "report_executions"

    id = Column(Integer, primary_key=True, index=True)
    schedule_id = Column(Integer, ForeignKey("report_schedules.id"), nullable=False, index=True)
    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=False, index=True)

    status = Column(
        _enum_column(ExecutionStatus, "execution_status_enum"),
        nullable=False,
        default=ExecutionStatus.QUEUED.value,
    )
    attempt_count = Column(Integer, nullable=False, default=1)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)

    error = Column(Text, nullable=True)
    error_code = Column(String, nullable=True)
    retry_after = Column(DateTime, nullable=True)

    report_url = Column(String, nullable=True)
    emails_sent = Column(Boolean, default=False, nullable=False)
    details = Column(MutableDict.as_mutable(JSON), nullable=True, default={})

    created_at = Column(DateTime, server_default=func.now())

    schedule = relationship("ReportSchedule", back_populates="executions")


# ---------------------------------------------------------------------------
# Google OAuth tokens (encrypted at rest)
# ---------------------------------------------------------------------------


class UserGA4Token(Base):
    __tablename__ = "user_ga4_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    encrypted_access_token = Column(Text, nullable=False)
    encrypted_refresh_token = Column(Text, nullable=True)
    expiry_date = Column(DateTime, nullable=True)
    scope = Column(Text, nullable=True)
    token_type = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class UserSearchConsoleToken(Base):
    __tablename__ = "user_search_console_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    encrypted_access_token = Column(Text, nullable=False)
    encrypted_refresh_token = Column(Text, nullable=True)
    expiry_date = Column(DateTime, nullable=True)
    scope = Column(Text, nullable=True)
    verified_sites = Column(MutableList.as_mutable(JSON), nullable=True, default=list)
    primary_site = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


# ---------------------------------------------------------------------------
# Dealership onboarding
# ---------------------------------------------------------------------------


class DealershipOnboarding(Base):
    __tablename__ = "dealership_onboardings"

    id = Column(Integer, primary_key=True, index=True)
    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    submitted_by = Column(String, nullable=True)

    business_name = Column(String, nullable=False)
    package = Column(String, nullable=False)
    main_brand = Column(String, nullable=False)
    other_brand = Column(String, nullable=True)
    address = Column(String, nullable=False)
    city = Column(String, nullable=False)
    state = Column(String, nullable=False)
    zip_code = Column(String, nullable=False)
    contact_name = Column(String, nullable=False)
    contact_title = Column(String, nullable=True)
    email = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    website_url = Column(String, nullable=False)
    billing_email = Column(String, nullable=False)
    site_access_notes = Column(Text, nullable=True)
    target_vehicle_models = Column(MutableList.as_mutable(JSON), nullable=False, default=list)
    target_cities = Column(MutableList.as_mutable(JSON), nullable=False, default=list)
    target_dealers = Column(MutableList.as_mutable(JSON), nullable=False, default=list)

    status = Column(
        _enum_column(OnboardingStatus, "onboarding_status_enum"),
        nullable=False,
        default=OnboardingStatus.PENDING.value,
    )
    submitted_at = Column(DateTime, nullable=True)
    seoworks_response = Column(MutableDict.as_mutable(JSON), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String, nullable=False, index=True)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=True)
    user_id = Column(Integer, nullable=True)
    user_email = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
