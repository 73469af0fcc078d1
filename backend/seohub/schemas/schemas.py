import re
from datetime import datetime
from typing import Any
from typing import Dict
from typing import List
from typing import Literal
from typing import Optional

from pydantic import BaseModel
from pydantic import Field
from pydantic import field_validator
from pydantic.alias_generators import to_camel

from seohub.models.enums import AgencyPlan
from seohub.models.enums import EscalationStatus
from seohub.models.enums import ExecutionStatus
from seohub.models.enums import InviteStatus
from seohub.models.enums import OnboardingStatus
from seohub.models.enums import OrderMessageType
from seohub.models.enums import OrderStatus
from seohub.models.enums import Priority
from seohub.models.enums import ReportType
from seohub.models.enums import ScheduleStatus
from seohub.models.enums import SEOPackage
from seohub.models.enums import TaskType
from seohub.models.enums import UserRole

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_HEX_COLOR_RE = r"^#[0-9a-fA-F]{6}$"


def _check_email(value: str) -> str:
    if not _EMAIL_RE.match(value or ""):
        raise ValueError(f"Invalid email address: {value}")
    return value


class CamelModel(BaseModel):
    """Accepts ``camelCase`` or ``snake_case`` keys; responses render camelCase."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


def serialize(schema, obj) -> Dict[str, Any]:
    """Render an ORM row through *schema* as a camelCase JSON-ready dict."""

    return schema.model_validate(obj).model_dump(by_alias=True, mode="json")


# ------------------------------------------------------------
# Authentication
# ------------------------------------------------------------


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until expiry


# ------------------------------------------------------------
# Users, theme, agencies, invites
# ------------------------------------------------------------


class AgencyOut(CamelModel):
    id: int
    name: str
    slug: str
    domain: Optional[str] = None
    plan: AgencyPlan
    status: str
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    logo: Optional[str] = None
    ga4_property_id: Optional[str] = None
    ga4_property_name: Optional[str] = None
    created_at: Optional[datetime] = None


class UserOut(CamelModel):
    id: int
    email: str
    name: Optional[str] = None
    image: Optional[str] = None
    role: UserRole
    is_super_admin: bool
    agency_id: Optional[int] = None
    is_active: bool
    onboarding_completed: bool = False
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None


class UserDetailOut(UserOut):
    agency: Optional[AgencyOut] = None


class InviteOut(CamelModel):
    id: int
    email: str
    role: str
    is_super_admin: bool
    agency_id: Optional[int] = None
    status: InviteStatus
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class UserSelfUpdate(CamelModel):
    name: Optional[str] = Field(default=None, max_length=200)
    image: Optional[str] = None


class UserAdminUpdate(CamelModel):
    user_id: int
    is_super_admin: Optional[bool] = None
    role: Optional[Literal["USER", "ADMIN"]] = None


class ThemeIn(CamelModel):
    company_name: Optional[str] = Field(default=None, max_length=100)
    primary_color: Optional[str] = Field(default=None, pattern=_HEX_COLOR_RE)
    secondary_color: Optional[str] = Field(default=None, pattern=_HEX_COLOR_RE)
    logo: Optional[str] = None


class AgencyCreate(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    slug: str = Field(min_length=1, max_length=100, pattern=r"^[a-z0-9-]+$")
    domain: Optional[str] = None
    plan: Literal["starter", "growth", "enterprise"] = "starter"


class InviteCreate(CamelModel):
    email: str
    role: Literal["user", "admin", "super_admin"] = "user"
    is_super_admin: bool = False
    agency_id: Optional[int] = None

    check_email = field_validator("email")(_check_email)


# ------------------------------------------------------------
# Orders & requests
# ------------------------------------------------------------


class OrderCreate(CamelModel):
    task_type: TaskType
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=2000)
    priority: Priority = Priority.MEDIUM
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    keywords: Optional[List[str]] = None
    target_url: Optional[str] = None
    word_count: Optional[int] = Field(default=None, ge=0)


class OrderUpdate(CamelModel):
    status: Optional[OrderStatus] = None
    assigned_to: Optional[str] = None
    completion_notes: Optional[str] = Field(default=None, max_length=5000)
    quality_score: Optional[int] = Field(default=None, ge=1, le=5)
    actual_hours: Optional[float] = Field(default=None, ge=0)
    content_url: Optional[str] = None
    page_title: Optional[str] = None


class OrderMessageCreate(CamelModel):
    content: str = Field(min_length=1, max_length=2000)
    type: OrderMessageType = OrderMessageType.COMMENT


class OrderOut(CamelModel):
    id: int
    user_id: Optional[int] = None
    user_email: Optional[str] = None
    agency_id: Optional[int] = None
    title: str
    description: str
    task_type: str
    task_category: Optional[str] = None
    priority: str
    status: OrderStatus
    assigned_to: Optional[str] = None
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    deliverables: List[Dict[str, Any]] = Field(default_factory=list)
    completion_notes: Optional[str] = None
    quality_score: Optional[int] = None
    keywords: List[str] = Field(default_factory=list)
    target_url: Optional[str] = None
    word_count: Optional[int] = None
    page_title: Optional[str] = None
    content_url: Optional[str] = None
    seoworks_task_id: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("deliverables", "keywords", mode="before")
    @classmethod
    def none_as_empty(cls, value):
        return [] if value is None else list(value)


class OrderMessageOut(CamelModel):
    id: int
    order_id: int
    user_id: Optional[int] = None
    content: str
    type: str
    created_at: Optional[datetime] = None


class RequestCreate(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    task_type: Optional[str] = None
    type: Optional[str] = None
    priority: Optional[str] = "medium"
    estimated_hours: Optional[float] = None
    keywords: Optional[List[str]] = None
    target_url: Optional[str] = None
    word_count: Optional[int] = None
    page_title: Optional[str] = None
    content_url: Optional[str] = None
    task_category: Optional[str] = None


# ------------------------------------------------------------
# Escalations
# ------------------------------------------------------------


class EscalationCreate(CamelModel):
    question: Optional[str] = None
    priority: Optional[Literal["low", "medium", "high", "urgent"]] = None
    ai_response: Optional[str] = None
    additional_context: Optional[str] = None
    contact_preference: Optional[str] = None
    conversation_id: Optional[int] = None


class EscalationUpdate(CamelModel):
    escalation_id: Optional[int] = None
    status: Optional[EscalationStatus] = None
    assigned_to: Optional[str] = None
    resolution: Optional[str] = None


class EscalationOut(CamelModel):
    id: int
    user_id: int
    agency_id: Optional[int] = None
    original_question: str
    ai_response: Optional[str] = None
    user_context: Optional[str] = None
    conversation_id: Optional[int] = None
    contact_preference: Optional[str] = None
    priority: str
    status: str
    tags: List[str] = Field(default_factory=list)
    assigned_to: Optional[str] = None
    assigned_at: Optional[datetime] = None
    resolution: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_time: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("tags", mode="before")
    @classmethod
    def none_as_empty(cls, value):
        return [] if value is None else list(value)


# ------------------------------------------------------------
# Feature flags
# ------------------------------------------------------------


class FeatureFlagUpdate(CamelModel):
    flag_key: Optional[str] = None
    enabled: Optional[bool] = None
    rollout_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    user_segments: Optional[List[str]] = None


# ------------------------------------------------------------
# Report schedules
# ------------------------------------------------------------


class ScheduleCreate(CamelModel):
    cron_pattern: str = Field(min_length=1)
    ga4_property_id: str = Field(min_length=1)
    report_type: ReportType
    email_recipients: List[str] = Field(min_length=1)
    branding_options: Optional[Dict[str, Any]] = None
    is_active: bool = True

    @field_validator("email_recipients")
    @classmethod
    def valid_recipients(cls, value: List[str]) -> List[str]:
        return [_check_email(v) for v in value]


class ScheduleUpdate(CamelModel):
    cron_pattern: Optional[str] = None
    ga4_property_id: Optional[str] = None
    report_type: Optional[ReportType] = None
    email_recipients: Optional[List[str]] = Field(default=None, min_length=1)
    branding_options: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None

    @field_validator("email_recipients")
    @classmethod
    def valid_recipients(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return value
        return [_check_email(v) for v in value]


class ScheduleOut(CamelModel):
    id: int
    agency_id: int
    user_id: int
    cron_pattern: str
    ga4_property_id: str
    report_type: ReportType
    email_recipients: List[str]
    branding_options: Optional[Dict[str, Any]] = None
    is_active: bool
    is_paused: bool
    paused_reason: Optional[str] = None
    consecutive_failures: int = 0
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_execution_id: Optional[int] = None
    status: ScheduleStatus
    error_message: Optional[str] = None
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ExecutionOut(CamelModel):
    id: int
    schedule_id: int
    agency_id: int
    status: ExecutionStatus
    attempt_count: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    retry_after: Optional[datetime] = None
    report_url: Optional[str] = None
    emails_sent: bool = False
    details: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class PauseIn(CamelModel):
    reason: Optional[str] = None


class ReportTestIn(CamelModel):
    report_type: Optional[ReportType] = None
    date_range_string: Optional[str] = None
    branding_options: Optional[Dict[str, Any]] = None


class ReportExportIn(CamelModel):
    data: Dict[str, Any]
    format: str


# ------------------------------------------------------------
# Google integrations
# ------------------------------------------------------------


class GA4ConnectIn(CamelModel):
    property_id: str = Field(min_length=1)
    property_name: str = Field(min_length=1)


class PrimarySiteIn(CamelModel):
    site_url: str = Field(min_length=1)


# ------------------------------------------------------------
# SEOWorks
# ------------------------------------------------------------


class SEOWorksWebhookIn(BaseModel):
    """Vendor payload; keys are snake_case on the wire."""

    id: str = Field(min_length=1)
    task_type: Literal["blog", "page", "gbp", "maintenance", "seo", "seo_audit"]
    status: Literal["completed", "in_progress", "pending", "cancelled"]
    completion_date: datetime
    post_title: str = Field(min_length=1)
    post_url: Optional[str] = None
    completion_notes: Optional[str] = None
    is_weekly: bool = False
    payload: Optional[Dict[str, Any]] = None


class TaskCompleteIn(CamelModel):
    request_id: Optional[int] = None
    status: Optional[str] = None
    deliverables: Optional[List[Dict[str, Any]]] = None
    completion_notes: Optional[str] = None
    actual_hours: Optional[float] = None
    quality_score: Optional[int] = None


# ------------------------------------------------------------
# Onboarding
# ------------------------------------------------------------


class OnboardingIn(CamelModel):
    business_name: str = ""
    package: Optional[SEOPackage] = None
    main_brand: str = ""
    other_brand: Optional[str] = None
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    contact_name: str = ""
    contact_title: str = ""
    email: str = ""
    phone: str = ""
    website_url: str = ""
    billing_email: str = ""
    site_access_notes: Optional[str] = None
    target_vehicle_models: List[str] = Field(default_factory=list)
    target_cities: List[str] = Field(default_factory=list)
    target_dealers: List[str] = Field(default_factory=list)


class OnboardingOut(CamelModel):
    id: int
    agency_id: int
    user_id: Optional[int] = None
    business_name: str
    package: str
    main_brand: str
    city: str
    state: str
    contact_name: str
    email: str
    website_url: str
    target_vehicle_models: List[str] = Field(default_factory=list)
    target_cities: List[str] = Field(default_factory=list)
    target_dealers: List[str] = Field(default_factory=list)
    status: OnboardingStatus
    submitted_at: Optional[datetime] = None
    seoworks_response: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


# ------------------------------------------------------------
# AI chat
# ------------------------------------------------------------


class ChatIn(CamelModel):
    message: str = Field(min_length=1, max_length=10000)
    model: Optional[str] = None
    use_context: bool = True


class ChatStreamIn(CamelModel):
    message: str = Field(min_length=1, max_length=10000)
    conversation_id: Optional[int] = None
    model: Optional[str] = None


class ConversationCreate(CamelModel):
    title: str = "New Conversation"
    model: str = "openai/gpt-4-turbo-preview"


class MessageOut(CamelModel):
    id: int
    conversation_id: int
    role: str
    content: str
    model: Optional[str] = None
    tokens: Optional[int] = None
    cost: Optional[float] = None
    created_at: Optional[datetime] = None


class ConversationOut(CamelModel):
    id: int
    user_id: int
    agency_id: Optional[int] = None
    title: str
    model: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ConversationDetailOut(ConversationOut):
    messages: List[MessageOut] = Field(default_factory=list)
