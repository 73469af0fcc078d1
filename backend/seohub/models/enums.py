"""Shared *Enum* definitions for SQLAlchemy & Pydantic models.

The Enums inherit from ``str`` so that:

* JSON serialisation remains unchanged (values render as plain strings).
* Equality checks against raw literals (``order.status == "pending"``) keep
  working in routers and tests.
"""

from __future__ import annotations

from enum import Enum


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class AgencyPlan(str, Enum):
    STARTER = "starter"
    GROWTH = "growth"
    ENTERPRISE = "enterprise"


class OrderStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskType(str, Enum):
    BLOG = "blog"
    PAGE = "page"
    GBP = "gbp"
    MAINTENANCE = "maintenance"
    SEO = "seo"
    SEO_AUDIT = "seo_audit"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class OrderMessageType(str, Enum):
    COMMENT = "comment"
    STATUS_UPDATE = "status_update"
    COMPLETION_NOTE = "completion_note"
    QUESTION = "question"


class EscalationStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class InviteStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


class ReportType(str, Enum):
    WEEKLY_SUMMARY = "WeeklySummary"
    MONTHLY_REPORT = "MonthlyReport"
    QUARTERLY_BUSINESS_REVIEW = "QuarterlyBusinessReview"


class ScheduleStatus(str, Enum):
    IDLE = "idle"
    QUEUED = "queued"
    RUNNING = "running"


class ExecutionStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ExecutionErrorCode(str, Enum):
    OAUTH_EXPIRED = "OAUTH_EXPIRED"
    OAUTH_INVALID = "OAUTH_INVALID"
    API_RATE_LIMIT = "API_RATE_LIMIT"
    API_QUOTA_EXCEEDED = "API_QUOTA_EXCEEDED"
    PROPERTY_ACCESS_DENIED = "PROPERTY_ACCESS_DENIED"
    GENERATION_FAILED = "GENERATION_FAILED"
    EMAIL_SEND_FAILED = "EMAIL_SEND_FAILED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class OnboardingStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    FAILED = "failed"


class SEOPackage(str, Enum):
    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"


__all__ = [
    "UserRole",
    "AgencyPlan",
    "OrderStatus",
    "TaskType",
    "Priority",
    "OrderMessageType",
    "EscalationStatus",
    "InviteStatus",
    "ReportType",
    "ScheduleStatus",
    "ExecutionStatus",
    "ExecutionErrorCode",
    "OnboardingStatus",
    "SEOPackage",
]
