import secrets
from datetime import datetime
from datetime import timedelta
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session
from sqlalchemy.orm import selectinload

from seohub.models.enums import ExecutionStatus
from seohub.models.enums import InviteStatus
from seohub.models.enums import ScheduleStatus
from seohub.models.models import Agency
from seohub.models.models import AuditLog
from seohub.models.models import Conversation
from seohub.models.models import DealershipOnboarding
from seohub.models.models import Escalation
from seohub.models.models import Message
from seohub.models.models import Order
from seohub.models.models import OrderMessage
from seohub.models.models import ReportExecution
from seohub.models.models import ReportSchedule
from seohub.models.models import SEOWorksTask
from seohub.models.models import User
from seohub.models.models import UserGA4Token
from seohub.models.models import UserInvite
from seohub.models.models import UserSearchConsoleToken
from seohub.utils.cron import calculate_next_run
from seohub.utils.cron import validate_cron_or_raise
from seohub.utils.time import utc_now_naive

INVITE_TTL = timedelta(days=7)

# Monthly order allowance per agency plan (None = unlimited)
PLAN_ORDER_LIMITS: Dict[str, Optional[int]] = {
    "starter": 50,
    "growth": 200,
    "enterprise": None,
}


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


def create_audit_log(
    db: Session,
    *,
    action: str,
    entity_type: str,
    entity_id: Any = None,
    user_id: Optional[int] = None,
    user_email: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    commit: bool = True,
):
    """Append an audit row.  ``commit=False`` lets callers batch it with their own write."""

    row = AuditLog(
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        user_id=user_id,
        user_email=user_email,
        details=details or {},
    )
    db.add(row)
    if commit:
        db.commit()
    return row


def get_audit_logs(db: Session, *, action: Optional[str] = None, limit: int = 100) -> List[AuditLog]:
    query = db.query(AuditLog)
    if action:
        query = query.filter(AuditLog.action == action)
    return query.order_by(AuditLog.id.desc()).limit(limit).all()


# ---------------------------------------------------------------------------
# Users & agencies
# ---------------------------------------------------------------------------


def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email).first()


def get_users(db: Session, *, agency_id: Optional[int] = None) -> List[User]:
    query = db.query(User).options(selectinload(User.agency))
    if agency_id is not None:
        query = query.filter(User.agency_id == agency_id)
    return query.order_by(User.created_at.desc(), User.id.desc()).all()


def get_agency_admins(db: Session, agency_id: int) -> List[User]:
    return db.query(User).filter(User.agency_id == agency_id, User.role == "ADMIN", User.is_active.is_(True)).all()


def create_user(
    db: Session,
    *,
    email: str,
    name: Optional[str] = None,
    image: Optional[str] = None,
    provider: Optional[str] = "google",
    provider_user_id: Optional[str] = None,
    role: str = "USER",
    is_super_admin: bool = False,
    agency_id: Optional[int] = None,
    commit: bool = True,
) -> User:
    user = User(
        email=email,
        name=name,
        image=image,
        provider=provider,
        provider_user_id=provider_user_id,
        role=role,
        is_super_admin=is_super_admin,
        agency_id=agency_id,
        theme={},
    )
    db.add(user)
    if commit:
        db.commit()
        db.refresh(user)
    else:
        db.flush()
    return user


def update_user(db: Session, user_id: int, **fields: Any) -> Optional[User]:
    user = get_user(db, user_id)
    if user is None:
        return None
    for key, value in fields.items():
        if value is not None:
            setattr(user, key, value)
    db.commit()
    db.refresh(user)
    return user


def delete_user(db: Session, user_id: int) -> bool:
    user = get_user(db, user_id)
    if user is None:
        return False
    db.delete(user)
    db.commit()
    return True


def get_agency(db: Session, agency_id: int) -> Optional[Agency]:
    return db.query(Agency).filter(Agency.id == agency_id).first()


def get_agency_by_slug(db: Session, slug: str) -> Optional[Agency]:
    return db.query(Agency).filter(Agency.slug == slug).first()


def get_agencies(db: Session) -> List[Agency]:
    return db.query(Agency).order_by(Agency.created_at.desc(), Agency.id.desc()).all()


def create_agency(db: Session, *, name: str, slug: str, plan: str = "starter", domain: Optional[str] = None) -> Agency:
    agency = Agency(name=name, slug=slug, plan=plan, domain=domain, status="active")
    db.add(agency)
    db.commit()
    db.refresh(agency)
    return agency


# ---------------------------------------------------------------------------
# Invites
# ---------------------------------------------------------------------------


def get_invite_by_token(db: Session, token: str) -> Optional[UserInvite]:
    return db.query(UserInvite).filter(UserInvite.token == token).first()


def get_active_invite(db: Session, email: str) -> Optional[UserInvite]:
    return (
        db.query(UserInvite)
        .filter(
            UserInvite.email == email,
            UserInvite.status == InviteStatus.PENDING.value,
            UserInvite.expires_at > utc_now_naive(),
        )
        .first()
    )


def create_invite(
    db: Session,
    *,
    email: str,
    role: str,
    is_super_admin: bool,
    agency_id: Optional[int],
    invited_by: int,
) -> UserInvite:
    invite = UserInvite(
        email=email,
        role=role,
        is_super_admin=is_super_admin,
        agency_id=agency_id,
        invited_by=invited_by,
        token=secrets.token_urlsafe(32),
        status=InviteStatus.PENDING.value,
        expires_at=utc_now_naive() + INVITE_TTL,
    )
    db.add(invite)
    db.commit()
    db.refresh(invite)
    return invite


def get_invites(db: Session, *, agency_id: Optional[int]) -> List[UserInvite]:
    return (
        db.query(UserInvite)
        .filter(or_(UserInvite.agency_id == agency_id, UserInvite.is_super_admin.is_(True)))
        .order_by(UserInvite.created_at.desc(), UserInvite.id.desc())
        .all()
    )


def accept_invite(db: Session, invite: UserInvite, user: User) -> User:
    """Apply *invite* to *user* and mark it accepted in a single commit."""

    try:
        user.is_super_admin = bool(invite.is_super_admin or user.is_super_admin)
        user.role = "ADMIN" if invite.is_super_admin or invite.role in ("admin", "super_admin") else "USER"
        user.agency_id = invite.agency_id or user.agency_id

        invite.status = InviteStatus.ACCEPTED.value
        invite.accepted_at = utc_now_naive()

        create_audit_log(
            db,
            action="INVITE_ACCEPTED",
            entity_type="user_invite",
            entity_id=invite.id,
            user_id=user.id,
            user_email=user.email,
            details={
                "inviteEmail": invite.email,
                "role": invite.role,
                "isSuperAdmin": invite.is_super_admin,
                "invitedBy": invite.invited_by,
            },
            commit=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(user)
    return user


# ---------------------------------------------------------------------------
# Orders & order messages
# ---------------------------------------------------------------------------


_ORDER_SORT_FIELDS = {"createdAt": "created_at", "updatedAt": "updated_at", "priority": "priority", "status": "status"}


def get_order(db: Session, order_id: int, *, agency_id: Optional[int] = None) -> Optional[Order]:
    """Return a non-deleted order, optionally scoped to *agency_id*."""

    query = db.query(Order).filter(Order.id == order_id, Order.deleted_at.is_(None))
    if agency_id is not None:
        query = query.filter(Order.agency_id == agency_id)
    return query.first()


def get_orders(
    db: Session,
    *,
    agency_id: Optional[int] = None,
    user_id: Optional[int] = None,
    user_email: Optional[str] = None,
    filters: Optional[Dict[str, Optional[str]]] = None,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
    skip: int = 0,
    limit: Optional[int] = None,
) -> Tuple[List[Order], int]:
    """Return ``(orders, total)`` for the given scope and equality filters.

    Filter values of ``None`` or ``"all"`` are ignored.
    """

    query = db.query(Order).options(selectinload(Order.user)).filter(Order.deleted_at.is_(None))
    if agency_id is not None:
        query = query.filter(Order.agency_id == agency_id)
    if user_id is not None:
        query = query.filter(Order.user_id == user_id)
    if user_email is not None:
        query = query.filter(Order.user_email == user_email)
    for field, value in (filters or {}).items():
        if value and value != "all":
            query = query.filter(getattr(Order, field) == value)

    total = query.count()

    column = getattr(Order, _ORDER_SORT_FIELDS.get(sort_by, "created_at"))
    ordering = column.asc() if sort_order == "asc" else column.desc()
    tie_break = Order.id.asc() if sort_order == "asc" else Order.id.desc()
    query = query.order_by(ordering, tie_break).offset(skip)
    if limit is not None:
        query = query.limit(limit)
    return query.all(), total


def count_orders_since(db: Session, agency_id: int, since: datetime) -> int:
    return db.query(Order).filter(Order.agency_id == agency_id, Order.created_at >= since).count()


def check_order_limit(db: Session, agency: Optional[Agency]) -> Dict[str, Any]:
    """Return ``{allowed, current, limit}`` for the agency's monthly order quota."""

    if agency is None:
        return {"allowed": True, "current": 0, "limit": None}

    plan = getattr(agency.plan, "value", agency.plan) or "starter"
    limit = PLAN_ORDER_LIMITS.get(plan, PLAN_ORDER_LIMITS["starter"])
    now = utc_now_naive()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    current = count_orders_since(db, agency.id, month_start)
    allowed = limit is None or current < limit
    return {"allowed": allowed, "current": current, "limit": limit}


def create_order(db: Session, *, user: User, **fields: Any) -> Order:
    order = Order(
        user_id=user.id,
        user_email=user.email,
        agency_id=user.agency_id,
        status="pending",
        deliverables=[],
        keywords=fields.pop("keywords", None) or [],
        **fields,
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


def soft_delete_order(db: Session, order: Order) -> None:
    order.deleted_at = utc_now_naive()
    db.commit()


def get_order_messages(db: Session, order_id: int) -> List[OrderMessage]:
    return (
        db.query(OrderMessage)
        .options(selectinload(OrderMessage.user))
        .filter(OrderMessage.order_id == order_id)
        .order_by(OrderMessage.created_at.asc(), OrderMessage.id.asc())
        .all()
    )


def create_order_message(
    db: Session, *, order_id: int, user_id: Optional[int], content: str, type: str = "comment", commit: bool = True
) -> OrderMessage:
    message = OrderMessage(order_id=order_id, user_id=user_id, content=content, type=type)
    db.add(message)
    if commit:
        db.commit()
        db.refresh(message)
    return message


# ---------------------------------------------------------------------------
# SEOWorks task mirror
# ---------------------------------------------------------------------------


def get_seoworks_task_by_external_id(db: Session, external_id: str) -> Optional[SEOWorksTask]:
    return db.query(SEOWorksTask).filter(SEOWorksTask.external_id == external_id).first()


def find_order_for_seoworks_task(db: Session, *, task_type: str, post_title: str) -> Optional[Order]:
    """First unlinked order of *task_type* whose title contains the post title's first 20 chars."""

    prefix = post_title[:20]
    return (
        db.query(Order)
        .filter(
            Order.task_type == task_type,
            Order.title.contains(prefix, autoescape=True),
            Order.seoworks_task_id.is_(None),
            Order.deleted_at.is_(None),
        )
        .order_by(Order.id.asc())
        .first()
    )


# ---------------------------------------------------------------------------
# Escalations
# ---------------------------------------------------------------------------


def create_escalation(db: Session, **fields: Any) -> Escalation:
    escalation = Escalation(status="pending", **fields)
    db.add(escalation)
    db.commit()
    db.refresh(escalation)
    return escalation


def get_escalation(db: Session, escalation_id: int, *, user_id: Optional[int] = None) -> Optional[Escalation]:
    query = db.query(Escalation).filter(Escalation.id == escalation_id)
    if user_id is not None:
        query = query.filter(Escalation.user_id == user_id)
    return query.first()


def get_escalations(
    db: Session,
    *,
    agency_id: Optional[int] = None,
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    assigned_to: Optional[str] = None,
) -> List[Escalation]:
    query = db.query(Escalation).options(selectinload(Escalation.user), selectinload(Escalation.agency))
    if agency_id is not None:
        query = query.filter(Escalation.agency_id == agency_id)
    if user_id is not None:
        query = query.filter(Escalation.user_id == user_id)
    if status and status != "all":
        query = query.filter(Escalation.status == status)
    if priority:
        query = query.filter(Escalation.priority == priority)
    if assigned_to:
        query = query.filter(Escalation.assigned_to == assigned_to)
    return query.order_by(Escalation.created_at.desc(), Escalation.id.desc()).all()


# ---------------------------------------------------------------------------
# Conversations & messages
# ---------------------------------------------------------------------------


def get_conversations(db: Session, user_id: int) -> List[Conversation]:
    return (
        db.query(Conversation)
        .options(selectinload(Conversation.messages))
        .filter(Conversation.user_id == user_id)
        .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
        .all()
    )


def get_conversation(db: Session, conversation_id: int, *, user_id: int) -> Optional[Conversation]:
    return (
        db.query(Conversation)
        .filter(Conversation.id == conversation_id, Conversation.user_id == user_id)
        .first()
    )


def create_conversation(
    db: Session, *, user_id: int, agency_id: Optional[int], title: str, model: Optional[str]
) -> Conversation:
    conversation = Conversation(user_id=user_id, agency_id=agency_id, title=title, model=model)
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


def delete_conversation(db: Session, conversation: Conversation) -> None:
    db.delete(conversation)
    db.commit()


def create_message(
    db: Session,
    *,
    conversation: Conversation,
    role: str,
    content: str,
    model: Optional[str] = None,
    tokens: Optional[int] = None,
    cost: Optional[float] = None,
) -> Message:
    message = Message(
        conversation_id=conversation.id,
        user_id=conversation.user_id,
        agency_id=conversation.agency_id,
        role=role,
        content=content,
        model=model,
        tokens=tokens,
        cost=cost,
    )
    db.add(message)
    conversation.updated_at = utc_now_naive()
    db.commit()
    db.refresh(message)
    return message


def get_recent_messages(db: Session, conversation_id: int, *, limit: int = 20) -> List[Message]:
    """Return the last *limit* messages in chronological order."""

    rows = (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.id.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(rows))


# ---------------------------------------------------------------------------
# Report schedules & executions
# ---------------------------------------------------------------------------


def get_schedule(db: Session, schedule_id: int, *, agency_id: Optional[int] = None) -> Optional[ReportSchedule]:
    query = db.query(ReportSchedule).filter(ReportSchedule.id == schedule_id)
    if agency_id is not None:
        query = query.filter(ReportSchedule.agency_id == agency_id)
    return query.first()


def get_schedules(db: Session, *, agency_id: Optional[int] = None, active_only: bool = False) -> List[ReportSchedule]:
    query = db.query(ReportSchedule)
    if agency_id is not None:
        query = query.filter(ReportSchedule.agency_id == agency_id)
    if active_only:
        query = query.filter(ReportSchedule.is_active.is_(True), ReportSchedule.is_paused.is_(False))
    return query.order_by(ReportSchedule.created_at.desc(), ReportSchedule.id.desc()).all()


def create_schedule(
    db: Session,
    *,
    agency_id: int,
    user_id: int,
    cron_pattern: str,
    ga4_property_id: str,
    report_type: str,
    email_recipients: List[str],
    branding_options: Optional[Dict[str, Any]] = None,
    is_active: bool = True,
) -> ReportSchedule:
    validate_cron_or_raise(cron_pattern)

    schedule = ReportSchedule(
        agency_id=agency_id,
        user_id=user_id,
        cron_pattern=cron_pattern,
        ga4_property_id=ga4_property_id,
        report_type=report_type,
        email_recipients=list(email_recipients),
        branding_options=branding_options,
        is_active=is_active,
        status=ScheduleStatus.IDLE.value,
        next_run=calculate_next_run(cron_pattern),
    )
    db.add(schedule)
    db.commit()
    db.refresh(schedule)
    return schedule


def update_schedule(db: Session, schedule: ReportSchedule, **fields: Any) -> ReportSchedule:
    """Apply non-``None`` *fields*; a changed cron pattern recomputes ``next_run``."""

    cron_pattern = fields.pop("cron_pattern", None)
    if cron_pattern is not None:
        validate_cron_or_raise(cron_pattern)
        if cron_pattern != schedule.cron_pattern:
            schedule.next_run = calculate_next_run(cron_pattern)
        schedule.cron_pattern = cron_pattern

    for key, value in fields.items():
        if value is not None:
            setattr(schedule, key, value)

    db.commit()
    db.refresh(schedule)
    return schedule


def delete_schedule(db: Session, schedule: ReportSchedule) -> None:
    db.delete(schedule)
    db.commit()


def deactivate_user_schedules(db: Session, *, agency_id: int, user_id: int, commit: bool = True) -> int:
    count = (
        db.query(ReportSchedule)
        .filter(ReportSchedule.agency_id == agency_id, ReportSchedule.user_id == user_id)
        .update({ReportSchedule.is_active: False}, synchronize_session=False)
    )
    if commit:
        db.commit()
    return count


def get_due_schedules(db: Session, now: datetime) -> List[ReportSchedule]:
    """Active, unpaused schedules whose ``next_run`` has passed."""

    return (
        db.query(ReportSchedule)
        .filter(
            ReportSchedule.is_active.is_(True),
            ReportSchedule.is_paused.is_(False),
            ReportSchedule.next_run.isnot(None),
            ReportSchedule.next_run <= now,
        )
        .order_by(ReportSchedule.next_run.asc(), ReportSchedule.id.asc())
        .all()
    )


def get_execution(db: Session, execution_id: int) -> Optional[ReportExecution]:
    return (
        db.query(ReportExecution)
        .options(selectinload(ReportExecution.schedule))
        .filter(ReportExecution.id == execution_id)
        .first()
    )


def create_execution(
    db: Session,
    *,
    schedule: ReportSchedule,
    status: str = ExecutionStatus.QUEUED.value,
    attempt_count: int = 1,
    details: Optional[Dict[str, Any]] = None,
) -> ReportExecution:
    execution = ReportExecution(
        schedule_id=schedule.id,
        agency_id=schedule.agency_id,
        status=status,
        attempt_count=attempt_count,
        started_at=utc_now_naive() if status == ExecutionStatus.RUNNING.value else None,
        details=details or {},
    )
    db.add(execution)
    db.commit()
    db.refresh(execution)
    return execution


def get_executions(
    db: Session,
    *,
    agency_id: Optional[int] = None,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 20,
) -> Tuple[List[ReportExecution], int]:
    query = db.query(ReportExecution).options(
        selectinload(ReportExecution.schedule).selectinload(ReportSchedule.user),
        selectinload(ReportExecution.schedule).selectinload(ReportSchedule.agency),
    )
    if agency_id is not None:
        query = query.filter(ReportExecution.agency_id == agency_id)
    if status is not None:
        query = query.filter(ReportExecution.status == status)
    total = query.count()
    rows = (
        query.order_by(ReportExecution.failed_at.desc(), ReportExecution.id.desc()).offset(skip).limit(limit).all()
    )
    return rows, total


def get_retryable_executions(db: Session, now: datetime, *, max_attempts: int) -> List[ReportExecution]:
    """Failed executions past ``retry_after`` that are the latest attempt of an unpaused schedule."""

    candidates = (
        db.query(ReportExecution)
        .join(ReportSchedule, ReportExecution.schedule_id == ReportSchedule.id)
        .filter(
            ReportExecution.status == ExecutionStatus.FAILED.value,
            ReportExecution.retry_after.isnot(None),
            ReportExecution.retry_after <= now,
            ReportExecution.attempt_count < max_attempts,
            ReportSchedule.is_active.is_(True),
            ReportSchedule.is_paused.is_(False),
        )
        .order_by(ReportExecution.retry_after.asc(), ReportExecution.id.asc())
        .all()
    )
    return [e for e in candidates if e.schedule.last_execution_id == e.id]


# ---------------------------------------------------------------------------
# Google OAuth tokens
# ---------------------------------------------------------------------------


def get_ga4_token(db: Session, user_id: int) -> Optional[UserGA4Token]:
    return db.query(UserGA4Token).filter(UserGA4Token.user_id == user_id).first()


def upsert_ga4_token(db: Session, *, user_id: int, **fields: Any) -> UserGA4Token:
    token = get_ga4_token(db, user_id)
    if token is None:
        token = UserGA4Token(user_id=user_id)
        db.add(token)
    for key, value in fields.items():
        setattr(token, key, value)
    db.commit()
    db.refresh(token)
    return token


def delete_ga4_token(db: Session, user_id: int) -> int:
    count = db.query(UserGA4Token).filter(UserGA4Token.user_id == user_id).delete()
    db.commit()
    return count


def get_search_console_token(db: Session, user_id: int) -> Optional[UserSearchConsoleToken]:
    return db.query(UserSearchConsoleToken).filter(UserSearchConsoleToken.user_id == user_id).first()


def upsert_search_console_token(db: Session, *, user_id: int, **fields: Any) -> UserSearchConsoleToken:
    token = get_search_console_token(db, user_id)
    if token is None:
        token = UserSearchConsoleToken(user_id=user_id)
        db.add(token)
    for key, value in fields.items():
        setattr(token, key, value)
    db.commit()
    db.refresh(token)
    return token


def delete_search_console_token(db: Session, user_id: int) -> int:
    count = db.query(UserSearchConsoleToken).filter(UserSearchConsoleToken.user_id == user_id).delete()
    db.commit()
    return count


# ---------------------------------------------------------------------------
# Dealership onboarding
# ---------------------------------------------------------------------------


def create_onboarding(db: Session, **fields: Any) -> DealershipOnboarding:
    onboarding = DealershipOnboarding(status="pending", **fields)
    db.add(onboarding)
    db.commit()
    db.refresh(onboarding)
    return onboarding


def get_onboardings(db: Session, agency_id: int, *, limit: int = 10) -> List[DealershipOnboarding]:
    return (
        db.query(DealershipOnboarding)
        .filter(DealershipOnboarding.agency_id == agency_id)
        .order_by(DealershipOnboarding.created_at.desc(), DealershipOnboarding.id.desc())
        .limit(limit)
        .all()
    )


def get_latest_onboarding(db: Session, agency_id: int) -> Optional[DealershipOnboarding]:
    rows = get_onboardings(db, agency_id, limit=1)
    return rows[0] if rows else None
