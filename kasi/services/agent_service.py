from __future__ import annotations

from datetime import datetime

from flask import current_app

from kasi.extensions import db
from kasi.models import AgentProfile, AgentWallet, Order, User
from kasi.services import wallet_service
from kasi.services.errors import NotFound, ValidationFailed
from kasi.services.order_status_service import OrderStatus
from kasi.utils.events import log_event

PROFILE_FIELDS = ("id_number", "home_area", "township", "profile_photo_url")


def create_agent(*, email: str, password: str, full_name: str = "", phone_number: str | None = None) -> User:
    """Create an agent user with its profile and wallet in one transaction."""
    user = User(
        email=email.strip().lower(),
        full_name=(full_name or "").strip(),
        phone_number=(phone_number or "").strip() or None,
        role="agent",
        status="active",
    )
    user.set_password(password)
    db.session.add(user)
    db.session.flush()
    ensure_agent_records(user)
    db.session.commit()
    return user


def ensure_agent_records(user: User) -> AgentProfile:
    profile = AgentProfile.query.filter_by(agent_id=int(user.id)).first()
    if profile is None:
        profile = AgentProfile(agent_id=int(user.id), agent_status="active", is_online=False)
        db.session.add(profile)
    wallet_service.ensure_wallet(user.id)
    db.session.flush()
    return profile


def get_profile(agent_id: int) -> AgentProfile:
    profile = AgentProfile.query.filter_by(agent_id=int(agent_id)).first()
    if profile is None:
        raise NotFound("Agent profile not found")
    return profile


def set_online(agent: User, online: bool) -> AgentProfile:
    profile = get_profile(agent.id)
    profile.is_online = bool(online)
    profile.last_active_at = datetime.utcnow()
    db.session.commit()
    current_app.logger.info("agent_online agent=%s online=%s", agent.id, profile.is_online)
    return profile


def update_profile(agent: User, payload: dict) -> AgentProfile:
    profile = get_profile(agent.id)
    for field in PROFILE_FIELDS:
        if field in payload:
            setattr(profile, field, (payload.get(field) or "").strip() or None)
    if "full_name" in payload:
        agent.full_name = (payload.get("full_name") or "").strip()
    if "phone_number" in payload:
        agent.phone_number = (payload.get("phone_number") or "").strip() or None
    db.session.commit()
    return profile


def history(agent_id: int, filter_name: str = "all") -> list[Order]:
    statuses = {
        "all": OrderStatus.TERMINAL,
        "delivered": (OrderStatus.DELIVERED,),
        "cancelled": (OrderStatus.CANCELLED,),
    }.get((filter_name or "all").strip().lower())
    if statuses is None:
        raise ValidationFailed("filter must be all, delivered or cancelled")
    return (
        Order.query.filter(Order.agent_id == int(agent_id), Order.status.in_(statuses))
        .order_by(Order.updated_at.desc())
        .limit(200)
        .all()
    )


def available_jobs(limit: int = 50) -> list[Order]:
    return (
        Order.query.filter(Order.agent_id.is_(None), Order.status.in_(OrderStatus.OPEN_FOR_AGENTS))
        .order_by(Order.created_at.desc())
        .limit(int(limit))
        .all()
    )


# Admin


def list_agents(status: str | None = None) -> list[dict]:
    query = db.session.query(User, AgentProfile, AgentWallet).filter(User.role == "agent")
    query = query.outerjoin(AgentProfile, AgentProfile.agent_id == User.id)
    query = query.outerjoin(AgentWallet, AgentWallet.agent_id == User.id)
    if status:
        query = query.filter(AgentProfile.agent_status == status)
    out = []
    for user, profile, wallet in query.order_by(User.created_at.desc()).all():
        out.append(
            {
                "user": user.to_dict(),
                "profile": profile.to_dict() if profile else None,
                "wallet": wallet.to_dict() if wallet else None,
            }
        )
    return out


def set_agent_status(agent: User, status: str, *, admin_id: int) -> AgentProfile:
    status = (status or "").strip().lower()
    if status not in AgentProfile.STATUSES:
        raise ValidationFailed(f"agent_status must be one of {', '.join(AgentProfile.STATUSES)}")
    profile = get_profile(agent.id)
    profile.agent_status = status
    if status == "blacklisted":
        agent.status = "suspended"
        profile.is_online = False
    elif status == "active":
        agent.status = "active"
    else:
        profile.is_online = False
    log_event(
        "agent.status_changed",
        subject_type="agents",
        subject_id=int(agent.id),
        actor_type="admin",
        actor_id=admin_id,
        metadata={"agent_status": status, "user_status": agent.status},
    )
    db.session.commit()
    return profile


def adjust_receipt_issues(agent: User, delta: int) -> AgentProfile:
    profile = get_profile(agent.id)
    profile.receipt_issues = max(0, int(profile.receipt_issues or 0) + int(delta))
    db.session.commit()
    return profile
