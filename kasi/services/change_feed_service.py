from __future__ import annotations

from sqlalchemy import and_, or_

from kasi.models import PlatformEvent, Store, User
from kasi.services.errors import ValidationFailed

TABLES = ("orders", "agent_wallets", "products", "stores")
MAX_PAGE = 200


def list_changes(*, table: str, after_id: int = 0, user: User | None = None, store: Store | None = None, limit: int = 100) -> list[PlatformEvent]:
    """Events newer than ``after_id`` for ``table`` that the caller may see.

    Customers see their own orders, agents see open jobs plus their own
    orders and wallet, stores see their orders and admins see everything.
    Products and stores are public catalogue data.
    """
    if table not in TABLES:
        raise ValidationFailed(f"table must be one of {', '.join(TABLES)}")

    query = PlatformEvent.query.filter(
        PlatformEvent.subject_type == table,
        PlatformEvent.id > int(after_id or 0),
    )

    if table in ("orders", "agent_wallets"):
        if store is not None:
            if table == "agent_wallets":
                return []
            query = query.filter(PlatformEvent.audience_store_id == int(store.id))
        elif user is None:
            return []
        else:
            role = (user.role or "").strip().lower()
            if role == "customer":
                if table == "agent_wallets":
                    return []
                query = query.filter(PlatformEvent.audience_customer_id == int(user.id))
            elif role == "agent":
                if table == "agent_wallets":
                    query = query.filter(PlatformEvent.audience_agent_id == int(user.id))
                else:
                    query = query.filter(
                        or_(
                            PlatformEvent.audience_agent_id == int(user.id),
                            and_(
                                PlatformEvent.audience_agent_id.is_(None),
                                PlatformEvent.event_type.in_(("order.created", "order.status_changed")),
                            ),
                        )
                    )
            elif role != "admin":
                return []

    safe_limit = max(1, min(int(limit or 100), MAX_PAGE))
    return query.order_by(PlatformEvent.id.asc()).limit(safe_limit).all()
