from datetime import datetime

import sqlalchemy as sa

from kasi.extensions import db


class Store(db.Model):
    __tablename__ = "stores"

    CATEGORIES = ("tuck_shop", "takeaways", "alcohol", "groceries", "restaurant", "other")
    STATUSES = ("active", "pending", "inactive")
    TOWNS = ("modimolle", "phagameng", "leseding", "bela_bela")
    ACCOUNT_TYPES = ("savings", "current", "cheque")

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False)
    category = db.Column(db.String(32), nullable=False, default="other")
    phone_number = db.Column(db.String(32), nullable=False, default="")
    description = db.Column(db.Text, nullable=True)

    street_address = db.Column(db.String(255), nullable=False, default="")
    township = db.Column(db.String(80), nullable=False, default="")
    town = db.Column(db.String(32), nullable=False, default="modimolle")
    gps_latitude = db.Column(db.Float, nullable=True)
    gps_longitude = db.Column(db.Float, nullable=True)

    open_time = db.Column(db.String(8), nullable=True)
    close_time = db.Column(db.String(8), nullable=True)
    operating_days = db.Column(db.String(64), nullable=False, default="Mon-Sun")

    logo_url = db.Column(db.String(1024), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="active", index=True)
    custom_orders_only = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))
    access_code = db.Column(db.String(16), nullable=True, unique=True, index=True)

    bank_name = db.Column(db.String(80), nullable=True)
    account_holder_name = db.Column(db.String(120), nullable=True)
    account_number = db.Column(db.String(32), nullable=True)
    account_type = db.Column(db.String(16), nullable=True)
    branch_code = db.Column(db.String(16), nullable=True)
    banking_details_verified = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))
    banking_details_updated_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self, *, include_private: bool = False) -> dict:
        out = {
            "id": int(self.id),
            "name": self.name or "",
            "category": self.category or "other",
            "phone_number": self.phone_number or "",
            "description": self.description or "",
            "street_address": self.street_address or "",
            "township": self.township or "",
            "town": self.town or "",
            "gps_latitude": self.gps_latitude,
            "gps_longitude": self.gps_longitude,
            "open_time": self.open_time,
            "close_time": self.close_time,
            "operating_days": self.operating_days or "Mon-Sun",
            "logo_url": self.logo_url or None,
            "status": self.status or "active",
            "custom_orders_only": bool(self.custom_orders_only),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_private:
            out.update(
                {
                    "access_code": self.access_code or None,
                    "bank_name": self.bank_name or None,
                    "account_holder_name": self.account_holder_name or None,
                    "account_number": self.account_number or None,
                    "account_type": self.account_type or None,
                    "branch_code": self.branch_code or None,
                    "banking_details_verified": bool(self.banking_details_verified),
                    "banking_details_updated_at": (
                        self.banking_details_updated_at.isoformat() if self.banking_details_updated_at else None
                    ),
                }
            )
        return out
