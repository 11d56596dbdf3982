from datetime import datetime

from kasi.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    ORDER_TYPES = ("product_order", "custom_request", "cash_purchase", "assisted_purchase")
    PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")
    PAYMENT_METHODS = ("yoco", "cash", "company_cash", "company_card")
    PURCHASE_TYPES = ("CPO", "APO")

    id = db.Column(db.Integer, primary_key=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    agent_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    order_type = db.Column(db.String(24), nullable=False, default="product_order")
    purchase_type = db.Column(db.String(8), nullable=True)
    custom_request_text = db.Column(db.Text, nullable=True)

    total_amount = db.Column(db.Float, nullable=False, default=0.0)
    estimated_amount = db.Column(db.Float, nullable=True)
    actual_amount = db.Column(db.Float, nullable=True)
    delivery_fee = db.Column(db.Float, nullable=False, default=0.0)
    cash_released = db.Column(db.Float, nullable=True)

    delivery_address = db.Column(db.String(255), nullable=False, default="")
    delivery_township = db.Column(db.String(80), nullable=False, default="")
    delivery_gps_latitude = db.Column(db.Float, nullable=True)
    delivery_gps_longitude = db.Column(db.Float, nullable=True)

    status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_method = db.Column(db.String(16), nullable=True)

    proof_of_purchase_url = db.Column(db.String(1024), nullable=True)
    delivery_photo_url = db.Column(db.String(1024), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    store_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy="select",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    @property
    def is_cpo(self) -> bool:
        return (self.purchase_type or "").upper() == "CPO"

    @property
    def grand_total(self) -> float:
        return round(float(self.total_amount or 0.0) + float(self.delivery_fee or 0.0), 2)

    def to_dict(self, *, include_items: bool = False) -> dict:
        out = {
            "id": int(self.id),
            "customer_id": int(self.customer_id),
            "store_id": int(self.store_id),
            "agent_id": int(self.agent_id) if self.agent_id is not None else None,
            "order_type": self.order_type or "product_order",
            "purchase_type": self.purchase_type or None,
            "custom_request_text": self.custom_request_text or None,
            "total_amount": round(float(self.total_amount or 0.0), 2),
            "estimated_amount": self.estimated_amount,
            "actual_amount": self.actual_amount,
            "delivery_fee": round(float(self.delivery_fee or 0.0), 2),
            "cash_released": self.cash_released,
            "delivery_address": self.delivery_address or "",
            "delivery_township": self.delivery_township or "",
            "delivery_gps_latitude": self.delivery_gps_latitude,
            "delivery_gps_longitude": self.delivery_gps_longitude,
            "status": self.status or "pending",
            "payment_status": self.payment_status or "pending",
            "payment_method": self.payment_method or None,
            "proof_of_purchase_url": self.proof_of_purchase_url or None,
            "delivery_photo_url": self.delivery_photo_url or None,
            "notes": self.notes or None,
            "store_notes": self.store_notes or None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_items:
            out["items"] = [item.to_dict() for item in (self.items or [])]
        return out


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    product_name = db.Column(db.String(160), nullable=False, default="")
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Float, nullable=False, default=0.0)
    subtotal = db.Column(db.Float, nullable=False, default=0.0)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "product_id": int(self.product_id) if self.product_id is not None else None,
            "product_name": self.product_name or "",
            "quantity": int(self.quantity or 0),
            "unit_price": round(float(self.unit_price or 0.0), 2),
            "subtotal": round(float(self.subtotal or 0.0), 2),
        }
