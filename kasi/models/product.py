from datetime import datetime

import sqlalchemy as sa

from kasi.extensions import db


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    name = db.Column(db.String(160), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price = db.Column(db.Float, nullable=False, default=0.0)

    # Denormalised category name kept alongside the FK for menu display.
    category = db.Column(db.String(120), nullable=False, default="")
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    image_url = db.Column(db.String(1024), nullable=True)
    available = db.Column(db.Boolean, nullable=False, default=True, server_default=sa.text("true"))

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "store_id": int(self.store_id),
            "name": self.name or "",
            "description": self.description or "",
            "price": round(float(self.price or 0.0), 2),
            "category": self.category or "",
            "category_id": int(self.category_id) if self.category_id is not None else None,
            "image_url": self.image_url or None,
            "available": bool(self.available),
        }
