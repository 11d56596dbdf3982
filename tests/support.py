from __future__ import annotations

import io
import os
import unittest
import uuid

from PIL import Image

from kasi import create_app
from kasi.extensions import db
from kasi.models import AgentProfile, AgentWallet, Category, Order, OrderItem, Product, Store, User
from kasi.utils.jwt_utils import create_store_token, create_token

_ENV_KEYS = ("SQLALCHEMY_DATABASE_URI", "DATABASE_URL", "STORAGE_PROVIDER", "PAYMENTS_PROVIDER")


def png_bytes(size=(4, 4), color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


class ApiTestCase(unittest.TestCase):
    """Boots the app against in-memory SQLite with memory storage and mock payments."""

    @classmethod
    def setUpClass(cls):
        cls._prev_env = {key: os.getenv(key) for key in _ENV_KEYS}
        os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite:///:memory:"
        os.environ["DATABASE_URL"] = "sqlite:///:memory:"
        os.environ["STORAGE_PROVIDER"] = "memory"
        os.environ["PAYMENTS_PROVIDER"] = "mock"
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        with cls.app.app_context():
            db.create_all()
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        with cls.app.app_context():
            db.session.remove()
            db.drop_all()
        for key, value in cls._prev_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    # Seeding

    def seed_user(self, role: str = "customer", *, status: str = "active", password: str = "Passw0rd!") -> int:
        with self.app.app_context():
            suffix = uuid.uuid4().hex[:10]
            u = User(
                full_name=f"{role} {suffix[:4]}",
                email=f"{role}-{suffix}@kasi.test",
                role=role,
                status=status,
            )
            u.set_password(password)
            db.session.add(u)
            db.session.flush()
            if role == "agent":
                db.session.add(AgentProfile(agent_id=int(u.id), agent_status="active", is_online=True))
                db.session.add(AgentWallet(agent_id=int(u.id), company_cash_balance=0.0, max_cash_limit=500.0))
            db.session.commit()
            return int(u.id)

    def seed_store(self, *, status: str = "active", lat=None, lng=None, name: str = "Mama's Tuck Shop") -> int:
        with self.app.app_context():
            store = Store(
                name=name,
                category="tuck_shop",
                phone_number="0820000000",
                street_address="12 Church Street",
                township="Phagameng",
                town="modimolle",
                gps_latitude=lat,
                gps_longitude=lng,
                status=status,
                access_code=uuid.uuid4().hex[:6].upper(),
            )
            db.session.add(store)
            db.session.commit()
            return int(store.id)

    def seed_product(self, store_id: int, *, name: str = "Bread", price: float = 18.5, available: bool = True) -> int:
        with self.app.app_context():
            category = Category.query.filter_by(store_id=store_id, name="Bakery").first()
            if category is None:
                category = Category(store_id=store_id, name="Bakery")
                db.session.add(category)
                db.session.flush()
            product = Product(
                store_id=store_id,
                name=name,
                price=price,
                category="Bakery",
                category_id=int(category.id),
                available=available,
            )
            db.session.add(product)
            db.session.commit()
            return int(product.id)

    def seed_order(
        self,
        customer_id: int,
        store_id: int,
        *,
        status: str = "pending",
        agent_id: int | None = None,
        purchase_type: str | None = None,
        total: float = 100.0,
        delivery_fee: float = 15.0,
    ) -> int:
        with self.app.app_context():
            order = Order(
                customer_id=customer_id,
                store_id=store_id,
                agent_id=agent_id,
                status=status,
                purchase_type=purchase_type,
                total_amount=total,
                delivery_fee=delivery_fee,
                delivery_address="4 Nelson Mandela Drive",
                payment_status="pending",
                payment_method="yoco",
            )
            order.items.append(
                OrderItem(product_name="Bread", quantity=1, unit_price=total, subtotal=total)
            )
            db.session.add(order)
            db.session.commit()
            return int(order.id)

    # Requests

    def auth(self, user_id: int, **extra) -> dict:
        headers = {"Authorization": f"Bearer {create_token(user_id)}"}
        headers.update(extra)
        return headers

    def store_auth(self, store_id: int, **extra) -> dict:
        headers = {"Authorization": f"Bearer {create_store_token(store_id)}"}
        headers.update(extra)
        return headers

    def order_row(self, order_id: int) -> dict:
        with self.app.app_context():
            return db.session.get(Order, order_id).to_dict()

    def wallet_row(self, agent_id: int) -> dict:
        with self.app.app_context():
            return AgentWallet.query.filter_by(agent_id=agent_id).first().to_dict()
