from sqlalchemy import create_engine, update, Column, String, Numeric, DateTime, ForeignKey, Integer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, relationship, declarative_base, selectinload
from sqlalchemy.pool import StaticPool
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional
import logging

from pricewatch.models.schemas import PriceSample, TrackedProduct

logger = logging.getLogger('database')

HISTORY_DISPLAY_LIMIT = 10

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the timezone-less DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PersistenceError(Exception):
    pass


class ProductNotFound(PersistenceError):

    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, unique=True, nullable=False)
    notification_email = Column(String, nullable=True)

    products = relationship("Product", back_populates="owner")

    def __repr__(self):
        return f"<User(email='{self.email}')>"


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(String, nullable=False)
    title = Column(String, nullable=False, default="Unknown Product")
    current_price = Column(Numeric(14, 4), nullable=False, default=0)
    currency = Column(String, nullable=False, default="₺")
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    owner = relationship("User", back_populates="products")
    price_histories = relationship(
        "PriceHistory",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by=lambda: (PriceHistory.observed_at.desc(), PriceHistory.id.desc())
    )

    def __repr__(self):
        return f"<Product(id={self.id}, url='{self.url}')>"


class PriceHistory(Base):
    __tablename__ = "price_histories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    price = Column(Numeric(14, 4), nullable=False)
    observed_at = Column(DateTime, default=utcnow, nullable=False)

    product = relationship("Product", back_populates="price_histories")

    def __repr__(self):
        return f"<PriceHistory(product_id={self.product_id}, price={self.price}, observed_at='{self.observed_at}')>"


def _to_tracked(product: Product, history_limit: int = HISTORY_DISPLAY_LIMIT) -> TrackedProduct:
    samples = [
        PriceSample(price=Decimal(str(h.price)), observed_at=h.observed_at)
        for h in product.price_histories[:history_limit]
    ]
    return TrackedProduct(
        id=product.id,
        url=product.url,
        title=product.title,
        current_price=Decimal(str(product.current_price)),
        currency=product.currency,
        history=samples,
        owner_id=product.owner_id,
        notification_email=product.owner.notification_email if product.owner else None
    )


class Database:
    """Persistence for tracked products, their owners and price history.

    Construct one per process and ``close()`` it at shutdown. Every method uses
    its own short-lived session, so one instance can be shared between worker
    threads.
    """

    def __init__(self, database_url: str = "sqlite:///price_tracker.db"):
        self.database_url = database_url
        engine_kwargs = {}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_kwargs)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.info(f"Using database: {self.engine.url.render_as_string(hide_password=True)}")

    def get_or_create_user(self, email: str) -> int:
        try:
            with self.Session.begin() as session:
                user = session.query(User).filter(User.email == email).first()
                if user is None:
                    user = User(email=email)
                    session.add(user)
                    session.flush()
                return user.id
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load user {email}: {e}") from e

    def set_notification_email(self, user_id: int, address: Optional[str]):
        try:
            with self.Session.begin() as session:
                user = session.get(User, user_id)
                if user is None:
                    raise PersistenceError(f"User {user_id} not found")
                user.notification_email = address or None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not update user {user_id}: {e}") from e

    def get_notification_email(self, user_id: int) -> Optional[str]:
        try:
            with self.Session() as session:
                user = session.get(User, user_id)
                return user.notification_email if user else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load user {user_id}: {e}") from e

    def add_product(self, url: str, title: str, price: Decimal, currency: str,
                    owner_id: Optional[int] = None, observed_at: Optional[datetime] = None) -> TrackedProduct:
        """Create a product from its first extraction.

        A zero price means nothing was found; the product is still tracked but
        no history sample is recorded for it.
        """
        try:
            with self.Session.begin() as session:
                product = Product(
                    url=str(url),
                    title=title,
                    current_price=price,
                    currency=currency,
                    owner_id=owner_id
                )
                if price > 0:
                    product.price_histories.append(
                        PriceHistory(price=price, observed_at=observed_at or utcnow())
                    )
                session.add(product)
                session.flush()
                product_id = product.id
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not add product {url}: {e}") from e

        return self.load_product(product_id)

    def load_product(self, product_id: int) -> TrackedProduct:
        try:
            with self.Session() as session:
                product = (
                    session.query(Product)
                    .options(selectinload(Product.price_histories), selectinload(Product.owner))
                    .filter(Product.id == product_id)
                    .first()
                )
                if product is None:
                    raise ProductNotFound(product_id)
                return _to_tracked(product)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load product {product_id}: {e}") from e

    def list_all_products(self, owner_id: Optional[int] = None) -> List[TrackedProduct]:
        try:
            with self.Session() as session:
                query = (
                    session.query(Product)
                    .options(selectinload(Product.price_histories), selectinload(Product.owner))
                    .order_by(Product.created_at.desc(), Product.id.desc())
                )
                if owner_id is not None:
                    query = query.filter(Product.owner_id == owner_id)
                return [_to_tracked(product) for product in query.all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not list products: {e}") from e

    def save_updated_price(self, product_id: int, price: Decimal, currency: str,
                           observed_at: Optional[datetime] = None, title: Optional[str] = None,
                           expected_price: Optional[Decimal] = None) -> bool:
        """Store a successful check: new current price plus one history sample.

        With ``expected_price`` the write only applies while the stored price
        still equals it, so two checks racing from separate processes cannot
        both record the same change. Returns whether the write applied.
        """
        if price <= 0:
            raise ValueError(f"Refusing to store non-positive price {price} for product {product_id}")

        values = {"current_price": price, "currency": currency}
        if title:
            values["title"] = title

        try:
            with self.Session.begin() as session:
                stmt = update(Product).where(Product.id == product_id)
                if expected_price is not None:
                    stmt = stmt.where(Product.current_price == expected_price)
                result = session.execute(stmt.values(**values).execution_options(synchronize_session=False))

                if result.rowcount == 0:
                    if session.get(Product, product_id) is None:
                        raise ProductNotFound(product_id)
                    logger.info(f"Price of product {product_id} changed since it was read, not storing {price}")
                    return False

                session.add(PriceHistory(
                    product_id=product_id,
                    price=price,
                    observed_at=observed_at or utcnow()
                ))
                return True
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not save price for product {product_id}: {e}") from e

    def get_price_history(self, product_id: int, limit: Optional[int] = HISTORY_DISPLAY_LIMIT) -> List[PriceSample]:
        try:
            with self.Session() as session:
                query = (
                    session.query(PriceHistory)
                    .filter(PriceHistory.product_id == product_id)
                    .order_by(PriceHistory.observed_at.desc(), PriceHistory.id.desc())
                )
                if limit:
                    query = query.limit(limit)
                return [
                    PriceSample(price=Decimal(str(h.price)), observed_at=h.observed_at)
                    for h in query.all()
                ]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load history for product {product_id}: {e}") from e

    def delete_product(self, product_id: int) -> bool:
        try:
            with self.Session.begin() as session:
                product = session.get(Product, product_id)
                if product is None:
                    return False
                session.delete(product)
                return True
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not delete product {product_id}: {e}") from e

    def close(self):
        self.engine.dispose()
