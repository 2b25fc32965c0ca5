"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults (StaticPool for SQLite)
- Table definitions for profiles, creations, the credit ledger, book orders
  and processed payment events
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Text, Index, UniqueConstraint, CheckConstraint, text
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from drawbook.core.config import settings

logger = logging.getLogger("drawbook")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        _engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=False,  # Set to True for SQL query logging
        )

    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def dispose_engine() -> None:
    """Dispose the current engine (tests swap databases between cases)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Commits on normal exit and rolls back if the block raises.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("database.unavailable", extra={"error_code": type(e).__name__})
        return False


# User profiles: free allowance counter, paid credit balance, subscription
profiles = Table(
    'profiles',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('email', String(320), nullable=True),
    Column('display_name', Text, nullable=True),
    Column('free_saves_used', Integer, nullable=False, server_default='0'),
    Column('credit_balance', Integer, nullable=False, server_default='0'),
    Column('subscription_tier', String(20), nullable=False, server_default='free'),
    Column('subscription_expires_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    CheckConstraint('free_saves_used >= 0', name='ck_profiles_free_saves_non_negative'),
    CheckConstraint('credit_balance >= 0', name='ck_profiles_credit_balance_non_negative'),
)

# Saved creations (stories generated from a drawing)
creations = Table(
    'creations',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('title', Text, nullable=False),
    Column('subject', Text, nullable=True),
    Column('artist_name', String(200), nullable=True),
    Column('artist_age', String(20), nullable=True),
    Column('artist_grade', String(50), nullable=True),
    Column('year', Integer, nullable=True),
    Column('original_image_path', Text, nullable=True),
    Column('video_path', Text, nullable=True),
    Column('page_images', JSON, nullable=True),
    Column('story_pages', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('is_deleted', Boolean, nullable=False, server_default=text('false')),
    Column('deleted_at', DateTime(timezone=True), nullable=True),
    # Lock state is computed over (user_id, created_at) ordering
    Index('idx_creations_user_created', 'user_id', 'created_at'),
)

# Append-only credit ledger
credit_transactions = Table(
    'credit_transactions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('type', String(20), nullable=False),  # purchase | usage
    Column('amount', Integer, nullable=False),
    Column('balance_after', Integer, nullable=False),
    Column('source', String(10), nullable=True),  # free | paid | premium (usage only)
    Column('pack_name', String(50), nullable=True),
    Column('price_cents', Integer, nullable=True),
    Column('creation_id', String(100), nullable=True),
    Column('payment_reference', String(255), nullable=True),
    Column('expires_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('payment_reference', name='uq_credit_transactions_payment_reference'),
    Index('idx_credit_transactions_user_created', 'user_id', 'created_at'),
)

# One checkout attempt for one creation
book_orders = Table(
    'book_orders',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('creation_id', String(100), nullable=False, index=True),
    Column('order_type', String(20), nullable=False),  # ebook | softcover | hardcover
    Column('status', String(30), nullable=False, server_default='pending'),
    Column('amount_paid', Integer, nullable=True),  # cents
    Column('currency', String(3), nullable=False, server_default='usd'),
    Column('is_gift', Boolean, nullable=False, server_default=text('false')),
    Column('dedication_text', Text, nullable=True),
    Column('cover_color_id', String(50), nullable=True),
    Column('text_color_id', String(50), nullable=True),
    Column('customer_email', String(320), nullable=True),
    Column('shipping_name', Text, nullable=True),
    Column('shipping_address1', Text, nullable=True),
    Column('shipping_address2', Text, nullable=True),
    Column('shipping_city', Text, nullable=True),
    Column('shipping_state', Text, nullable=True),
    Column('shipping_zip', String(20), nullable=True),
    Column('shipping_country', String(2), nullable=True),
    Column('shipping_phone', String(40), nullable=True),
    Column('shipping_email', String(320), nullable=True),
    Column('shipping_level_id', String(20), nullable=True),
    Column('shipping_cost', Integer, nullable=True),
    Column('book_cost', Integer, nullable=True),
    Column('stripe_session_id', String(255), nullable=True, unique=True),
    Column('payment_reference', String(255), nullable=True),
    Column('lulu_order_id', String(100), nullable=True, index=True),
    Column('tracking_number', String(100), nullable=True),
    Column('tracking_url', Text, nullable=True),
    Column('download_url', Text, nullable=True),
    Column('download_path', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_book_orders_user_created', 'user_id', 'created_at'),
)

# Processed payment webhook events (replay protection)
payment_events = Table(
    'payment_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('event_id', String(255), nullable=False),
    Column('event_type', String(100), nullable=False),
    Column('payload_hash', String(64), nullable=False),
    Column('processed', Boolean, nullable=False, server_default=text('false')),
    Column('error', Text, nullable=True),
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    UniqueConstraint('event_id', name='uq_payment_events_event_id'),
)
