"""Database models."""
from datetime import datetime
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Customer(Base):
    """Caller identified by phone number."""

    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    phone = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    preferred_language = Column(String, default="en", nullable=False)
    total_reservations = Column(Integer, default=0, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    reservations = relationship("Reservation", back_populates="customer")


class Reservation(Base):
    """Table reservation model."""

    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    reservation_date = Column(Date, index=True, nullable=False)
    reservation_time = Column(Time, nullable=False)
    party_size = Column(Integer, nullable=False)
    status = Column(String, default="confirmed", nullable=False)  # pending, confirmed, cancelled, completed, no-show
    special_requests = Column(Text, nullable=True)
    table_number = Column(String, nullable=True)
    source = Column(String, default="phone_ai", nullable=False)
    confirmation_code = Column(String, unique=True, index=True, nullable=False)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    customer = relationship("Customer", back_populates="reservations")


class CallLog(Base):
    """Call record model."""

    __tablename__ = "call_logs"

    id = Column(Integer, primary_key=True, index=True)
    call_sid = Column(String, unique=True, index=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    from_number = Column(String, nullable=True)
    to_number = Column(String, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    status = Column(String, default="in_progress", nullable=False)  # in_progress, completed, failed, busy, no-answer
    end_reason = Column(String, nullable=True)
    transcript = Column(Text, nullable=True)
    summary = Column(Text, nullable=True)
    intent = Column(String, nullable=True)
    sentiment = Column(String, nullable=True)
    sentiment_score = Column(Float, nullable=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=True)
    was_transferred = Column(Boolean, default=False, nullable=False)
    transfer_reason = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    customer = relationship("Customer")
    reservation = relationship("Reservation")


class FaqResponse(Base):
    """Canned answer to a frequently asked question."""

    __tablename__ = "faq_responses"

    id = Column(Integer, primary_key=True, index=True)
    question_pattern = Column(String, nullable=False)
    question_variations = Column(JSON, nullable=True)  # List of alternative phrasings
    answer = Column(Text, nullable=False)
    answer_short = Column(Text, nullable=True)
    category = Column(String, nullable=True)
    priority = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    times_used = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class BlockedTime(Base):
    """Date or time range when reservations are not accepted."""

    __tablename__ = "blocked_times"

    id = Column(Integer, primary_key=True, index=True)
    blocked_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=True)  # NULL blocks the whole day
    end_time = Column(Time, nullable=True)
    reason = Column(String, nullable=True)
    is_recurring = Column(Boolean, default=False, nullable=False)  # repeats every year on the same day
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
