import uuid
import datetime
import enum
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Text, Index, CheckConstraint
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator

Base = declarative_base()


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime normalized to UTC.

    SQLite drops tzinfo on the way in, so values are converted to UTC before
    they are bound and tagged as UTC again when loaded. Range comparisons in
    SQL then behave the same on SQLite and PostgreSQL.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        value = value.astimezone(datetime.timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=datetime.timezone.utc)
        return value.astimezone(datetime.timezone.utc)


# --- Enums ---
class TransactionType(str, enum.Enum):
    INCOME = "income"
    EXPENSE = "expense"


CREDENTIAL_PROVIDER = "credential"
GOOGLE_PROVIDER = "google"


# --- Identity tables ---

class User(Base):
    __tablename__ = "user"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    email_verified = Column(Boolean, default=False, nullable=False)
    image = Column(String, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    sessions = relationship("Session", back_populates="user", cascade="all, delete-orphan")
    accounts = relationship("Account", back_populates="user", cascade="all, delete-orphan")
    transactions = relationship("Transaction", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User(email='{self.email}')>"


class Session(Base):
    __tablename__ = "session"

    id = Column(String, primary_key=True, default=new_id)
    expires_at = Column(UTCDateTime, nullable=False)
    token = Column(String, nullable=False, unique=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    user_id = Column(String, ForeignKey("user.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        Index("session_userId_idx", "user_id"),
    )

    user = relationship("User", back_populates="sessions")


class Account(Base):
    __tablename__ = "account"

    id = Column(String, primary_key=True, default=new_id)
    account_id = Column(String, nullable=False)
    provider_id = Column(String, nullable=False)
    user_id = Column(String, ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    id_token = Column(Text, nullable=True)
    access_token_expires_at = Column(UTCDateTime, nullable=True)
    refresh_token_expires_at = Column(UTCDateTime, nullable=True)
    scope = Column(String, nullable=True)
    password = Column(String, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("account_userId_idx", "user_id"),
    )

    user = relationship("User", back_populates="accounts")


class Verification(Base):
    __tablename__ = "verification"

    id = Column(String, primary_key=True, default=new_id)
    identifier = Column(String, nullable=False)
    value = Column(String, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("verification_identifier_idx", "identifier"),
    )


# --- Finance ---

class Transaction(Base):
    __tablename__ = "transaction"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    title = Column(String, nullable=False)
    # Kept as text so amounts never pass through float
    amount = Column(String, nullable=False)
    currency = Column(String(3), nullable=False, default="USD", server_default="USD")
    type = Column(String, nullable=False)
    category = Column(String, nullable=True)
    note = Column(Text, nullable=True)
    occurred_at = Column(UTCDateTime, default=utcnow, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("type IN ('income', 'expense')", name="ck_transaction_type"),
        Index("transaction_userId_idx", "user_id"),
        Index("transaction_occurredAt_idx", "occurred_at"),
    )

    user = relationship("User", back_populates="transactions")

    def __repr__(self):
        return f"<Transaction(title='{self.title}', amount='{self.amount} {self.currency}', type='{self.type}')>"
