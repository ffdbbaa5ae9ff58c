from sqlalchemy import Column, Integer, String, DateTime, Float, Boolean, Text, JSON, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
import uuid

from mention_pipeline.db.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Platform(str, enum.Enum):
    GOOGLE = "GOOGLE"
    FACEBOOK = "FACEBOOK"
    YELP = "YELP"


class MentionStatus(str, enum.Enum):
    NEW = "NEW"
    REVIEWED = "REVIEWED"
    REPLIED = "REPLIED"
    ESCALATED = "ESCALATED"
    ARCHIVED = "ARCHIVED"


class Sentiment(str, enum.Enum):
    POSITIVE = "POSITIVE"
    NEUTRAL = "NEUTRAL"
    NEGATIVE = "NEGATIVE"


class ReplyStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    DISMISSED = "DISMISSED"


class UserRole(str, enum.Enum):
    OWNER = "OWNER"
    MANAGER = "MANAGER"
    AGENT = "AGENT"


class Tenant(Base):
    """Business being monitored (owned by tenant administration)"""
    __tablename__ = "tenants"

    id = Column(String, primary_key=True, default=_uuid)
    business_name = Column(String, nullable=False)
    country = Column(String, nullable=False, default="US")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    users = relationship("User", back_populates="tenant")
    locations = relationship("Location", back_populates="tenant")


class User(Base):
    """Tenant user; OWNER/MANAGER users with a phone receive risk alerts"""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_uuid)
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=False, index=True)
    email = Column(String, nullable=False, unique=True)
    full_name = Column(String)
    role = Column(String, nullable=False, default=UserRole.AGENT.value)
    phone = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    tenant = relationship("Tenant", back_populates="users")

    __table_args__ = (
        Index('idx_user_tenant_role', tenant_id, role),
    )


class Location(Base):
    """Physical business location a source account belongs to"""
    __tablename__ = "locations"

    id = Column(String, primary_key=True, default=_uuid)
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    city = Column(String)
    country = Column(String)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    tenant = relationship("Tenant", back_populates="locations")
    source_accounts = relationship("SourceAccount", back_populates="location")


class SourceAccount(Base):
    """Monitored account/page on one platform for one business location"""
    __tablename__ = "source_accounts"

    id = Column(String, primary_key=True, default=_uuid)
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=False, index=True)
    location_id = Column(String, ForeignKey("locations.id"), nullable=False, index=True)

    platform = Column(String, nullable=False, index=True)  # Platform enum value
    account_url = Column(String, nullable=False)
    polling_frequency_minutes = Column(Integer, nullable=False, default=60)
    is_active = Column(Boolean, default=True, nullable=False)

    # Scheduler bookkeeping
    last_scraped_at = Column(DateTime(timezone=True), nullable=True)
    next_scrape_at = Column(DateTime(timezone=True), nullable=True)  # durable "next run at" marker
    consecutive_failures = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    location = relationship("Location", back_populates="source_accounts")
    mentions = relationship("Mention", back_populates="source_account")

    __table_args__ = (
        Index('idx_source_account_active_next', is_active, next_scrape_at),
    )


class Mention(Base):
    """One observed review/post about a tenant's business"""
    __tablename__ = "mentions"

    id = Column(String, primary_key=True, default=_uuid)
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=False, index=True)
    location_id = Column(String, ForeignKey("locations.id"), nullable=False)
    source_account_id = Column(String, ForeignKey("source_accounts.id"), nullable=False, index=True)

    # Raw fields, immutable after ingest
    platform = Column(String, nullable=False)
    external_id = Column(String, nullable=False)
    url = Column(String)
    author_name = Column(String)
    text = Column(Text, nullable=False, default="")
    stars = Column(Integer, nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=False)

    status = Column(String, nullable=False, default=MentionStatus.NEW.value, index=True)

    # Analysis fields, written once per analysis pass
    sentiment = Column(String, nullable=True)
    intent = Column(String, nullable=True)
    topics = Column(JSON, default=list)
    risk_score = Column(Integer, nullable=True)
    virality_probability = Column(Float, nullable=True)
    confidence = Column(Float, nullable=True)
    language = Column(String, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    # Manual follow-up marker after analysis retries are exhausted
    analysis_failed = Column(Boolean, default=False, nullable=False)
    analysis_attempts = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    source_account = relationship("SourceAccount", back_populates="mentions")
    tenant = relationship("Tenant")
    replies = relationship("Reply", back_populates="mention", order_by="Reply.position")

    __table_args__ = (
        UniqueConstraint('platform', 'external_id', name='uq_mention_platform_external_id'),
        Index('idx_mention_tenant_status', tenant_id, status),
        Index('idx_mention_unprocessed', processed_at, analysis_failed),
    )


class Reply(Base):
    """Drafted or sent response to a mention"""
    __tablename__ = "replies"

    id = Column(String, primary_key=True, default=_uuid)
    mention_id = Column(String, ForeignKey("mentions.id"), nullable=False, index=True)
    suggested_text = Column(Text, nullable=False)
    tone = Column(String, nullable=False)
    status = Column(String, nullable=False, default=ReplyStatus.DRAFT.value)
    assigned_user_id = Column(String, ForeignKey("users.id"), nullable=True)
    # Generation order within one analysis pass; 0 is the top suggestion
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    mention = relationship("Mention", back_populates="replies")
    assigned_user = relationship("User")
