# Database Models for the Collaboration Platform
# Parties the collaboration engine reads: users, bids and campaigns

from sqlalchemy import Column, String, BigInteger, DateTime, ForeignKey, Text, Enum
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
import enum

Base = declarative_base()

def generate_uuid():
    return str(uuid.uuid4())

# Enums
class UserType(str, enum.Enum):
    BRAND_OWNER = "brand_owner"
    INFLUENCER = "influencer"
    ADMIN = "admin"


class ListingStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


# Models
class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(255), unique=True, index=True)
    name = Column(String(255))
    user_type = Column(Enum(UserType, values_callable=lambda x: [e.value for e in x], name="usertype"), default=UserType.BRAND_OWNER)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    bids = relationship("Bid", back_populates="owner")
    campaigns = relationship("Campaign", back_populates="owner")


class Bid(Base):
    """A brand owner's open bid that influencers connect to."""
    __tablename__ = "bids"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    created_by = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    budget = Column(BigInteger, default=0)  # In paise
    status = Column(Enum(ListingStatus, values_callable=lambda x: [e.value for e in x], name="bidstatus"), default=ListingStatus.OPEN)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    owner = relationship("User", back_populates="bids")


class Campaign(Base):
    """A brand owner's campaign that influencers connect to."""
    __tablename__ = "campaigns"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    created_by = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    budget = Column(BigInteger, default=0)  # In paise
    status = Column(Enum(ListingStatus, values_callable=lambda x: [e.value for e in x], name="campaignstatus"), default=ListingStatus.OPEN)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    owner = relationship("User", back_populates="campaigns")
