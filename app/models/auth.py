"""Organization and user models."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime, utcnow


class Organization(Base):
    __tablename__ = "organizations"
    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    billing_email = Column(String(255))
    created_at = Column(UTCDateTime, default=utcnow)

    users = relationship("User", back_populates="organization")


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(255))
    role = Column(String(20), default="buyer")  # buyer | manager | admin
    is_active = Column(Boolean, default=True)
    created_at = Column(UTCDateTime, default=utcnow)

    organization = relationship("Organization", back_populates="users")
