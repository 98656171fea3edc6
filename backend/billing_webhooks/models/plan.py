"""Plan and Addon catalog models"""
from sqlalchemy import Column, Integer, String, Boolean
from billing_webhooks.models.base import Base


class Plan(Base):
    """Subscription plan (free, starter, professional, enterprise)"""
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    stripe_price_id = Column(String(255), nullable=True, index=True)


class Addon(Base):
    """Purchasable addon, identified by its addon code (slug)"""
    __tablename__ = "addons"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_quantity_based = Column(Boolean, default=False, nullable=False)  # e.g. extra bot slots
