"""
Diet tag, inference result and override models
"""
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Text, Boolean, ForeignKey, DateTime, JSON, UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from diet_inference.database import Base


class Confidence(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class DietTag(Base):
    """A dietary category plus its admin-editable matching rules"""
    __tablename__ = "diet_tags"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(50), unique=True, nullable=False)  # "VEGAN"
    label = Column(String(100), nullable=False)  # "Vegan"

    # Custom rule lists, unioned with the built-in rules of the key
    keyword_whitelist = Column(JSON, nullable=True)  # ["vegan", "pflanzlich"]
    dish_whitelist = Column(JSON, nullable=True)  # ["falafel", "hummus"]
    allergen_exclusions = Column(JSON, nullable=True)  # ["egg", "milk"]

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class DietInferenceResult(Base):
    """Computed verdict for one (restaurant, tag, engine version)"""
    __tablename__ = "diet_inference_results"
    __table_args__ = (
        UniqueConstraint(
            "restaurant_id", "diet_tag_id", "engine_version",
            name="uq_diet_inference_restaurant_tag_version",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True)
    diet_tag_id = Column(Integer, ForeignKey("diet_tags.id", ondelete="CASCADE"), nullable=False, index=True)

    score = Column(Integer, nullable=False)  # 0-100
    confidence = Column(SQLEnum(Confidence, native_enum=False), nullable=False)
    reasons = Column(JSON, nullable=True)  # serialized InferenceReasons
    engine_version = Column(String(20), nullable=False)
    computed_at = Column(DateTime, nullable=False, server_default=func.now())

    diet_tag = relationship("DietTag", lazy="noload")


class DietManualOverride(Base):
    """Restaurant-level human verdict; always wins over inference"""
    __tablename__ = "diet_manual_overrides"
    __table_args__ = (
        UniqueConstraint("restaurant_id", "diet_tag_id", name="uq_diet_override_restaurant_tag"),
    )

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True)
    diet_tag_id = Column(Integer, ForeignKey("diet_tags.id", ondelete="CASCADE"), nullable=False, index=True)

    supported = Column(Boolean, nullable=False)
    author = Column(String(150), nullable=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    diet_tag = relationship("DietTag", lazy="noload")


class MenuItemDietOverride(Base):
    """Item-level human verdict; strongest signal inside the scorer"""
    __tablename__ = "menu_item_diet_overrides"
    __table_args__ = (
        UniqueConstraint("menu_item_id", "diet_tag_id", name="uq_menu_item_diet_override_item_tag"),
    )

    id = Column(Integer, primary_key=True, index=True)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False, index=True)
    diet_tag_id = Column(Integer, ForeignKey("diet_tags.id", ondelete="CASCADE"), nullable=False, index=True)
    supported = Column(Boolean, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    diet_tag = relationship("DietTag", lazy="noload")
