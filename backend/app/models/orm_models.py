"""ORM Models for the AutoERP configuration engine — SQLAlchemy 2.0"""
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import (
    String, Text, Boolean, Integer, DateTime,
    ForeignKey, UniqueConstraint, Index, text
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from app.db import Base


def gen_uuid():
    return str(uuid.uuid4())


# ── COMPANIES ────────────────────────────────────────────────────────────────
class Company(Base):
    __tablename__ = "companies"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    # {bucket, region, access_key, secret_key, url}
    s3_config: Mapped[Optional[dict]] = mapped_column(JSONB)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    users: Mapped[list["User"]] = relationship("User", back_populates="company")


# ── AUTH ──────────────────────────────────────────────────────────────────────
class Role(Base):
    __tablename__ = "roles"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)   # company_super_admin | company_admin
    users: Mapped[list["User"]] = relationship("User", back_populates="role")


class User(Base):
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    company_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), ForeignKey("companies.id"))
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(255))
    role_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("roles.id"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    company: Mapped[Optional["Company"]] = relationship("Company", back_populates="users")
    role: Mapped[Optional["Role"]] = relationship("Role", back_populates="users", lazy="joined")

    @property
    def role_name(self) -> Optional[str]:
        return self.role.name if self.role else None


# ── DROPDOWN MASTERS ──────────────────────────────────────────────────────────
class DropdownMaster(Base):
    __tablename__ = "dropdown_masters"
    __table_args__ = (UniqueConstraint("company_id", "dropdown_name", name="uq_dropdown_name"),)
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    company_id: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("companies.id"), nullable=False, index=True)
    dropdown_name: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    allow_multiple_selection: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # [{option_value, display_value, display_order, is_active, is_default}]
    values: Mapped[list] = mapped_column(JSONB, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ── CONFIGURATIONS ────────────────────────────────────────────────────────────
class Configuration(Base):
    """One inspection or trade-in template; the tree is stored as JSONB and replaced whole on save."""
    __tablename__ = "configurations"
    __table_args__ = (
        UniqueConstraint("company_id", "purpose", "config_name", name="uq_configuration_name"),
        Index(
            "uq_configuration_default", "company_id", "purpose",
            unique=True, postgresql_where=text("is_default"),
        ),
    )
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    company_id: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("companies.id"), nullable=False, index=True)
    purpose: Mapped[str] = mapped_column(String(20), nullable=False)   # inspection | tradein
    config_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    version: Mapped[str] = mapped_column(String(20), default="1.0")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    created_by: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), ForeignKey("users.id"))
    settings: Mapped[dict] = mapped_column(JSONB, default=dict)
    valuation_settings: Mapped[Optional[dict]] = mapped_column(JSONB)
    categories: Mapped[list] = mapped_column(JSONB, default=list)
    sections: Mapped[list] = mapped_column(JSONB, default=list)
    calculations: Mapped[list] = mapped_column(JSONB, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# ── VEHICLES ──────────────────────────────────────────────────────────────────
class Vehicle(Base):
    __tablename__ = "vehicles"
    __table_args__ = (
        UniqueConstraint("company_id", "vehicle_stock_id", "vehicle_type", name="uq_vehicle_stock"),
    )
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    company_id: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("companies.id"), nullable=False, index=True)
    vehicle_stock_id: Mapped[int] = mapped_column(Integer, nullable=False)
    vehicle_type: Mapped[str] = mapped_column(String(20), nullable=False)   # inspection | tradein
    make: Mapped[Optional[str]] = mapped_column(String(100))
    model: Mapped[Optional[str]] = mapped_column(String(100))
    year: Mapped[Optional[int]] = mapped_column(Integer)
    vin: Mapped[Optional[str]] = mapped_column(String(50))
    plate_no: Mapped[Optional[str]] = mapped_column(String(50))
    vehicle_hero_image: Mapped[Optional[str]] = mapped_column(Text)
    inspection_result: Mapped[list] = mapped_column(JSONB, default=list)
    trade_in_result: Mapped[list] = mapped_column(JSONB, default=list)
    inspection_report_pdf: Mapped[list] = mapped_column(JSONB, default=list)
    tradein_report_pdf: Mapped[list] = mapped_column(JSONB, default=list)
    last_inspection_config_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), ForeignKey("configurations.id"))
    last_tradein_config_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), ForeignKey("configurations.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
