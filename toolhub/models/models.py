import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Integer,
    Numeric,
    JSON,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


def employee_fk(index: bool = False) -> Mapped[Optional[uuid.UUID]]:
    return mapped_column(UUID(as_uuid=True), ForeignKey("employees.id", ondelete="SET NULL"), index=index)


# ---------- Reference data (read-only for the core) ----------

class Unit(Base):
    __tablename__ = "units"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(50), unique=True)

    departments = relationship("Department", back_populates="unit")


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(50), unique=True)
    unit_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("units.id", ondelete="SET NULL"), index=True)

    unit = relationship("Unit", back_populates="departments")


class Position(Base):
    __tablename__ = "positions"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    permissions: Mapped[Optional[list]] = mapped_column(JSON, default=list)  # capability strings
    level: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class Category(Base):
    """Tool category (computer, printer, ...)"""
    __tablename__ = "categories"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text)


class SubToolType(Base):
    __tablename__ = "sub_tool_types"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)


class AccessoryType(Base):
    __tablename__ = "accessory_types"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[uuid.UUID] = uuid_pk()
    code: Mapped[Optional[str]] = mapped_column(String(50), unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, index=True)
    unit_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("units.id", ondelete="SET NULL"), index=True)
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("departments.id", ondelete="SET NULL"), index=True)
    position_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("positions.id", ondelete="SET NULL"), index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    unit = relationship("Unit")
    department = relationship("Department")
    position = relationship("Position")


# ---------- Assets ----------

class Tool(Base):
    """Top-level asset. status is InUse exactly when assigned_to is set."""
    __tablename__ = "tools"

    id: Mapped[uuid.UUID] = uuid_pk()
    code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("categories.id"), nullable=False, index=True)
    unit_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("units.id", ondelete="SET NULL"))
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("departments.id", ondelete="SET NULL"), index=True)
    assigned_to: Mapped[Optional[uuid.UUID]] = employee_fk(index=True)
    assigned_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    unit_oc: Mapped[str] = mapped_column(String(10), default="Cái")  # Bộ|Cái
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(String(50), default="Dự phòng", index=True)  # Dự phòng|Đang sử dụng|Hỏng|Thanh lý
    condition: Mapped[str] = mapped_column(String(50), default="Mới")  # Mới|Cũ|Hỏng
    purchase_price: Mapped[Optional[float]] = mapped_column(Numeric(18, 2))
    purchase_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    date_of_receipt: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    warranty_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    images: Mapped[Optional[list]] = mapped_column(JSON)  # Array of URLs
    is_delete: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    deleted_by: Mapped[Optional[uuid.UUID]] = employee_fk()
    restored_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    restored_by: Mapped[Optional[uuid.UUID]] = employee_fk()
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    category = relationship("Category")
    unit = relationship("Unit")
    department = relationship("Department")
    assignee = relationship("Employee", foreign_keys=[assigned_to])
    sub_tools = relationship("SubTool", back_populates="parent_tool", order_by="SubTool.created_at")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_tools_delete_status", "is_delete", "status"),
        Index("idx_tools_department_delete", "department_id", "is_delete"),
    )


class SubTool(Base):
    """Component that belongs to exactly one Tool."""
    __tablename__ = "sub_tools"

    id: Mapped[uuid.UUID] = uuid_pk()
    code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    brand: Mapped[Optional[str]] = mapped_column(String(100))
    model: Mapped[Optional[str]] = mapped_column(String(255))
    serial_number: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    unit_oc: Mapped[str] = mapped_column(String(10), default="Cái")
    parent_tool_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("tools.id"), nullable=False, index=True)
    sub_tool_type_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("sub_tool_types.id", ondelete="SET NULL"))
    category_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("categories.id", ondelete="SET NULL"))
    unit_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("units.id", ondelete="SET NULL"))
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("departments.id", ondelete="SET NULL"), index=True)
    assigned_to: Mapped[Optional[uuid.UUID]] = employee_fk(index=True)
    assigned_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    specifications: Mapped[Optional[dict]] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(String(50), default="Đang sử dụng", index=True)
    condition: Mapped[str] = mapped_column(String(50), default="Mới")
    purchase_price: Mapped[Optional[float]] = mapped_column(Numeric(18, 2))
    purchase_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    warranty_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    has_accessorys: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    images: Mapped[Optional[list]] = mapped_column(JSON)
    is_delete: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    deleted_by: Mapped[Optional[uuid.UUID]] = employee_fk()
    restored_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    restored_by: Mapped[Optional[uuid.UUID]] = employee_fk()
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    parent_tool = relationship("Tool", back_populates="sub_tools")
    sub_tool_type = relationship("SubToolType")
    category = relationship("Category")
    department = relationship("Department")
    assignee = relationship("Employee", foreign_keys=[assigned_to])
    accessories = relationship("Accessory", back_populates="sub_tool", order_by="Accessory.created_at")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_sub_tools_parent_delete", "parent_tool_id", "is_delete"),
    )


class Accessory(Base):
    """Part of a SubTool; parent_tool_id is kept in step with the SubTool's parent."""
    __tablename__ = "accessories"

    id: Mapped[uuid.UUID] = uuid_pk()
    code: Mapped[Optional[str]] = mapped_column(String(100), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    serial_number: Mapped[Optional[str]] = mapped_column(String(255))
    model: Mapped[Optional[str]] = mapped_column(String(255))
    brand: Mapped[Optional[str]] = mapped_column(String(100))
    sub_tool_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("sub_tools.id"), nullable=False, index=True)
    parent_tool_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("tools.id"), nullable=False, index=True)
    accessory_type_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("accessory_types.id", ondelete="SET NULL"))
    category_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("categories.id", ondelete="SET NULL"))
    unit_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("units.id", ondelete="SET NULL"))
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("departments.id", ondelete="SET NULL"), index=True)
    assigned_to: Mapped[Optional[uuid.UUID]] = employee_fk(index=True)
    assigned_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    unit_oc: Mapped[str] = mapped_column(String(10), default="Cái")
    specifications: Mapped[Optional[dict]] = mapped_column(JSON)
    slot: Mapped[Optional[str]] = mapped_column(String(50))  # e.g. DIMM1
    status: Mapped[str] = mapped_column(String(50), default="Đang sử dụng", index=True)
    condition: Mapped[str] = mapped_column(String(50), default="Mới")
    purchase_price: Mapped[Optional[float]] = mapped_column(Numeric(18, 2))
    purchase_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    warranty_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    upgraded_from: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("accessories.id", ondelete="SET NULL"))
    upgraded_to: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("accessories.id", ondelete="SET NULL"))
    upgrade_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    upgrade_reason: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    images: Mapped[Optional[list]] = mapped_column(JSON)
    is_delete: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    deleted_by: Mapped[Optional[uuid.UUID]] = employee_fk()
    restored_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    restored_by: Mapped[Optional[uuid.UUID]] = employee_fk()
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    sub_tool = relationship("SubTool", back_populates="accessories")
    parent_tool = relationship("Tool")
    accessory_type = relationship("AccessoryType")
    department = relationship("Department")
    assignee = relationship("Employee", foreign_keys=[assigned_to])

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_accessories_sub_tool_delete", "sub_tool_id", "is_delete"),
        Index("idx_accessories_parent_delete", "parent_tool_id", "is_delete"),
    )


class ToolHistory(Base):
    """Append-only lifecycle ledger.

    Asset references are plain ids so entries outlive a permanent delete of the
    asset they describe.
    """
    __tablename__ = "tool_history"

    id: Mapped[uuid.UUID] = uuid_pk()
    tool_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    sub_tool_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    accessory_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    employee_id: Mapped[Optional[uuid.UUID]] = employee_fk(index=True)
    previous_employee_id: Mapped[Optional[uuid.UUID]] = employee_fk()
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    upgrade_info: Mapped[Optional[dict]] = mapped_column(JSON)
    condition: Mapped[str] = mapped_column(String(50), default="Mới")
    condition_before: Mapped[Optional[str]] = mapped_column(String(50))
    condition_after: Mapped[Optional[str]] = mapped_column(String(50))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    attachments: Mapped[Optional[list]] = mapped_column(JSON)
    performed_by: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("employees.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    tool = relationship("Tool", primaryjoin="foreign(ToolHistory.tool_id) == Tool.id", viewonly=True)
    sub_tool = relationship("SubTool", primaryjoin="foreign(ToolHistory.sub_tool_id) == SubTool.id", viewonly=True)
    accessory = relationship("Accessory", primaryjoin="foreign(ToolHistory.accessory_id) == Accessory.id", viewonly=True)
    employee = relationship("Employee", foreign_keys=[employee_id])
    previous_employee = relationship("Employee", foreign_keys=[previous_employee_id])
    performer = relationship("Employee", foreign_keys=[performed_by])

    __table_args__ = (
        Index("idx_history_tool_created", "tool_id", "created_at"),
    )
