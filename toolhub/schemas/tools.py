import uuid
from datetime import datetime
from typing import List, Optional, Dict, Any
from enum import Enum

from pydantic import BaseModel, Field, field_validator


# Enums
class ToolStatus(str, Enum):
    available = "Dự phòng"
    in_use = "Đang sử dụng"
    broken = "Hỏng"
    liquidated = "Thanh lý"


# Out of service; never handed to a custodian by a cascade
RETIRED_STATUSES = (ToolStatus.broken.value, ToolStatus.liquidated.value)


class ToolCondition(str, Enum):
    new = "Mới"
    used = "Cũ"
    broken = "Hỏng"


class UnitOC(str, Enum):
    set = "Bộ"
    piece = "Cái"


class EntityType(str, Enum):
    tool = "tool"
    sub_tool = "sub_tool"
    accessory = "accessory"


ENTITY_TYPE_LABELS = {
    EntityType.tool: "Công cụ dụng cụ",
    EntityType.sub_tool: "Thiết bị",
    EntityType.accessory: "Linh kiện",
}

ENTITY_TYPE_LEVELS = {
    EntityType.tool: 1,
    EntityType.sub_tool: 2,
    EntityType.accessory: 3,
}


def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v


# Tool Schemas
class ToolBase(BaseModel):
    name: str
    category_id: uuid.UUID
    unit_oc: UnitOC = UnitOC.piece
    quantity: int = Field(default=1, ge=1)
    condition: ToolCondition = ToolCondition.new
    purchase_price: Optional[float] = Field(default=None, ge=0)
    purchase_date: Optional[datetime] = None
    date_of_receipt: Optional[datetime] = None
    warranty_until: Optional[datetime] = None
    notes: Optional[str] = None
    description: Optional[str] = None
    images: Optional[List[str]] = None

    @field_validator("name")
    @classmethod
    def name_required(cls, v):
        if not v or not v.strip():
            raise ValueError("name is required")
        return v.strip()

    @field_validator("notes", "description", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        return _blank_to_none(v)


class ToolCreate(ToolBase):
    code: Optional[str] = None
    assigned_to: Optional[uuid.UUID] = None

    @field_validator("code", mode="before")
    @classmethod
    def code_blank_to_none(cls, v):
        return _blank_to_none(v)


class ToolUpdate(BaseModel):
    code: Optional[str] = None
    name: Optional[str] = None
    category_id: Optional[uuid.UUID] = None
    unit_oc: Optional[UnitOC] = None
    quantity: Optional[int] = Field(default=None, ge=1)
    status: Optional[ToolStatus] = None
    condition: Optional[ToolCondition] = None
    purchase_price: Optional[float] = Field(default=None, ge=0)
    purchase_date: Optional[datetime] = None
    date_of_receipt: Optional[datetime] = None
    warranty_until: Optional[datetime] = None
    notes: Optional[str] = None
    description: Optional[str] = None
    images: Optional[List[str]] = None


# SubTool Schemas
class SubToolBase(BaseModel):
    name: str
    parent_tool_id: uuid.UUID
    sub_tool_type_id: Optional[uuid.UUID] = None
    category_id: Optional[uuid.UUID] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    unit_oc: UnitOC = UnitOC.piece
    quantity: int = Field(default=1, ge=1)
    specifications: Optional[Dict[str, Any]] = None
    condition: ToolCondition = ToolCondition.new
    purchase_price: Optional[float] = Field(default=None, ge=0)
    purchase_date: Optional[datetime] = None
    warranty_until: Optional[datetime] = None
    notes: Optional[str] = None
    description: Optional[str] = None
    images: Optional[List[str]] = None

    @field_validator("serial_number", "brand", "model", "notes", "description", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        return _blank_to_none(v)


class SubToolCreate(SubToolBase):
    code: Optional[str] = None
    assigned_to: Optional[uuid.UUID] = None

    @field_validator("code", mode="before")
    @classmethod
    def code_blank_to_none(cls, v):
        return _blank_to_none(v)


class SubToolUpdate(BaseModel):
    name: Optional[str] = None
    sub_tool_type_id: Optional[uuid.UUID] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    unit_oc: Optional[UnitOC] = None
    quantity: Optional[int] = Field(default=None, ge=1)
    specifications: Optional[Dict[str, Any]] = None
    status: Optional[ToolStatus] = None
    condition: Optional[ToolCondition] = None
    purchase_price: Optional[float] = Field(default=None, ge=0)
    purchase_date: Optional[datetime] = None
    warranty_until: Optional[datetime] = None
    notes: Optional[str] = None
    description: Optional[str] = None
    images: Optional[List[str]] = None


# Accessory Schemas
class AccessoryBase(BaseModel):
    name: str
    sub_tool_id: uuid.UUID
    accessory_type_id: Optional[uuid.UUID] = None
    category_id: Optional[uuid.UUID] = None
    code: Optional[str] = None
    serial_number: Optional[str] = None
    model: Optional[str] = None
    brand: Optional[str] = None
    unit_oc: UnitOC = UnitOC.piece
    quantity: int = Field(default=1, ge=1)
    specifications: Optional[Dict[str, Any]] = None
    slot: Optional[str] = None
    condition: ToolCondition = ToolCondition.new
    purchase_price: Optional[float] = Field(default=None, ge=0)
    purchase_date: Optional[datetime] = None
    warranty_until: Optional[datetime] = None
    notes: Optional[str] = None
    description: Optional[str] = None
    images: Optional[List[str]] = None

    @field_validator("code", "serial_number", "brand", "model", "slot", "notes", "description", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        return _blank_to_none(v)


class AccessoryCreate(AccessoryBase):
    pass


class AccessoryUpdate(BaseModel):
    name: Optional[str] = None
    accessory_type_id: Optional[uuid.UUID] = None
    serial_number: Optional[str] = None
    model: Optional[str] = None
    brand: Optional[str] = None
    unit_oc: Optional[UnitOC] = None
    quantity: Optional[int] = Field(default=None, ge=1)
    specifications: Optional[Dict[str, Any]] = None
    slot: Optional[str] = None
    status: Optional[ToolStatus] = None
    condition: Optional[ToolCondition] = None
    purchase_price: Optional[float] = Field(default=None, ge=0)
    purchase_date: Optional[datetime] = None
    warranty_until: Optional[datetime] = None
    notes: Optional[str] = None
    description: Optional[str] = None
    images: Optional[List[str]] = None


class AccessoryUpgrade(BaseModel):
    """Replacement part installed in place of an existing accessory."""
    name: str
    reason: Optional[str] = None
    code: Optional[str] = None
    serial_number: Optional[str] = None
    model: Optional[str] = None
    brand: Optional[str] = None
    specifications: Optional[Dict[str, Any]] = None
    purchase_price: Optional[float] = Field(default=None, ge=0)
    purchase_date: Optional[datetime] = None
    warranty_until: Optional[datetime] = None
    notes: Optional[str] = None


# Assignment Schemas
class AssignToolRequest(BaseModel):
    employee_id: uuid.UUID
    condition: Optional[ToolCondition] = None
    notes: Optional[str] = None


class RevokeRequest(BaseModel):
    condition: Optional[ToolCondition] = None
    notes: Optional[str] = None


class AssignSubToolRequest(BaseModel):
    employee_id: uuid.UUID
    target_tool_id: Optional[uuid.UUID] = None
    condition: Optional[ToolCondition] = None
    notes: Optional[str] = None


class AssignAccessoryRequest(BaseModel):
    employee_id: uuid.UUID
    target_sub_tool_id: Optional[uuid.UUID] = None
    condition: Optional[ToolCondition] = None
    notes: Optional[str] = None
