import uuid
from typing import List, Optional, Dict, Any
from enum import Enum

from pydantic import BaseModel

from .tools import ToolCondition


class HistoryAction(str, Enum):
    assign = "Giao"
    revoke = "Thu hồi"
    transfer = "Chuyển giao"
    update = "Cập nhật"
    delete = "Xóa"
    restore = "Khôi phục"
    add_sub_tool = "Thêm thiết bị"
    move_sub_tool = "Chuyển thiết bị"
    remove_sub_tool = "Gỡ thiết bị"
    add_accessory = "Thêm linh kiện"
    remove_accessory = "Gỡ linh kiện"
    upgrade_accessory = "Nâng cấp linh kiện"
    repair_accessory = "Sửa chữa linh kiện"
    maintenance = "Bảo dưỡng"
    move_sub_tool_into = "Chuyển thiết bị vào"
    move_accessory_into = "Chuyển linh kiện vào"
    move_accessory = "Chuyển linh kiện"
    assign_accessory = "Giao linh kiện"
    revoke_accessory = "Thu hồi linh kiện"
    update_by_tool = "Cập nhật theo thiết bị"
    update_by_part = "Cập nhật theo bộ phận"
    move_part_into = "Chuyển bộ phận vào"
    move_part = "Chuyển bộ phận"


UPGRADE_ACTIONS = (
    HistoryAction.upgrade_accessory,
    HistoryAction.add_accessory,
    HistoryAction.remove_accessory,
)


class HistoryCreate(BaseModel):
    tool_id: uuid.UUID
    action: HistoryAction
    sub_tool_id: Optional[uuid.UUID] = None
    accessory_id: Optional[uuid.UUID] = None
    employee_id: Optional[uuid.UUID] = None
    condition: Optional[ToolCondition] = None
    condition_before: Optional[ToolCondition] = None
    condition_after: Optional[ToolCondition] = None
    upgrade_info: Optional[Dict[str, Any]] = None
    attachments: Optional[List[str]] = None
    notes: Optional[str] = None
    description: Optional[str] = None


class HistoryUpdate(BaseModel):
    condition: Optional[ToolCondition] = None
    condition_before: Optional[ToolCondition] = None
    condition_after: Optional[ToolCondition] = None
    notes: Optional[str] = None
    description: Optional[str] = None
