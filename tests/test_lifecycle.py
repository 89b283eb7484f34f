import uuid

import pytest

from toolhub.errors import NotFoundError, PermissionDeniedError, PreconditionFailedError
from toolhub.models.models import Accessory, SubTool, Tool, ToolHistory
from toolhub.schemas.tools import AccessoryUpgrade, EntityType, ToolStatus
from toolhub.services.accessories import upgrade_accessory
from toolhub.services.assignment import assign_tool
from toolhub.services.history import list_history
from toolhub.services.lifecycle import list_deleted, permanent_delete, restore, soft_delete


def test_soft_delete_then_restore_tool(db, seed, actors, make_tool, make_sub_tool, make_accessory, history_rows):
    tool = make_tool(assigned_to=seed.alice)
    case = make_sub_tool(tool, "Case")
    ram = make_accessory(case)
    before = len(history_rows(tool))

    deleted = soft_delete(db, actors.admin, EntityType.tool, tool.id)

    assert deleted["deleted"] == {"sub_tools": 1, "accessories": 1, "total": 3}
    assert tool.is_delete and case.is_delete and ram.is_delete
    assert tool.deleted_by == seed.admin.id
    assert len(history_rows(tool)) == before

    tree = list_deleted(db, actors.admin)
    assert tree["summary"] == {"tools": 1, "sub_tools": 1, "accessories": 1, "total": 3}
    [node] = tree["items"]
    assert node["type"] == "tool"
    assert node["level"] == 1
    assert node["children_count"]["sub_tools"] >= 1
    assert node["children_count"]["accessories"] == 1
    assert node["children"][0]["children"][0]["id"] == str(ram.id)

    restored = restore(db, actors.admin, EntityType.tool, tool.id)

    assert restored["restored"]["total"] == 3
    assert restored["synced_with_parent"] is True
    assert not tool.is_delete and not case.is_delete and not ram.is_delete
    assert tool.restored_by == seed.admin.id
    assert case.assigned_to == seed.alice.id
    assert ram.assigned_to == seed.alice.id
    assert case.has_accessorys is True
    entry = db.get(ToolHistory, uuid.UUID(restored["history_id"]))
    assert entry.action == "Khôi phục"
    assert len(history_rows(tool)) == before + 1


def test_soft_delete_twice_is_not_found(db, actors, make_tool):
    tool = make_tool()
    soft_delete(db, actors.admin, EntityType.tool, tool.id)
    with pytest.raises(NotFoundError):
        soft_delete(db, actors.admin, EntityType.tool, tool.id)


def test_restore_live_entity_is_rejected(db, actors, make_tool):
    tool = make_tool()
    with pytest.raises(PreconditionFailedError):
        restore(db, actors.admin, EntityType.tool, tool.id)


def test_restored_sub_tool_follows_current_parent_custody(db, seed, actors, make_tool, make_sub_tool, make_accessory):
    tool = make_tool(assigned_to=seed.alice)
    case = make_sub_tool(tool, "Case")
    ram = make_accessory(case)
    soft_delete(db, actors.admin, EntityType.sub_tool, case.id)
    assert ram.is_delete is True
    assign_tool(db, actors.admin, tool.id, seed.carol.id)
    assert case.assigned_to == seed.alice.id

    result = restore(db, actors.admin, EntityType.sub_tool, case.id)

    assert result["synced_with_parent"] is True
    assert result["assigned_to"]["id"] == str(seed.carol.id)
    assert case.assigned_to == seed.carol.id
    assert case.department_id == seed.sales.id
    assert case.status == ToolStatus.in_use.value
    assert ram.is_delete is False
    assert ram.assigned_to == seed.carol.id
    assert case.has_accessorys is True


def test_restored_liquidated_accessory_stays_unassigned(db, seed, actors, make_tool, make_sub_tool, make_accessory):
    tool = make_tool(assigned_to=seed.alice)
    case = make_sub_tool(tool, "Case")
    old_ram = make_accessory(case, "RAM 8GB")
    upgrade_accessory(db, actors.admin, old_ram.id, AccessoryUpgrade(name="RAM 16GB"))
    soft_delete(db, actors.admin, EntityType.tool, tool.id)

    restore(db, actors.admin, EntityType.tool, tool.id)

    assert old_ram.is_delete is False
    assert old_ram.status == ToolStatus.liquidated.value
    assert old_ram.assigned_to is None
    assert old_ram.department_id == seed.it.id


def test_restore_accessory_of_deleted_sub_tool_comes_back_unassigned(
    db, seed, actors, make_tool, make_sub_tool, make_accessory
):
    tool = make_tool(assigned_to=seed.alice)
    case = make_sub_tool(tool, "Case")
    ram = make_accessory(case)
    soft_delete(db, actors.admin, EntityType.accessory, ram.id)
    assert case.has_accessorys is False
    soft_delete(db, actors.admin, EntityType.sub_tool, case.id)

    result = restore(db, actors.admin, EntityType.accessory, ram.id)

    assert result["synced_with_parent"] is False
    assert ram.assigned_to is None
    assert ram.status == ToolStatus.available.value


def test_deleted_children_of_live_tool_are_orphans(db, seed, actors, make_tool, make_sub_tool, make_accessory):
    tool = make_tool(assigned_to=seed.alice)
    case = make_sub_tool(tool, "Case")
    make_accessory(case)
    monitor = make_sub_tool(tool, "Monitor")
    cable = make_accessory(monitor, "HDMI cable")
    soft_delete(db, actors.admin, EntityType.sub_tool, case.id)
    soft_delete(db, actors.admin, EntityType.accessory, cable.id)

    tree = list_deleted(db, actors.admin)

    assert tree["orphans"] == {"sub_tools": 1, "accessories": 1}
    assert tree["summary"]["tools"] == 0
    assert all(item["orphan"] for item in tree["items"])
    by_type = {item["type"]: item for item in tree["items"]}
    assert len(by_type["sub_tool"]["children"]) == 1
    assert by_type["accessory"]["id"] == str(cable.id)
    assert by_type["accessory"]["type_label"] == "Linh kiện"

    only_accessories = list_deleted(db, actors.admin, entity_type="accessory")
    assert [i["id"] for i in only_accessories["items"]] == [str(cable.id)]


def test_deleted_tree_requires_wide_scope(db, actors):
    with pytest.raises(PermissionDeniedError):
        list_deleted(db, actors.alice)


def test_permanent_delete_tool_cascades_and_keeps_history(
    db, seed, actors, make_tool, make_sub_tool, make_accessory, history_rows
):
    tool = make_tool(assigned_to=seed.alice)
    tool_id = tool.id
    case = make_sub_tool(tool, "Case")
    make_accessory(case, "RAM 1")
    make_accessory(case, "RAM 2")
    kept = len(history_rows(tool))

    result = permanent_delete(db, actors.admin, EntityType.tool, tool_id)

    assert result["deleted_items"] == {"tool": 1, "sub_tools": 1, "accessories": 2, "total": 4}
    assert db.query(Tool).filter(Tool.id == tool_id).count() == 0
    assert db.query(SubTool).filter(SubTool.parent_tool_id == tool_id).count() == 0
    assert db.query(Accessory).filter(Accessory.parent_tool_id == tool_id).count() == 0
    assert db.query(ToolHistory).filter(ToolHistory.tool_id == tool_id).count() == kept
    events = list_history(db, actors.admin, tool_id=tool_id)["events"]
    assert len(events) == kept
    assert events[0]["tool"]["name"] is None


def test_permanent_delete_of_live_sub_tool_is_rejected(db, actors, make_tool, make_sub_tool, make_accessory):
    tool = make_tool()
    case = make_sub_tool(tool, "Case")
    make_accessory(case)

    with pytest.raises(PreconditionFailedError):
        permanent_delete(db, actors.admin, EntityType.sub_tool, case.id)

    soft_delete(db, actors.admin, EntityType.sub_tool, case.id)
    result = permanent_delete(db, actors.admin, EntityType.sub_tool, case.id)
    assert result["deleted_items"] == {"tool": 0, "sub_tools": 1, "accessories": 1, "total": 2}


def test_permanent_delete_requires_capability(db, actors, make_tool):
    tool = make_tool()
    with pytest.raises(PermissionDeniedError):
        permanent_delete(db, actors.manager, EntityType.tool, tool.id)
