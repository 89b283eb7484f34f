import uuid

import pytest
from sqlalchemy import event

from toolhub.errors import NotFoundError, PermissionDeniedError, PreconditionFailedError
from toolhub.models.models import SubTool, ToolHistory
from toolhub.schemas.tools import AccessoryUpgrade, EntityType, SubToolUpdate, ToolCondition, ToolStatus
from toolhub.services.accessories import upgrade_accessory
from toolhub.services.assignment import (
    accessory_assign_note,
    assign_accessory,
    assign_sub_tool,
    assign_tool,
    revoke_accessory,
    revoke_sub_tool,
    revoke_tool,
    sub_tool_assign_note,
    tool_assign_note,
    with_caller_notes,
)
from toolhub.services.capabilities import Actor
from toolhub.services.lifecycle import soft_delete
from toolhub.services.sub_tools import update_sub_tool

IN_USE = ToolStatus.in_use.value
AVAILABLE = ToolStatus.available.value
LIQUIDATED = ToolStatus.liquidated.value


# ---------- TOOL ----------

def test_assign_unassigned_tool(db, seed, actors, make_tool, history_rows):
    tool = make_tool()
    assert tool.status == AVAILABLE

    result = assign_tool(db, actors.admin, tool.id, seed.alice.id)

    assert tool.assigned_to == seed.alice.id
    assert tool.status == IN_USE
    assert tool.assigned_date is not None
    assert tool.department_id == seed.it.id
    assert result["tool"]["assigned_to"]["id"] == str(seed.alice.id)
    rows = history_rows(tool)
    assert len(rows) == 1
    assert rows[0].action == "Giao"
    assert rows[0].employee_id == seed.alice.id
    assert rows[0].previous_employee_id is None
    assert rows[0].performed_by == seed.admin.id
    assert result["history_id"] == str(rows[0].id)


def test_reassign_records_transfer(db, seed, actors, make_tool, history_rows):
    tool = make_tool()
    assign_tool(db, actors.admin, tool.id, seed.alice.id)

    result = assign_tool(db, actors.admin, tool.id, seed.bob.id)

    assert tool.assigned_to == seed.bob.id
    assert tool.status == IN_USE
    assert len(history_rows(tool)) == 2
    entry = db.get(ToolHistory, uuid.UUID(result["history_id"]))
    assert entry.action == "Chuyển giao"
    assert entry.employee_id == seed.bob.id
    assert entry.previous_employee_id == seed.alice.id
    assert entry.notes == "Transfer tool Laptop from Alice to Bob"


def test_assign_twice_to_same_employee_is_rejected(db, seed, actors, make_tool, history_rows):
    tool = make_tool()
    assign_tool(db, actors.admin, tool.id, seed.alice.id)

    with pytest.raises(PreconditionFailedError):
        assign_tool(db, actors.admin, tool.id, seed.alice.id)

    assert len(history_rows(tool)) == 1


def test_assign_cascades_to_live_children(db, seed, actors, make_tool, make_sub_tool, make_accessory):
    tool = make_tool()
    case = make_sub_tool(tool, "Case")
    monitor = make_sub_tool(tool, "Monitor")
    ram = make_accessory(case)
    dropped = make_sub_tool(tool, "Old dock")
    soft_delete(db, actors.admin, EntityType.sub_tool, dropped.id)

    result = assign_tool(db, actors.admin, tool.id, seed.alice.id, condition=ToolCondition.used, notes="onboarding")

    assert result["cascaded"] == {"sub_tools": 2, "accessories": 1}
    for row in (case, monitor, ram):
        assert row.assigned_to == seed.alice.id
        assert row.status == IN_USE
        assert row.condition == ToolCondition.used.value
        assert row.department_id == seed.it.id
    assert dropped.assigned_to is None
    entry = db.get(ToolHistory, uuid.UUID(result["history_id"]))
    assert entry.sub_tool_id is None
    assert entry.condition_after == ToolCondition.used.value
    assert entry.notes == "Assign tool Laptop to Alice. onboarding"


def test_assign_leaves_retired_parts_out_of_service(db, seed, actors, make_tool, make_sub_tool, make_accessory):
    tool = make_tool(assigned_to=seed.alice)
    case = make_sub_tool(tool, "Case")
    old_ram = make_accessory(case, "RAM 8GB")
    upgrade_accessory(db, actors.admin, old_ram.id, AccessoryUpgrade(name="RAM 16GB"))
    broken_dock = make_sub_tool(tool, "Dock")
    update_sub_tool(db, actors.admin, broken_dock.id, SubToolUpdate(status=ToolStatus.broken))
    assert old_ram.status == LIQUIDATED

    result = assign_tool(db, actors.admin, tool.id, seed.bob.id)

    assert result["cascaded"] == {"sub_tools": 1, "accessories": 1}
    assert old_ram.status == LIQUIDATED
    assert old_ram.assigned_to is None
    assert broken_dock.status == ToolStatus.broken.value
    assert broken_dock.assigned_to == seed.alice.id
    assert case.assigned_to == seed.bob.id


def test_assign_unknown_employee_or_deleted_tool(db, seed, actors, make_tool):
    tool = make_tool()
    with pytest.raises(NotFoundError):
        assign_tool(db, actors.admin, tool.id, uuid.uuid4())

    soft_delete(db, actors.admin, EntityType.tool, tool.id)
    with pytest.raises(NotFoundError):
        assign_tool(db, actors.admin, tool.id, seed.alice.id)


def test_assign_requires_capability(db, seed, actors, make_tool):
    tool = make_tool()
    with pytest.raises(PermissionDeniedError):
        assign_tool(db, actors.alice, tool.id, seed.alice.id)
    assert tool.assigned_to is None


def test_revoke_returns_tool_and_children_held_by_same_employee(
    db, seed, actors, make_tool, make_sub_tool, make_accessory
):
    tool = make_tool(assigned_to=seed.alice)
    own = make_sub_tool(tool, "Case")
    delegated = make_sub_tool(tool, "Monitor", assigned_to=seed.bob)
    ram = make_accessory(own)
    assert own.assigned_to == seed.alice.id

    result = revoke_tool(db, actors.admin, tool.id, notes="returned")

    assert tool.assigned_to is None
    assert tool.status == AVAILABLE
    assert tool.department_id is None
    assert own.assigned_to is None and own.status == AVAILABLE
    assert ram.assigned_to is None and ram.status == AVAILABLE
    assert delegated.assigned_to == seed.bob.id
    assert delegated.status == IN_USE
    assert result["cascaded"] == {"sub_tools": 1, "accessories": 1}
    assert result["previous_assignee"]["id"] == str(seed.alice.id)
    entry = db.get(ToolHistory, uuid.UUID(result["history_id"]))
    assert entry.action == "Thu hồi"
    assert entry.employee_id is None
    assert entry.previous_employee_id == seed.alice.id
    assert entry.notes == "Revoke tool Laptop from Alice. returned"


def test_revoke_unassigned_tool_is_rejected(db, actors, make_tool, history_rows):
    tool = make_tool()
    with pytest.raises(PreconditionFailedError):
        revoke_tool(db, actors.admin, tool.id)
    assert history_rows(tool) == []


def test_tool_revoke_needs_assign_capability(db, seed, make_tool):
    tool = make_tool(assigned_to=seed.alice)
    revoker = Actor(id=seed.admin.id, name="Root", capabilities=frozenset({"revoke_tool", "view_all_tools"}))
    with pytest.raises(PermissionDeniedError):
        revoke_tool(db, revoker, tool.id)
    assert tool.assigned_to == seed.alice.id


def test_failed_child_update_rolls_back_whole_assignment(db, seed, actors, make_tool, make_sub_tool, history_rows):
    tool = make_tool()
    first = make_sub_tool(tool, "Case")
    second = make_sub_tool(tool, "Monitor")
    before = len(history_rows())
    seen = []

    def fail_on_second(mapper, connection, target):
        seen.append(target.id)
        if len(seen) == 2:
            raise RuntimeError("simulated store failure")

    event.listen(SubTool, "before_update", fail_on_second)
    try:
        with pytest.raises(RuntimeError):
            assign_tool(db, actors.admin, tool.id, seed.alice.id)
    finally:
        event.remove(SubTool, "before_update", fail_on_second)

    assert len(seen) == 2
    db.expire_all()
    assert tool.assigned_to is None
    assert tool.status == AVAILABLE
    assert first.assigned_to is None
    assert second.assigned_to is None
    assert len(history_rows()) == before


# ---------- SUB-TOOL ----------

def test_move_sub_tool_migrates_accessories(db, seed, actors, make_tool, make_sub_tool, make_accessory):
    source = make_tool("Workstation 1", assigned_to=seed.bob)
    case = make_sub_tool(source, "Case")
    parts = [make_accessory(case, f"RAM {i}") for i in range(3)]
    target = make_tool("Workstation 2", assigned_to=seed.carol)
    assert case.has_accessorys is True

    result = assign_sub_tool(db, actors.admin, case.id, seed.carol.id, target_tool_id=target.id)

    assert case.parent_tool_id == target.id
    assert case.assigned_to == seed.carol.id
    assert case.department_id == seed.sales.id
    for part in parts:
        assert part.parent_tool_id == target.id
        assert part.sub_tool_id == case.id
        assert part.assigned_to == seed.carol.id
    assert result["migrated_count"] == 3
    assert result["changes"]["transferred"] is True
    assert result["changes"]["old_parent_tool"]["id"] == str(source.id)
    assert result["changes"]["new_parent_tool"]["id"] == str(target.id)
    assert result["changes"]["old_employee"] == "Bob"
    entry = db.get(ToolHistory, uuid.UUID(result["history_id"]))
    assert entry.action == "Chuyển bộ phận"
    assert entry.tool_id == target.id
    assert entry.sub_tool_id == case.id
    assert entry.previous_employee_id == seed.bob.id
    assert "Moved 3 accessories along" in entry.notes


def test_move_sub_tool_carries_retired_parts_without_custody(
    db, seed, actors, make_tool, make_sub_tool, make_accessory
):
    source = make_tool("Workstation 1", assigned_to=seed.bob)
    case = make_sub_tool(source, "Case")
    old_ram = make_accessory(case, "RAM 8GB")
    upgrade_accessory(db, actors.admin, old_ram.id, AccessoryUpgrade(name="RAM 16GB"))
    target = make_tool("Workstation 2", assigned_to=seed.carol)

    result = assign_sub_tool(db, actors.admin, case.id, seed.carol.id, target_tool_id=target.id)

    assert result["migrated_count"] == 1
    assert old_ram.parent_tool_id == target.id
    assert old_ram.status == LIQUIDATED
    assert old_ram.assigned_to is None


def test_move_sub_tool_to_tool_of_other_employee_changes_nothing(
    db, seed, actors, make_tool, make_sub_tool, history_rows
):
    source = make_tool("Workstation 1", assigned_to=seed.bob)
    case = make_sub_tool(source, "Case")
    target = make_tool("Workstation 3", assigned_to=seed.carol)
    version = case.version
    before = len(history_rows())

    with pytest.raises(PreconditionFailedError):
        assign_sub_tool(db, actors.admin, case.id, seed.dave.id, target_tool_id=target.id)

    assert case.parent_tool_id == source.id
    assert case.assigned_to == seed.bob.id
    assert case.version == version
    assert len(history_rows()) == before


def test_move_sub_tool_across_categories_is_rejected(db, seed, actors, make_tool, make_sub_tool):
    source = make_tool("Workstation", assigned_to=seed.bob)
    case = make_sub_tool(source, "Case")
    printer = make_tool("Printer", category=seed.printer, assigned_to=seed.carol)

    with pytest.raises(PreconditionFailedError) as exc:
        assign_sub_tool(db, actors.admin, case.id, seed.carol.id, target_tool_id=printer.id)

    assert "different category" in exc.value.message
    assert case.parent_tool_id == source.id


def test_transfer_delegated_sub_tool_back_to_tool_holder(db, seed, actors, make_tool, make_sub_tool):
    tool = make_tool(assigned_to=seed.alice)
    monitor = make_sub_tool(tool, "Monitor", assigned_to=seed.bob)

    result = assign_sub_tool(db, actors.admin, monitor.id, seed.alice.id, notes="desk swap")

    assert monitor.assigned_to == seed.alice.id
    assert monitor.parent_tool_id == tool.id
    assert result["migrated_count"] == 0
    assert result["changes"]["transferred"] is False
    entry = db.get(ToolHistory, uuid.UUID(result["history_id"]))
    assert entry.action == "Chuyển giao"
    assert entry.notes == "Transfer part Monitor from Bob to Alice. desk swap"


def test_assign_sub_tool_requires_parent_held_by_employee(db, seed, actors, make_tool, make_sub_tool):
    tool = make_tool(assigned_to=seed.alice)
    case = make_sub_tool(tool, "Case")

    with pytest.raises(PreconditionFailedError) as exc:
        assign_sub_tool(db, actors.admin, case.id, seed.bob.id)
    assert "Parent tool" in exc.value.message

    with pytest.raises(PreconditionFailedError):
        assign_sub_tool(db, actors.admin, case.id, seed.alice.id)


def test_revoke_sub_tool_leaves_parent_alone(db, seed, actors, make_tool, make_sub_tool):
    tool = make_tool(assigned_to=seed.alice)
    case = make_sub_tool(tool, "Case")

    result = revoke_sub_tool(db, actors.admin, case.id, condition=ToolCondition.broken)

    assert case.assigned_to is None
    assert case.status == AVAILABLE
    assert case.condition == ToolCondition.broken.value
    assert case.department_id == seed.it.id
    assert tool.assigned_to == seed.alice.id
    entry = db.get(ToolHistory, uuid.UUID(result["history_id"]))
    assert entry.action == "Thu hồi"
    assert entry.sub_tool_id == case.id
    assert entry.employee_id is None
    assert entry.previous_employee_id == seed.alice.id
    assert entry.condition_before == ToolCondition.new.value
    assert entry.condition_after == ToolCondition.broken.value

    with pytest.raises(PreconditionFailedError):
        revoke_sub_tool(db, actors.admin, case.id)


# ---------- ACCESSORY ----------

def test_assign_accessory_establishes_chain_through_parent(
    db, seed, actors, make_tool, make_sub_tool, make_accessory
):
    tool = make_tool(assigned_to=seed.alice)
    monitor = make_sub_tool(tool, "Monitor", assigned_to=seed.bob)
    cable = make_accessory(monitor, "HDMI cable")
    assert cable.assigned_to == seed.bob.id

    result = assign_accessory(db, actors.admin, cable.id, seed.alice.id)

    assert result["chain_established"] is True
    assert result["migrated_count"] == 0
    assert monitor.assigned_to == seed.alice.id
    assert cable.assigned_to == seed.alice.id
    entry = db.get(ToolHistory, uuid.UUID(result["history_id"]))
    assert entry.action == "Chuyển giao"
    assert entry.accessory_id == cable.id
    assert entry.notes.endswith(f"Sub-tool {monitor.code} assigned to Alice first")


def test_assign_accessory_without_any_held_container_is_rejected(
    db, seed, actors, make_tool, make_sub_tool, make_accessory, history_rows
):
    tool = make_tool()
    case = make_sub_tool(tool, "Case")
    ram = make_accessory(case)
    before = len(history_rows())

    with pytest.raises(PreconditionFailedError) as exc:
        assign_accessory(db, actors.admin, ram.id, seed.carol.id)

    assert "Neither sub-tool" in exc.value.message
    assert ram.assigned_to is None
    assert case.assigned_to is None
    assert len(history_rows()) == before


def test_move_accessory_into_other_sub_tool(db, seed, actors, make_tool, make_sub_tool, make_accessory):
    spare = make_tool("Spare box")
    spare_case = make_sub_tool(spare, "Case")
    ram = make_accessory(spare_case)
    workstation = make_tool("Workstation", assigned_to=seed.carol)
    case = make_sub_tool(workstation, "Case")
    assert case.has_accessorys is False

    result = assign_accessory(db, actors.admin, ram.id, seed.carol.id, target_sub_tool_id=case.id)

    assert ram.sub_tool_id == case.id
    assert ram.parent_tool_id == workstation.id
    assert ram.assigned_to == seed.carol.id
    assert case.has_accessorys is True
    assert spare_case.has_accessorys is False
    assert result["changes"]["transferred"] is True
    entry = db.get(ToolHistory, uuid.UUID(result["history_id"]))
    assert entry.action == "Chuyển linh kiện vào"
    assert entry.tool_id == workstation.id


def test_revoke_accessory(db, seed, actors, make_tool, make_sub_tool, make_accessory):
    tool = make_tool(assigned_to=seed.alice)
    case = make_sub_tool(tool, "Case")
    ram = make_accessory(case)

    result = revoke_accessory(db, actors.admin, ram.id, notes="faulty")

    assert ram.assigned_to is None
    assert ram.status == AVAILABLE
    assert case.assigned_to == seed.alice.id
    entry = db.get(ToolHistory, uuid.UUID(result["history_id"]))
    assert entry.action == "Thu hồi linh kiện"
    assert entry.employee_id is None
    assert entry.previous_employee_id == seed.alice.id
    assert entry.notes == "Revoke accessory RAM 8GB from Alice. faulty"

    with pytest.raises(PreconditionFailedError):
        revoke_accessory(db, actors.admin, ram.id)


# ---------- NOTES ----------

def test_caller_notes_are_appended():
    assert with_caller_notes("Assign tool X to Alice", "  urgent ") == "Assign tool X to Alice. urgent"
    assert with_caller_notes("Assign tool X to Alice", "   ") == "Assign tool X to Alice"
    assert with_caller_notes("Assign tool X to Alice", None) == "Assign tool X to Alice"


def test_generated_notes():
    assert tool_assign_note("Laptop", None, "Alice") == "Assign tool Laptop to Alice"
    assert sub_tool_assign_note("Case", None, "Alice", migrated=2) == "Assign part Case to Alice (including 2 accessories)"
    assert (
        sub_tool_assign_note("Case", "Bob", "Alice", migrated=1)
        == "Transfer part Case from Bob to Alice. 1 accessories also transferred"
    )
    assert (
        sub_tool_assign_note("Case", None, "Carol", moved_from_tool="WS-1")
        == "Move part Case from tool WS-1 to new tool and assign to Carol"
    )
    assert (
        accessory_assign_note("RAM", "Bob", "Carol", moved_from="Case A", moved_to="Case B")
        == "Move accessory RAM from Case A to Case B and assign to Carol (from Bob)"
    )
    assert accessory_assign_note("RAM", None, "Carol") == "Assign accessory RAM to Carol"
