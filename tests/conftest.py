"""
Pytest fixtures: in-memory database, seeded organisation, actors and asset factories
"""
import uuid
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from toolhub.db import Base
from toolhub.models.models import (
    Accessory,
    Category,
    Department,
    Employee,
    Position,
    SubTool,
    Tool,
    ToolHistory,
    Unit,
)
from toolhub.schemas.tools import AccessoryCreate, SubToolCreate, ToolCreate
from toolhub.services.accessories import create_accessory
from toolhub.services.capabilities import actor_for
from toolhub.services.sub_tools import create_sub_tool
from toolhub.services.tools import create_tool


ADMIN_CAPS = [
    "view_all_tools",
    "create_tool",
    "update_tool",
    "delete_tool",
    "assign_tool",
    "revoke_tool",
    "restore_tool",
    "permanent_delete_tool",
    "manage_system",
    "delete_history",
    "view_history",
    "view_all_employees",
]

MANAGER_CAPS = [
    "view_department_tools",
    "create_tool",
    "update_tool",
    "delete_tool",
    "assign_tool",
    "revoke_tool",
    "restore_tool",
    "view_department_employees",
]

STAFF_CAPS = ["view_assigned_tools"]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seed(db):
    """One unit, two departments (IT, Sales), three positions, two categories, six employees"""
    unit = Unit(name="Head office", code="HO")
    db.add(unit)
    db.flush()
    it = Department(name="IT", code="IT", unit_id=unit.id)
    sales = Department(name="Sales", code="SALES", unit_id=unit.id)
    admin_pos = Position(name="Administrator", permissions=ADMIN_CAPS, level=10)
    manager_pos = Position(name="IT manager", permissions=MANAGER_CAPS, level=5)
    staff_pos = Position(name="Staff", permissions=STAFF_CAPS, level=1)
    laptop = Category(name="Máy tính")
    printer = Category(name="Máy in")
    db.add_all([it, sales, admin_pos, manager_pos, staff_pos, laptop, printer])
    db.flush()

    def employee(code, name, department, position):
        e = Employee(
            code=code,
            name=name,
            email=f"{code.lower()}@example.com",
            unit_id=unit.id,
            department_id=department.id,
            position_id=position.id,
        )
        db.add(e)
        return e

    ns = SimpleNamespace(
        unit=unit,
        it=it,
        sales=sales,
        admin_pos=admin_pos,
        manager_pos=manager_pos,
        staff_pos=staff_pos,
        laptop=laptop,
        printer=printer,
        admin=employee("E001", "Root", it, admin_pos),
        manager=employee("E002", "Martin", it, manager_pos),
        alice=employee("E003", "Alice", it, staff_pos),
        bob=employee("E004", "Bob", it, staff_pos),
        carol=employee("E005", "Carol", sales, staff_pos),
        dave=employee("E006", "Dave", sales, staff_pos),
    )
    db.commit()
    return ns


@pytest.fixture
def actors(seed):
    return SimpleNamespace(
        admin=actor_for(seed.admin),
        manager=actor_for(seed.manager),
        alice=actor_for(seed.alice),
        bob=actor_for(seed.bob),
        carol=actor_for(seed.carol),
        dave=actor_for(seed.dave),
    )


@pytest.fixture
def make_tool(db, seed, actors):
    def _make(name="Laptop", category=None, assigned_to=None, **fields):
        data = ToolCreate(
            name=name,
            category_id=(category or seed.laptop).id,
            assigned_to=assigned_to.id if assigned_to else None,
            **fields,
        )
        return db.get(Tool, uuid.UUID(create_tool(db, actors.admin, data)["id"]))

    return _make


@pytest.fixture
def make_sub_tool(db, actors):
    def _make(tool, name="Case", assigned_to=None, **fields):
        data = SubToolCreate(
            name=name,
            parent_tool_id=tool.id,
            assigned_to=assigned_to.id if assigned_to else None,
            **fields,
        )
        return db.get(SubTool, uuid.UUID(create_sub_tool(db, actors.admin, data)["id"]))

    return _make


@pytest.fixture
def make_accessory(db, actors):
    def _make(sub_tool, name="RAM 8GB", **fields):
        data = AccessoryCreate(name=name, sub_tool_id=sub_tool.id, **fields)
        return db.get(Accessory, uuid.UUID(create_accessory(db, actors.admin, data)["id"]))

    return _make


@pytest.fixture
def history_rows(db):
    """Ledger entries, optionally for one tool, oldest first"""
    def _rows(tool=None):
        query = db.query(ToolHistory)
        if tool is not None:
            query = query.filter(ToolHistory.tool_id == tool.id)
        return query.order_by(ToolHistory.created_at.asc()).all()

    return _rows
