import pytest

from toolhub.errors import NotFoundError, PermissionDeniedError
from toolhub.services.capabilities import Actor
from toolhub.services.employees import list_employees
from toolhub.services.positions import AdminPositionCache, update_position_permissions


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return AdminPositionCache(ttl_seconds=300, clock=clock)


def test_cache_serves_stale_ids_until_ttl_expires(db, seed, cache, clock):
    assert cache.get(db) == frozenset({seed.admin_pos.id})

    seed.manager_pos.permissions = list(seed.manager_pos.permissions) + ["manage_system"]
    db.commit()
    clock.now += 299
    assert cache.get(db) == frozenset({seed.admin_pos.id})

    clock.now += 2
    assert cache.get(db) == frozenset({seed.admin_pos.id, seed.manager_pos.id})


def test_permission_update_invalidates_cache(db, seed, actors, cache):
    assert seed.manager_pos.id not in cache.get(db)

    position = update_position_permissions(
        db, actors.admin, seed.manager_pos.id, list(seed.manager_pos.permissions) + ["Manage_System"], cache
    )

    assert "manage_system" in position.permissions
    assert position.permissions == sorted(position.permissions)
    assert cache.get(db) == frozenset({seed.admin_pos.id, seed.manager_pos.id})


def test_permission_update_requires_manage_system(db, seed, actors, cache):
    with pytest.raises(PermissionDeniedError):
        update_position_permissions(db, actors.manager, seed.manager_pos.id, ["manage_system"], cache)
    with pytest.raises(NotFoundError):
        update_position_permissions(db, actors.admin, seed.unit.id, ["view_all_tools"], cache)


def _names(result):
    return [e["name"] for e in result["employees"]]


def test_list_employees_by_capability(db, seed, actors, cache):
    everyone = list_employees(db, actors.admin, cache)
    assert everyone["pagination"]["total"] == 6
    assert _names(everyone)[0] == "Root"

    viewer = Actor(
        id=seed.alice.id,
        name="Alice",
        department_id=seed.it.id,
        capabilities=frozenset({"view_employees"}),
    )
    assert "Root" not in _names(list_employees(db, viewer, cache))
    assert list_employees(db, viewer, cache)["pagination"]["total"] == 5

    department = list_employees(db, actors.manager, cache)
    assert _names(department) == ["Martin", "Alice", "Bob"]

    with pytest.raises(PermissionDeniedError):
        list_employees(db, actors.alice, cache)


def test_list_employees_filters(db, seed, actors, cache):
    sales = list_employees(db, actors.admin, cache, department_id=seed.sales.id)
    assert _names(sales) == ["Carol", "Dave"]
    assert _names(list_employees(db, actors.admin, cache, keyword="car")) == ["Carol"]
