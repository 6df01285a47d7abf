import pytest

from schoolboard.core.backend import MemoryBackend
from schoolboard.core.filters import AnyOf, eq
from schoolboard.services.entities import ENTITIES
from schoolboard.services.scope import RoleScopePlanner, ScopeContext, scope_planner
from schoolboard.services.session import RoleScope
from tests.helpers.backends import CountingBackend
from tests.helpers.seed import seed_tables

# (entity, role, user) -> visible ids, or None for the empty sentinel
CASES = [
    ("student", "admin", "a1", ["s1", "s2", "s3", "s4"]),
    ("student", "teacher", "t1", ["s1", "s2"]),
    ("student", "student", "s1", ["s1"]),
    ("student", "parent", "p1", ["s1", "s2"]),
    ("teacher", "teacher", "t1", ["t1"]),
    ("teacher", "student", "s1", ["t1"]),
    ("teacher", "parent", "p3", ["t3"]),
    ("class", "teacher", "t1", ["1"]),
    ("class", "student", "s4", ["2"]),
    ("class", "parent", "p1", ["1"]),
    ("subject", "teacher", "t1", ["1", "2"]),
    ("subject", "student", "s4", ["3"]),
    ("subject", "parent", "p1", ["1", "2"]),
    ("lesson", "teacher", "t1", ["1", "2"]),
    ("lesson", "student", "s1", ["1", "2"]),
    ("lesson", "parent", "p3", ["3"]),
    ("assignment", "teacher", "t1", ["1", "2"]),
    ("assignment", "student", "s4", ["3"]),
    ("assignment", "parent", "p1", ["1", "2"]),
    ("exam", "teacher", "t1", ["1"]),
    ("exam", "student", "s1", ["1"]),
    ("exam", "parent", "p3", ["2"]),
    ("result", "teacher", "t1", ["1", "2"]),
    ("result", "teacher", "t3", ["3"]),
    ("result", "student", "s1", ["1"]),
    ("result", "parent", "p1", ["1", "2"]),
    ("attendance", "teacher", "t1", ["1", "2"]),
    ("attendance", "student", "s2", ["2"]),
    ("attendance", "parent", "p3", ["3"]),
    ("parent", "teacher", "t1", ["p1"]),
    ("parent", "student", "s4", ["p3"]),
    ("parent", "parent", "p1", ["p1"]),
    ("event", "admin", "a1", ["1", "2", "3"]),
    ("event", "teacher", "t1", ["1", "2"]),
    ("event", "student", "s4", ["1", "3"]),
    ("event", "parent", "p1", ["1", "2"]),
    ("announcement", "teacher", "t3", ["1", "3"]),
    ("announcement", "student", "s1", ["1", "2"]),
    ("announcement", "parent", "p3", ["1", "3"]),
    # users without any link
    ("student", "teacher", "t2", None),
    ("assignment", "teacher", "t2", None),
    ("class", "teacher", "t2", []),
    ("event", "teacher", "t2", ["1"]),
    ("class", "student", "s3", None),
    ("lesson", "student", "s3", None),
    ("announcement", "student", "s3", ["1"]),
    ("result", "student", "s3", []),
    ("parent", "student", "s3", None),
]


async def visible_ids(backend, entity, role, user_id, planner=scope_planner):
    ctx = ScopeContext(backend, RoleScope(role=role, subject_id=user_id))
    effective = await planner.plan(entity, ctx)
    if effective.is_empty:
        return None
    response = await backend.select(ENTITIES[entity].table, filters=effective.filters)
    return sorted(str(row["id"]) for row in response.rows)


@pytest.mark.asyncio
@pytest.mark.parametrize("entity,role,user_id,expected", CASES, ids=[f"{e}-{r}-{u}" for e, r, u, _ in CASES])
async def test_scope_matrix(entity, role, user_id, expected):
    backend = MemoryBackend(seed_tables())
    assert await visible_ids(backend, entity, role, user_id) == expected


@pytest.mark.asyncio
@pytest.mark.parametrize("entity", list(ENTITIES))
async def test_parent_without_students_sees_nothing(entity):
    backend = MemoryBackend(seed_tables())
    assert await visible_ids(backend, entity, "parent", "p2") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("role", ["janitor", "", "ADMIN"])
async def test_unknown_roles_fail_closed(role):
    backend = MemoryBackend(seed_tables())
    ctx = ScopeContext(backend, RoleScope(role=role, subject_id="x1"))
    effective = await scope_planner.plan("student", ctx, (eq("classId", 1),))
    assert effective.is_empty
    assert effective.filters == ()


@pytest.mark.asyncio
async def test_entity_without_rule_fails_closed():
    planner = RoleScopePlanner(rules={"student": {}})
    ctx = ScopeContext(MemoryBackend(seed_tables()), RoleScope(role="teacher", subject_id="t1"))
    assert (await planner.plan("student", ctx)).is_empty


@pytest.mark.asyncio
async def test_empty_sentinel_carries_the_role_message():
    ctx = ScopeContext(MemoryBackend(seed_tables()), RoleScope(role="student", subject_id="s3"))
    effective = await scope_planner.plan("class", ctx)
    assert effective.empty_reason == "No tienes una clase asignada."


@pytest.mark.asyncio
async def test_role_restrictions_come_before_base_filters():
    ctx = ScopeContext(MemoryBackend(seed_tables()), RoleScope(role="teacher", subject_id="t1"))
    base = eq("title", "Ensayo")
    effective = await scope_planner.plan("assignment", ctx, (base,))
    assert effective.filters[-1] == base
    assert effective.filters[0].column == "lessonId"


@pytest.mark.asyncio
async def test_admin_gets_base_filters_unchanged():
    backend = CountingBackend(seed_tables())
    ctx = ScopeContext(backend, RoleScope(role="admin", subject_id="a1"))
    base = (eq("classId", 1),)
    effective = await scope_planner.plan("student", ctx, base)
    assert effective.filters == base
    assert backend.calls == []


@pytest.mark.asyncio
async def test_session_lookups_run_once():
    backend = CountingBackend(seed_tables())
    ctx = ScopeContext(backend, RoleScope(role="teacher", subject_id="t1"))

    for entity in ("assignment", "exam", "attendance", "assignment"):
        await scope_planner.plan(entity, ctx)

    assert backend.tables_called == ["Lesson"]


@pytest.mark.asyncio
async def test_teacher_results_combine_exams_and_assignments():
    ctx = ScopeContext(MemoryBackend(seed_tables()), RoleScope(role="teacher", subject_id="t1"))
    effective = await scope_planner.plan("result", ctx)
    assert isinstance(effective.filters[0], AnyOf)
    assert effective.filters[0].to_param() == ("or", "(examId.in.(1),assignmentId.in.(1,2))")
