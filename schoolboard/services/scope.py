"""Role scoping for list and detail queries.

Every role-sensitive query goes through ``RoleScopePlanner.plan``. Rules live
in one table keyed by entity then role; controllers never branch on role
themselves. A rule that cannot establish a restriction raises
``ScopeDeniedError``, and the planner answers with the empty sentinel instead
of ever running an unrestricted query.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Sequence, Tuple

from schoolboard.core.backend import DataBackend
from schoolboard.core.constants import EntityEnum, RoleEnum
from schoolboard.core.exceptions import ScopeDeniedError
from schoolboard.core.filters import Filter, Predicate, any_of, eq, in_, is_null
from schoolboard.core.query_config import DOMAIN_LABELS, EMPTY_MESSAGES, NOT_FOUND_MESSAGE
from schoolboard.services.session import RoleScope

logger = logging.getLogger(__name__)

UNKNOWN_ROLE_MESSAGE = "No tienes permisos para ver {label}."


@dataclass(frozen=True)
class EffectiveFilters:
    filters: Tuple[Predicate, ...] = ()
    empty_reason: Optional[str] = None

    @classmethod
    def empty(cls, reason: str) -> "EffectiveFilters":
        return cls(filters=(), empty_reason=reason)

    @property
    def is_empty(self) -> bool:
        return self.empty_reason is not None


def empty_message(entity: str, role: str) -> str:
    message = EMPTY_MESSAGES.get(entity, {}).get(role)
    if message:
        return message
    return NOT_FOUND_MESSAGE.format(label=DOMAIN_LABELS.get(entity, entity))


class ScopeContext:
    """Lookups needed to scope one session's queries, each run at most once."""

    def __init__(self, backend: DataBackend, scope: RoleScope):
        self.backend = backend
        self.scope = scope
        self._memo: Dict[Tuple, Tuple[Any, ...]] = {}

    @property
    def role(self) -> str:
        return self.scope.role

    @property
    def user_id(self) -> str:
        return self.scope.subject_id

    def belongs_to(self, scope: RoleScope) -> bool:
        return self.scope == scope

    async def values(self, table: str, column: str, *filters: Filter) -> Tuple[Any, ...]:
        """Distinct non-null values of ``column`` over the matching rows."""
        memo_key = (table, column, filters)
        if memo_key in self._memo:
            return self._memo[memo_key]

        response = await self.backend.select(table, columns=column, filters=filters)
        seen = []
        for row in response.rows:
            value = row.get(column)
            if value is not None and value not in seen:
                seen.append(value)
        result = tuple(seen)
        self._memo[memo_key] = result
        logger.debug(f"Scope lookup {table}.{column} for {self.role} {self.user_id}: {len(result)} values")
        return result

    # -- teacher ----------------------------------------------------------

    async def own_lessons(self) -> Tuple[Any, ...]:
        return await self.values("Lesson", "id", eq("teacherId", self.user_id))

    async def own_lesson_classes(self) -> Tuple[Any, ...]:
        return await self.values("Lesson", "classId", eq("teacherId", self.user_id))

    # -- student ----------------------------------------------------------

    async def own_class(self) -> Optional[Any]:
        classes = await self.values("Student", "classId", eq("id", self.user_id))
        return classes[0] if classes else None

    # -- parent -----------------------------------------------------------

    async def children(self) -> Tuple[Any, ...]:
        return await self.values("Student", "id", eq("parentId", self.user_id))

    async def children_classes(self) -> Tuple[Any, ...]:
        return await self.values("Student", "classId", eq("parentId", self.user_id))

    # -- shared -----------------------------------------------------------

    async def lessons_of_classes(self, class_ids: Sequence[Any]) -> Tuple[Any, ...]:
        return await self.values("Lesson", "id", in_("classId", class_ids))

    async def lesson_column_of_classes(self, column: str, class_ids: Sequence[Any]) -> Tuple[Any, ...]:
        return await self.values("Lesson", column, in_("classId", class_ids))


def require(values: Iterable[Any], reason: str) -> Tuple[Any, ...]:
    values = tuple(values)
    if not values:
        raise ScopeDeniedError(reason)
    return values


Rule = Callable[[ScopeContext], Awaitable[Tuple[Predicate, ...]]]


# -- class-set helpers shared by several rules -----------------------------

async def _teacher_classes(ctx: ScopeContext) -> Tuple[Any, ...]:
    return require(await ctx.own_lesson_classes(), "teacher has no lessons")


async def _student_class(ctx: ScopeContext) -> Any:
    class_id = await ctx.own_class()
    if class_id is None:
        raise ScopeDeniedError("student has no class")
    return class_id


async def _children_classes(ctx: ScopeContext) -> Tuple[Any, ...]:
    require(await ctx.children(), "parent has no students")
    return require(await ctx.children_classes(), "parent's students have no class")


# -- student ---------------------------------------------------------------

async def _students_for_teacher(ctx):
    return (in_("classId", await _teacher_classes(ctx)),)


async def _students_for_student(ctx):
    return (eq("id", ctx.user_id),)


async def _students_for_parent(ctx):
    require(await ctx.children(), "parent has no students")
    return (eq("parentId", ctx.user_id),)


# -- teacher ---------------------------------------------------------------

async def _teachers_for_teacher(ctx):
    return (eq("id", ctx.user_id),)


async def _teachers_for_student(ctx):
    class_id = await _student_class(ctx)
    teachers = await ctx.values("Lesson", "teacherId", eq("classId", class_id))
    return (in_("id", require(teachers, "class has no teachers")),)


async def _teachers_for_parent(ctx):
    classes = await _children_classes(ctx)
    teachers = await ctx.lesson_column_of_classes("teacherId", classes)
    return (in_("id", require(teachers, "classes have no teachers")),)


# -- class -----------------------------------------------------------------

async def _classes_for_teacher(ctx):
    return (eq("supervisorId", ctx.user_id),)


async def _classes_for_student(ctx):
    return (eq("id", await _student_class(ctx)),)


async def _classes_for_parent(ctx):
    return (in_("id", await _children_classes(ctx)),)


# -- subject ---------------------------------------------------------------

async def _subjects_for_teacher(ctx):
    subjects = await ctx.values("Lesson", "subjectId", eq("teacherId", ctx.user_id))
    return (in_("id", require(subjects, "teacher has no lessons")),)


async def _subjects_for_student(ctx):
    class_id = await _student_class(ctx)
    subjects = await ctx.values("Lesson", "subjectId", eq("classId", class_id))
    return (in_("id", require(subjects, "class has no lessons")),)


async def _subjects_for_parent(ctx):
    subjects = await ctx.lesson_column_of_classes("subjectId", await _children_classes(ctx))
    return (in_("id", require(subjects, "classes have no lessons")),)


# -- lesson ----------------------------------------------------------------

async def _lessons_for_teacher(ctx):
    return (eq("teacherId", ctx.user_id),)


async def _lessons_for_student(ctx):
    return (eq("classId", await _student_class(ctx)),)


async def _lessons_for_parent(ctx):
    return (in_("classId", await _children_classes(ctx)),)


# -- assignment / exam -----------------------------------------------------

async def _coursework_for_teacher(ctx):
    return (in_("lessonId", require(await ctx.own_lessons(), "teacher has no lessons")),)


async def _coursework_for_student(ctx):
    lessons = await ctx.lessons_of_classes((await _student_class(ctx),))
    return (in_("lessonId", require(lessons, "class has no lessons")),)


async def _coursework_for_parent(ctx):
    lessons = await ctx.lessons_of_classes(await _children_classes(ctx))
    return (in_("lessonId", require(lessons, "classes have no lessons")),)


# -- result ----------------------------------------------------------------

async def _results_for_teacher(ctx):
    lessons = require(await ctx.own_lessons(), "teacher has no lessons")
    exams = await ctx.values("Exam", "id", in_("lessonId", lessons))
    assignments = await ctx.values("Assignment", "id", in_("lessonId", lessons))
    branches = []
    if exams:
        branches.append(in_("examId", exams))
    if assignments:
        branches.append(in_("assignmentId", assignments))
    require(branches, "teacher lessons have no exams or assignments")
    if len(branches) == 1:
        return (branches[0],)
    return (any_of(*branches),)


async def _personal_for_student(ctx):
    return (eq("studentId", ctx.user_id),)


async def _personal_for_parent(ctx):
    return (in_("studentId", require(await ctx.children(), "parent has no students")),)


# -- attendance ------------------------------------------------------------

async def _attendance_for_teacher(ctx):
    return (in_("lessonId", require(await ctx.own_lessons(), "teacher has no lessons")),)


# -- parent ----------------------------------------------------------------

async def _parents_for_teacher(ctx):
    classes = await _teacher_classes(ctx)
    parents = await ctx.values("Student", "parentId", in_("classId", classes))
    return (in_("id", require(parents, "students have no parents")),)


async def _parents_for_student(ctx):
    parents = await ctx.values("Student", "parentId", eq("id", ctx.user_id))
    return (eq("id", require(parents, "student has no parent")[0]),)


async def _parents_for_parent(ctx):
    require(await ctx.children(), "parent has no students")
    return (eq("id", ctx.user_id),)


# -- event / announcement --------------------------------------------------

def _global_or_classes(class_ids: Sequence[Any]) -> Predicate:
    if not class_ids:
        return is_null("classId")
    return any_of(is_null("classId"), in_("classId", class_ids))


async def _notices_for_teacher(ctx):
    return (_global_or_classes(await ctx.own_lesson_classes()),)


async def _notices_for_student(ctx):
    class_id = await ctx.own_class()
    return (_global_or_classes(() if class_id is None else (class_id,)),)


async def _notices_for_parent(ctx):
    require(await ctx.children(), "parent has no students")
    return (_global_or_classes(await ctx.children_classes()),)


_NOTICE_RULES = {
    RoleEnum.TEACHER: _notices_for_teacher,
    RoleEnum.STUDENT: _notices_for_student,
    RoleEnum.PARENT: _notices_for_parent,
}

_COURSEWORK_RULES = {
    RoleEnum.TEACHER: _coursework_for_teacher,
    RoleEnum.STUDENT: _coursework_for_student,
    RoleEnum.PARENT: _coursework_for_parent,
}

SCOPE_RULES = {
    EntityEnum.STUDENT: {
        RoleEnum.TEACHER: _students_for_teacher,
        RoleEnum.STUDENT: _students_for_student,
        RoleEnum.PARENT: _students_for_parent,
    },
    EntityEnum.TEACHER: {
        RoleEnum.TEACHER: _teachers_for_teacher,
        RoleEnum.STUDENT: _teachers_for_student,
        RoleEnum.PARENT: _teachers_for_parent,
    },
    EntityEnum.CLASS: {
        RoleEnum.TEACHER: _classes_for_teacher,
        RoleEnum.STUDENT: _classes_for_student,
        RoleEnum.PARENT: _classes_for_parent,
    },
    EntityEnum.SUBJECT: {
        RoleEnum.TEACHER: _subjects_for_teacher,
        RoleEnum.STUDENT: _subjects_for_student,
        RoleEnum.PARENT: _subjects_for_parent,
    },
    EntityEnum.LESSON: {
        RoleEnum.TEACHER: _lessons_for_teacher,
        RoleEnum.STUDENT: _lessons_for_student,
        RoleEnum.PARENT: _lessons_for_parent,
    },
    EntityEnum.ASSIGNMENT: _COURSEWORK_RULES,
    EntityEnum.EXAM: _COURSEWORK_RULES,
    EntityEnum.RESULT: {
        RoleEnum.TEACHER: _results_for_teacher,
        RoleEnum.STUDENT: _personal_for_student,
        RoleEnum.PARENT: _personal_for_parent,
    },
    EntityEnum.ATTENDANCE: {
        RoleEnum.TEACHER: _attendance_for_teacher,
        RoleEnum.STUDENT: _personal_for_student,
        RoleEnum.PARENT: _personal_for_parent,
    },
    EntityEnum.PARENT: {
        RoleEnum.TEACHER: _parents_for_teacher,
        RoleEnum.STUDENT: _parents_for_student,
        RoleEnum.PARENT: _parents_for_parent,
    },
    EntityEnum.EVENT: _NOTICE_RULES,
    EntityEnum.ANNOUNCEMENT: _NOTICE_RULES,
}


def _normalize(rules: Dict[Any, Dict[Any, Rule]]) -> Dict[str, Dict[str, Rule]]:
    # enum members hash by name, lookups arrive as plain strings
    return {
        getattr(entity, "value", entity): {getattr(role, "value", role): rule for role, rule in by_role.items()}
        for entity, by_role in rules.items()
    }


class RoleScopePlanner:
    def __init__(self, rules: Optional[Dict[Any, Dict[Any, Rule]]] = None):
        self.rules = _normalize(rules if rules is not None else SCOPE_RULES)

    async def plan(self, entity: str, ctx: ScopeContext, base_filters: Sequence[Predicate] = ()) -> EffectiveFilters:
        role = ctx.role
        if role == RoleEnum.ADMIN:
            return EffectiveFilters(filters=tuple(base_filters))

        rule = self.rules.get(entity, {}).get(role)
        if rule is None:
            logger.warning(f"No scope rule for role {role!r} on {entity}; denying")
            label = DOMAIN_LABELS.get(entity, entity)
            return EffectiveFilters.empty(UNKNOWN_ROLE_MESSAGE.format(label=label))

        try:
            role_filters = await rule(ctx)
        except ScopeDeniedError as e:
            logger.info(f"Scope for {role} {ctx.user_id} on {entity} is empty: {e.reason}")
            return EffectiveFilters.empty(empty_message(entity, role))

        return EffectiveFilters(filters=tuple(role_filters) + tuple(base_filters))


scope_planner = RoleScopePlanner()
