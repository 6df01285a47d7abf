"""Per-entity list page declarations: table, projection, search, ordering, URL filters."""
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Type

from schoolboard.core.constants import EntityEnum


@dataclass(frozen=True)
class FilterField:
    """A URL filter. ``through`` resolves it via another table:
    (table, match column, selected column) restricts ``column`` to the selected values."""
    name: str
    type: Type = int
    column: Optional[str] = None
    through: Optional[Tuple[str, str, str]] = None

    @property
    def target(self) -> str:
        return self.column or self.name


@dataclass(frozen=True)
class EntitySpec:
    name: str
    table: str
    columns: str = "*"
    search_columns: Tuple[str, ...] = ()
    order: Tuple[str, bool] = ("id", False)
    filter_fields: Tuple[FilterField, ...] = ()
    id_type: Type = int
    detail_columns: Optional[str] = None

    @property
    def filters_by_name(self) -> Dict[str, FilterField]:
        return {f.name: f for f in self.filter_fields}


_PEOPLE_SEARCH = ("name", "surname")

ENTITIES: Dict[str, EntitySpec] = {
    spec.name: spec for spec in (
        EntitySpec(
            name=EntityEnum.STUDENT.value,
            table="Student",
            columns="id, username, name, surname, email, phone, address, img, classId, parentId, class:Class(id, name)",
            search_columns=_PEOPLE_SEARCH,
            filter_fields=(
                FilterField("classId"),
                FilterField("parentId", str),
                FilterField("teacherId", str, column="classId", through=("Lesson", "teacherId", "classId")),
            ),
            id_type=str,
            detail_columns="*, class:Class(*), parent:Parent(*)",
        ),
        EntitySpec(
            name=EntityEnum.TEACHER.value,
            table="Teacher",
            columns="id, username, name, surname, email, phone, address, img",
            search_columns=_PEOPLE_SEARCH,
            order=("surname", True),
            filter_fields=(
                FilterField("classId", column="id", through=("Lesson", "classId", "teacherId")),
                FilterField("subjectId", column="id", through=("Lesson", "subjectId", "teacherId")),
            ),
            id_type=str,
            detail_columns="*, classes:Class(*), subjects:Subject(*)",
        ),
        EntitySpec(
            name=EntityEnum.CLASS.value,
            table="Class",
            columns="id, name, capacity, supervisorId, gradeId",
            search_columns=("name",),
            order=("name", True),
            filter_fields=(FilterField("supervisorId", str),),
        ),
        EntitySpec(
            name=EntityEnum.SUBJECT.value,
            table="Subject",
            search_columns=("name",),
            filter_fields=(
                FilterField("teacherId", str, column="id", through=("Lesson", "teacherId", "subjectId")),
            ),
        ),
        EntitySpec(
            name=EntityEnum.LESSON.value,
            table="Lesson",
            columns="*, subject:Subject(name), class:Class(name), teacher:Teacher(name, surname)",
            search_columns=("name",),
            filter_fields=(FilterField("classId"), FilterField("teacherId", str), FilterField("subjectId")),
        ),
        EntitySpec(
            name=EntityEnum.ASSIGNMENT.value,
            table="Assignment",
            columns="*, lesson:Lesson(subjectId, classId, teacherId)",
            search_columns=("title",),
            filter_fields=(
                FilterField("lessonId"),
                FilterField("classId", column="lessonId", through=("Lesson", "classId", "id")),
                FilterField("teacherId", str, column="lessonId", through=("Lesson", "teacherId", "id")),
            ),
        ),
        EntitySpec(
            name=EntityEnum.EXAM.value,
            table="Exam",
            columns="*, lesson:Lesson(subjectId, classId, teacherId)",
            search_columns=("title",),
            filter_fields=(
                FilterField("lessonId"),
                FilterField("classId", column="lessonId", through=("Lesson", "classId", "id")),
                FilterField("teacherId", str, column="lessonId", through=("Lesson", "teacherId", "id")),
            ),
        ),
        EntitySpec(
            name=EntityEnum.RESULT.value,
            table="Result",
            filter_fields=(FilterField("studentId", str), FilterField("examId"), FilterField("assignmentId")),
        ),
        EntitySpec(
            name=EntityEnum.ATTENDANCE.value,
            table="Attendance",
            order=("date", False),
            filter_fields=(FilterField("studentId", str), FilterField("lessonId")),
        ),
        EntitySpec(
            name=EntityEnum.PARENT.value,
            table="Parent",
            columns="*, students:Student(id, name, surname)",
            search_columns=_PEOPLE_SEARCH,
            id_type=str,
        ),
        EntitySpec(
            name=EntityEnum.EVENT.value,
            table="Event",
            columns="*, class:Class(id, name)",
            search_columns=("title",),
            order=("startTime", False),
            filter_fields=(FilterField("classId"),),
        ),
        EntitySpec(
            name=EntityEnum.ANNOUNCEMENT.value,
            table="Announcement",
            columns="*, class:Class(id, name)",
            search_columns=("title",),
            filter_fields=(FilterField("classId"),),
        ),
    )
}


def get_entity(name: str) -> Optional[EntitySpec]:
    return ENTITIES.get(name)
