from enum import Enum


class RoleEnum(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"
    PARENT = "parent"

class EntityEnum(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    CLASS = "class"
    SUBJECT = "subject"
    LESSON = "lesson"
    ASSIGNMENT = "assignment"
    EXAM = "exam"
    RESULT = "result"
    ATTENDANCE = "attendance"
    PARENT = "parent"
    EVENT = "event"
    ANNOUNCEMENT = "announcement"

class QueryStatusEnum(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"

class ViewStateEnum(str, Enum):
    LOADING = "loading"
    ERROR = "error"
    EMPTY = "empty"
    TABLE = "table"

class ChangeTypeEnum(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
