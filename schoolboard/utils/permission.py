from fastapi import HTTPException, status

from schoolboard.core.constants import EntityEnum, RoleEnum
from schoolboard.services.session import Session

TEACHER_MUTABLE = frozenset({
    EntityEnum.ASSIGNMENT.value,
    EntityEnum.EXAM.value,
    EntityEnum.RESULT.value,
    EntityEnum.ATTENDANCE.value,
    EntityEnum.LESSON.value,
    EntityEnum.EVENT.value,
    EntityEnum.ANNOUNCEMENT.value,
})


class PermissionHelper:
    @staticmethod
    def is_admin(session: Session) -> bool:
        return session.role == RoleEnum.ADMIN

    @staticmethod
    def is_teacher(session: Session) -> bool:
        return session.role == RoleEnum.TEACHER

    @staticmethod
    def can_mutate(role: str, entity: str) -> bool:
        if role == RoleEnum.ADMIN:
            return True
        if role == RoleEnum.TEACHER:
            return entity in TEACHER_MUTABLE
        return False

    @staticmethod
    def require_mutation(session: Session, entity: str):
        if not PermissionHelper.can_mutate(session.role, entity):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action."
            )


can_mutate = PermissionHelper.can_mutate
