from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict


ActorRole = Literal["admin", "teacher", "student"]


class Actor(BaseModel):
    """Authenticated identity handed to the core by the identity provider."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    role: ActorRole
    teacherId: Optional[str] = None
    isActive: bool = True

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(
            id=user.UserID,
            role=user.Role,
            teacherId=user.TeacherID,
            isActive=bool(user.IsActive),
        )
