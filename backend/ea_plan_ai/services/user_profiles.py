"""Resolve a user's rate-limit tier from configured user id lists."""

from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class UserProfile:
    role: str = "user"
    level: int | None = None


class StaticUserProfileLookup:
    """Map user ids to roles from static admin/subadmin lists.

    Everyone not listed is a plain ``user`` with no level bonus. Admin wins
    when an id appears in both lists.
    """

    def __init__(
        self,
        admin_ids: Iterable[str] = (),
        subadmin_ids: Iterable[str] = (),
        levels: dict[str, int] | None = None,
    ) -> None:
        self._admin_ids = {str(user_id).strip() for user_id in admin_ids if str(user_id).strip()}
        self._subadmin_ids = {
            str(user_id).strip() for user_id in subadmin_ids if str(user_id).strip()
        }
        self._levels = dict(levels or {})

    def __call__(self, user_id: str) -> UserProfile:
        if user_id in self._admin_ids:
            role = "admin"
        elif user_id in self._subadmin_ids:
            role = "subadmin"
        else:
            role = "user"
        return UserProfile(role=role, level=self._levels.get(user_id))
