"""Directory Service - Approver lookups for eligible-approver computation"""
import threading
from typing import Dict, Iterable, List, Optional, Protocol

from ..domain.models import UserAttrs
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ApproverDirectory(Protocol):
    """Source of candidate approvers, keyed by role"""

    def find_users_by_roles(self, roles: Iterable[str]) -> List[UserAttrs]:
        ...


class StaticApproverDirectory:
    """
    In-memory approver directory

    Used when embedding the engine without an identity provider, and in tests.
    """

    def __init__(self, users: Optional[Iterable[UserAttrs]] = None):
        self._lock = threading.RLock()
        self._users: Dict[str, UserAttrs] = {}
        for user in users or []:
            self.add_user(user)

    def add_user(self, user: UserAttrs) -> None:
        with self._lock:
            self._users[user.user_id] = user

    def remove_user(self, user_id: str) -> None:
        with self._lock:
            self._users.pop(user_id, None)

    def get_user(self, user_id: str) -> Optional[UserAttrs]:
        with self._lock:
            return self._users.get(user_id)

    def find_users_by_roles(self, roles: Iterable[str]) -> List[UserAttrs]:
        """Users holding any of roles, in insertion order"""
        wanted = {r for r in roles if r}
        with self._lock:
            users = [u for u in self._users.values() if wanted.intersection(u.roles)]

        logger.debug(f"Directory lookup for roles {sorted(wanted)}: {len(users)} users")
        return users
