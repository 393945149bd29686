import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# --- Method / permission constants ---
ALL = "*"
GET = "GET"
POST = "POST"
PUT = "PUT"
DELETE = "DELETE"

# 8+ characters with at least one lower case, upper case, digit and printable ASCII special character.
STRONG_KEY_PATTERN = re.compile(
    r"^(?=.*[a-z])(?=.*[A-Z])(?=.*[0-9])(?=.*[\x20-\x2F\x3A-\x40\x5B-\x60\x7B-\x7E])(?=.{8,})"
)


@dataclass(frozen=True)
class UnsafeKey:
    """A key that is exempt from the strength check."""
    key: str


def unsafe(key):
    return UnsafeKey(key)


@dataclass
class User:
    name: str
    key: object  # str or UnsafeKey
    permissions: object = None

    @property
    def is_unsafe(self):
        return isinstance(self.key, UnsafeKey)

    def matches(self, key):
        if self.is_unsafe:
            return self.key.key == key
        return self.key == key

    @classmethod
    def from_dict(cls, data):
        key = data.get("key", "")
        if isinstance(key, dict):
            if "__unsafe" not in key:
                raise ValueError(f"User '{data.get('name')}' has an object key without '__unsafe'.")
            key = UnsafeKey(key["__unsafe"])
        return cls(name=data.get("name", ""), key=key, permissions=data.get("permissions"))


class UserRegistry:
    """Users known to one endpoint and the access rules over them."""

    def __init__(self, users=None):
        self.users = []
        for user in users or []:
            if isinstance(user, User):
                self.users.append(user)
            else:
                self.users.append(User.from_dict(user))

    def add_user(self, name, key, permissions):
        user = User(name, key, permissions)
        self.users.append(user)
        return user

    def get_user_with_key(self, key):
        for user in self.users:
            if user.matches(key):
                return user
        return None

    def is_strong_key(self, key):
        user = self.get_user_with_key(key)
        if user is None:
            return False
        if user.is_unsafe:
            return True
        return bool(STRONG_KEY_PATTERN.match(user.key or ""))

    def has_access(self, key, sheet, method):
        user = self.get_user_with_key(key)
        if user is None:
            logger.info(f"ACL: no user for supplied key (sheet '{sheet}', method {method}).")
            return False
        permission = resolve_permissions(user, sheet)
        allowed = permission_allows(permission, sheet, method)
        if not allowed:
            logger.info(f"ACL: user '{user.name}' denied {method} on sheet '{sheet}'.")
        return allowed


def resolve_permissions(user, sheet):
    """Permission value that applies to ``sheet``.

    Wildcard, then list, then callable, then single method string, then a
    per-sheet mapping (case-insensitive name, else its ``ALL`` entry).
    """
    permissions = user.permissions
    if permissions == ALL:
        return ALL
    if isinstance(permissions, (list, tuple)):
        return list(permissions)
    if callable(permissions):
        return permissions
    if isinstance(permissions, str):
        return permissions
    if isinstance(permissions, dict):
        sheet_lower = (sheet or "").lower()
        for name, value in permissions.items():
            if name.lower() == sheet_lower:
                return value
        return permissions.get("ALL")
    return None


def permission_allows(permission, sheet, method):
    if not permission:
        return False
    if permission == ALL:
        return True
    if isinstance(permission, (list, tuple)):
        return ALL in permission or method in permission
    if callable(permission):
        return bool(permission(sheet, method))
    return permission == method
