from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, Request

from queuepoint.errors import PermissionDenied, Unauthenticated


class Role(str, Enum):
    ADMIN = "ADMIN"
    STAFF = "STAFF"


@dataclass(frozen=True)
class Principal:
    id: int
    email: str
    role: Role
    active: bool

    @property
    def home(self) -> str:
        return "/admin" if self.role == Role.ADMIN else "/queue"


def get_current_principal(request: Request) -> Principal:
    principal: Principal | None = getattr(request.state, "principal", None)
    if principal is None:
        raise Unauthenticated("Login required")
    if not principal.active:
        raise PermissionDenied(f"{principal.email} is disabled")
    return principal


def require_role(*allowed: Role):
    names = ", ".join(role.value.lower() for role in allowed)

    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise PermissionDenied(f"Requires {names} access")
        return principal

    return _dep


# Kitchen screens are open to admins as well as staff.
require_admin = require_role(Role.ADMIN)
require_kitchen = require_role(Role.STAFF, Role.ADMIN)
