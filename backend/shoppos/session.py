from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header

from .config import DEFAULT_BRANCH
from .errors import PermissionDenied
from .schemas import NavItem

ROLES = ("admin", "user")

NAV_ITEMS = [
    NavItem(name="Dashboard", path="/dashboard"),
    NavItem(name="Customers", path="/dashboard/customers"),
    NavItem(name="Items", path="/dashboard/items"),
    NavItem(name="Orders", path="/dashboard/orders"),
]
ADMIN_NAV_ITEMS = [NavItem(name="Management", path="/dashboard/management")]


@dataclass(frozen=True)
class UserContext:
    """Who is acting and for which branch. Built per request, passed explicitly to the workflow."""
    username: str
    role: str
    branch: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def get_context(
    x_user: Optional[str] = Header(None),
    x_role: Optional[str] = Header(None),
    x_branch: Optional[str] = Header(None),
) -> UserContext:
    role = (x_role or "user").lower()
    if role not in ROLES:
        raise PermissionDenied(f"Unknown role {x_role!r}")
    return UserContext(username=x_user or "anonymous", role=role, branch=x_branch or DEFAULT_BRANCH)


def require_admin(ctx: UserContext = Depends(get_context)) -> UserContext:
    if not ctx.is_admin:
        raise PermissionDenied("Only admins can do that")
    return ctx


def navigation_for(ctx: UserContext) -> list[NavItem]:
    items = list(NAV_ITEMS)
    if ctx.is_admin:
        items += ADMIN_NAV_ITEMS
    return items
