"""FastAPI dependencies shared by the API routers."""

from .deps import (
    AdminUserDep,
    CurrentUserDep,
    SessionDep,
    StorageDep,
    TextClientDep,
    get_current_user,
    require_admin,
)

__all__ = [
    "AdminUserDep",
    "CurrentUserDep",
    "SessionDep",
    "StorageDep",
    "TextClientDep",
    "get_current_user",
    "require_admin",
]
