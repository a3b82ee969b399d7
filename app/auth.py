from enum import Enum


class Role(str, Enum):
    MANAGER = "manager"
    EMPLOYEE = "employee"


# Audience and role share values: the viewer class picks the refresh scope.
Audience = Role


def audience_for_role(role: Role) -> Role:
    if role == Role.MANAGER:
        return Role.MANAGER
    return Role.EMPLOYEE
