# tenant_guard/core/roles.py
from enum import Enum


class Role(str, Enum):
    SYSTEM_ADMIN = "system_admin"
    INSTITUTION_ADMIN = "institution_admin"
    DEPARTMENT_ADMIN = "department_admin"
    TEACHER = "teacher"
    STUDENT = "student"
