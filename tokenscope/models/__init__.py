"""
models/__init__.py
------------------
Re-export all models so schema creation can import Base and discover
all tables via a single import:

    from tokenscope.models import Base
"""

from tokenscope.db.base import Base
from tokenscope.models.activity import Activity, ActivityKind, ActivityProgress
from tokenscope.models.batch import Batch, BatchItem, TokenDeletion
from tokenscope.models.course import Course, Enrollment
from tokenscope.models.hierarchy import Category
from tokenscope.models.principal import Principal, Service
from tokenscope.models.tenant import Tenant, TenantCourse, TenantUser
from tokenscope.models.token import Token

__all__ = [
    "Base",
    "Activity",
    "ActivityKind",
    "ActivityProgress",
    "Batch",
    "BatchItem",
    "Category",
    "Course",
    "Enrollment",
    "Principal",
    "Service",
    "Tenant",
    "TenantCourse",
    "TenantUser",
    "Token",
    "TokenDeletion",
]
