"""
Common mixins for multi-tenant models
"""
from sqlalchemy import Column, DateTime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func


class TenantMixin:
    """Scopes a row to the company (tenant) that owns it"""

    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)


class TimestampMixin:
    """Creation and update tracking"""

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class SoftDeleteMixin:
    """
    Logical deletion through ``is_active`` plus the time it happened.

    Rows are never removed; ``deactivated_values`` / ``reactivated_values`` are
    the column updates used by bulk UPDATE statements so single-row and bulk
    paths stay identical.
    """

    deleted_at = Column(DateTime(timezone=True), nullable=True)

    @staticmethod
    def deactivated_values() -> dict:
        return {"is_active": False, "deleted_at": func.now()}

    @staticmethod
    def reactivated_values() -> dict:
        return {"is_active": True, "deleted_at": None}
