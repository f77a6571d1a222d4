"""Tenant-scoped repository base.

Every statement built here carries `tenant_id = scope.tenant_id`. Rows of
other tenants are indistinguishable from missing rows: get/update/delete
return None/False rather than raising a permission error.
"""

from typing import Any, Generic, Optional, TypeVar

from sqlalchemy import Select, delete, func, select
from sqlalchemy.orm import Session

from crux_api.data.scope import TenantScope
from crux_api.db.models import Base

ModelT = TypeVar("ModelT", bound=Base)

MAX_PAGE_SIZE = 200


class TenantScopedRepository(Generic[ModelT]):
    model: type[ModelT]

    # Columns callers may never set through create()/update()
    protected_fields = frozenset({"id", "tenant_id", "created_at", "updated_at"})

    def __init__(self, db: Session, scope: TenantScope):
        self.db = db
        self.scope = scope

    def _select(self) -> Select:
        return select(self.model).where(self.model.tenant_id == self.scope.tenant_id)

    def _clean(self, values: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in values.items() if k not in self.protected_fields}

    def get(self, row_id: str) -> Optional[ModelT]:
        return self.db.execute(
            self._select().where(self.model.id == row_id)
        ).scalar_one_or_none()

    def list(self, limit: int = 50, offset: int = 0, *criteria: Any) -> list[ModelT]:
        stmt = self._select()
        if criteria:
            stmt = stmt.where(*criteria)
        stmt = (
            stmt.order_by(self.model.created_at.desc(), self.model.id.desc())
            .limit(min(max(limit, 1), MAX_PAGE_SIZE))
            .offset(max(offset, 0))
        )
        return list(self.db.execute(stmt).scalars())

    def count(self, *criteria: Any) -> int:
        stmt = (
            select(func.count())
            .select_from(self.model)
            .where(self.model.tenant_id == self.scope.tenant_id)
        )
        if criteria:
            stmt = stmt.where(*criteria)
        return int(self.db.execute(stmt).scalar_one())

    def create(self, values: dict[str, Any]) -> ModelT:
        """Insert a row stamped with the scope's tenant (payload tenant_id ignored)."""
        row = self.model(**self._clean(values))
        row.tenant_id = self.scope.tenant_id
        if hasattr(row, "user_id") and row.user_id is None and self.scope.actor_id:
            row.user_id = self.scope.actor_id
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def update(self, row_id: str, values: dict[str, Any]) -> Optional[ModelT]:
        row = self.get(row_id)
        if row is None:
            return None
        for key, value in self._clean(values).items():
            setattr(row, key, value)
        self.db.commit()
        self.db.refresh(row)
        return row

    def delete(self, row_id: str) -> bool:
        result = self.db.execute(
            delete(self.model).where(
                self.model.id == row_id,
                self.model.tenant_id == self.scope.tenant_id,
            )
        )
        self.db.commit()
        return result.rowcount == 1
