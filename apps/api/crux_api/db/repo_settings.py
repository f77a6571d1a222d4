"""Business settings repository: one row per tenant."""

from typing import Any, Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError

from crux_api.db.models import BusinessSettings
from crux_api.db.repo_base import TenantScopedRepository

DEFAULT_SETTINGS: dict[str, Any] = {
    "business_name": None,
    "business_email": None,
    "business_phone": None,
    "business_address": None,
    "google_business_url": None,
    "review_form_url": None,
    "settings": {},
}


class BusinessSettingsRepository(TenantScopedRepository[BusinessSettings]):
    model = BusinessSettings

    def current(self) -> Optional[BusinessSettings]:
        return self.db.execute(self._select()).scalar_one_or_none()

    def upsert(self, values: dict[str, Any]) -> BusinessSettings:
        row = self.current()
        if row is None:
            try:
                return self.create(values)
            except IntegrityError:
                # Concurrent first save for this tenant
                self.db.rollback()
                row = self.current()
                if row is None:
                    raise
        for key, value in self._clean(values).items():
            setattr(row, key, value)
        if self.scope.actor_id:
            row.user_id = self.scope.actor_id
        self.db.commit()
        self.db.refresh(row)
        return row

    def clear(self) -> bool:
        result = self.db.execute(
            delete(BusinessSettings).where(BusinessSettings.tenant_id == self.scope.tenant_id)
        )
        self.db.commit()
        return result.rowcount > 0
