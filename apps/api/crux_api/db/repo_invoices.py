"""Invoice repository (tenant-scoped)."""

from typing import Optional

from crux_api.db.models import Invoice
from crux_api.db.repo_base import TenantScopedRepository


class InvoiceRepository(TenantScopedRepository[Invoice]):
    model = Invoice

    def search(self, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> list[Invoice]:
        criteria = [Invoice.status == status] if status else []
        return self.list(limit, offset, *criteria)
