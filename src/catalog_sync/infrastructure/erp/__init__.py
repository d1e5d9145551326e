"""ERP API integration."""

from catalog_sync.infrastructure.erp.client import ErpClient

__all__ = ["ErpClient"]
