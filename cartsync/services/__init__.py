# Services Module
from .catalog import CatalogClient, CatalogProduct

__all__ = ["CatalogClient", "CatalogProduct"]
