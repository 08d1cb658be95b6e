"""External sales feed integration."""

from .client import ExternalSaleRecord, SalesFeedClient, SalesFeedConfig, SalesFeedError

__all__ = ["ExternalSaleRecord", "SalesFeedClient", "SalesFeedConfig", "SalesFeedError"]
