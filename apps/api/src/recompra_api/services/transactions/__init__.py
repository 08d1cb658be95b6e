"""Units of work that register sales: the point of sale and the sales feed import."""

from .clients import ClientDirectory, normalize_document, normalize_phone
from .importer import ImportSummary, SalesImportService, import_organization_sales
from .point_of_sale import (
    NewClientData,
    PointOfSaleService,
    RedemptionResult,
    TransactionRequest,
    TransactionResult,
    TransactionStage,
    resolve_operator,
)

__all__ = [
    "ClientDirectory",
    "ImportSummary",
    "NewClientData",
    "PointOfSaleService",
    "RedemptionResult",
    "SalesImportService",
    "TransactionRequest",
    "TransactionResult",
    "TransactionStage",
    "import_organization_sales",
    "normalize_document",
    "normalize_phone",
    "resolve_operator",
]
