"""Pydantic schemas shared by the memory and learning services."""

from buck.schemas.learning import (
    BusinessLearning,
    DocumentAnalysis,
    DocumentLearning,
    DocumentType,
    InputKind,
    LearningCategory,
    LearningDataExport,
    LearningStats,
    ReceiptExtraction,
    SpreadsheetAnalysis,
)
from buck.schemas.memory import (
    BusinessContext,
    BusinessContextUpdate,
    CommunicationStyle,
    ConversationTurn,
    FinancialPattern,
    MemoryStats,
    PatternCategory,
    ReportFrequency,
    Role,
    UserDataExport,
    UserPreferences,
    UserPreferencesUpdate,
)
from buck.schemas.records import (
    CustomerRecord,
    InvoiceRecord,
    InvoiceStatus,
    TransactionRecord,
    TransactionType,
    VendorRecord,
)

__all__ = [
    "BusinessContext",
    "BusinessContextUpdate",
    "BusinessLearning",
    "CommunicationStyle",
    "ConversationTurn",
    "CustomerRecord",
    "DocumentAnalysis",
    "DocumentLearning",
    "DocumentType",
    "FinancialPattern",
    "InputKind",
    "InvoiceRecord",
    "InvoiceStatus",
    "LearningCategory",
    "LearningDataExport",
    "LearningStats",
    "MemoryStats",
    "PatternCategory",
    "ReceiptExtraction",
    "ReportFrequency",
    "Role",
    "SpreadsheetAnalysis",
    "TransactionRecord",
    "TransactionType",
    "UserDataExport",
    "UserPreferences",
    "UserPreferencesUpdate",
    "VendorRecord",
]
