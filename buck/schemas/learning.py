"""Business learning schemas (derived insights, ingested documents, AI extraction)."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# ── Enums ────────────────────────────────────────────────────────────


class LearningCategory(StrEnum):
    REVENUE_PATTERNS = "revenue_patterns"
    EXPENSE_CATEGORIES = "expense_categories"
    CUSTOMER_BEHAVIOR = "customer_behavior"
    SEASONAL_TRENDS = "seasonal_trends"
    VENDOR_RELATIONSHIPS = "vendor_relationships"

    @property
    def heading(self) -> str:
        return self.value.replace("_", " ").upper()


class InputKind(StrEnum):
    IMAGE = "image"
    DOCUMENT = "document"
    SPREADSHEET = "spreadsheet"


class DocumentType(StrEnum):
    INVOICE = "invoice"
    RECEIPT = "receipt"
    STATEMENT = "statement"
    REPORT = "report"
    CONTRACT = "contract"
    DOCUMENT = "document"  # anything we could not classify


# ── Learnings ────────────────────────────────────────────────────────


class BusinessLearning(BaseModel):
    """One headline insight derived from a batch of the user's records."""

    user_id: str
    category: LearningCategory
    pattern: str
    confidence: float = Field(ge=0.0, le=1.0)
    data_points: int = Field(ge=0, default=0)
    last_updated: datetime
    insights: list[str] = Field(default_factory=list)


class DocumentLearning(BaseModel):
    user_id: str
    document_type: DocumentType
    kind: InputKind
    extracted_data: dict
    patterns: list[str] = Field(default_factory=list)
    timestamp: datetime


class LearningStats(BaseModel):
    total_patterns: int = 0
    high_confidence_patterns: int = 0
    documents_processed: int = 0
    last_learning_update: datetime | None = None


# ── AI extraction shapes ─────────────────────────────────────────────
# Everything is optional: the oracle may omit any field, and callers must cope.


class _Extraction(BaseModel):
    model_config = ConfigDict(extra="allow")


class LineItem(_Extraction):
    description: str | None = None
    amount: float | None = None
    quantity: float | None = None


class ReceiptExtraction(_Extraction):
    """Receipt / invoice photo."""

    document_type: str | None = None
    vendor: str | None = None
    date: str | None = None
    total_amount: float | None = None
    tax_amount: float | None = None
    currency: str | None = None
    category: str | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    confidence: float | None = None


class FinancialDataPoint(_Extraction):
    category: str | None = None
    value: str | None = None
    amount: float | None = None


class DocumentAnalysis(_Extraction):
    """PDF / Word business document."""

    document_type: str | None = None
    key_financial_data: list[FinancialDataPoint] = Field(default_factory=list)
    business_insights: list[str] = Field(default_factory=list)
    action_items: list[str] = Field(default_factory=list)


class DataStructure(_Extraction):
    columns: list[str] = Field(default_factory=list)
    row_count: int | None = None
    data_types: list[str] = Field(default_factory=list)


class FinancialSummary(_Extraction):
    total_revenue: float | None = None
    total_expenses: float | None = None
    net_income: float | None = None
    top_categories: list[str] = Field(default_factory=list)


class SpreadsheetAnalysis(_Extraction):
    """Excel / CSV export."""

    data_structure: DataStructure | None = None
    financial_summary: FinancialSummary | None = None
    patterns: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class LearningDataExport(BaseModel):
    user_id: str
    learnings: list[BusinessLearning] = Field(default_factory=list)
    documents: list[DocumentLearning] = Field(default_factory=list)
    exported_at: datetime
