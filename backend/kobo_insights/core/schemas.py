from pydantic import BaseModel, Field, model_validator
from typing import List, Optional, Any, Dict

Record = Dict[str, Any]


class ColumnProfile(BaseModel):
    name: str
    domain: str = "general"
    priority: str = "low"  # 'high', 'medium', 'low', 'system'
    value_type: str = "empty"  # 'numeric', 'categorical', 'date', 'boolean', 'geographic', 'image', 'text', 'empty'
    total_count: int = 0
    non_empty_count: int = 0
    completeness: float = 0.0
    relevance_score: float = 0.5
    unique_value_count: int = 0
    sample_values: List[Any] = []
    summary_statistics: Dict[str, Any] = {}
    detected_pattern: Optional[str] = None

    @property
    def is_system(self) -> bool:
        return self.priority == "system"


class ChartConfiguration(BaseModel):
    data_source: Optional[str] = None
    column: Optional[str] = None
    x_column: Optional[str] = None
    y_column: Optional[str] = None
    group_by: Optional[str] = None
    date_column: Optional[str] = None
    value_column: Optional[str] = None
    bins: Optional[int] = Field(default=None, ge=1, le=100)

    @property
    def primary_x(self) -> Optional[str]:
        return self.x_column or self.column or self.date_column

    @property
    def primary_y(self) -> Optional[str]:
        return self.y_column or self.value_column


class ChartSuggestion(BaseModel):
    name: str
    chart_type: str  # 'bar', 'line', 'pie', 'doughnut', 'scatter', 'area'
    configuration: ChartConfiguration
    relevance_score: float
    domain_tag: str = "general"  # 'agriculture', 'correlation', 'trend', 'insight', 'general'
    description: Optional[str] = None

    @property
    def signature(self):
        return (self.chart_type, self.configuration.primary_x, self.configuration.primary_y)


class DataQualityReport(BaseModel):
    score: int
    issues: List[str]
    total_columns: int
    meaningful_columns: int
    analyzed_records: int = 0


class AnalysisResult(BaseModel):
    dataset_id: str
    total_records: int
    column_profiles: Dict[str, ColumnProfile]
    suggestions: List[ChartSuggestion]
    data_quality: DataQualityReport
    domain_insights: Dict[str, Dict[str, Any]] = {}
    analysis_timestamp: str


class ChartData(BaseModel):
    labels: List[Any] = []
    datasets: List[Dict[str, Any]] = []
    raw_data: List[Dict[str, Any]] = []
    metadata: Dict[str, Any] = {}


class ChartConfigRecord(BaseModel):
    id: str
    dataset_id: str
    name: str
    chart_type: str
    configuration: ChartConfiguration
    is_auto_generated: bool = True
    is_enabled: bool = True
    display_order: int = 0
    created_at: str
    updated_at: str


class ChartConfigUpdate(BaseModel):
    name: Optional[str] = None
    chart_type: Optional[str] = None
    configuration: Optional[ChartConfiguration] = None
    is_enabled: Optional[bool] = None
    display_order: Optional[int] = None


class AnalysisLogEntry(BaseModel):
    dataset_id: str
    analysis_type: str = "smart_analysis"
    success: bool = True
    error_message: Optional[str] = None
    record_count: int = 0
    column_count: int = 0
    suggestion_count: int = 0
    created_at: str


class Dataset(BaseModel):
    dataset_id: str
    name: str = "Untitled Project"
    records: List[Record] = []
    available_columns: List[str] = []
    selected_columns: List[str] = []
    synced_at: Optional[str] = None
    # Auto-sync from KoboToolbox; interval in minutes
    token_id: Optional[str] = None
    auto_sync_enabled: bool = False
    auto_sync_interval: Optional[int] = None
    next_sync_time: Optional[str] = None
    last_sync_error: Optional[str] = None


class DatasetPayload(BaseModel):
    name: Optional[str] = None
    records: List[Record]
    columns: Optional[List[str]] = None


class AnalyzeRequest(BaseModel):
    records: Optional[List[Record]] = None
    columns: Optional[List[str]] = None


class ColumnSelection(BaseModel):
    selected_columns: List[str]


class RenderRequest(BaseModel):
    chart_type: str
    configuration: ChartConfiguration
    records: List[Record]


class KoboTokenRequest(BaseModel):
    """A raw API token, or the id of a stored one."""
    token: Optional[str] = Field(default=None, min_length=1)
    token_id: Optional[str] = None
    project_name: Optional[str] = None

    @model_validator(mode="after")
    def require_token(self):
        if not self.token and not self.token_id:
            raise ValueError("Either token or token_id is required")
        return self


class KoboToken(BaseModel):
    id: str
    name: str
    token: str
    token_preview: str
    created_at: str


class KoboTokenInfo(BaseModel):
    """A stored token as shown to clients: never the full value."""
    id: str
    name: str
    token_preview: str
    created_at: str


class TokenCreate(BaseModel):
    name: Optional[str] = None
    token: str = Field(min_length=1)


class TokenUpdate(BaseModel):
    name: str


class AutoSyncUpdate(BaseModel):
    enabled: bool
    interval_minutes: Optional[int] = Field(default=None, ge=1, le=10080)
    token_id: Optional[str] = None
