from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class FilterModel(BaseModel):
    value: str = ""
    type: Literal["contains", "equals"] = "contains"


class ViewRequest(BaseModel):
    filters: Dict[str, FilterModel] = Field(default_factory=dict)
    page: int = Field(default=1, ge=1)
    rows_per_page: int = 20


class TimelineRequest(BaseModel):
    filters: Dict[str, FilterModel] = Field(default_factory=dict)
    identifier_column: Optional[str] = None
    identifiers: List[str] = Field(default_factory=list)
    date_column: Optional[str] = None
    detail_columns: Optional[List[str]] = None
    sort_order: Literal["asc", "desc"] = "asc"


class FileRecordModel(BaseModel):
    id: Optional[str] = None
    name: str
    ticket_name: str
    uploaded_at: str
    storage_path: str
    download_url: str = ""
    size: int = 0
    status: str = "uploaded"
    content_type: str = "text/csv"


class FileListResponse(BaseModel):
    files: List[FileRecordModel]
