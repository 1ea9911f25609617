"""Dashboard Pydantic schemas."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

ActivityTypeParam = Literal["all", "task", "application", "booking", "message"]
ExportFormatParam = Literal["json", "csv"]


class PreferencesUpdate(BaseModel):
    """Partial update of dashboard preferences; omitted fields are left unchanged."""

    refreshInterval: int | None = Field(default=None, ge=5000, le=3_600_000)  # noqa: N815
    defaultTimeRange: Literal["1d", "7d", "30d", "90d", "1y"] | None = None  # noqa: N815
    chartTypes: list[str] | None = None  # noqa: N815
    enableNotifications: bool | None = None  # noqa: N815
    theme: Literal["light", "dark"] | None = None


class BatchActivitiesRequest(BaseModel):
    activities: list[dict[str, Any]]


class BatchActivitiesResponse(BaseModel):
    processed: int
    failed: int
    errors: list[dict[str, Any]] = []


class RefreshRequest(BaseModel):
    forceRecalculation: bool = False  # noqa: N815
