"""Analytics request parameter types."""

from typing import Literal

TimeRangeParam = Literal["1d", "7d", "30d", "90d", "1y"]
ComparisonMetricParam = Literal["all", "successRate", "rating", "earnings", "activity"]

USER_ID_MAX_LENGTH = 36
