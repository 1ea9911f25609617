"""Rule-based insights from a user's metrics against platform benchmarks.

Rules are evaluated in a fixed order and every matching rule contributes
one insight; nothing is deduplicated or suppressed.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping, Sequence
from typing import Any

from timeslice.analytics.aggregation import calculate_trend

INSIGHT_TYPES = ("improvement", "achievement", "recommendation", "warning")
IMPACT_LEVELS = ("low", "medium", "high")


def _insight(
    type_: str,
    title: str,
    description: str,
    impact: str,
    action_required: bool,
    metadata: dict[str, Any],
) -> dict[str, Any]:
    return {
        "type": type_,
        "title": title,
        "description": description,
        "impact": impact,
        "actionRequired": action_required,
        "metadata": metadata,
    }


def generate_insights(
    metrics: Mapping[str, Any],
    timeline: Sequence[Mapping[str, Any]],
    benchmarks: Mapping[str, Any],
    time_range: str,
) -> list[dict[str, Any]]:
    insights = []

    success_rate = metrics.get("applicationSuccessRate", 0)
    avg_success = benchmarks.get("avgSuccessRate", 0)
    if success_rate < avg_success:
        insights.append(
            _insight(
                "improvement",
                "Improve Application Success Rate",
                f"Your success rate ({success_rate}%) is below platform average ({avg_success:.1f}%)",
                "high",
                True,
                {
                    "currentRate": success_rate,
                    "benchmarkRate": avg_success,
                    "suggestions": [
                        "Customize application messages for each task",
                        "Highlight relevant experience and skills",
                        "Apply to tasks that match your expertise closely",
                    ],
                },
            )
        )

    rating = metrics.get("rating", 0)
    avg_rating = benchmarks.get("avgRating", 0)
    if rating > avg_rating:
        insights.append(
            _insight(
                "achievement",
                "Excellent Rating Performance",
                f"Your rating ({rating:.1f}) is above platform average ({avg_rating:.1f})",
                "medium",
                False,
                {"currentRating": rating, "benchmarkRating": avg_rating},
            )
        )

    if metrics.get("applicationsSubmitted", 0) == 0 and time_range == "7d":
        insights.append(
            _insight(
                "recommendation",
                "Increase Activity",
                "You haven't submitted any applications this week. Consider browsing available tasks.",
                "medium",
                True,
                {
                    "suggestedActions": [
                        "Browse tasks matching your skills",
                        "Set up task alerts for relevant categories",
                        "Update your profile to attract task providers",
                    ],
                },
            )
        )

    trend = calculate_trend([point.get("earnings", 0) for point in timeline])
    if trend["direction"] == "decreasing":
        insights.append(
            _insight(
                "warning",
                "Declining Earnings Trend",
                "Your earnings have been declining over the selected period.",
                "high",
                True,
                {
                    "trend": trend["direction"],
                    "slope": trend["slope"],
                    "suggestions": [
                        "Focus on higher-value tasks",
                        "Improve skills in high-demand areas",
                        "Optimize application timing and quality",
                    ],
                },
            )
        )

    return insights


def summarize_insights(insights: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
    by_type = Counter(i["type"] for i in insights)
    by_impact = Counter(i["impact"] for i in insights)
    return {
        "total": len(insights),
        "byType": {t: by_type.get(t, 0) for t in INSIGHT_TYPES},
        "byImpact": {level: by_impact.get(level, 0) for level in IMPACT_LEVELS},
        "actionRequired": sum(1 for i in insights if i["actionRequired"]),
    }
