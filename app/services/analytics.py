"""Aggregate insights across every stored analysis."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable

from app.models.analysis import Stage
from app.services import logger as log_service
from app.services.analysis_store import AnalysisStore

TREND_DAYS = 7
TOP_CONFLICTS = 5


def _with_percentages(rows: list[dict[str, Any]], label: str) -> list[dict[str, Any]]:
    total = sum(r["count"] for r in rows)
    return [
        {
            label: r["value"],
            "count": r["count"],
            "percentage": round(r["count"] / total * 100) if total > 0 else 0,
        }
        for r in rows
    ]


async def get_risk_distribution(store: AnalysisStore) -> list[dict[str, Any]]:
    rows = await store.count_by(Stage.SYNTHESIS.value, "risk_level")
    return _with_percentages(rows, "risk_level")


async def get_energy_distribution(store: AnalysisStore) -> list[dict[str, Any]]:
    rows = await store.count_by(Stage.PRIMARY.value, "crowd_energy")
    return _with_percentages(rows, "energy")


async def get_divergence_trend(store: AnalysisStore) -> list[dict[str, Any]]:
    rows = await store.daily_divergence(TREND_DAYS)
    trend = [
        {
            "date": r["day"],
            "avg_divergence": round(r["avg_divergence"] or 0),
            "joke_count": r["joke_count"],
        }
        for r in rows
    ]
    trend.reverse()
    return trend


async def get_top_conflicts(store: AnalysisStore) -> list[dict[str, Any]]:
    rows = await store.count_by(Stage.SYNTHESIS.value, "primary_conflict")
    return [{"primary_conflict": r["value"], "count": r["count"]} for r in rows[:TOP_CONFLICTS]]


async def get_successful_modes(store: AnalysisStore) -> list[dict[str, Any]]:
    return await store.high_laugh_modes()


async def get_overall_stats(store: AnalysisStore) -> dict[str, Any]:
    stats = await store.overall_stats()
    return {
        "total_jokes": stats.get("unique_jokes") or 0,
        "avg_divergence": round(stats.get("avg_divergence") or 0),
    }


async def _best_effort(name: str, awaitable: Awaitable[Any], fallback: Any) -> Any:
    try:
        return await awaitable
    except Exception as e:
        log_service.log_event(
            event_type="insights_part_failed",
            message=f"Insight '{name}' unavailable",
            error=str(e),
        )
        return fallback


async def get_all_insights(store: AnalysisStore) -> dict[str, Any]:
    """Gather every insight concurrently; a failing part falls back to empty."""
    (
        risk_distribution,
        energy_distribution,
        divergence_trend,
        top_conflicts,
        successful_modes,
        summary,
    ) = await asyncio.gather(
        _best_effort("risk_distribution", get_risk_distribution(store), []),
        _best_effort("energy_distribution", get_energy_distribution(store), []),
        _best_effort("divergence_trend", get_divergence_trend(store), []),
        _best_effort("top_conflicts", get_top_conflicts(store), []),
        _best_effort("successful_modes", get_successful_modes(store), []),
        _best_effort("summary", get_overall_stats(store), {"total_jokes": 0, "avg_divergence": 0}),
    )
    return {
        "summary": summary,
        "risk_distribution": risk_distribution,
        "energy_distribution": energy_distribution,
        "divergence_trend": divergence_trend,
        "top_conflicts": top_conflicts,
        "successful_modes": successful_modes,
    }
