# metrics.py
import math
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Set

import pandas as pd

from event_log import now_ms

TEST_ASSIGNED = "test_assigned"
AD_SHOWN = "ad_shown"
TEST_COMPLETE = "test_complete"
SHARE = "share"
SESSION_END = "session_end"

UNKNOWN_VARIANT = "unknown"

FRAME_COLUMNS = ["userId", "eventName", "testId", "variantId", "timestamp", "duration", "adRevenue"]


def _mapping(event: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = event.get(key)
    return value if isinstance(value, dict) else {}


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value) if math.isfinite(value) else 0.0


def _label(value: Any, default: Optional[str] = None) -> Optional[str]:
    if value is None or value == "":
        return default
    return value if isinstance(value, str) else str(value)


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def round_half_up(value: float, places: int = 2) -> float:
    """Round the exact binary value half away from zero, so 0.125 -> 0.13"""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def to_epoch_ms(value: str) -> int:
    """Parse an ISO-8601 date; naive values are taken as UTC"""
    ts = pd.Timestamp(value)
    if ts is pd.NaT:
        raise ValueError(f"Invalid date: {value!r}")
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return int(ts.value // 1_000_000)


def events_frame(events: List[Dict[str, Any]]) -> pd.DataFrame:
    """
    Flatten raw events into one row each. The frame index matches the
    position of the event in ``events``.
    """
    rows = []
    for event in events:
        test_data = _mapping(event, "testData")
        data = _mapping(event, "data")
        rows.append({
            "userId": _label(event.get("userId")),
            "eventName": event.get("eventName"),
            "testId": test_data.get("testId"),
            "variantId": _label(test_data.get("variantId"), UNKNOWN_VARIANT),
            "timestamp": event.get("timestamp"),
            "duration": _number(data.get("duration")),
            "adRevenue": _number(data.get("adRevenue")),
        })
    return pd.DataFrame(rows, columns=FRAME_COLUMNS)


def filter_by_test(frame: pd.DataFrame, test_id: Optional[str]) -> pd.DataFrame:
    if not test_id:
        return frame
    return frame[frame["testId"] == test_id]


def filter_by_date(frame: pd.DataFrame, start_date: Optional[str], end_date: Optional[str]) -> pd.DataFrame:
    """Keep events with start <= timestamp <= end; no bounds means no filtering"""
    if not start_date and not end_date:
        return frame

    start = to_epoch_ms(start_date) if start_date else 0
    end = to_epoch_ms(end_date) if end_date else now_ms()

    timestamps = pd.to_numeric(frame["timestamp"], errors="coerce")
    return frame[(timestamps >= start) & (timestamps <= end)]


@dataclass
class VariantStats:
    """Per-variant aggregation, rebuilt for every metrics request"""
    users: Set[str] = field(default_factory=set)
    events: List[Dict[str, Any]] = field(default_factory=list)
    event_counts: Dict[str, int] = field(default_factory=dict)
    total_session_time: float = 0.0
    total_ad_revenue: float = 0.0

    @classmethod
    def from_group(cls, group: pd.DataFrame, events: List[Dict[str, Any]]) -> "VariantStats":
        counts = group["eventName"].value_counts()
        session_end = group["eventName"] == SESSION_END
        return cls(
            users=set(group["userId"]),
            events=[events[i] for i in group.index],
            event_counts={str(name): int(n) for name, n in counts.items()},
            total_session_time=float(group.loc[session_end, "duration"].sum()),
            total_ad_revenue=float(group["adRevenue"].sum()),
        )

    def count(self, event_name: str) -> int:
        return self.event_counts.get(event_name, 0)

    def to_metrics(self) -> Dict[str, Any]:
        total_users = len(self.users)
        assigned = self.count(TEST_ASSIGNED)
        completed = self.count(TEST_COMPLETE)
        ads_shown = self.count(AD_SHOWN)

        completion_rate = _ratio(completed, assigned) * 100
        share_rate = _ratio(self.count(SHARE), assigned) * 100
        churn_rate = _ratio(assigned - completed, assigned) * 100
        # durations are recorded in ms
        avg_session_time = _ratio(self.total_session_time, self.count(SESSION_END)) / 1000
        ad_impressions_per_user = _ratio(ads_shown, total_users)
        ecpm = _ratio(self.total_ad_revenue, ads_shown) * 1000 if self.total_ad_revenue > 0 else 0.0

        return {
            "totalUsers": total_users,
            "completionRate": round_half_up(completion_rate),
            "shareRate": round_half_up(share_rate),
            "churnRate": round_half_up(churn_rate),
            "avgSessionTime": round_half_up(avg_session_time),
            "adImpressionsPerUser": round_half_up(ad_impressions_per_user),
            "ecpm": round_half_up(ecpm),
            "totalAdRevenue": self.total_ad_revenue,
            "eventCounts": {
                "testAssigned": assigned,
                "adShown": ads_shown,
                "testComplete": completed,
                "share": self.count(SHARE),
                "sessionEnd": self.count(SESSION_END),
            },
        }


def empty_report(test_id: Optional[str]) -> Dict[str, Any]:
    """Report for a log that has never been written"""
    return {
        "testId": test_id,
        "metrics": {},
        "summary": {"totalUsers": 0, "totalEvents": 0, "dateRange": None},
    }


def compute_metrics(events: List[Dict[str, Any]], test_id: Optional[str] = None,
                    start_date: Optional[str] = None, end_date: Optional[str] = None) -> Dict[str, Any]:
    """
    Aggregate logged events into per-variant rates for one test.

    ``summary.totalUsers`` adds up each variant's distinct users, so a user
    seen under two variants is counted twice.
    """
    frame = events_frame(events)
    frame = filter_by_test(frame, test_id)
    frame = filter_by_date(frame, start_date, end_date)

    variant_stats = {
        variant_id: VariantStats.from_group(group, events)
        for variant_id, group in frame.groupby("variantId", sort=False)
    }

    return {
        "testId": test_id,
        "metrics": {variant_id: stats.to_metrics() for variant_id, stats in variant_stats.items()},
        "summary": {
            "totalUsers": sum(len(stats.users) for stats in variant_stats.values()),
            "totalEvents": len(frame),
            "dateRange": {
                "start": start_date or "all",
                "end": end_date or "now",
            },
        },
    }
