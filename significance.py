# significance.py
import math
from typing import Any, Dict, List, Tuple

import pandas as pd

from metrics import SHARE, TEST_ASSIGNED, TEST_COMPLETE, events_frame, round_half_up

SIGNIFICANCE_LEVEL = 0.05
CONFIDENCE = 95

# metric name -> (numerator event, denominator event)
SUPPORTED_METRICS = {
    "completion_rate": (TEST_COMPLETE, TEST_ASSIGNED),
    "share_rate": (SHARE, TEST_ASSIGNED),
}

# Abramowitz & Stegun 7.1.26 erf approximation
A1 = 0.254829592
A2 = -0.284496736
A3 = 1.421413741
A4 = -1.453152027
A5 = 1.061405429
P = 0.3275911


def normal_cdf(x: float) -> float:
    """Standard normal CDF, accurate to about 1.5e-7"""
    sign = -1 if x < 0 else 1
    x = abs(x) / math.sqrt(2)

    t = 1.0 / (1.0 + P * x)
    y = 1.0 - (((((A5 * t + A4) * t) + A3) * t + A2) * t + A1) * t * math.exp(-x * x)

    return 0.5 * (1.0 + sign * y)


def metric_value(variant_frame: pd.DataFrame, metric_name: str) -> float:
    """Proportion for a supported metric; unsupported names evaluate to 0"""
    if metric_name not in SUPPORTED_METRICS:
        return 0.0
    numerator, denominator = SUPPORTED_METRICS[metric_name]
    names = variant_frame["eventName"]
    hits = int((names == numerator).sum())
    total = int((names == denominator).sum())
    return hits / total if total > 0 else 0.0


def two_proportion_z_test(p_a: float, n_a: int, p_b: float, n_b: int) -> Tuple[float, float]:
    """Return (z, two-sided p-value); z is 0 when either sample is empty"""
    if n_a > 0 and n_b > 0:
        pooled = (p_a * n_a + p_b * n_b) / (n_a + n_b)
        se = math.sqrt(pooled * (1 - pooled) * (1 / n_a + 1 / n_b))
    else:
        se = 0.0

    z = (p_a - p_b) / se if se > 0 else 0.0
    p_value = 2 * (1 - normal_cdf(abs(z)))
    return z, p_value


def significance_test(events: List[Dict[str, Any]], test_id: str, metric_name: str,
                      variant_a: str, variant_b: str) -> Dict[str, Any]:
    """Compare one metric between two variants of a test"""
    frame = events_frame(events)
    # testId is required here, so an empty id matches nothing
    frame = frame[frame["testId"] == test_id]

    frame_a = frame[frame["variantId"] == variant_a]
    frame_b = frame[frame["variantId"] == variant_b]

    p_a = metric_value(frame_a, metric_name)
    p_b = metric_value(frame_b, metric_name)
    n_a = int(frame_a["userId"].nunique())
    n_b = int(frame_b["userId"].nunique())

    z, p_value = two_proportion_z_test(p_a, n_a, p_b, n_b)

    significant = p_value < SIGNIFICANCE_LEVEL
    # ties go to variant A
    winner = variant_a if p_a >= p_b else variant_b
    lift = (p_a - p_b) / p_b * 100 if p_b > 0 else 0.0

    return {
        "testId": test_id,
        "metricName": metric_name,
        "variantA": {"id": variant_a, "value": p_a, "n": n_a},
        "variantB": {"id": variant_b, "value": p_b, "n": n_b},
        "statisticalTest": {
            "zScore": round_half_up(z, 4),
            "pValue": round_half_up(p_value, 4),
            "significant": significant,
            "confidence": CONFIDENCE if significant else None,
            "winner": winner,
            "lift": round_half_up(lift),
        },
    }
