"""Significance testing for lift experiments.

Pure functions over conversion counts. Degenerate input (empty groups,
zero marginals) yields defined sentinels (lift 0, p 1) instead of raising.
The chi-squared p-value uses the Abramowitz-Stegun erf approximation and
sits behind ``SignificanceTest`` so a library-backed test can replace it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol

SIGNIFICANCE_ALPHA = 0.05
TRENDING_ALPHA = 0.10
HIGHLY_SIGNIFICANT_ALPHA = 0.01

# Returned when the control value is zero and the test value is positive.
LIFT_SENTINEL = 100.0

Z_SCORES = {0.90: 1.645, 0.95: 1.96, 0.99: 2.576}
Z_ALPHA = 1.96
Z_BETA = {0.8: 0.84, 0.9: 1.28}

# Abramowitz-Stegun 7.1.26
_ERF_P = 0.3275911
_ERF_A1 = 0.254829592
_ERF_A2 = -0.284496736
_ERF_A3 = 1.421413741
_ERF_A4 = -1.453152027
_ERF_A5 = 1.061405429

# Abramowitz-Stegun 26.2.17
_CDF_P = 0.2316419
_CDF_D = 0.3989423
_CDF_B = (0.3193815, -0.3565638, 1.781478, -1.821256, 1.330274)


@dataclass(frozen=True)
class SignificanceResult:
    chi_squared: float
    p_value: float
    is_significant: bool


class SignificanceTest(Protocol):
    def __call__(
        self, test_conversions: int, test_total: int, control_conversions: int, control_total: int
    ) -> SignificanceResult: ...


def calculate_lift_percentage(test_value: float, control_value: float) -> float:
    if control_value == 0:
        return LIFT_SENTINEL if test_value > 0 else 0.0
    return (test_value - control_value) / control_value * 100


def calculate_absolute_lift(test_value: float, control_value: float) -> float:
    return test_value - control_value


def calculate_conversion_rate(conversions: float, impressions: float) -> float:
    if impressions == 0:
        return 0.0
    return conversions / impressions * 100


def calculate_chi_squared(
    test_conversions: int, test_total: int, control_conversions: int, control_total: int
) -> float:
    """Yates-corrected chi-squared over the 2x2 converted/not-converted table."""
    a = test_conversions
    b = test_total - test_conversions
    c = control_conversions
    d = control_total - control_conversions
    n = a + b + c + d

    row_test, row_control = a + b, c + d
    col_converted, col_not = a + c, b + d
    if n <= 0 or 0 in (row_test, row_control) or col_converted <= 0 or col_not <= 0:
        return 0.0

    chi_squared = 0.0
    for observed, row, col in (
        (a, row_test, col_converted),
        (b, row_test, col_not),
        (c, row_control, col_converted),
        (d, row_control, col_not),
    ):
        expected = row * col / n
        chi_squared += max(0.0, abs(observed - expected) - 0.5) ** 2 / expected
    return chi_squared


def _erf(x: float) -> float:
    t = 1 / (1 + _ERF_P * x)
    poly = ((((_ERF_A5 * t + _ERF_A4) * t + _ERF_A3) * t + _ERF_A2) * t + _ERF_A1) * t
    return 1 - poly * math.exp(-x * x)


def chi_squared_to_p_value(chi_squared: float) -> float:
    """Upper tail of chi-squared with one degree of freedom: 1 - erf(sqrt(x/2))."""
    if chi_squared <= 0:
        return 1.0
    return min(1.0, max(0.0, 1 - _erf(math.sqrt(chi_squared / 2))))


def calculate_p_value(
    test_conversions: int, test_total: int, control_conversions: int, control_total: int
) -> float:
    return chi_squared_to_p_value(
        calculate_chi_squared(test_conversions, test_total, control_conversions, control_total)
    )


def is_statistically_significant(p_value: float, alpha: float = SIGNIFICANCE_ALPHA) -> bool:
    return p_value < alpha


class ChiSquaredYatesTest:
    def __init__(self, alpha: float = SIGNIFICANCE_ALPHA):
        self.alpha = alpha

    def __call__(
        self, test_conversions: int, test_total: int, control_conversions: int, control_total: int
    ) -> SignificanceResult:
        chi_squared = calculate_chi_squared(
            test_conversions, test_total, control_conversions, control_total
        )
        p_value = chi_squared_to_p_value(chi_squared)
        return SignificanceResult(
            chi_squared=chi_squared,
            p_value=p_value,
            is_significant=is_statistically_significant(p_value, self.alpha),
        )


def calculate_confidence_interval(
    test_conversions: int,
    test_total: int,
    control_conversions: int,
    control_total: int,
    confidence_level: float = 0.95,
) -> dict[str, float]:
    """Interval on relative lift in percent, standard error via the delta method."""
    if test_total <= 0 or control_total <= 0:
        return {"lower": 0.0, "upper": 0.0}

    p_test = test_conversions / test_total
    p_control = control_conversions / control_total
    if p_control == 0:
        return {"lower": 0.0, "upper": 0.0}

    lift = (p_test - p_control) / p_control
    se_test = math.sqrt(max(0.0, p_test * (1 - p_test)) / test_total)
    se_control = math.sqrt(max(0.0, p_control * (1 - p_control)) / control_total)
    se_lift = math.sqrt((se_test / p_control) ** 2 + (p_test * se_control / p_control**2) ** 2)

    z = Z_SCORES.get(confidence_level, Z_SCORES[0.95])
    return {"lower": (lift - z * se_lift) * 100, "upper": (lift + z * se_lift) * 100}


def calculate_min_sample_size(
    baseline_rate: float, min_detectable_effect: float, power: float = 0.8
) -> int:
    """Per-group sample size for a two-sided test at 95% confidence."""
    z_beta = Z_BETA.get(power, Z_BETA[0.8])
    p1 = baseline_rate
    p2 = baseline_rate * (1 + min_detectable_effect)
    if p1 == p2:
        return 0
    pooled = (p1 + p2) / 2

    numerator = (
        Z_ALPHA * math.sqrt(max(0.0, 2 * pooled * (1 - pooled)))
        + z_beta * math.sqrt(max(0.0, p1 * (1 - p1) + p2 * (1 - p2)))
    ) ** 2
    return math.ceil(numerator / (p1 - p2) ** 2)


def _normal_cdf(z: float) -> float:
    t = 1 / (1 + _CDF_P * abs(z))
    d = _CDF_D * math.exp(-z * z / 2)
    b1, b2, b3, b4, b5 = _CDF_B
    tail = d * t * (b1 + t * (b2 + t * (b3 + t * (b4 + t * b5))))
    return 1 - tail if z > 0 else tail


def calculate_power(sample_size: int, baseline_rate: float, detected_effect: float) -> float:
    p1 = baseline_rate
    p2 = baseline_rate * (1 + detected_effect)
    pooled = (p1 + p2) / 2
    variance = 2 * pooled * (1 - pooled)
    if sample_size <= 0 or variance <= 0:
        return 0.0

    se = math.sqrt(variance / sample_size)
    return _normal_cdf(abs(p1 - p2) / se - Z_ALPHA)


def get_significance_interpretation(p_value: float, lift: float) -> dict[str, str]:
    positive = lift > 0
    if p_value >= TRENDING_ALPHA:
        return {
            "status": "not_significant",
            "message": "Not enough data to draw conclusions",
            "recommendation": "Continue running the test to collect more data",
        }
    if p_value >= SIGNIFICANCE_ALPHA:
        return {
            "status": "trending",
            "message": f"Trending {'positive' if positive else 'negative'} but not yet significant",
            "recommendation": "Results are suggestive but need more data for confidence",
        }
    if p_value >= HIGHLY_SIGNIFICANT_ALPHA:
        return {
            "status": "significant",
            "message": f"Statistically significant {'lift' if positive else 'decline'} detected",
            "recommendation": (
                "The test group is performing better - consider rolling out"
                if positive
                else "The test group is underperforming - investigate the cause"
            ),
        }
    return {
        "status": "highly_significant",
        "message": f"Highly significant {'lift' if positive else 'decline'} detected",
        "recommendation": (
            "Strong evidence of positive impact - confident to proceed"
            if positive
            else "Strong evidence of negative impact - action needed"
        ),
    }
