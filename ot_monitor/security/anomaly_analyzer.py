# ot_monitor/security/anomaly_analyzer.py
"""
Behavioural anomaly analysis for sensor readings.

Provides:
- Per-parameter rule table (default limits, escalation, trend checks)
- Rule registry keyed by parameter name
- Absolute-range classification of single readings
- Evaluation of a reading against its recent history

Evaluation order for a reading:
1. Parameter without a registered rule -> no alert
2. Fewer than two prior readings for (device, parameter) -> no alert
3. Absolute-range check; if it fires, its alert is returned
4. Trend check against the immediately preceding readings

At most one alert is produced per evaluation. The analyzer never touches a
store; callers pass in history and ranges.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from ot_monitor.security.logging_system import get_logger
from ot_monitor.state.models import (
    AcceptableRange,
    AlertCandidate,
    AlertSeverity,
    Reading,
    ReadingStatus,
    format_value,
)

__all__ = [
    "ANALYZER_SOURCE",
    "Escalation",
    "TrendKind",
    "TrendRule",
    "ParameterRule",
    "RuleRegistry",
    "DEFAULT_RULES",
    "default_registry",
    "AnomalyAnalyzer",
    "evaluate",
]

logger = get_logger(__name__, device="behavior_analyzer")

ANALYZER_SOURCE = "Behavior Analyzer"
MIN_PRIOR_READINGS = 2


# ----------------------------------------------------------------
# Rule table primitives
# ----------------------------------------------------------------


@dataclass(frozen=True)
class Escalation:
    """Where a limit violation turns critical.

    Either relative to the effective limit (``offset``) or a fixed
    engineering value (``absolute``).
    """

    offset: float | None = None
    absolute: float | None = None

    def above(self, limit: float) -> float:
        return self.absolute if self.absolute is not None else limit + self.offset

    def below(self, limit: float) -> float:
        return self.absolute if self.absolute is not None else limit - self.offset


class TrendKind(Enum):
    """Trend checks comparing a reading to its predecessors."""

    RISE = "rise"  # current - previous > threshold
    CHANGE = "change"  # |current - previous| > threshold
    DROP = "drop"  # previous - current > threshold
    FLOW_LOSS = "flow_loss"  # two priors above floor, current below ceiling
    RISING_SEQUENCE = "rising_sequence"  # strictly rising over 3 readings


@dataclass(frozen=True)
class TrendRule:
    """Trend check parameters."""

    kind: TrendKind
    title: str
    threshold: float = 0.0
    severity: AlertSeverity = AlertSeverity.WARNING
    prior_floor: float | None = None  # FLOW_LOSS: both priors must exceed
    current_ceiling: float | None = None  # FLOW_LOSS: current must be below


@dataclass(frozen=True)
class ParameterRule:
    """Everything the analyzer knows about one parameter type."""

    parameter: str
    label: str  # "Pressure", used in titles
    reading_label: str  # "Pressure reading", used in descriptions
    default_min: float | None = None
    default_max: float | None = None
    above_critical: Escalation | None = None  # None: above-max is always warning
    below_critical: Escalation | None = None  # None: below-min is always warning
    trend: TrendRule | None = None

    def limits(self, ranges: AcceptableRange | None) -> tuple[float | None, float | None]:
        """Effective (min, max): device-specific where numeric, else defaults.

        A device cannot enable a side the table does not check.
        """
        ranges = ranges or AcceptableRange()
        low = ranges.min if ranges.min is not None else self.default_min
        high = ranges.max if ranges.max is not None else self.default_max
        if self.default_min is None:
            low = None
        if self.default_max is None:
            high = None
        return low, high


# ----------------------------------------------------------------
# Default rule table
# ----------------------------------------------------------------

DEFAULT_RULES: tuple[ParameterRule, ...] = (
    ParameterRule(
        parameter="temperature",
        label="Temperature",
        reading_label="Temperature reading",
        default_max=90.0,
        above_critical=Escalation(offset=5.0),
        trend=TrendRule(
            kind=TrendKind.RISE,
            title="Rapid Temperature Increase",
            threshold=10.0,
        ),
    ),
    ParameterRule(
        parameter="pressure",
        label="Pressure",
        reading_label="Pressure reading",
        default_min=55.0,
        default_max=85.0,
        above_critical=Escalation(offset=10.0),
        below_critical=Escalation(offset=10.0),
        trend=TrendRule(
            kind=TrendKind.CHANGE,
            title="Rapid Pressure Change",
            threshold=15.0,
        ),
    ),
    ParameterRule(
        parameter="flow_rate",
        label="Flow Rate",
        reading_label="Flow rate",
        default_min=30.0,
        default_max=70.0,
        below_critical=Escalation(offset=10.0),
        trend=TrendRule(
            kind=TrendKind.FLOW_LOSS,
            title="Sudden Flow Loss",
            severity=AlertSeverity.CRITICAL,
            prior_floor=40.0,
            current_ceiling=10.0,
        ),
    ),
    ParameterRule(
        parameter="tank_level",
        label="Tank Level",
        reading_label="Tank level",
        default_min=20.0,
        default_max=90.0,
        above_critical=Escalation(absolute=95.0),
        below_critical=Escalation(absolute=10.0),
        trend=TrendRule(
            kind=TrendKind.DROP,
            title="Rapid Tank Level Decrease",
            threshold=15.0,
        ),
    ),
    ParameterRule(
        parameter="vibration",
        label="Vibration",
        reading_label="Vibration reading",
        default_max=8.0,
        above_critical=Escalation(offset=1.0),
        trend=TrendRule(
            kind=TrendKind.RISING_SEQUENCE,
            title="Increasing Vibration Trend",
            threshold=2.0,
        ),
    ),
)


class RuleRegistry:
    """Parameter name -> rule lookup.

    Adding a parameter type means registering a rule here.
    """

    def __init__(self, rules: Iterable[ParameterRule] = ()):
        self._rules: dict[str, ParameterRule] = {}
        for rule in rules:
            self.register(rule)

    def register(self, rule: ParameterRule, replace: bool = False) -> None:
        """
        Register a rule.

        Raises:
            ValueError: If a rule for the parameter exists and replace is False
        """
        if rule.parameter in self._rules and not replace:
            raise ValueError(f"Rule for '{rule.parameter}' already registered")
        self._rules[rule.parameter] = rule

    def unregister(self, parameter: str) -> bool:
        return self._rules.pop(parameter, None) is not None

    def get(self, parameter: str) -> ParameterRule | None:
        return self._rules.get(parameter)

    def parameters(self) -> list[str]:
        return sorted(self._rules)

    def __contains__(self, parameter: object) -> bool:
        return parameter in self._rules

    def __len__(self) -> int:
        return len(self._rules)


def default_registry() -> RuleRegistry:
    """Fresh registry holding the built-in rule table."""
    return RuleRegistry(DEFAULT_RULES)


# ----------------------------------------------------------------
# Trend evaluators
# ----------------------------------------------------------------


def _delta_trend(
    rule: ParameterRule,
    current: Reading,
    value: float,
    history: Sequence[Reading],
) -> AlertCandidate | None:
    trend = rule.trend
    previous = history[0]
    previous_value = previous.numeric_value
    unit = current.unit

    if trend.kind is TrendKind.RISE:
        delta, key, verb = value - previous_value, "increase", "increased"
    elif trend.kind is TrendKind.DROP:
        delta, key, verb = previous_value - value, "decrease", "decreased"
    else:
        delta, key, verb = abs(value - previous_value), "change", "changed"

    if delta <= trend.threshold:
        return None

    return AlertCandidate(
        severity=trend.severity,
        title=trend.title,
        description=(
            f"{rule.label} {verb} by {delta:.1f}{unit} in a short period "
            f"(from {format_value(previous_value)}{unit} "
            f"to {format_value(value)}{unit})"
        ),
        source=ANALYZER_SOURCE,
        device_id=current.device_id,
        raw_data={
            "current": current.to_dict(),
            "previous": previous.to_dict(),
            key: delta,
            "threshold": trend.threshold,
        },
    )


def _flow_loss_trend(
    rule: ParameterRule,
    current: Reading,
    value: float,
    history: Sequence[Reading],
) -> AlertCandidate | None:
    trend = rule.trend
    previous, before_previous = history[0], history[1]
    previous_value = previous.numeric_value
    before_value = before_previous.numeric_value

    if not (
        previous_value > trend.prior_floor
        and before_value > trend.prior_floor
        and value < trend.current_ceiling
    ):
        return None

    unit = current.unit
    return AlertCandidate(
        severity=trend.severity,
        title=trend.title,
        description=(
            f"{rule.reading_label} dropped suddenly from "
            f"{format_value(previous_value)}{unit} to {format_value(value)}{unit}"
        ),
        source=ANALYZER_SOURCE,
        device_id=current.device_id,
        raw_data={
            "current": current.to_dict(),
            "previous": previous.to_dict(),
            "before_previous": before_previous.to_dict(),
        },
    )


def _rising_sequence_trend(
    rule: ParameterRule,
    current: Reading,
    value: float,
    history: Sequence[Reading],
) -> AlertCandidate | None:
    trend = rule.trend
    previous, before_previous = history[0], history[1]
    previous_value = previous.numeric_value
    before_value = before_previous.numeric_value
    rise = value - before_value

    if not (value > previous_value > before_value and rise > trend.threshold):
        return None

    unit = current.unit
    return AlertCandidate(
        severity=trend.severity,
        title=trend.title,
        description=(
            f"{rule.label} has been steadily increasing over the last readings: "
            f"{format_value(before_value)}{unit} -> {format_value(previous_value)}{unit} "
            f"-> {format_value(value)}{unit} (rise {rise:.1f}{unit})"
        ),
        source=ANALYZER_SOURCE,
        device_id=current.device_id,
        raw_data={
            "current": current.to_dict(),
            "history": [previous.to_dict(), before_previous.to_dict()],
            "rise": rise,
        },
    )


TrendEvaluator = Callable[
    [ParameterRule, Reading, float, Sequence[Reading]], "AlertCandidate | None"
]

TREND_EVALUATORS: dict[TrendKind, TrendEvaluator] = {
    TrendKind.RISE: _delta_trend,
    TrendKind.CHANGE: _delta_trend,
    TrendKind.DROP: _delta_trend,
    TrendKind.FLOW_LOSS: _flow_loss_trend,
    TrendKind.RISING_SEQUENCE: _rising_sequence_trend,
}


# ----------------------------------------------------------------
# Analyzer
# ----------------------------------------------------------------


class AnomalyAnalyzer:
    """
    Stateless decision function over readings.

    Example:
        >>> analyzer = AnomalyAnalyzer()
        >>> candidate = analyzer.evaluate(reading, history, device.range_for("pressure"))
        >>> if candidate:
        ...     await alert_sink.submit(candidate)
    """

    def __init__(self, registry: RuleRegistry | None = None, source: str = ANALYZER_SOURCE):
        self.registry = registry if registry is not None else default_registry()
        self.source = source

    # ----------------------------------------------------------------
    # Single-reading classification
    # ----------------------------------------------------------------

    def _range_violation(
        self, rule: ParameterRule, value: float, ranges: AcceptableRange | None
    ) -> tuple[AlertSeverity, str, float] | None:
        """Return (severity, "above"|"below", limit) or None."""
        low, high = rule.limits(ranges)

        if high is not None and value > high:
            critical = (
                rule.above_critical is not None
                and value > rule.above_critical.above(high)
            )
            return (
                AlertSeverity.CRITICAL if critical else AlertSeverity.WARNING,
                "above",
                high,
            )

        if low is not None and value < low:
            critical = (
                rule.below_critical is not None
                and value < rule.below_critical.below(low)
            )
            return (
                AlertSeverity.CRITICAL if critical else AlertSeverity.WARNING,
                "below",
                low,
            )

        return None

    def classify(
        self, parameter: str, value: float, ranges: AcceptableRange | None = None
    ) -> ReadingStatus:
        """Status of a single value from the absolute-range rule alone."""
        rule = self.registry.get(parameter)
        if rule is None:
            return ReadingStatus.NORMAL

        violation = self._range_violation(rule, value, ranges)
        if violation is None:
            return ReadingStatus.NORMAL
        severity = violation[0]
        return (
            ReadingStatus.CRITICAL
            if severity is AlertSeverity.CRITICAL
            else ReadingStatus.WARNING
        )

    # ----------------------------------------------------------------
    # Evaluation
    # ----------------------------------------------------------------

    def evaluate(
        self,
        current: Reading,
        history: Sequence[Reading],
        ranges: AcceptableRange | None = None,
    ) -> AlertCandidate | None:
        """
        Decide whether ``current`` warrants an alert.

        Args:
            current: The reading under evaluation
            history: Readings of the same device and parameter, newest first.
                May include ``current`` itself at the head; it is skipped.
            ranges: Device-specific acceptable range (defaults where absent)

        Returns:
            Alert candidate, or None when nothing fired
        """
        rule = self.registry.get(current.parameter_name)
        if rule is None:
            return None

        prior = [r for r in history if r.id != current.id]
        if len(prior) < MIN_PRIOR_READINGS:
            return None

        try:
            value = current.numeric_value
        except ValueError:
            logger.debug(
                f"Skipping non-numeric reading {current.id} "
                f"({current.parameter_name}={current.value!r})"
            )
            return None

        alert = self._check_range(rule, current, value, ranges)
        if alert is not None:
            return alert

        return self._check_trend(rule, current, value, prior)

    def _check_range(
        self,
        rule: ParameterRule,
        current: Reading,
        value: float,
        ranges: AcceptableRange | None,
    ) -> AlertCandidate | None:
        violation = self._range_violation(rule, value, ranges)
        if violation is None:
            return None

        severity, side, limit = violation
        low, high = rule.limits(ranges)
        unit = current.unit

        if side == "above":
            title = f"{rule.label} Above Normal Range"
            relation = "exceeds"
        else:
            title = f"{rule.label} Below Normal Range"
            relation = "is below"

        return AlertCandidate(
            severity=severity,
            title=title,
            description=(
                f"{rule.reading_label} ({format_value(value)}{unit}) {relation} "
                f"normal operating range ({format_value(limit)}{unit})"
            ),
            source=self.source,
            device_id=current.device_id,
            raw_data={
                "current": current.to_dict(),
                "acceptable_ranges": {"min": low, "max": high},
                "limit": limit,
            },
        )

    def _check_trend(
        self,
        rule: ParameterRule,
        current: Reading,
        value: float,
        prior: Sequence[Reading],
    ) -> AlertCandidate | None:
        if rule.trend is None:
            return None

        evaluator = TREND_EVALUATORS[rule.trend.kind]
        try:
            alert = evaluator(rule, current, value, prior)
        except ValueError:
            logger.debug(
                f"Skipping trend check for reading {current.id}: "
                "non-numeric value in history"
            )
            return None

        if alert is not None and alert.source != self.source:
            alert = replace(alert, source=self.source)
        return alert

    def describe_rules(self) -> list[dict[str, Any]]:
        """Rule table as plain data (for diagnostics endpoints)."""
        table = []
        for name in self.registry.parameters():
            rule = self.registry.get(name)
            table.append(
                {
                    "parameter": rule.parameter,
                    "default_min": rule.default_min,
                    "default_max": rule.default_max,
                    "trend": rule.trend.kind.value if rule.trend else None,
                }
            )
        return table


_default_analyzer = AnomalyAnalyzer()


def evaluate(
    current: Reading,
    history: Sequence[Reading],
    ranges: AcceptableRange | None = None,
) -> AlertCandidate | None:
    """Evaluate with the built-in rule table."""
    return _default_analyzer.evaluate(current, history, ranges)
