"""Matching configuration: tolerances, weights and behavioural flags."""

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ledgermatch.engine.errors import ConfigurationError


class TimezoneMode(Enum):
    """How timestamps are normalized before date comparison."""
    UTC = "utc"
    LOCAL = "local"
    DATE_ONLY = "date_only"  # midnight UTC of the calendar date
    BUSINESS = "business"


def load_zone(name: str) -> Optional[ZoneInfo]:
    """Resolve an IANA zone name, returning None when it is unknown."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


INTEGER_FIELDS = ("date_tolerance_days", "amount_precision", "max_candidates_per_transaction")
REAL_FIELDS = ("amount_tolerance_percent", "min_confidence_score", "max_partial_match_ratio")
FLAG_FIELDS = (
    "enable_fuzzy_matching", "enable_type_matching", "enable_partial_matching", "ignore_weekends",
)


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_real(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class MatchingWeights:
    """Relative importance of each scoring criterion."""
    amount: float = 0.6
    date: float = 0.3
    type: float = 0.1

    def validate(self) -> None:
        for name in ("amount", "date", "type"):
            value = getattr(self, name)
            if not _is_real(value):
                raise ConfigurationError(f"{name} weight must be a number: {value!r}")
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(
                    f"{name} weight must be between 0.0 and 1.0: {value}"
                )
        total = self.amount + self.date + self.type
        if total < 0.9 or total > 1.1:
            raise ConfigurationError(
                f"weights should sum to approximately 1.0, got {total:.4f}"
            )


@dataclass(frozen=True)
class MatchingConfig:
    """
    Tolerances and switches controlling candidate selection and scoring.

    Instances are immutable; use clone() to derive a modified copy.
    The field defaults are the "default" preset.
    """
    date_tolerance_days: int = 1
    amount_precision: int = 2
    amount_tolerance_percent: float = 0.0
    enable_fuzzy_matching: bool = True
    timezone_mode: TimezoneMode = TimezoneMode.DATE_ONLY
    business_timezone: str = "UTC"
    max_candidates_per_transaction: int = 10
    min_confidence_score: float = 0.8
    enable_type_matching: bool = True
    enable_partial_matching: bool = False
    max_partial_match_ratio: float = 0.1
    ignore_weekends: bool = False
    weights: MatchingWeights = field(default_factory=MatchingWeights)

    @classmethod
    def default(cls) -> "MatchingConfig":
        return cls()

    @classmethod
    def strict(cls) -> "MatchingConfig":
        """Same-day, exact-amount matching with a high confidence bar."""
        return cls(
            date_tolerance_days=0,
            enable_fuzzy_matching=False,
            timezone_mode=TimezoneMode.UTC,
            max_candidates_per_transaction=5,
            min_confidence_score=0.95,
            max_partial_match_ratio=0.0,
            weights=MatchingWeights(amount=0.7, date=0.2, type=0.1),
        )

    @classmethod
    def relaxed(cls) -> "MatchingConfig":
        """Wide tolerances for messy data: +-3 business days, 1% amount drift."""
        return cls(
            date_tolerance_days=3,
            amount_tolerance_percent=1.0,
            max_candidates_per_transaction=20,
            min_confidence_score=0.6,
            enable_type_matching=False,
            enable_partial_matching=True,
            max_partial_match_ratio=0.2,
            ignore_weekends=True,
            weights=MatchingWeights(amount=0.5, date=0.4, type=0.1),
        )

    @classmethod
    def preset(cls, name: str) -> "MatchingConfig":
        """Return a named preset: default, strict or relaxed."""
        presets = {
            "default": cls.default,
            "strict": cls.strict,
            "relaxed": cls.relaxed,
        }
        try:
            return presets[name.lower()]()
        except KeyError:
            raise ConfigurationError(
                f"unknown preset {name!r}; expected one of: {', '.join(presets)}"
            ) from None

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], base: Optional["MatchingConfig"] = None
    ) -> "MatchingConfig":
        """
        Build a validated config from a plain mapping (e.g. a JSON file).

        Args:
            data: Field names mapped to values. ``weights`` may be a mapping with
                ``amount``/``date``/``type`` keys and ``timezone_mode`` a mode name.
            base: Config supplying values for keys absent from ``data``.

        Raises:
            ConfigurationError: On unknown keys or invalid values.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"unknown configuration keys: {', '.join(unknown)}")

        changes: Dict[str, Any] = dict(data)
        if "weights" in changes and isinstance(changes["weights"], Mapping):
            try:
                changes["weights"] = MatchingWeights(**changes["weights"])
            except TypeError as e:
                raise ConfigurationError(f"invalid weights: {e}") from e
        if "timezone_mode" in changes and not isinstance(changes["timezone_mode"], TimezoneMode):
            changes["timezone_mode"] = _parse_timezone_mode(changes["timezone_mode"])

        try:
            return (base or cls()).clone(**changes)
        except TypeError as e:
            raise ConfigurationError(f"invalid configuration value: {e}") from e

    def clone(self, **changes: Any) -> "MatchingConfig":
        """Return a validated copy with the given fields replaced."""
        config = dataclasses.replace(self, **changes)
        config.validate()
        return config

    def validate(self) -> None:
        """
        Reject out-of-range settings.

        Raises:
            ConfigurationError: Describing the first invalid setting found.
        """
        for name in INTEGER_FIELDS:
            if not _is_integer(getattr(self, name)):
                raise ConfigurationError(f"{name} must be an integer: {getattr(self, name)!r}")
        for name in REAL_FIELDS:
            if not _is_real(getattr(self, name)):
                raise ConfigurationError(f"{name} must be a number: {getattr(self, name)!r}")
        for name in FLAG_FIELDS:
            if not isinstance(getattr(self, name), bool):
                raise ConfigurationError(f"{name} must be true or false: {getattr(self, name)!r}")
        if not isinstance(self.weights, MatchingWeights):
            raise ConfigurationError(f"weights must be a MatchingWeights: {self.weights!r}")
        if not isinstance(self.business_timezone, str):
            raise ConfigurationError(f"business timezone must be a string: {self.business_timezone!r}")

        if self.date_tolerance_days < 0:
            raise ConfigurationError(
                f"date tolerance days cannot be negative: {self.date_tolerance_days}"
            )
        if not 0 <= self.amount_precision <= 10:
            raise ConfigurationError(
                f"amount precision must be between 0 and 10: {self.amount_precision}"
            )
        if not 0.0 <= self.amount_tolerance_percent <= 100.0:
            raise ConfigurationError(
                "amount tolerance percent must be between 0.0 and 100.0: "
                f"{self.amount_tolerance_percent}"
            )
        if self.max_candidates_per_transaction <= 0:
            raise ConfigurationError(
                "max candidates per transaction must be positive: "
                f"{self.max_candidates_per_transaction}"
            )
        if not 0.0 <= self.min_confidence_score <= 1.0:
            raise ConfigurationError(
                f"minimum confidence score must be between 0.0 and 1.0: {self.min_confidence_score}"
            )
        if not 0.0 <= self.max_partial_match_ratio <= 1.0:
            raise ConfigurationError(
                f"max partial match ratio must be between 0.0 and 1.0: {self.max_partial_match_ratio}"
            )
        if not isinstance(self.timezone_mode, TimezoneMode):
            raise ConfigurationError(f"invalid timezone mode: {self.timezone_mode!r}")
        try:
            self.weights.validate()
        except ConfigurationError as e:
            raise ConfigurationError(f"invalid weights: {e}") from e
        if self.timezone_mode == TimezoneMode.BUSINESS and load_zone(self.business_timezone) is None:
            raise ConfigurationError(f"invalid business timezone {self.business_timezone!r}")

    def amount_tolerance(self, magnitude: Decimal) -> Decimal:
        """Absolute amount tolerance for a given magnitude, rounded to the configured precision."""
        if self.amount_tolerance_percent == 0:
            return Decimal("0")
        percentage = Decimal(str(self.amount_tolerance_percent)) / Decimal(100)
        tolerance = abs(magnitude) * percentage
        return tolerance.quantize(Decimal(1).scaleb(-self.amount_precision), rounding=ROUND_HALF_UP)

    def is_within_date_tolerance(self, first: datetime, second: datetime) -> bool:
        """
        Check whether two normalized timestamps are close enough to match.

        With zero tolerance the calendar dates must be equal. Otherwise the
        absolute gap must not exceed the tolerance, measured in business days
        when weekends are ignored.
        """
        if self.date_tolerance_days == 0:
            return first.date() == second.date()

        if self.ignore_weekends:
            return self._is_within_business_days(first, second)

        return abs(first - second) <= timedelta(days=self.date_tolerance_days)

    def _is_within_business_days(self, first: datetime, second: datetime) -> bool:
        if first == second:
            return True
        start, end = (first, second) if first < second else (second, first)

        business_days = 0
        current = start
        while business_days <= self.date_tolerance_days and current < end:
            if current.weekday() < 5:
                business_days += 1
            current += timedelta(days=1)
            if current.date() == end.date():
                return business_days <= self.date_tolerance_days

        return business_days <= self.date_tolerance_days

    def normalize_time(self, value: datetime) -> datetime:
        """Convert a timestamp according to the timezone mode. Naive values are taken as UTC."""
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)

        if self.timezone_mode == TimezoneMode.UTC:
            return value.astimezone(timezone.utc)
        if self.timezone_mode == TimezoneMode.LOCAL:
            return value.astimezone()
        if self.timezone_mode == TimezoneMode.DATE_ONLY:
            return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
        if self.timezone_mode == TimezoneMode.BUSINESS:
            zone = load_zone(self.business_timezone)
            return value.astimezone(zone or timezone.utc)
        return value

    def __str__(self) -> str:
        return (
            f"MatchingConfig(date_tolerance={self.date_tolerance_days}d, "
            f"amount_precision={self.amount_precision}, "
            f"amount_tolerance={self.amount_tolerance_percent:.2f}%, "
            f"timezone={self.timezone_mode.value}, "
            f"min_confidence={self.min_confidence_score:.2f})"
        )


def _parse_timezone_mode(value: Any) -> TimezoneMode:
    text = str(value).strip().lower()
    for mode in TimezoneMode:
        if text in (mode.value, mode.name.lower()):
            return mode
    raise ConfigurationError(f"invalid timezone mode: {value!r}")
