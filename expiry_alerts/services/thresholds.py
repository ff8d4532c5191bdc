"""
Threshold Evaluator
Maps (today, expiry date) to days remaining and an alert level.

Visa documents carry five notification thresholds; passport and labour
card only two, on a separate two-level scale.
"""
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from expiry_alerts.models.employee import DocumentType
from expiry_alerts.models.notification import Severity


class AlertLevel(str, Enum):
    CRITICAL = "CRITICAL"
    URGENT = "URGENT"
    WARNING = "WARNING"
    NOTICE = "NOTICE"
    OK = "OK"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ThresholdDefinition:
    """Ordered (days-before-expiry, label) notification points"""
    document_type: DocumentType
    points: Tuple[Tuple[int, AlertLevel], ...]
    # Level boundaries, tightest first: remaining days <= bound -> level
    scale: Tuple[Tuple[int, AlertLevel], ...]

    @property
    def days(self) -> Tuple[int, ...]:
        return tuple(d for d, _ in self.points)

    def label_for(self, threshold_days: int) -> AlertLevel:
        for d, label in self.points:
            if d == threshold_days:
                return label
        raise KeyError(f"{threshold_days} is not a {self.document_type.value} threshold")


VISA_THRESHOLDS = ThresholdDefinition(
    document_type=DocumentType.VISA,
    points=(
        (60, AlertLevel.NOTICE),
        (30, AlertLevel.WARNING),
        (15, AlertLevel.URGENT),
        (7, AlertLevel.CRITICAL),
        (1, AlertLevel.CRITICAL),
    ),
    scale=(
        (7, AlertLevel.CRITICAL),
        (15, AlertLevel.URGENT),
        (30, AlertLevel.WARNING),
        (60, AlertLevel.NOTICE),
    ),
)

_SHORT_POINTS = ((60, AlertLevel.NOTICE), (30, AlertLevel.WARNING))
_SHORT_SCALE = ((30, AlertLevel.WARNING), (60, AlertLevel.NOTICE))

THRESHOLDS: Dict[DocumentType, ThresholdDefinition] = {
    DocumentType.VISA: VISA_THRESHOLDS,
    DocumentType.PASSPORT: ThresholdDefinition(DocumentType.PASSPORT, _SHORT_POINTS, _SHORT_SCALE),
    DocumentType.LABOUR_CARD: ThresholdDefinition(DocumentType.LABOUR_CARD, _SHORT_POINTS, _SHORT_SCALE),
}


@dataclass(frozen=True)
class Evaluation:
    days_remaining: Optional[int]
    level: AlertLevel


DateLike = Union[date, datetime]


def _as_date(value: DateLike) -> date:
    return value.date() if isinstance(value, datetime) else value


def days_remaining(today: DateLike, expiry: Optional[DateLike]) -> Optional[int]:
    """Signed day count `expiry - today`; None when expiry is unknown"""
    if expiry is None:
        return None
    return (_as_date(expiry) - _as_date(today)).days


def level_for_days(document_type: DocumentType, remaining: Optional[int]) -> AlertLevel:
    if remaining is None:
        return AlertLevel.UNKNOWN
    for bound, level in THRESHOLDS[DocumentType(document_type)].scale:
        if remaining <= bound:
            return level
    return AlertLevel.OK


def alert_level(document_type: DocumentType, today: DateLike, expiry: Optional[DateLike]) -> AlertLevel:
    return level_for_days(document_type, days_remaining(today, expiry))


def evaluate(document_type: DocumentType, today: DateLike, expiry: Optional[DateLike]) -> Evaluation:
    remaining = days_remaining(today, expiry)
    return Evaluation(days_remaining=remaining, level=level_for_days(document_type, remaining))


def severity_for_threshold(threshold_days: int) -> Severity:
    """Notification severity used for the audit record and email copy"""
    if threshold_days <= 7:
        return Severity.ERROR
    if threshold_days <= 15:
        return Severity.WARNING
    return Severity.INFO


def iter_threshold_pairs():
    """Every (document type, threshold) pair, visa first, widest first"""
    for document_type, definition in THRESHOLDS.items():
        for threshold_days in definition.days:
            yield document_type, threshold_days
