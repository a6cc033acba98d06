"""
方案偏离检测。

纯函数，只读、无副作用、不落库：同一批访视、同一时刻多次调用结果一致，可被任意多个
调用方并发使用。时间窗判断与生成器/改期共用 `core.service.protocol` 的规则。

规则（按访视独立评估，一个访视可命中多条）：
1. missed_visit（high）：窗口结束日早于今天，且状态不是 completed/missed；
2. window_violation（medium）：状态为 scheduled，且计划日期不在时间窗内；
3. examination_skip（medium）：状态为 completed，但仍有必做检查未完成。
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Iterable

from django.utils import timezone

from core.models import choices
from core.service.protocol import is_within_window
from core.service.records import (
    ProtocolDeviationAlert,
    VisitRecord,
    missing_required_examinations,
)

_MISSED_EXEMPT_STATUSES = (choices.VisitStatus.COMPLETED, choices.VisitStatus.MISSED)


def _resolve_now(now: datetime | date | None) -> tuple[datetime, date]:
    """返回 (detected_at, 判定用的自然日)。aware datetime 按本地时区取日期。"""

    if now is None:
        now = timezone.now()
    if isinstance(now, datetime):
        today = timezone.localdate(now) if timezone.is_aware(now) else now.date()
        return now, today
    return datetime.combine(now, datetime.min.time()), now


def window_violation_alert(
    visit: VisitRecord, scheduled_date: date, detected_at: datetime
) -> ProtocolDeviationAlert:
    return ProtocolDeviationAlert(
        visit_id=visit.id,
        survey_id=visit.survey_id,
        patient_id=visit.patient_id,
        deviation_type=choices.DeviationType.WINDOW_VIOLATION,
        severity=choices.DeviationSeverity.MEDIUM,
        description=(
            "Visit scheduled outside protocol window. "
            f"Scheduled: {scheduled_date.isoformat()}, "
            f"Window: {visit.window_start_date.isoformat()} to {visit.window_end_date.isoformat()}"
        ),
        detected_at=detected_at,
        window_start_date=visit.window_start_date,
        window_end_date=visit.window_end_date,
        scheduled_date=scheduled_date,
    )


def detect_visit_deviations(
    visit: VisitRecord, *, detected_at: datetime, today: date
) -> list[ProtocolDeviationAlert]:
    alerts: list[ProtocolDeviationAlert] = []

    if visit.window_end_date < today and visit.status not in _MISSED_EXEMPT_STATUSES:
        alerts.append(
            ProtocolDeviationAlert(
                visit_id=visit.id,
                survey_id=visit.survey_id,
                patient_id=visit.patient_id,
                deviation_type=choices.DeviationType.MISSED_VISIT,
                severity=choices.DeviationSeverity.HIGH,
                description=(
                    f"Visit missed - past window end date: {visit.window_end_date.isoformat()}"
                ),
                detected_at=detected_at,
                window_start_date=visit.window_start_date,
                window_end_date=visit.window_end_date,
                scheduled_date=visit.scheduled_date,
                actual_date=visit.actual_date,
            )
        )

    if visit.status == choices.VisitStatus.SCHEDULED and not is_within_window(
        visit.scheduled_date, visit.window_start_date, visit.window_end_date
    ):
        alerts.append(window_violation_alert(visit, visit.scheduled_date, detected_at))

    if visit.status == choices.VisitStatus.COMPLETED:
        missing = missing_required_examinations(visit)
        if missing:
            alerts.append(
                ProtocolDeviationAlert(
                    visit_id=visit.id,
                    survey_id=visit.survey_id,
                    patient_id=visit.patient_id,
                    deviation_type=choices.DeviationType.EXAMINATION_SKIP,
                    severity=choices.DeviationSeverity.MEDIUM,
                    description=f"Required examinations not completed: {', '.join(missing)}",
                    detected_at=detected_at,
                    actual_date=visit.actual_date,
                )
            )

    return alerts


def detect_protocol_deviations(
    visits: Iterable[VisitRecord], now: datetime | date | None = None
) -> list[ProtocolDeviationAlert]:
    """
    【功能说明】
    - 对一批访视做时点快照扫描，返回全部方案偏离告警。

    【参数说明】
    - visits: VisitRecord 可迭代对象。
    - now: 判定时刻，datetime 或 date；默认当前时间。

    【返回值说明】
    - list[ProtocolDeviationAlert]，按访视输入顺序排列。
    """

    detected_at, today = _resolve_now(now)
    alerts: list[ProtocolDeviationAlert] = []
    for visit in visits:
        alerts.extend(detect_visit_deviations(visit, detected_at=detected_at, today=today))
    return alerts
