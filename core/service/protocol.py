"""研究方案访视模板：解析、校验与时间窗计算。

生成器、改期合规判断与偏离检测共用这里的时间窗规则，保证三者口径一致：
- scheduled_date = baseline_date + scheduled_days_from_baseline
- window_start_date = scheduled_date - window_days_before
- window_end_date = scheduled_date + window_days_after
- 日期落在 [window_start_date, window_end_date]（闭区间）内即为合规。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Iterable, Sequence

from core.exceptions import ValidationError
from core.service.records import VisitTemplateEntry


@dataclass(frozen=True)
class VisitWindow:
    scheduled_date: date
    window_start_date: date
    window_end_date: date


def parse_visit_template(raw_template: Iterable[Any] | None) -> tuple[VisitTemplateEntry, ...]:
    """将 JSONField 中的模板（dict 列表）解析为 VisitTemplateEntry 元组，保持原顺序。"""

    entries = []
    for index, item in enumerate(raw_template or (), start=1):
        if isinstance(item, VisitTemplateEntry):
            entries.append(item)
            continue
        try:
            entries.append(VisitTemplateEntry.from_dict(item))
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(
                f"Visit {index}: malformed template entry",
                code=ValidationError.INVALID_VISIT_TEMPLATE,
            ) from exc
    return tuple(entries)


def validate_visit_template(entries: Sequence[VisitTemplateEntry]) -> None:
    """
    【功能说明】
    - 校验访视模板是否可用于排程，任一规则不满足即抛出 ValidationError。

    【规则】
    - 至少一个访视条目；
    - visit_number >= 1 且互不重复；
    - 访视名称非空；
    - scheduled_days_from_baseline、window_days_before、window_days_after 均不为负；
    - 每个条目至少配置一项检查（必做或选做）。
    """

    def _fail(message: str) -> None:
        raise ValidationError(message, code=ValidationError.INVALID_VISIT_TEMPLATE)

    if not entries:
        _fail("At least one visit must be configured")

    numbers = [entry.visit_number for entry in entries]
    if len(numbers) != len(set(numbers)):
        _fail("Visit numbers must be unique")

    for index, entry in enumerate(entries, start=1):
        if entry.visit_number < 1:
            _fail(f"Visit {index}: Visit number must be at least 1")
        if not entry.visit_name.strip():
            _fail(f"Visit {index}: Visit name is required")
        if entry.scheduled_days_from_baseline < 0:
            _fail(f"Visit {index}: Scheduled days from baseline cannot be negative")
        if entry.window_days_before < 0 or entry.window_days_after < 0:
            _fail(f"Visit {index}: Window days cannot be negative")
        if not entry.required_examinations and not entry.optional_examinations:
            _fail(
                f"Visit {index}: At least one examination (required or optional) must be specified"
            )


def validate_date_range(start: date | None, end: date | None, label: str = "date range") -> None:
    """结束日期必须晚于开始日期（end <= start 视为非法）；任一端为空时不校验。"""

    if start is None or end is None:
        return
    if end <= start:
        raise ValidationError(
            f"Invalid {label}: end {end.isoformat()} must be after start {start.isoformat()}",
            code=ValidationError.INVALID_DATE_RANGE,
        )


def validate_study_dates(start_date: date | None, end_date: date | None) -> None:
    validate_date_range(start_date, end_date, label="study period")


def compute_visit_window(entry: VisitTemplateEntry, baseline_date: date) -> VisitWindow:
    scheduled_date = baseline_date + timedelta(days=entry.scheduled_days_from_baseline)
    return VisitWindow(
        scheduled_date=scheduled_date,
        window_start_date=scheduled_date - timedelta(days=entry.window_days_before),
        window_end_date=scheduled_date + timedelta(days=entry.window_days_after),
    )


def compute_expected_completion_date(
    entries: Sequence[VisitTemplateEntry], baseline_date: date
) -> date:
    """预计完成日期 = 基线 + max(各条目计划天数 + 窗口后延天数)。"""

    max_days = max(
        entry.scheduled_days_from_baseline + entry.window_days_after for entry in entries
    )
    return baseline_date + timedelta(days=max_days)


def is_within_window(target: date, window_start_date: date, window_end_date: date) -> bool:
    return window_start_date <= target <= window_end_date
