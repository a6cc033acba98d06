"""排程核心的不可变值对象与纯函数。

存储层读写的都是本模块的 frozen dataclass，而不是 ORM 实例：
- 服务层通过纯函数（例如 `mark_examination`）得到新的记录，不在共享内存中原地修改；
- 真正的写入只发生在存储协作方的写方法中。
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from core.exceptions import ValidationError
from core.models import choices


def _serialize(value: Any) -> Any:
    if isinstance(value, _Record):
        return value.as_dict()
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    if isinstance(value, dict):
        return {key: _serialize(item) for key, item in value.items()}
    return value


class _Record:
    def as_dict(self) -> dict[str, Any]:
        """转换为可直接 JSON 序列化的 dict（日期转 ISO 字符串，元组转列表）。"""

        return {
            f.name: _serialize(getattr(self, f.name)) for f in dataclasses.fields(self)
        }


def _unique(items: Iterable[str] | None) -> tuple[str, ...]:
    """去重并保持首次出现顺序。"""

    seen: list[str] = []
    for item in items or ():
        if item not in seen:
            seen.append(item)
    return tuple(seen)


@dataclass(frozen=True)
class VisitTemplateEntry(_Record):
    visit_number: int
    visit_type: str
    visit_name: str
    scheduled_days_from_baseline: int
    window_days_before: int = 0
    window_days_after: int = 0
    required_examinations: tuple[str, ...] = ()
    optional_examinations: tuple[str, ...] = ()
    examination_order: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VisitTemplateEntry":
        return cls(
            visit_number=int(data["visit_number"]),
            visit_type=data.get("visit_type") or choices.VisitType.CUSTOM,
            visit_name=data.get("visit_name") or "",
            scheduled_days_from_baseline=int(data.get("scheduled_days_from_baseline", 0)),
            window_days_before=int(data.get("window_days_before", 0)),
            window_days_after=int(data.get("window_days_after", 0)),
            required_examinations=_unique(data.get("required_examinations")),
            optional_examinations=_unique(data.get("optional_examinations")),
            examination_order=tuple(data.get("examination_order") or ()),
        )


@dataclass(frozen=True)
class ProtocolRecord(_Record):
    id: int
    study_code: str
    study_name: str
    status: str
    visit_template: tuple[VisitTemplateEntry, ...] = ()
    protocol_version: str = "1.0"
    start_date: date | None = None
    end_date: date | None = None


@dataclass(frozen=True)
class PatientRecord(_Record):
    id: int
    patient_code: str
    registered_organization_id: int
    status: str = "active"
    participating_studies: tuple[int, ...] = ()


@dataclass(frozen=True)
class SurveyRecord(_Record):
    id: int
    clinical_study_id: int
    organization_id: int
    patient_id: int
    name: str
    baseline_date: date
    expected_completion_date: date
    status: str = choices.SurveyStatus.ACTIVE
    total_visits: int = 0
    completed_visits: int = 0
    completion_percentage: int = 0
    assigned_by: str = ""
    conducted_by: str = ""
    description: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class VisitRecord(_Record):
    id: int
    survey_id: int
    clinical_study_id: int
    organization_id: int
    patient_id: int
    visit_number: int
    visit_type: str
    visit_name: str
    scheduled_date: date
    window_start_date: date
    window_end_date: date
    status: str = choices.VisitStatus.SCHEDULED
    sequence: int = 0
    completion_percentage: int = 0
    required_examinations: tuple[str, ...] = ()
    optional_examinations: tuple[str, ...] = ()
    examination_order: tuple[str, ...] = ()
    completed_examinations: tuple[str, ...] = ()
    skipped_examinations: tuple[str, ...] = ()
    actual_date: datetime | None = None
    visit_notes: str = ""
    deviation_reason: str = ""
    conducted_by: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ProtocolDeviationAlert(_Record):
    """方案偏离告警，按需计算，不落库。"""

    visit_id: int
    survey_id: int
    patient_id: int
    deviation_type: str
    severity: str
    description: str
    detected_at: datetime
    window_start_date: date | None = None
    window_end_date: date | None = None
    scheduled_date: date | None = None
    actual_date: datetime | None = None


@dataclass(frozen=True)
class ExaminationConfiguration(_Record):
    total_examinations: int
    required_examinations: tuple[str, ...]
    optional_examinations: tuple[str, ...]
    examination_order: tuple[str, ...]
    completed_examinations: tuple[str, ...]
    skipped_examinations: tuple[str, ...]
    remaining_examinations: tuple[str, ...] = field(default=())


# ---------------------------------------------------------------------------
# 百分比与检查完成度
# ---------------------------------------------------------------------------


def round_percentage(numerator: int, denominator: int, empty: int = 0) -> int:
    """四舍五入（ROUND_HALF_UP）计算百分比；分母为 0 时返回 `empty`。"""

    if denominator <= 0:
        return empty
    value = Decimal(numerator) * 100 / Decimal(denominator)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def configured_examinations(visit: VisitRecord) -> tuple[str, ...]:
    return _unique(visit.required_examinations + visit.optional_examinations)


def examination_completion_percentage(visit: VisitRecord) -> int:
    """
    仪表盘口径：已完成检查数 /（必做 + 选做）检查数。

    与 `required_completion_percentage` 分母不同，两者不可混用。
    未配置任何检查的访视视为 100。
    """

    total = len(visit.required_examinations) + len(visit.optional_examinations)
    return round_percentage(len(visit.completed_examinations), total, empty=100)


def required_completion_percentage(visit: VisitRecord) -> int:
    """放行口径：已完成的必做检查数 / 必做检查数；无必做检查时为 100。"""

    required = visit.required_examinations
    done = sum(1 for exam_id in required if exam_id in visit.completed_examinations)
    return round_percentage(done, len(required), empty=100)


def all_required_complete(visit: VisitRecord) -> bool:
    return set(visit.required_examinations) <= set(visit.completed_examinations)


def missing_required_examinations(visit: VisitRecord) -> tuple[str, ...]:
    return tuple(
        exam_id
        for exam_id in visit.required_examinations
        if exam_id not in visit.completed_examinations
    )


def remaining_examinations(visit: VisitRecord) -> tuple[str, ...]:
    return tuple(
        exam_id
        for exam_id in configured_examinations(visit)
        if exam_id not in visit.completed_examinations
        and exam_id not in visit.skipped_examinations
    )


def mark_examination(visit: VisitRecord, examination_id: str, *, completed: bool) -> VisitRecord:
    """
    【功能说明】
    - 将检查移入“已完成”或“已跳过”集合，并从另一集合中移除；
    - 重复调用结果不变（幂等），两集合始终互斥；
    - 返回新的 VisitRecord，不修改入参。

    【异常说明】
    - ValidationError(code=unknown_examination)：检查不在该访视的必做/选做配置内。
    """

    if examination_id not in configured_examinations(visit):
        raise ValidationError(
            f"Examination {examination_id} is not configured for visit {visit.id}",
            code=ValidationError.UNKNOWN_EXAMINATION,
        )

    target = visit.completed_examinations if completed else visit.skipped_examinations
    other = visit.skipped_examinations if completed else visit.completed_examinations

    if examination_id not in target:
        target = target + (examination_id,)
    other = tuple(exam_id for exam_id in other if exam_id != examination_id)

    if completed:
        updated = dataclasses.replace(visit, completed_examinations=target, skipped_examinations=other)
    else:
        updated = dataclasses.replace(visit, completed_examinations=other, skipped_examinations=target)
    return dataclasses.replace(
        updated, completion_percentage=examination_completion_percentage(updated)
    )


def apply_examination_configuration(
    visit: VisitRecord,
    *,
    required_examinations: Iterable[str],
    optional_examinations: Iterable[str],
    examination_order: Iterable[str],
) -> VisitRecord:
    """覆盖单次访视的检查配置；不再配置的检查从已完成/已跳过集合中剔除。"""

    required = _unique(required_examinations)
    optional = tuple(exam_id for exam_id in _unique(optional_examinations) if exam_id not in required)
    configured = set(required) | set(optional)

    updated = dataclasses.replace(
        visit,
        required_examinations=required,
        optional_examinations=optional,
        examination_order=tuple(examination_order),
        completed_examinations=tuple(e for e in visit.completed_examinations if e in configured),
        skipped_examinations=tuple(e for e in visit.skipped_examinations if e in configured),
    )
    return dataclasses.replace(
        updated, completion_percentage=examination_completion_percentage(updated)
    )


def examination_configuration(visit: VisitRecord) -> ExaminationConfiguration:
    return ExaminationConfiguration(
        total_examinations=len(visit.required_examinations) + len(visit.optional_examinations),
        required_examinations=visit.required_examinations,
        optional_examinations=visit.optional_examinations,
        examination_order=visit.examination_order,
        completed_examinations=visit.completed_examinations,
        skipped_examinations=visit.skipped_examinations,
        remaining_examinations=remaining_examinations(visit),
    )


# ---------------------------------------------------------------------------
# 访视状态机
# ---------------------------------------------------------------------------

_S = choices.VisitStatus

VISIT_TRANSITIONS: dict[str, frozenset[str]] = {
    _S.SCHEDULED: frozenset({_S.IN_PROGRESS, _S.RESCHEDULED, _S.MISSED, _S.CANCELLED, _S.SCHEDULED}),
    _S.IN_PROGRESS: frozenset({_S.COMPLETED, _S.MISSED, _S.CANCELLED}),
    _S.RESCHEDULED: frozenset({_S.SCHEDULED, _S.CANCELLED}),
    _S.COMPLETED: frozenset(),
    _S.MISSED: frozenset(),
    _S.CANCELLED: frozenset(),
}


def is_allowed_transition(current: str, target: str) -> bool:
    return target in VISIT_TRANSITIONS.get(current, frozenset())
