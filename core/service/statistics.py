"""访视与随访计划统计：供机构/研究维度的仪表盘使用。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from core.conf import scheduling_config
from core.exceptions import ValidationError
from core.models import choices
from core.service.deviation import detect_protocol_deviations
from core.service.records import SurveyRecord, VisitRecord, _Record, round_percentage
from core.service.stores import SchedulingStores, django_stores

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExaminationStats(_Record):
    total_examinations: int = 0
    completed_examinations: int = 0
    skipped_examinations: int = 0
    completion_rate: int = 0


@dataclass(frozen=True)
class VisitStatistics(_Record):
    total_visits: int = 0
    completed_visits: int = 0
    in_progress_visits: int = 0
    scheduled_visits: int = 0
    missed_visits: int = 0
    average_completion_percentage: int = 0
    protocol_deviations: int = 0
    examination_stats: ExaminationStats = ExaminationStats()


@dataclass(frozen=True)
class RecentActivity(_Record):
    survey_id: int
    patient_code: str
    study_name: str
    status: str
    last_update: datetime | None


@dataclass(frozen=True)
class SurveyDashboardStats(_Record):
    total_surveys: int = 0
    active_surveys: int = 0
    completed_surveys: int = 0
    withdrawn_surveys: int = 0
    average_completion: int = 0
    recent_activity: tuple[RecentActivity, ...] = ()


def _round_mean(values: Sequence[int]) -> int:
    if not values:
        return 0
    mean = Decimal(sum(values)) / Decimal(len(values))
    return int(mean.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def visit_statistics(
    visits: Iterable[VisitRecord], now: datetime | date | None = None
) -> VisitStatistics:
    """
    【功能说明】
    - 统计一批访视的状态分布、平均完成度、方案偏离数与检查完成情况。

    【返回值说明】
    - VisitStatistics；输入为空时全部为 0。
    """

    visits = list(visits)
    if not visits:
        return VisitStatistics()

    def _count(status: str) -> int:
        return sum(1 for visit in visits if visit.status == status)

    total_exams = sum(len(v.required_examinations) + len(v.optional_examinations) for v in visits)
    completed_exams = sum(len(v.completed_examinations) for v in visits)
    skipped_exams = sum(len(v.skipped_examinations) for v in visits)

    return VisitStatistics(
        total_visits=len(visits),
        completed_visits=_count(choices.VisitStatus.COMPLETED),
        in_progress_visits=_count(choices.VisitStatus.IN_PROGRESS),
        scheduled_visits=_count(choices.VisitStatus.SCHEDULED),
        missed_visits=_count(choices.VisitStatus.MISSED),
        average_completion_percentage=_round_mean([v.completion_percentage for v in visits]),
        protocol_deviations=len(detect_protocol_deviations(visits, now)),
        examination_stats=ExaminationStats(
            total_examinations=total_exams,
            completed_examinations=completed_exams,
            skipped_examinations=skipped_exams,
            completion_rate=round_percentage(completed_exams, total_exams, empty=0),
        ),
    )


def survey_dashboard_stats(
    surveys: Iterable[SurveyRecord],
    stores: SchedulingStores,
    limit: int | None = None,
) -> SurveyDashboardStats:
    """
    【功能说明】
    - 统计随访计划状态分布与平均完成度；
    - recent_activity 取最近更新的 `limit` 条（默认 RECENT_ACTIVITY_LIMIT），
      解析受试者编码与研究名称；无法解析的计划跳过，仅记 debug 日志。
    """

    surveys = list(surveys)
    if limit is None:
        limit = scheduling_config()["RECENT_ACTIVITY_LIMIT"]

    def _count(status: str) -> int:
        return sum(1 for survey in surveys if survey.status == status)

    recent = sorted(
        surveys,
        key=lambda s: (s.updated_at is not None, s.updated_at or datetime.min, s.id),
        reverse=True,
    )[:limit]

    activity: list[RecentActivity] = []
    for survey in recent:
        patient = stores.patients.find_by_id(survey.patient_id)
        protocol = stores.protocols.find_by_id(survey.clinical_study_id)
        if patient is None or protocol is None:
            logger.debug(
                "最近动态跳过无法解析的随访计划: survey_id=%s, patient_found=%s, protocol_found=%s",
                survey.id,
                patient is not None,
                protocol is not None,
            )
            continue
        activity.append(
            RecentActivity(
                survey_id=survey.id,
                patient_code=patient.patient_code,
                study_name=protocol.study_name,
                status=survey.status,
                last_update=survey.updated_at,
            )
        )

    return SurveyDashboardStats(
        total_surveys=len(surveys),
        active_surveys=_count(choices.SurveyStatus.ACTIVE),
        completed_surveys=_count(choices.SurveyStatus.COMPLETED),
        withdrawn_surveys=_count(choices.SurveyStatus.WITHDRAWN),
        average_completion=_round_mean([s.completion_percentage for s in surveys]),
        recent_activity=tuple(activity),
    )


class StatisticsService:
    def __init__(self, stores: SchedulingStores | None = None):
        self.stores = stores or django_stores()

    def get_visit_statistics(
        self,
        survey_id: int | None = None,
        organization_id: int | None = None,
        now: datetime | date | None = None,
    ) -> VisitStatistics:
        """按随访计划或机构统计访视；两者都提供时以随访计划为准。"""

        if survey_id is not None:
            visits = self.stores.visits.find_by_survey(survey_id)
        elif organization_id is not None:
            visits = self.stores.visits.find_by_organization(organization_id)
        else:
            raise ValidationError(
                "Either survey_id or organization_id is required",
                code=ValidationError.MISSING_SCOPE,
            )
        return visit_statistics(visits, now)

    def get_survey_dashboard_stats(
        self,
        organization_id: int | None = None,
        clinical_study_id: int | None = None,
    ) -> SurveyDashboardStats:
        """按机构或研究统计随访计划；两者都提供时取机构下属于该研究的计划。"""

        if organization_id is not None:
            surveys = self.stores.surveys.find_by_organization(organization_id)
            if clinical_study_id is not None:
                surveys = [s for s in surveys if s.clinical_study_id == clinical_study_id]
        elif clinical_study_id is not None:
            surveys = self.stores.surveys.find_by_study(clinical_study_id)
        else:
            raise ValidationError(
                "Either organization_id or clinical_study_id is required",
                code=ValidationError.MISSING_SCOPE,
            )
        return survey_dashboard_stats(surveys, self.stores)
