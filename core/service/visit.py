"""访视生命周期服务：排期、开始、检查记录、完成、改期、失访与取消。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from django.utils import timezone

from core.conf import scheduling_config
from core.exceptions import NotFoundError, ValidationError
from core.models import choices
from core.service import deviation
from core.service.protocol import is_within_window, validate_date_range
from core.service.records import (
    ExaminationConfiguration,
    ProtocolDeviationAlert,
    SurveyRecord,
    VisitRecord,
    _Record,
    all_required_complete,
    examination_configuration,
    is_allowed_transition,
)
from core.service.stores import SchedulingStores, django_stores
from core.service.survey import compute_survey_progress

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleResult(_Record):
    visit: VisitRecord
    protocol_compliant: bool
    deviations: tuple[ProtocolDeviationAlert, ...] = ()


@dataclass(frozen=True)
class ExaminationResult(_Record):
    visit: VisitRecord
    completion_percentage: int
    all_required_complete: bool


@dataclass(frozen=True)
class VisitConfiguration(_Record):
    visit: VisitRecord
    examination_config: ExaminationConfiguration


class VisitService:
    """
    【功能说明】
    - 驱动单次访视在状态机上的流转，并在访视完成时重算所属随访计划的进度；
    - 状态机默认仅告警：非法流转记 warning 日志后照常执行；
      SCHEDULING_CONFIG["ENFORCE_VISIT_TRANSITIONS"] = True 时抛出 ValidationError。
    """

    def __init__(self, stores: SchedulingStores | None = None):
        self.stores = stores or django_stores()

    # ------------------------------------------------------------------
    # 内部工具
    # ------------------------------------------------------------------

    def _get_visit(self, visit_id: int) -> VisitRecord:
        visit = self.stores.visits.find_by_id(visit_id)
        if visit is None:
            raise NotFoundError("Visit", visit_id)
        return visit

    def _check_transition(self, visit: VisitRecord, target: str) -> None:
        if is_allowed_transition(visit.status, target):
            return
        message = f"Visit {visit.id} cannot move from {visit.status} to {target}"
        if scheduling_config()["ENFORCE_VISIT_TRANSITIONS"]:
            raise ValidationError(message, code=ValidationError.INVALID_TRANSITION)
        logger.warning("访视状态流转不在状态机内: %s", message)

    def _recompute_survey(self, survey: SurveyRecord) -> SurveyRecord:
        visits = self.stores.visits.find_by_survey(survey.id)
        completed, total, percentage, status = compute_survey_progress(visits, survey.status)
        return self.stores.surveys.update_progress(
            survey.id,
            completion_percentage=percentage,
            completed_visits=completed,
            total_visits=total,
            status=status,
        )

    # ------------------------------------------------------------------
    # 排期
    # ------------------------------------------------------------------

    def schedule_visit(
        self,
        survey_id: int,
        visit_id: int,
        scheduled_date: date,
        conducted_by: str,
        notes: str | None = None,
    ) -> ScheduleResult:
        """
        【功能说明】
        - 将访视排到指定日期，并与访视已有时间窗比对（时间窗不重算）；
        - 超窗时返回 protocol_compliant=False 及一条 window_violation 告警，写入照常进行。

        【异常说明】
        - NotFoundError: 随访计划不存在，或该计划下不存在此访视。
        """

        if self.stores.surveys.find_by_id(survey_id) is None:
            raise NotFoundError("Survey", survey_id)
        visit = self.stores.visits.find_by_survey_and_visit(survey_id, visit_id)
        if visit is None:
            raise NotFoundError("Visit", visit_id)

        self._check_transition(visit, choices.VisitStatus.SCHEDULED)

        deviations: tuple[ProtocolDeviationAlert, ...] = ()
        compliant = is_within_window(scheduled_date, visit.window_start_date, visit.window_end_date)
        if not compliant:
            alert = deviation.window_violation_alert(visit, scheduled_date, timezone.now())
            deviations = (alert,)
            logger.warning(
                "访视排期超出方案时间窗: visit_id=%s, %s", visit.id, alert.description
            )

        fields = {
            "scheduled_date": scheduled_date,
            "status": choices.VisitStatus.SCHEDULED,
            "conducted_by": conducted_by,
        }
        if notes is not None:
            fields["visit_notes"] = notes
        updated = self.stores.visits.update(visit.id, fields)

        logger.info(
            "访视已排期: visit_id=%s, date=%s, compliant=%s",
            visit.id,
            scheduled_date.isoformat(),
            compliant,
        )
        return ScheduleResult(visit=updated, protocol_compliant=compliant, deviations=deviations)

    def reschedule_visit(
        self, visit_id: int, new_date: date, reason: str | None = None
    ) -> ScheduleResult:
        """先置为 rescheduled 并记录原因，再按新日期重新排期（含超窗判断）。"""

        visit = self._get_visit(visit_id)
        self._check_transition(visit, choices.VisitStatus.RESCHEDULED)

        with self.stores.atomic():
            rescheduled = self.stores.visits.update(
                visit.id,
                {
                    "status": choices.VisitStatus.RESCHEDULED,
                    "deviation_reason": reason or "Visit rescheduled",
                },
            )
            result = self.schedule_visit(
                rescheduled.survey_id, rescheduled.id, new_date, rescheduled.conducted_by
            )

        logger.info("访视已改期: visit_id=%s, new_date=%s", visit.id, new_date.isoformat())
        return result

    # ------------------------------------------------------------------
    # 执行
    # ------------------------------------------------------------------

    def start_visit(self, visit_id: int, conducted_by: str | None = None) -> VisitRecord:
        visit = self._get_visit(visit_id)
        self._check_transition(visit, choices.VisitStatus.IN_PROGRESS)

        fields = {"status": choices.VisitStatus.IN_PROGRESS, "actual_date": timezone.now()}
        if conducted_by:
            fields["conducted_by"] = conducted_by
        updated = self.stores.visits.update(visit.id, fields)
        logger.info("访视开始: visit_id=%s", visit.id)
        return updated

    def complete_examination(self, visit_id: int, examination_id: str) -> ExaminationResult:
        """记录检查完成；检查必须属于该访视的必做或选做配置。"""

        self._get_visit(visit_id)
        updated = self.stores.visits.complete_examination(visit_id, examination_id)
        return ExaminationResult(
            visit=updated,
            completion_percentage=updated.completion_percentage,
            all_required_complete=all_required_complete(updated),
        )

    def skip_examination(self, visit_id: int, examination_id: str) -> ExaminationResult:
        self._get_visit(visit_id)
        updated = self.stores.visits.skip_examination(visit_id, examination_id)
        return ExaminationResult(
            visit=updated,
            completion_percentage=updated.completion_percentage,
            all_required_complete=all_required_complete(updated),
        )

    def complete_visit(self, visit_id: int) -> tuple[VisitRecord, SurveyRecord]:
        """
        【功能说明】
        - 访视置为 completed，actual_date 未填写时记为当前时间；
        - 重算所属随访计划的已完成访视数与完成百分比，达到 100 时计划置为 completed。

        【注意】
        - 完成由调用方确认，不校验必做检查是否全部完成；漏做的必做检查由偏离检测报告。
        """

        visit = self._get_visit(visit_id)
        survey = self.stores.surveys.find_by_id(visit.survey_id)
        if survey is None:
            raise NotFoundError("Survey", visit.survey_id)
        self._check_transition(visit, choices.VisitStatus.COMPLETED)

        with self.stores.atomic():
            updated = self.stores.visits.complete_visit(visit.id, timezone.now())
            survey = self._recompute_survey(survey)

        logger.info(
            "访视完成: visit_id=%s, survey_id=%s, survey_progress=%s%%",
            visit.id,
            survey.id,
            survey.completion_percentage,
        )
        return updated, survey

    def mark_visit_missed(self, visit_id: int, reason: str | None = None) -> VisitRecord:
        visit = self._get_visit(visit_id)
        self._check_transition(visit, choices.VisitStatus.MISSED)
        updated = self.stores.visits.update(
            visit.id,
            {"status": choices.VisitStatus.MISSED, "deviation_reason": reason or "Visit missed"},
        )
        logger.info("访视失访: visit_id=%s", visit.id)
        return updated

    def cancel_visit(self, visit_id: int, reason: str | None = None) -> VisitRecord:
        visit = self._get_visit(visit_id)
        self._check_transition(visit, choices.VisitStatus.CANCELLED)
        updated = self.stores.visits.update(
            visit.id,
            {
                "status": choices.VisitStatus.CANCELLED,
                "deviation_reason": reason or "Visit cancelled",
            },
        )
        logger.info("访视取消: visit_id=%s", visit.id)
        return updated

    # ------------------------------------------------------------------
    # 检查配置
    # ------------------------------------------------------------------

    def get_visit_configuration(self, visit_id: int) -> VisitConfiguration:
        visit = self._get_visit(visit_id)
        return VisitConfiguration(visit=visit, examination_config=examination_configuration(visit))

    def update_examination_configuration(
        self,
        visit_id: int,
        required_examinations: list[str],
        optional_examinations: list[str],
        examination_order: list[str] | None = None,
    ) -> VisitRecord:
        """
        单次访视的检查配置覆盖（动态方案）。

        不再配置的检查从已完成/已跳过集合中剔除，完成百分比随之重算。
        examination_order 缺省为 必做 + 选做 的顺序。
        与访视模板规则一致，至少需要配置一项检查（必做或选做）。
        """

        self._get_visit(visit_id)
        if not required_examinations and not optional_examinations:
            raise ValidationError(
                f"Visit {visit_id}: At least one examination (required or optional) must be specified",
                code=ValidationError.INVALID_VISIT_TEMPLATE,
            )
        if examination_order is None:
            examination_order = [*required_examinations, *optional_examinations]
        updated = self.stores.visits.update_examination_configuration(
            visit_id,
            required_examinations=required_examinations,
            optional_examinations=optional_examinations,
            examination_order=examination_order,
        )
        logger.info(
            "访视检查配置已更新: visit_id=%s, required=%s, optional=%s",
            visit_id,
            len(updated.required_examinations),
            len(updated.optional_examinations),
        )
        return updated

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def get_visits_in_range(
        self, organization_id: int, start_date: date, end_date: date
    ) -> list[VisitRecord]:
        """机构下状态为 scheduled 且计划日期落在 [start_date, end_date] 的访视，按日期排序。"""

        validate_date_range(start_date, end_date)
        visits = [
            visit
            for visit in self.stores.visits.find_by_organization(organization_id)
            if visit.status == choices.VisitStatus.SCHEDULED
            and start_date <= visit.scheduled_date <= end_date
        ]
        return sorted(visits, key=lambda v: (v.scheduled_date, v.id))

    def get_visits_due(
        self,
        organization_id: int,
        days_ahead: int | None = None,
        today: date | None = None,
    ) -> list[VisitRecord]:
        if days_ahead is None:
            days_ahead = scheduling_config()["VISITS_DUE_DAYS_AHEAD"]
        today = today or timezone.localdate()
        return self.get_visits_in_range(
            organization_id, today, today + timedelta(days=max(days_ahead, 1))
        )

    def get_overdue_visits(self, organization_id: int, today: date | None = None) -> list[VisitRecord]:
        """时间窗已结束且尚未完成/失访的访视。"""

        today = today or timezone.localdate()
        exempt = (choices.VisitStatus.COMPLETED, choices.VisitStatus.MISSED)
        return [
            visit
            for visit in self.stores.visits.find_by_organization(organization_id)
            if visit.window_end_date < today and visit.status not in exempt
        ]

    def detect_protocol_deviations(
        self, organization_id: int, now: datetime | date | None = None
    ) -> list[ProtocolDeviationAlert]:
        visits = self.stores.visits.find_by_organization(organization_id)
        alerts = deviation.detect_protocol_deviations(visits, now)
        if alerts:
            logger.warning(
                "检测到方案偏离: organization_id=%s, count=%s", organization_id, len(alerts)
            )
        return alerts
