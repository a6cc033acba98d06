"""随访计划（Survey）服务：按研究方案为受试者生成排程，并维护计划进度与状态。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from django.utils import timezone

from core.exceptions import NotFoundError, ValidationError
from core.models import choices
from core.service.protocol import (
    compute_expected_completion_date,
    compute_visit_window,
    validate_visit_template,
)
from core.service.records import (
    PatientRecord,
    ProtocolRecord,
    SurveyRecord,
    VisitRecord,
    _Record,
    round_percentage,
)
from core.service.stores import SchedulingStores, django_stores

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SurveyGenerationSummary(_Record):
    total_visits: int
    generated_visits: int
    estimated_completion_date: date


@dataclass(frozen=True)
class SurveyGenerationResult(_Record):
    survey: SurveyRecord
    visits: tuple[VisitRecord, ...]
    summary: SurveyGenerationSummary


@dataclass(frozen=True)
class SurveyDetails(_Record):
    survey: SurveyRecord
    protocol: ProtocolRecord
    patient: PatientRecord
    visits: tuple[VisitRecord, ...]


def compute_survey_progress(
    visits: list[VisitRecord], current_status: str
) -> tuple[int, int, int, str]:
    """
    按访视状态计算计划进度。

    返回 (completed_visits, total_visits, completion_percentage, status)；
    完成百分比达到 100 时计划状态置为 completed，否则保持 current_status。
    已退出（withdrawn）的计划状态不再变化。
    """

    total = len(visits)
    completed = sum(1 for visit in visits if visit.status == choices.VisitStatus.COMPLETED)
    percentage = round_percentage(completed, total, empty=0)
    status = current_status
    if percentage == 100 and current_status != choices.SurveyStatus.WITHDRAWN:
        status = choices.SurveyStatus.COMPLETED
    return completed, total, percentage, status


class SurveyService:
    """
    【功能说明】
    - 随访计划生成器：研究方案 + 基线日期 -> 随访计划 + 有序访视；
    - 计划查询、进度重算与退出（级联取消未结束访视）。

    【使用方法】
    >>> service = SurveyService()  # 默认使用 Django ORM 存储
    >>> result = service.generate(study.id, org.id, patient.id, date(2024, 1, 1), "crc01")
    """

    def __init__(self, stores: SchedulingStores | None = None):
        self.stores = stores or django_stores()

    # ------------------------------------------------------------------
    # 生成
    # ------------------------------------------------------------------

    def generate(
        self,
        clinical_study_id: int,
        organization_id: int,
        patient_id: int,
        baseline_date: date,
        assigned_by: str,
        conducted_by: str | None = None,
        custom_name: str | None = None,
    ) -> SurveyGenerationResult:
        """
        【功能说明】
        - 校验前置条件后，一次性创建随访计划及其全部访视；
        - 访视按模板顺序生成，时间窗按模板偏移计算；
        - 将研究 ID 并入受试者的参与研究集合。

        【参数说明】
        - clinical_study_id / organization_id / patient_id: 研究方案、入组机构、受试者 ID。
        - baseline_date: 基线日期（第 0 天）。
        - assigned_by: 分配人；conducted_by: 执行人，缺省时访视执行人取分配人。
        - custom_name: 自定义计划名称，缺省为 `受试者编码-研究编号-当天日期`。

        【返回值说明】
        - SurveyGenerationResult：survey、visits（模板顺序）、summary。

        【异常说明】
        - NotFoundError: 研究方案或受试者不存在。
        - ValidationError: 方案非 active/recruiting、受试者不属于入组机构、
          已存在进行中的计划、访视模板不合法。
        - StoreError: 存储失败；Django 存储下整个生成过程在同一事务内，失败即整体回滚。
        """

        stores = self.stores
        protocol = stores.protocols.find_by_id(clinical_study_id)
        if protocol is None:
            raise NotFoundError("ClinicalStudy", clinical_study_id)
        patient = stores.patients.find_by_id(patient_id)
        if patient is None:
            raise NotFoundError("Patient", patient_id)

        if protocol.status not in choices.GENERATABLE_STUDY_STATUSES:
            raise ValidationError(
                f"Clinical study is not active: {protocol.status}",
                code=ValidationError.PROTOCOL_NOT_ACTIVE,
            )
        if patient.registered_organization_id != organization_id:
            raise ValidationError(
                f"Patient does not belong to organization: {organization_id}",
                code=ValidationError.ORGANIZATION_MISMATCH,
            )
        active = self._find_active_survey(patient.id, protocol.id)
        if active is not None:
            raise ValidationError(
                f"Patient already has active survey in study: {active.id}",
                code=ValidationError.DUPLICATE_ACTIVE_SURVEY,
            )

        template = protocol.visit_template
        validate_visit_template(template)
        expected_completion_date = compute_expected_completion_date(template, baseline_date)

        name = custom_name or (
            f"{patient.patient_code}-{protocol.study_code}-{timezone.localdate().isoformat()}"
        )

        with stores.atomic():
            survey = stores.surveys.create(
                {
                    "clinical_study_id": protocol.id,
                    "organization_id": organization_id,
                    "patient_id": patient.id,
                    "name": name,
                    "description": (
                        f"Generated survey for {patient.patient_code} in study {protocol.study_name}"
                    ),
                    "baseline_date": baseline_date,
                    "expected_completion_date": expected_completion_date,
                    "status": choices.SurveyStatus.ACTIVE,
                    "total_visits": len(template),
                    "completed_visits": 0,
                    "completion_percentage": 0,
                    "assigned_by": assigned_by,
                    "conducted_by": conducted_by or "",
                }
            )

            visits: list[VisitRecord] = []
            for sequence, entry in enumerate(template):
                window = compute_visit_window(entry, baseline_date)
                visits.append(
                    stores.visits.create(
                        {
                            "survey_id": survey.id,
                            "clinical_study_id": protocol.id,
                            "organization_id": organization_id,
                            "patient_id": patient.id,
                            "sequence": sequence,
                            "visit_number": entry.visit_number,
                            "visit_type": entry.visit_type,
                            "visit_name": entry.visit_name,
                            "scheduled_date": window.scheduled_date,
                            "window_start_date": window.window_start_date,
                            "window_end_date": window.window_end_date,
                            "status": choices.VisitStatus.SCHEDULED,
                            "completion_percentage": 0,
                            "required_examinations": list(entry.required_examinations),
                            "optional_examinations": list(entry.optional_examinations),
                            "examination_order": list(entry.examination_order),
                            "completed_examinations": [],
                            "skipped_examinations": [],
                            "conducted_by": conducted_by or assigned_by,
                        }
                    )
                )

            if protocol.id not in patient.participating_studies:
                stores.patients.update(
                    patient.id,
                    {"participating_studies": [*patient.participating_studies, protocol.id]},
                )

        logger.info(
            "生成随访计划: survey_id=%s, patient_id=%s, study_id=%s, visits=%s",
            survey.id,
            patient.id,
            protocol.id,
            len(visits),
        )
        return SurveyGenerationResult(
            survey=survey,
            visits=tuple(visits),
            summary=SurveyGenerationSummary(
                total_visits=len(template),
                generated_visits=len(visits),
                estimated_completion_date=expected_completion_date,
            ),
        )

    def _find_active_survey(self, patient_id: int, clinical_study_id: int) -> SurveyRecord | None:
        for survey in self.stores.surveys.find_by_patient(patient_id):
            if (
                survey.clinical_study_id == clinical_study_id
                and survey.status == choices.SurveyStatus.ACTIVE
            ):
                return survey
        return None

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def get_survey(self, survey_id: int) -> SurveyRecord:
        survey = self.stores.surveys.find_by_id(survey_id)
        if survey is None:
            raise NotFoundError("Survey", survey_id)
        return survey

    def get_survey_with_details(self, survey_id: int) -> SurveyDetails:
        """随访计划 + 研究方案 + 受试者 + 全部访视；任一缺失抛出 NotFoundError。"""

        survey = self.get_survey(survey_id)
        protocol = self.stores.protocols.find_by_id(survey.clinical_study_id)
        if protocol is None:
            raise NotFoundError("ClinicalStudy", survey.clinical_study_id)
        patient = self.stores.patients.find_by_id(survey.patient_id)
        if patient is None:
            raise NotFoundError("Patient", survey.patient_id)
        visits = self.stores.visits.find_by_survey(survey_id)
        return SurveyDetails(survey=survey, protocol=protocol, patient=patient, visits=tuple(visits))

    def get_surveys_by_organization(
        self,
        organization_id: int,
        *,
        status: str | None = None,
        clinical_study_id: int | None = None,
        patient_id: int | None = None,
    ) -> list[SurveyRecord]:
        surveys = self.stores.surveys.find_by_organization(organization_id)
        if status:
            surveys = [s for s in surveys if s.status == status]
        if clinical_study_id is not None:
            surveys = [s for s in surveys if s.clinical_study_id == clinical_study_id]
        if patient_id is not None:
            surveys = [s for s in surveys if s.patient_id == patient_id]
        return surveys

    def get_surveys_by_study(
        self,
        clinical_study_id: int,
        *,
        status: str | None = None,
        organization_id: int | None = None,
    ) -> list[SurveyRecord]:
        surveys = self.stores.surveys.find_by_study(clinical_study_id)
        if status:
            surveys = [s for s in surveys if s.status == status]
        if organization_id is not None:
            surveys = [s for s in surveys if s.organization_id == organization_id]
        return surveys

    # ------------------------------------------------------------------
    # 进度与状态
    # ------------------------------------------------------------------

    def update_survey_progress(self, survey_id: int) -> SurveyRecord:
        """按当前访视状态重算已完成访视数、完成百分比与计划状态。"""

        survey = self.get_survey(survey_id)
        visits = self.stores.visits.find_by_survey(survey_id)
        completed, total, percentage, status = compute_survey_progress(visits, survey.status)
        return self.stores.surveys.update_progress(
            survey_id,
            completion_percentage=percentage,
            completed_visits=completed,
            total_visits=total,
            status=status,
        )

    def withdraw_survey(self, survey_id: int, reason: str | None = None) -> SurveyRecord:
        """
        【功能说明】
        - 受试者退出：计划状态置为 withdrawn；
        - 级联取消所有 scheduled / in_progress 状态的访视；
        - 传入 reason 时，被取消访视记录偏离原因 `Survey withdrawn: <reason>`。
        """

        self.get_survey(survey_id)
        open_statuses = (choices.VisitStatus.SCHEDULED, choices.VisitStatus.IN_PROGRESS)

        with self.stores.atomic():
            survey = self.stores.surveys.update_status(survey_id, choices.SurveyStatus.WITHDRAWN)
            cancelled = 0
            for visit in self.stores.visits.find_by_survey(survey_id):
                if visit.status not in open_statuses:
                    continue
                fields = {"status": choices.VisitStatus.CANCELLED}
                if reason:
                    fields["deviation_reason"] = f"Survey withdrawn: {reason}"
                self.stores.visits.update(visit.id, fields)
                cancelled += 1

        logger.info("随访计划退出: survey_id=%s, cancelled_visits=%s", survey_id, cancelled)
        return survey
