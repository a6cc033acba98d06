"""存储协作方接口与基于 Django ORM 的实现。

【设计约定】
- 服务层只依赖本模块的接口类，通过 `SchedulingStores` 显式注入，不存在进程级单例；
- 接口方法一律返回 records 中的不可变记录，不向上暴露 ORM 实例；
- Django 实现把数据库异常（DatabaseError）包装为 StoreError 原样上抛，不做重试。
"""

from __future__ import annotations

import functools
import logging
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable

from django.db import DatabaseError, IntegrityError, transaction

from core.exceptions import NotFoundError, StoreError, ValidationError
from core.models import ClinicalStudy, Survey, Visit, choices
from core.service.protocol import parse_visit_template
from core.service.records import (
    PatientRecord,
    ProtocolRecord,
    SurveyRecord,
    VisitRecord,
    apply_examination_configuration,
    mark_examination,
)
from users.models import PatientProfile

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# 接口
# ---------------------------------------------------------------------------


class ProtocolStore:
    def find_by_id(self, clinical_study_id: int) -> ProtocolRecord | None:
        raise NotImplementedError


class PatientStore:
    def find_by_id(self, patient_id: int) -> PatientRecord | None:
        raise NotImplementedError

    def update(self, patient_id: int, fields: dict[str, Any]) -> PatientRecord:
        raise NotImplementedError


class SurveyStore:
    def create(self, fields: dict[str, Any]) -> SurveyRecord:
        raise NotImplementedError

    def find_by_id(self, survey_id: int) -> SurveyRecord | None:
        raise NotImplementedError

    def find_by_patient(self, patient_id: int) -> list[SurveyRecord]:
        raise NotImplementedError

    def find_by_organization(self, organization_id: int) -> list[SurveyRecord]:
        raise NotImplementedError

    def find_by_study(self, clinical_study_id: int) -> list[SurveyRecord]:
        raise NotImplementedError

    def update(self, survey_id: int, fields: dict[str, Any]) -> SurveyRecord:
        raise NotImplementedError

    def update_status(self, survey_id: int, status: str) -> SurveyRecord:
        raise NotImplementedError

    def update_progress(
        self,
        survey_id: int,
        *,
        completion_percentage: int,
        completed_visits: int,
        total_visits: int,
        status: str,
    ) -> SurveyRecord:
        raise NotImplementedError


class VisitStore:
    def create(self, fields: dict[str, Any]) -> VisitRecord:
        raise NotImplementedError

    def find_by_id(self, visit_id: int) -> VisitRecord | None:
        raise NotImplementedError

    def find_by_survey(self, survey_id: int) -> list[VisitRecord]:
        raise NotImplementedError

    def find_by_organization(self, organization_id: int) -> list[VisitRecord]:
        raise NotImplementedError

    def find_by_survey_and_visit(self, survey_id: int, visit_id: int) -> VisitRecord | None:
        raise NotImplementedError

    def update(self, visit_id: int, fields: dict[str, Any]) -> VisitRecord:
        raise NotImplementedError

    def update_status(self, visit_id: int, status: str) -> VisitRecord:
        raise NotImplementedError

    def complete_examination(self, visit_id: int, examination_id: str) -> VisitRecord:
        raise NotImplementedError

    def skip_examination(self, visit_id: int, examination_id: str) -> VisitRecord:
        raise NotImplementedError

    def complete_visit(self, visit_id: int, actual_date: datetime) -> VisitRecord:
        raise NotImplementedError

    def update_examination_configuration(
        self,
        visit_id: int,
        *,
        required_examinations: Iterable[str],
        optional_examinations: Iterable[str],
        examination_order: Iterable[str],
    ) -> VisitRecord:
        raise NotImplementedError


@dataclass(frozen=True)
class SchedulingStores:
    """
    一次调用所需的全部存储协作方。

    `atomic` 返回一个上下文管理器，用于包裹多次写入；不支持事务的实现保留默认的
    nullcontext，此时多步写入中途失败不会回滚。
    """

    protocols: ProtocolStore
    patients: PatientStore
    surveys: SurveyStore
    visits: VisitStore
    atomic: Callable[[], AbstractContextManager] = field(default=nullcontext)


# ---------------------------------------------------------------------------
# Django ORM 实现
# ---------------------------------------------------------------------------


def _store_operation(operation: str):
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except DatabaseError as exc:
                logger.exception("存储操作失败: %s", operation)
                raise StoreError(operation, str(exc)) from exc

        return wrapper

    return decorator


def _to_db(fields: dict[str, Any]) -> dict[str, Any]:
    return {
        key: list(value) if isinstance(value, tuple) else value
        for key, value in fields.items()
    }


def _save_fields(obj, fields: dict[str, Any]) -> None:
    for key, value in _to_db(fields).items():
        setattr(obj, key, value)
    obj.save(update_fields=[*fields.keys(), "updated_at"])


def _protocol_record(obj: ClinicalStudy) -> ProtocolRecord:
    return ProtocolRecord(
        id=obj.id,
        study_code=obj.study_code,
        study_name=obj.study_name,
        status=obj.status,
        visit_template=parse_visit_template(obj.visit_template),
        protocol_version=obj.protocol_version,
        start_date=obj.start_date,
        end_date=obj.end_date,
    )


def _patient_record(obj: PatientProfile) -> PatientRecord:
    return PatientRecord(
        id=obj.id,
        patient_code=obj.patient_code,
        registered_organization_id=obj.registered_organization_id,
        status=obj.status,
        participating_studies=tuple(obj.participating_studies or ()),
    )


def _survey_record(obj: Survey) -> SurveyRecord:
    return SurveyRecord(
        id=obj.id,
        clinical_study_id=obj.clinical_study_id,
        organization_id=obj.organization_id,
        patient_id=obj.patient_id,
        name=obj.name,
        description=obj.description,
        baseline_date=obj.baseline_date,
        expected_completion_date=obj.expected_completion_date,
        status=obj.status,
        total_visits=obj.total_visits,
        completed_visits=obj.completed_visits,
        completion_percentage=obj.completion_percentage,
        assigned_by=obj.assigned_by,
        conducted_by=obj.conducted_by,
        created_at=obj.created_at,
        updated_at=obj.updated_at,
    )


def _visit_record(obj: Visit) -> VisitRecord:
    return VisitRecord(
        id=obj.id,
        survey_id=obj.survey_id,
        clinical_study_id=obj.clinical_study_id,
        organization_id=obj.organization_id,
        patient_id=obj.patient_id,
        sequence=obj.sequence,
        visit_number=obj.visit_number,
        visit_type=obj.visit_type,
        visit_name=obj.visit_name,
        scheduled_date=obj.scheduled_date,
        window_start_date=obj.window_start_date,
        window_end_date=obj.window_end_date,
        actual_date=obj.actual_date,
        status=obj.status,
        completion_percentage=obj.completion_percentage,
        required_examinations=tuple(obj.required_examinations or ()),
        optional_examinations=tuple(obj.optional_examinations or ()),
        examination_order=tuple(obj.examination_order or ()),
        completed_examinations=tuple(obj.completed_examinations or ()),
        skipped_examinations=tuple(obj.skipped_examinations or ()),
        visit_notes=obj.visit_notes,
        deviation_reason=obj.deviation_reason,
        conducted_by=obj.conducted_by,
        created_at=obj.created_at,
        updated_at=obj.updated_at,
    )


class DjangoProtocolStore(ProtocolStore):
    @_store_operation("protocol.find_by_id")
    def find_by_id(self, clinical_study_id: int) -> ProtocolRecord | None:
        obj = ClinicalStudy.objects.filter(pk=clinical_study_id).first()
        return _protocol_record(obj) if obj else None


class DjangoPatientStore(PatientStore):
    @_store_operation("patient.find_by_id")
    def find_by_id(self, patient_id: int) -> PatientRecord | None:
        obj = PatientProfile.objects.filter(pk=patient_id).first()
        return _patient_record(obj) if obj else None

    @_store_operation("patient.update")
    def update(self, patient_id: int, fields: dict[str, Any]) -> PatientRecord:
        obj = PatientProfile.objects.filter(pk=patient_id).first()
        if obj is None:
            raise NotFoundError("Patient", patient_id)
        _save_fields(obj, fields)
        return _patient_record(obj)


class DjangoSurveyStore(SurveyStore):
    @_store_operation("survey.create")
    def create(self, fields: dict[str, Any]) -> SurveyRecord:
        try:
            with transaction.atomic():
                obj = Survey.objects.create(**_to_db(fields))
        except IntegrityError as exc:
            # 仅当确实已有 active 计划时才视为命中条件唯一约束，其余完整性错误按存储失败上抛
            if not self._conflicts_with_active_survey(fields):
                raise
            raise ValidationError(
                "Patient already has an active survey in this study",
                code=ValidationError.DUPLICATE_ACTIVE_SURVEY,
            ) from exc
        return _survey_record(obj)

    @staticmethod
    def _conflicts_with_active_survey(fields: dict[str, Any]) -> bool:
        if fields.get("status", choices.SurveyStatus.ACTIVE) != choices.SurveyStatus.ACTIVE:
            return False
        return Survey.objects.filter(
            patient_id=fields.get("patient_id"),
            clinical_study_id=fields.get("clinical_study_id"),
            status=choices.SurveyStatus.ACTIVE,
        ).exists()

    @_store_operation("survey.find_by_id")
    def find_by_id(self, survey_id: int) -> SurveyRecord | None:
        obj = Survey.objects.filter(pk=survey_id).first()
        return _survey_record(obj) if obj else None

    @_store_operation("survey.find_by_patient")
    def find_by_patient(self, patient_id: int) -> list[SurveyRecord]:
        return [_survey_record(obj) for obj in Survey.objects.filter(patient_id=patient_id)]

    @_store_operation("survey.find_by_organization")
    def find_by_organization(self, organization_id: int) -> list[SurveyRecord]:
        return [
            _survey_record(obj) for obj in Survey.objects.filter(organization_id=organization_id)
        ]

    @_store_operation("survey.find_by_study")
    def find_by_study(self, clinical_study_id: int) -> list[SurveyRecord]:
        return [
            _survey_record(obj)
            for obj in Survey.objects.filter(clinical_study_id=clinical_study_id)
        ]

    @_store_operation("survey.update")
    def update(self, survey_id: int, fields: dict[str, Any]) -> SurveyRecord:
        obj = Survey.objects.filter(pk=survey_id).first()
        if obj is None:
            raise NotFoundError("Survey", survey_id)
        _save_fields(obj, fields)
        return _survey_record(obj)

    def update_status(self, survey_id: int, status: str) -> SurveyRecord:
        return self.update(survey_id, {"status": status})

    def update_progress(
        self,
        survey_id: int,
        *,
        completion_percentage: int,
        completed_visits: int,
        total_visits: int,
        status: str,
    ) -> SurveyRecord:
        return self.update(
            survey_id,
            {
                "completion_percentage": completion_percentage,
                "completed_visits": completed_visits,
                "total_visits": total_visits,
                "status": status,
            },
        )


class DjangoVisitStore(VisitStore):
    @_store_operation("visit.create")
    def create(self, fields: dict[str, Any]) -> VisitRecord:
        obj = Visit.objects.create(**_to_db(fields))
        return _visit_record(obj)

    @_store_operation("visit.find_by_id")
    def find_by_id(self, visit_id: int) -> VisitRecord | None:
        obj = Visit.objects.filter(pk=visit_id).first()
        return _visit_record(obj) if obj else None

    @_store_operation("visit.find_by_survey")
    def find_by_survey(self, survey_id: int) -> list[VisitRecord]:
        qs = Visit.objects.filter(survey_id=survey_id).order_by("sequence", "id")
        return [_visit_record(obj) for obj in qs]

    @_store_operation("visit.find_by_organization")
    def find_by_organization(self, organization_id: int) -> list[VisitRecord]:
        qs = Visit.objects.filter(organization_id=organization_id).order_by(
            "survey_id", "sequence", "id"
        )
        return [_visit_record(obj) for obj in qs]

    @_store_operation("visit.find_by_survey_and_visit")
    def find_by_survey_and_visit(self, survey_id: int, visit_id: int) -> VisitRecord | None:
        obj = Visit.objects.filter(pk=visit_id, survey_id=survey_id).first()
        return _visit_record(obj) if obj else None

    @_store_operation("visit.update")
    def update(self, visit_id: int, fields: dict[str, Any]) -> VisitRecord:
        obj = Visit.objects.filter(pk=visit_id).first()
        if obj is None:
            raise NotFoundError("Visit", visit_id)
        _save_fields(obj, fields)
        return _visit_record(obj)

    def update_status(self, visit_id: int, status: str) -> VisitRecord:
        return self.update(visit_id, {"status": status})

    @_store_operation("visit.complete_examination")
    def complete_examination(self, visit_id: int, examination_id: str) -> VisitRecord:
        return self._write_locked(
            visit_id, lambda record: mark_examination(record, examination_id, completed=True)
        )

    @_store_operation("visit.skip_examination")
    def skip_examination(self, visit_id: int, examination_id: str) -> VisitRecord:
        return self._write_locked(
            visit_id, lambda record: mark_examination(record, examination_id, completed=False)
        )

    @_store_operation("visit.update_examination_configuration")
    def update_examination_configuration(
        self,
        visit_id: int,
        *,
        required_examinations: Iterable[str],
        optional_examinations: Iterable[str],
        examination_order: Iterable[str],
    ) -> VisitRecord:
        return self._write_locked(
            visit_id,
            lambda record: apply_examination_configuration(
                record,
                required_examinations=required_examinations,
                optional_examinations=optional_examinations,
                examination_order=examination_order,
            ),
        )

    @_store_operation("visit.complete_visit")
    def complete_visit(self, visit_id: int, actual_date: datetime) -> VisitRecord:
        obj = Visit.objects.filter(pk=visit_id).first()
        if obj is None:
            raise NotFoundError("Visit", visit_id)
        fields: dict[str, Any] = {"status": choices.VisitStatus.COMPLETED}
        if obj.actual_date is None:
            fields["actual_date"] = actual_date
        _save_fields(obj, fields)
        return _visit_record(obj)

    def _write_locked(self, visit_id: int, transform) -> VisitRecord:
        """行锁读取 -> 纯函数计算新记录 -> 写回检查相关字段。"""

        with transaction.atomic():
            obj = Visit.objects.select_for_update().filter(pk=visit_id).first()
            if obj is None:
                raise NotFoundError("Visit", visit_id)
            updated = transform(_visit_record(obj))
            _save_fields(
                obj,
                {
                    "required_examinations": updated.required_examinations,
                    "optional_examinations": updated.optional_examinations,
                    "examination_order": updated.examination_order,
                    "completed_examinations": updated.completed_examinations,
                    "skipped_examinations": updated.skipped_examinations,
                    "completion_percentage": updated.completion_percentage,
                },
            )
        return _visit_record(obj)


def django_stores() -> SchedulingStores:
    """构造基于 Django ORM 的存储集合，多步写入由 transaction.atomic 包裹。"""

    return SchedulingStores(
        protocols=DjangoProtocolStore(),
        patients=DjangoPatientStore(),
        surveys=DjangoSurveyStore(),
        visits=DjangoVisitStore(),
        atomic=transaction.atomic,
    )
