"""Django ORM 存储实现测试：记录转换、唯一约束映射与数据库异常包装。"""

from datetime import date
from unittest import mock

from django.db import IntegrityError, OperationalError
from django.test import TestCase

from core.exceptions import NotFoundError, StoreError, ValidationError
from core.models import ClinicalStudy, Survey, Visit, choices
from core.service.stores import django_stores
from core.service.survey import SurveyService
from users.models import Organization, PatientProfile


class DjangoStoresTest(TestCase):
    def setUp(self) -> None:
        self.org = Organization.objects.create(name="协和医院", code="ORG-1")
        self.patient = PatientProfile.objects.create(
            patient_code="P-001", registered_organization=self.org
        )
        self.study = ClinicalStudy.objects.create(
            study_code="LC-01",
            study_name="肺癌术后随访",
            status=choices.StudyStatus.ACTIVE,
            visit_template=[
                {
                    "visit_number": 1,
                    "visit_type": "baseline",
                    "visit_name": "基线访视",
                    "scheduled_days_from_baseline": 0,
                    "window_days_after": 7,
                    "required_examinations": ["a", "b"],
                }
            ],
        )
        self.stores = django_stores()

    def _survey_fields(self, **overrides):
        fields = {
            "clinical_study_id": self.study.id,
            "organization_id": self.org.id,
            "patient_id": self.patient.id,
            "name": "P-001-LC-01",
            "baseline_date": date(2024, 1, 1),
            "expected_completion_date": date(2024, 1, 8),
            "status": choices.SurveyStatus.ACTIVE,
            "assigned_by": "crc01",
        }
        fields.update(overrides)
        return fields

    def test_protocol_record_parses_template(self):
        record = self.stores.protocols.find_by_id(self.study.id)

        self.assertEqual(record.study_code, "LC-01")
        self.assertEqual(record.visit_template[0].required_examinations, ("a", "b"))
        self.assertIsNone(self.stores.protocols.find_by_id(999))

    def test_active_survey_uniqueness_enforced_by_storage(self):
        """绕过生成器的读检查，直接写入第二条 active 计划。"""

        self.stores.surveys.create(self._survey_fields())

        with self.assertRaises(ValidationError) as ctx:
            self.stores.surveys.create(self._survey_fields(name="second"))
        self.assertEqual(ctx.exception.code, ValidationError.DUPLICATE_ACTIVE_SURVEY)

        # 非 active 计划不受约束
        self.stores.surveys.create(self._survey_fields(status=choices.SurveyStatus.WITHDRAWN))
        self.assertEqual(Survey.objects.count(), 2)

    def test_other_integrity_errors_are_store_errors(self):
        """没有 active 计划冲突时，完整性错误不应被误报为重复计划。"""

        with mock.patch.object(
            Survey.objects, "create", side_effect=IntegrityError("NOT NULL constraint failed")
        ):
            with self.assertRaises(StoreError) as ctx:
                self.stores.surveys.create(self._survey_fields())

        self.assertEqual(ctx.exception.operation, "survey.create")
        self.assertIsInstance(ctx.exception.__cause__, IntegrityError)

    def test_database_error_wrapped_as_store_error(self):
        with mock.patch.object(
            Survey.objects, "filter", side_effect=OperationalError("connection lost")
        ):
            with self.assertRaises(StoreError) as ctx:
                self.stores.surveys.find_by_id(1)

        self.assertEqual(ctx.exception.operation, "survey.find_by_id")
        self.assertIsInstance(ctx.exception.__cause__, OperationalError)

    def test_store_error_propagates_from_service(self):
        with mock.patch.object(
            ClinicalStudy.objects, "filter", side_effect=OperationalError("timeout")
        ):
            with self.assertRaises(StoreError):
                SurveyService(self.stores).generate(
                    self.study.id, self.org.id, self.patient.id, date(2024, 1, 1), "crc01"
                )

    def test_update_missing_rows(self):
        with self.assertRaises(NotFoundError):
            self.stores.surveys.update_status(999, choices.SurveyStatus.WITHDRAWN)
        with self.assertRaises(NotFoundError):
            self.stores.visits.complete_examination(999, "a")
        with self.assertRaises(NotFoundError):
            self.stores.patients.update(999, {"participating_studies": []})

    def test_examination_writes_persist_and_stay_exclusive(self):
        result = SurveyService(self.stores).generate(
            self.study.id, self.org.id, self.patient.id, date(2024, 1, 1), "crc01"
        )
        visit_id = result.visits[0].id

        self.stores.visits.skip_examination(visit_id, "a")
        record = self.stores.visits.complete_examination(visit_id, "a")

        visit = Visit.objects.get(pk=visit_id)
        self.assertEqual(visit.completed_examinations, ["a"])
        self.assertEqual(visit.skipped_examinations, [])
        self.assertEqual(visit.completion_percentage, 50)
        self.assertEqual(record.completed_examinations, ("a",))

    def test_visits_by_survey_follow_template_order(self):
        self.study.visit_template = [
            {"visit_number": 5, "visit_name": "后", "scheduled_days_from_baseline": 30, "required_examinations": ["a"]},
            {"visit_number": 2, "visit_name": "前", "scheduled_days_from_baseline": 0, "required_examinations": ["a"]},
        ]
        self.study.save()

        result = SurveyService(self.stores).generate(
            self.study.id, self.org.id, self.patient.id, date(2024, 1, 1), "crc01"
        )

        visits = self.stores.visits.find_by_survey(result.survey.id)
        self.assertEqual([v.visit_number for v in visits], [5, 2])
