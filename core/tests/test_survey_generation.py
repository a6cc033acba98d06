"""随访计划生成与计划级操作测试。"""

from datetime import date
from unittest import mock

from django.db import DatabaseError
from django.test import TestCase

from core.exceptions import NotFoundError, StoreError, ValidationError
from core.models import ClinicalStudy, Survey, Visit, choices
from core.service.survey import SurveyService
from users.models import Organization, PatientProfile

VISIT_TEMPLATE = [
    {
        "visit_number": 1,
        "visit_type": "baseline",
        "visit_name": "基线访视",
        "scheduled_days_from_baseline": 0,
        "window_days_before": 0,
        "window_days_after": 7,
        "required_examinations": ["examA"],
    },
    {
        "visit_number": 2,
        "visit_type": "1month",
        "visit_name": "术后1个月",
        "scheduled_days_from_baseline": 30,
        "window_days_before": 3,
        "window_days_after": 3,
        "required_examinations": ["ct", "blood"],
        "optional_examinations": ["ecg"],
        "examination_order": ["blood", "ct", "ecg"],
    },
]


class SurveyGenerationTest(TestCase):
    def setUp(self) -> None:
        self.org = Organization.objects.create(name="协和医院", code="ORG-1")
        self.other_org = Organization.objects.create(name="人民医院", code="ORG-2")
        self.patient = PatientProfile.objects.create(
            patient_code="P-001", registered_organization=self.org
        )
        self.study = ClinicalStudy.objects.create(
            study_code="LC-01",
            study_name="肺癌术后随访",
            status=choices.StudyStatus.ACTIVE,
            visit_template=VISIT_TEMPLATE,
        )
        self.service = SurveyService()

    def _generate(self, **overrides):
        params = {
            "clinical_study_id": self.study.id,
            "organization_id": self.org.id,
            "patient_id": self.patient.id,
            "baseline_date": date(2024, 1, 1),
            "assigned_by": "crc01",
        }
        params.update(overrides)
        return self.service.generate(**params)

    def test_single_entry_template_windows(self):
        """单条目模板：计划日期即基线，窗口结束与预计完成日期均为基线 + 7 天。"""

        self.study.visit_template = VISIT_TEMPLATE[:1]
        self.study.save()

        result = self._generate()

        visit = result.visits[0]
        self.assertEqual(visit.scheduled_date, date(2024, 1, 1))
        self.assertEqual(visit.window_end_date, date(2024, 1, 8))
        self.assertEqual(result.survey.expected_completion_date, date(2024, 1, 8))

    def test_generates_one_visit_per_template_entry_in_order(self):
        result = self._generate()

        self.assertEqual(result.summary.total_visits, 2)
        self.assertEqual(result.summary.generated_visits, 2)
        self.assertEqual(result.summary.estimated_completion_date, date(2024, 2, 3))
        self.assertEqual([v.visit_number for v in result.visits], [1, 2])
        self.assertEqual([v.sequence for v in result.visits], [0, 1])

        second = result.visits[1]
        self.assertEqual(second.scheduled_date, date(2024, 1, 31))
        self.assertEqual(second.window_start_date, date(2024, 1, 28))
        self.assertEqual(second.window_end_date, date(2024, 2, 3))
        self.assertEqual(second.required_examinations, ("ct", "blood"))
        self.assertEqual(second.optional_examinations, ("ecg",))
        self.assertEqual(second.examination_order, ("blood", "ct", "ecg"))
        self.assertEqual(second.status, choices.VisitStatus.SCHEDULED)
        self.assertEqual(second.completed_examinations, ())
        self.assertEqual(second.conducted_by, "crc01")

        survey = Survey.objects.get(pk=result.survey.id)
        self.assertEqual(survey.status, choices.SurveyStatus.ACTIVE)
        self.assertEqual(survey.total_visits, 2)
        self.assertEqual(survey.completed_visits, 0)
        self.assertEqual(survey.completion_percentage, 0)
        self.assertEqual(Visit.objects.filter(survey=survey).count(), 2)

    def test_default_and_custom_names(self):
        result = self._generate()
        self.assertTrue(result.survey.name.startswith("P-001-LC-01-"))

        self.service.withdraw_survey(result.survey.id)
        custom = self._generate(custom_name="自定义计划")
        self.assertEqual(custom.survey.name, "自定义计划")

    def test_adds_study_to_participating_studies_once(self):
        first = self._generate()
        self.service.withdraw_survey(first.survey.id)
        self._generate()

        self.patient.refresh_from_db()
        self.assertEqual(self.patient.participating_studies, [self.study.id])

    def test_recruiting_study_allowed(self):
        self.study.status = choices.StudyStatus.RECRUITING
        self.study.save()

        self.assertEqual(len(self._generate().visits), 2)

    def test_inactive_study_rejected(self):
        self.study.status = choices.StudyStatus.PLANNING
        self.study.save()

        with self.assertRaises(ValidationError) as ctx:
            self._generate()
        self.assertEqual(ctx.exception.code, ValidationError.PROTOCOL_NOT_ACTIVE)

    def test_patient_from_other_organization_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self._generate(organization_id=self.other_org.id)
        self.assertEqual(ctx.exception.code, ValidationError.ORGANIZATION_MISMATCH)

    def test_second_active_survey_rejected(self):
        self._generate()

        with self.assertRaises(ValidationError) as ctx:
            self._generate()
        self.assertEqual(ctx.exception.code, ValidationError.DUPLICATE_ACTIVE_SURVEY)
        self.assertEqual(Survey.objects.count(), 1)

    def test_missing_protocol_or_patient(self):
        with self.assertRaises(NotFoundError):
            self._generate(clinical_study_id=999)
        with self.assertRaises(NotFoundError):
            self._generate(patient_id=999)

    def test_invalid_template_rejected(self):
        self.study.visit_template = []
        self.study.save()

        with self.assertRaises(ValidationError) as ctx:
            self._generate()
        self.assertEqual(ctx.exception.code, ValidationError.INVALID_VISIT_TEMPLATE)

    def test_visit_write_failure_rolls_back_survey(self):
        with mock.patch.object(Visit.objects, "create", side_effect=DatabaseError("disk full")):
            with self.assertRaises(StoreError):
                self._generate()

        self.assertFalse(Survey.objects.exists())
        self.patient.refresh_from_db()
        self.assertEqual(self.patient.participating_studies, [])


class SurveyOperationsTest(TestCase):
    def setUp(self) -> None:
        self.org = Organization.objects.create(name="协和医院", code="ORG-1")
        self.patient = PatientProfile.objects.create(
            patient_code="P-001", registered_organization=self.org
        )
        self.study = ClinicalStudy.objects.create(
            study_code="LC-01",
            study_name="肺癌术后随访",
            status=choices.StudyStatus.ACTIVE,
            visit_template=VISIT_TEMPLATE,
        )
        self.service = SurveyService()
        self.result = self.service.generate(
            self.study.id, self.org.id, self.patient.id, date(2024, 1, 1), "crc01"
        )
        self.survey_id = self.result.survey.id

    def test_progress_half_completed(self):
        """4 个访视完成 2 个，计划完成百分比为 50。"""

        survey = Survey.objects.get(pk=self.survey_id)
        for number in (3, 4):
            Visit.objects.create(
                survey=survey,
                clinical_study=self.study,
                organization=self.org,
                patient=self.patient,
                sequence=number - 1,
                visit_number=number,
                visit_type=choices.VisitType.CUSTOM,
                scheduled_date=date(2024, 6, 1),
                window_start_date=date(2024, 6, 1),
                window_end_date=date(2024, 6, 8),
                status=choices.VisitStatus.COMPLETED,
            )

        updated = self.service.update_survey_progress(self.survey_id)

        self.assertEqual(updated.total_visits, 4)
        self.assertEqual(updated.completed_visits, 2)
        self.assertEqual(updated.completion_percentage, 50)
        self.assertEqual(updated.status, choices.SurveyStatus.ACTIVE)

    def test_details_include_protocol_patient_and_visits(self):
        details = self.service.get_survey_with_details(self.survey_id)

        self.assertEqual(details.protocol.study_code, "LC-01")
        self.assertEqual(details.patient.patient_code, "P-001")
        self.assertEqual(len(details.visits), 2)
        self.assertEqual(details.as_dict()["survey"]["baseline_date"], "2024-01-01")

    def test_details_for_missing_survey(self):
        with self.assertRaises(NotFoundError):
            self.service.get_survey_with_details(999)

    def test_withdraw_cancels_open_visits(self):
        first_visit = self.result.visits[0]
        Visit.objects.filter(pk=first_visit.id).update(status=choices.VisitStatus.COMPLETED)

        survey = self.service.withdraw_survey(self.survey_id, reason="受试者撤回知情同意")

        self.assertEqual(survey.status, choices.SurveyStatus.WITHDRAWN)
        statuses = dict(Visit.objects.filter(survey_id=self.survey_id).values_list("id", "status"))
        self.assertEqual(statuses[first_visit.id], choices.VisitStatus.COMPLETED)
        second = Visit.objects.get(pk=self.result.visits[1].id)
        self.assertEqual(second.status, choices.VisitStatus.CANCELLED)
        self.assertEqual(second.deviation_reason, "Survey withdrawn: 受试者撤回知情同意")

    def test_filters(self):
        self.assertEqual(len(self.service.get_surveys_by_organization(self.org.id)), 1)
        self.assertEqual(
            self.service.get_surveys_by_organization(
                self.org.id, status=choices.SurveyStatus.WITHDRAWN
            ),
            [],
        )
        self.assertEqual(
            len(self.service.get_surveys_by_study(self.study.id, organization_id=self.org.id)), 1
        )
        self.assertEqual(self.service.get_surveys_by_study(self.study.id, organization_id=999), [])
