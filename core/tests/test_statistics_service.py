"""访视统计与随访计划仪表盘统计测试。"""

from datetime import date, datetime, timedelta

from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from core.exceptions import ValidationError
from core.models import ClinicalStudy, Survey, choices
from core.service.records import PatientRecord, ProtocolRecord, SurveyRecord, VisitRecord
from core.service.statistics import StatisticsService, survey_dashboard_stats, visit_statistics
from core.service.stores import PatientStore, ProtocolStore, SchedulingStores
from core.service.survey import SurveyService
from users.models import Organization, PatientProfile


def make_visit(visit_id, status, **overrides) -> VisitRecord:
    data = {
        "id": visit_id,
        "survey_id": 1,
        "clinical_study_id": 1,
        "organization_id": 1,
        "patient_id": 1,
        "visit_number": visit_id,
        "visit_type": choices.VisitType.CUSTOM,
        "visit_name": f"V{visit_id}",
        "scheduled_date": date(2024, 1, 1),
        "window_start_date": date(2024, 1, 1),
        "window_end_date": date(2024, 1, 8),
        "status": status,
    }
    data.update(overrides)
    return VisitRecord(**data)


def make_survey(survey_id, status, percentage=0, updated_at=None, patient_id=1) -> SurveyRecord:
    return SurveyRecord(
        id=survey_id,
        clinical_study_id=1,
        organization_id=1,
        patient_id=patient_id,
        name=f"S{survey_id}",
        baseline_date=date(2024, 1, 1),
        expected_completion_date=date(2024, 3, 1),
        status=status,
        completion_percentage=percentage,
        updated_at=updated_at,
    )


class _Patients(PatientStore):
    def __init__(self, records):
        self.records = {r.id: r for r in records}

    def find_by_id(self, patient_id):
        return self.records.get(patient_id)


class _Protocols(ProtocolStore):
    def find_by_id(self, clinical_study_id):
        return ProtocolRecord(
            id=clinical_study_id, study_code="LC-01", study_name="肺癌术后随访", status="active"
        )


class VisitStatisticsTest(SimpleTestCase):
    def test_empty_input_is_all_zero(self):
        stats = visit_statistics([], date(2024, 1, 1))

        self.assertEqual(stats.total_visits, 0)
        self.assertEqual(stats.average_completion_percentage, 0)
        self.assertEqual(stats.examination_stats.completion_rate, 0)

    def test_counts_and_examination_rates(self):
        visits = [
            make_visit(
                1,
                choices.VisitStatus.COMPLETED,
                required_examinations=("a", "b"),
                completed_examinations=("a",),
                completion_percentage=50,
            ),
            make_visit(
                2,
                choices.VisitStatus.IN_PROGRESS,
                required_examinations=("a",),
                optional_examinations=("c",),
                skipped_examinations=("c",),
                completion_percentage=0,
                window_end_date=date(2024, 2, 1),
            ),
            make_visit(3, choices.VisitStatus.SCHEDULED, completion_percentage=25),
            make_visit(4, choices.VisitStatus.MISSED, completion_percentage=0),
        ]

        stats = visit_statistics(visits, date(2024, 1, 20))

        self.assertEqual(stats.total_visits, 4)
        self.assertEqual(stats.completed_visits, 1)
        self.assertEqual(stats.in_progress_visits, 1)
        self.assertEqual(stats.scheduled_visits, 1)
        self.assertEqual(stats.missed_visits, 1)
        # (50 + 0 + 25 + 0) / 4 = 18.75
        self.assertEqual(stats.average_completion_percentage, 19)
        # visit 1: examination_skip；visit 3: missed_visit
        self.assertEqual(stats.protocol_deviations, 2)
        self.assertEqual(stats.examination_stats.total_examinations, 4)
        self.assertEqual(stats.examination_stats.completed_examinations, 1)
        self.assertEqual(stats.examination_stats.skipped_examinations, 1)
        self.assertEqual(stats.examination_stats.completion_rate, 25)


class SurveyDashboardStatsTest(SimpleTestCase):
    def setUp(self) -> None:
        self.stores = SchedulingStores(
            protocols=_Protocols(),
            patients=_Patients([PatientRecord(id=1, patient_code="P-001", registered_organization_id=1)]),
            surveys=None,
            visits=None,
        )

    def test_status_counts_and_average(self):
        surveys = [
            make_survey(1, choices.SurveyStatus.ACTIVE, 25),
            make_survey(2, choices.SurveyStatus.COMPLETED, 100),
            make_survey(3, choices.SurveyStatus.WITHDRAWN, 50),
            make_survey(4, choices.SurveyStatus.ACTIVE, 0),
        ]

        stats = survey_dashboard_stats(surveys, self.stores)

        self.assertEqual(stats.total_surveys, 4)
        self.assertEqual(stats.active_surveys, 2)
        self.assertEqual(stats.completed_surveys, 1)
        self.assertEqual(stats.withdrawn_surveys, 1)
        # 175 / 4 = 43.75
        self.assertEqual(stats.average_completion, 44)

    def test_recent_activity_latest_first_and_limited(self):
        base = datetime(2024, 1, 1, 9, 0)
        surveys = [
            make_survey(i, choices.SurveyStatus.ACTIVE, updated_at=base + timedelta(hours=i))
            for i in range(1, 13)
        ]

        stats = survey_dashboard_stats(surveys, self.stores)

        self.assertEqual([a.survey_id for a in stats.recent_activity], list(range(12, 2, -1)))
        first = stats.recent_activity[0]
        self.assertEqual(first.patient_code, "P-001")
        self.assertEqual(first.study_name, "肺癌术后随访")
        self.assertEqual(first.last_update, base + timedelta(hours=12))

    def test_unresolvable_survey_skipped(self):
        surveys = [
            make_survey(1, choices.SurveyStatus.ACTIVE, updated_at=datetime(2024, 1, 2)),
            make_survey(2, choices.SurveyStatus.ACTIVE, updated_at=datetime(2024, 1, 3), patient_id=99),
        ]

        stats = survey_dashboard_stats(surveys, self.stores)

        self.assertEqual(stats.total_surveys, 2)
        self.assertEqual([a.survey_id for a in stats.recent_activity], [1])


class StatisticsServiceTest(TestCase):
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
                    "visit_name": "基线访视",
                    "scheduled_days_from_baseline": 0,
                    "window_days_after": 7,
                    "required_examinations": ["a"],
                }
            ],
        )
        self.result = SurveyService().generate(
            self.study.id, self.org.id, self.patient.id, timezone.localdate(), "crc01"
        )
        self.service = StatisticsService()

    def test_scope_is_required(self):
        for call in (self.service.get_visit_statistics, self.service.get_survey_dashboard_stats):
            with self.subTest(call=call.__name__):
                with self.assertRaises(ValidationError) as ctx:
                    call()
                self.assertEqual(ctx.exception.code, ValidationError.MISSING_SCOPE)

    def test_visit_statistics_by_survey_and_organization(self):
        by_survey = self.service.get_visit_statistics(survey_id=self.result.survey.id)
        by_org = self.service.get_visit_statistics(organization_id=self.org.id)

        self.assertEqual(by_survey, by_org)
        self.assertEqual(by_survey.total_visits, 1)
        self.assertEqual(by_survey.scheduled_visits, 1)

    def test_dashboard_by_organization_and_study(self):
        stats = self.service.get_survey_dashboard_stats(organization_id=self.org.id)

        self.assertEqual(stats.total_surveys, 1)
        self.assertEqual(stats.active_surveys, 1)
        self.assertEqual(stats.recent_activity[0].patient_code, "P-001")
        self.assertEqual(stats.recent_activity[0].study_name, "肺癌术后随访")

        by_study = self.service.get_survey_dashboard_stats(clinical_study_id=self.study.id)
        self.assertEqual(by_study.total_surveys, 1)
        self.assertEqual(Survey.objects.count(), 1)
