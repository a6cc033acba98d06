"""访视模板解析/校验与时间窗计算测试。"""

from datetime import date

from django.test import SimpleTestCase

from core.exceptions import ValidationError
from core.service.protocol import (
    compute_expected_completion_date,
    compute_visit_window,
    is_within_window,
    parse_visit_template,
    validate_date_range,
    validate_visit_template,
)
from core.service.records import VisitTemplateEntry


def _entry(**overrides) -> VisitTemplateEntry:
    data = {
        "visit_number": 1,
        "visit_type": "baseline",
        "visit_name": "基线访视",
        "scheduled_days_from_baseline": 0,
        "window_days_before": 0,
        "window_days_after": 7,
        "required_examinations": ("examA",),
    }
    data.update(overrides)
    return VisitTemplateEntry(**data)


class VisitWindowTest(SimpleTestCase):
    def test_window_offsets_from_baseline(self):
        entry = _entry(scheduled_days_from_baseline=30, window_days_before=3, window_days_after=5)

        window = compute_visit_window(entry, date(2024, 1, 1))

        self.assertEqual(window.scheduled_date, date(2024, 1, 31))
        self.assertEqual(window.window_start_date, date(2024, 1, 28))
        self.assertEqual(window.window_end_date, date(2024, 2, 5))

    def test_expected_completion_uses_latest_window_end(self):
        """预计完成日期取 计划天数 + 窗口后延 的最大值，而非最后一个条目。"""

        entries = [
            _entry(visit_number=1, scheduled_days_from_baseline=0, window_days_after=7),
            _entry(visit_number=2, scheduled_days_from_baseline=90, window_days_after=2),
            _entry(visit_number=3, scheduled_days_from_baseline=85, window_days_after=14),
        ]

        self.assertEqual(
            compute_expected_completion_date(entries, date(2024, 1, 1)),
            date(2024, 4, 9),
        )

    def test_window_boundaries_are_inclusive(self):
        start, end = date(2024, 1, 1), date(2024, 1, 8)

        self.assertTrue(is_within_window(start, start, end))
        self.assertTrue(is_within_window(end, start, end))
        self.assertFalse(is_within_window(date(2024, 1, 9), start, end))
        self.assertFalse(is_within_window(date(2023, 12, 31), start, end))


class VisitTemplateValidationTest(SimpleTestCase):
    def test_valid_template_passes(self):
        validate_visit_template([_entry(), _entry(visit_number=2, scheduled_days_from_baseline=7)])

    def test_empty_template_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            validate_visit_template([])
        self.assertEqual(ctx.exception.code, ValidationError.INVALID_VISIT_TEMPLATE)

    def test_duplicate_visit_numbers_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            validate_visit_template([_entry(), _entry(visit_name="重复")])
        self.assertIn("unique", ctx.exception.message)

    def test_negative_offsets_rejected(self):
        for overrides in (
            {"scheduled_days_from_baseline": -1},
            {"window_days_before": -2},
            {"window_days_after": -3},
        ):
            with self.subTest(**overrides):
                with self.assertRaises(ValidationError):
                    validate_visit_template([_entry(**overrides)])

    def test_entry_without_examinations_rejected(self):
        with self.assertRaises(ValidationError):
            validate_visit_template([_entry(required_examinations=(), optional_examinations=())])

    def test_blank_name_rejected(self):
        with self.assertRaises(ValidationError):
            validate_visit_template([_entry(visit_name="  ")])

    def test_parse_keeps_order_and_dedupes_examinations(self):
        entries = parse_visit_template(
            [
                {"visit_number": 2, "visit_name": "第二次", "required_examinations": ["a", "a", "b"]},
                {"visit_number": 1, "visit_name": "第一次", "optional_examinations": ["c"]},
            ]
        )

        self.assertEqual([e.visit_number for e in entries], [2, 1])
        self.assertEqual(entries[0].required_examinations, ("a", "b"))
        self.assertEqual(entries[1].visit_type, "custom")

    def test_parse_malformed_entry(self):
        with self.assertRaises(ValidationError) as ctx:
            parse_visit_template([{"visit_name": "缺少编号"}])
        self.assertEqual(ctx.exception.code, ValidationError.INVALID_VISIT_TEMPLATE)


class DateRangeValidationTest(SimpleTestCase):
    def test_end_must_be_after_start(self):
        validate_date_range(date(2024, 1, 1), date(2024, 1, 2))

        for end in (date(2024, 1, 1), date(2023, 12, 31)):
            with self.subTest(end=end):
                with self.assertRaises(ValidationError) as ctx:
                    validate_date_range(date(2024, 1, 1), end)
                self.assertEqual(ctx.exception.code, ValidationError.INVALID_DATE_RANGE)

    def test_open_range_not_checked(self):
        validate_date_range(None, date(2024, 1, 1))
        validate_date_range(date(2024, 1, 1), None)
