"""临床研究方案（Protocol）模型。"""

from django.db import models

from users.models.base import TimeStampedModel

from . import choices


class ClinicalStudy(TimeStampedModel):
    """
    【业务说明】临床研究方案：访视模板 + 检查配置，与具体受试者无关。
    【用法】同一版本内视为不可变；随访计划生成器读取 `visit_template` 为受试者排程。
    【使用示例】
    >>> ClinicalStudy.objects.create(
    ...     study_code="LC-01",
    ...     study_name="肺癌术后随访",
    ...     status=choices.StudyStatus.ACTIVE,
    ...     visit_template=[{"visit_number": 1, "visit_type": "baseline", ...}],
    ... )
    """

    study_code = models.CharField("研究编号", max_length=50, unique=True)
    study_name = models.CharField("研究名称", max_length=200)
    description = models.TextField("研究描述", blank=True)
    protocol_version = models.CharField("方案版本", max_length=20, default="1.0")
    start_date = models.DateField("开始日期", null=True, blank=True)
    end_date = models.DateField("结束日期", null=True, blank=True)
    status = models.CharField(
        "状态",
        max_length=20,
        choices=choices.StudyStatus.choices,
        default=choices.StudyStatus.PLANNING,
    )
    visit_template = models.JSONField(
        "访视模板",
        default=list,
        blank=True,
        help_text=(
            "有序访视条目列表，每项包含 visit_number/visit_type/visit_name/"
            "scheduled_days_from_baseline/window_days_before/window_days_after/"
            "required_examinations/optional_examinations/examination_order。"
        ),
    )

    class Meta:
        db_table = "core_clinical_studies"
        verbose_name = "临床研究方案"
        verbose_name_plural = "临床研究方案"
        ordering = ("-created_at",)

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.study_code}-{self.study_name}"

    def clean(self):
        from core.service.protocol import parse_visit_template, validate_study_dates, validate_visit_template

        super().clean()
        validate_study_dates(self.start_date, self.end_date)
        if self.visit_template:
            validate_visit_template(parse_visit_template(self.visit_template))
