"""访视（Visit）模型。"""

from django.db import models

from users.models.base import TimeStampedModel

from . import choices


class Visit(TimeStampedModel):
    """
    【业务说明】随访计划中的单次访视，由访视模板条目实例化而来。
    【用法】
    - 时间窗 `window_start_date`/`window_end_date` 在生成时按模板偏移确定，改期不会重算；
    - `completed_examinations` 与 `skipped_examinations` 互斥，均为已配置检查的子集；
    - `completion_percentage` = 已完成检查数 /（必做 + 选做）检查数。
    """

    survey = models.ForeignKey(
        "core.Survey",
        on_delete=models.CASCADE,
        related_name="visits",
        verbose_name="随访计划",
    )
    clinical_study = models.ForeignKey(
        "core.ClinicalStudy",
        on_delete=models.PROTECT,
        related_name="visits",
        verbose_name="研究方案",
    )
    organization = models.ForeignKey(
        "users.Organization",
        on_delete=models.PROTECT,
        related_name="visits",
        verbose_name="机构",
    )
    patient = models.ForeignKey(
        "users.PatientProfile",
        on_delete=models.CASCADE,
        related_name="visits",
        verbose_name="受试者",
    )
    sequence = models.PositiveSmallIntegerField("模板顺序", default=0)
    visit_number = models.PositiveSmallIntegerField("访视编号")
    visit_type = models.CharField("访视类型", max_length=20, choices=choices.VisitType.choices)
    visit_name = models.CharField("访视名称", max_length=100, blank=True)
    scheduled_date = models.DateField("计划日期")
    window_start_date = models.DateField("窗口开始")
    window_end_date = models.DateField("窗口结束")
    actual_date = models.DateTimeField("实际访视时间", null=True, blank=True)
    status = models.CharField(
        "状态",
        max_length=20,
        choices=choices.VisitStatus.choices,
        default=choices.VisitStatus.SCHEDULED,
    )
    completion_percentage = models.PositiveSmallIntegerField("检查完成百分比", default=0)
    required_examinations = models.JSONField("必做检查", default=list, blank=True)
    optional_examinations = models.JSONField("选做检查", default=list, blank=True)
    examination_order = models.JSONField("检查顺序", default=list, blank=True)
    completed_examinations = models.JSONField("已完成检查", default=list, blank=True)
    skipped_examinations = models.JSONField("已跳过检查", default=list, blank=True)
    visit_notes = models.TextField("访视备注", blank=True)
    deviation_reason = models.CharField("偏离原因", max_length=255, blank=True)
    conducted_by = models.CharField("执行人", max_length=100, blank=True)

    class Meta:
        db_table = "core_visits"
        verbose_name = "访视"
        verbose_name_plural = "访视"
        ordering = ("survey", "sequence", "id")
        constraints = [
            models.UniqueConstraint(
                fields=["survey", "visit_number"],
                name="uniq_visit_number_per_survey",
            ),
        ]
        indexes = [
            models.Index(fields=["organization", "status"], name="idx_visit_org_status"),
            models.Index(fields=["scheduled_date"], name="idx_visit_scheduled_date"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.survey_id}-{self.visit_number} {self.visit_name}"
