"""随访计划（Survey）模型：受试者在某一研究方案下的具体排程。"""

from django.db import models

from users.models.base import TimeStampedModel

from . import choices


class Survey(TimeStampedModel):
    """
    【业务说明】一次入组对应一条随访计划，与其下全部访视一起由生成器创建。
    【约束】同一受试者在同一研究中最多一条进行中（active）的随访计划，
    由条件唯一约束在存储层保证，生成器的读检查只是前置提示。
    """

    clinical_study = models.ForeignKey(
        "core.ClinicalStudy",
        on_delete=models.PROTECT,
        related_name="surveys",
        verbose_name="研究方案",
    )
    organization = models.ForeignKey(
        "users.Organization",
        on_delete=models.PROTECT,
        related_name="surveys",
        verbose_name="入组机构",
    )
    patient = models.ForeignKey(
        "users.PatientProfile",
        on_delete=models.CASCADE,
        related_name="surveys",
        verbose_name="受试者",
    )
    name = models.CharField("计划名称", max_length=200)
    description = models.TextField("描述", blank=True)
    baseline_date = models.DateField("基线日期")
    expected_completion_date = models.DateField("预计完成日期")
    status = models.CharField(
        "状态",
        max_length=20,
        choices=choices.SurveyStatus.choices,
        default=choices.SurveyStatus.ACTIVE,
    )
    total_visits = models.PositiveIntegerField("访视总数", default=0)
    completed_visits = models.PositiveIntegerField("已完成访视数", default=0)
    completion_percentage = models.PositiveSmallIntegerField("完成百分比", default=0)
    assigned_by = models.CharField("分配人", max_length=100)
    conducted_by = models.CharField("执行人", max_length=100, blank=True)

    class Meta:
        db_table = "core_surveys"
        verbose_name = "随访计划"
        verbose_name_plural = "随访计划"
        ordering = ("-updated_at", "-id")
        constraints = [
            models.UniqueConstraint(
                fields=["patient", "clinical_study"],
                condition=models.Q(status="active"),
                name="uniq_active_survey_per_patient_study",
            ),
        ]
        indexes = [
            models.Index(fields=["organization", "status"], name="idx_survey_org_status"),
            models.Index(fields=["clinical_study", "status"], name="idx_survey_study_status"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return self.name
