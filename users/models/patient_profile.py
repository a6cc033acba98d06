from django.db import models

from users import choices
from users.models.base import TimeStampedModel


class PatientProfile(TimeStampedModel):
    """
    【业务说明】承载受试者档案，包含受试者编码、注册机构及参与的临床研究。
    【用法】生成随访计划、仪表盘“最近动态”解析受试者编码时读取该模型。
    【使用示例】`PatientProfile.objects.create(patient_code="P-001", registered_organization=org)`。
    【参数】字段定义见下方；继承 TimeStampedModel 自动带有时间戳。
    """

    patient_code = models.CharField(
        "受试者编码",
        max_length=50,
        unique=True,
        help_text="【业务说明】脱敏后的受试者唯一编码；【用法】报表与随访计划命名；【示例】P-001",
    )
    initials = models.CharField(
        "姓名缩写",
        max_length=10,
        blank=True,
        help_text="【业务说明】受试者姓名缩写，不保存全名；【示例】ZS",
    )
    gender = models.CharField(
        "性别",
        max_length=10,
        choices=choices.Gender.choices,
        blank=True,
    )
    birth_date = models.DateField("出生日期", null=True, blank=True)
    registered_organization = models.ForeignKey(
        "users.Organization",
        on_delete=models.PROTECT,
        related_name="patients",
        verbose_name="注册机构",
        help_text="【业务说明】受试者建档所在机构；【用法】入组时必须与入组机构一致",
    )
    registration_date = models.DateField("注册日期", null=True, blank=True)
    status = models.CharField(
        "状态",
        max_length=20,
        choices=choices.PatientStatus.choices,
        default=choices.PatientStatus.ACTIVE,
    )
    participating_studies = models.JSONField(
        "参与的研究",
        default=list,
        blank=True,
        help_text="【业务说明】受试者参与的 ClinicalStudy ID 列表，按集合语义维护（不重复）；【示例】[1, 3]",
    )

    class Meta:
        db_table = "users_patient_profiles"
        verbose_name = "受试者档案"
        verbose_name_plural = "受试者档案"
        indexes = [
            models.Index(fields=["registered_organization", "status"], name="idx_patient_org_status"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return self.patient_code
