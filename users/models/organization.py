from django.db import models

from users import choices
from users.models.base import TimeStampedModel


class Organization(TimeStampedModel):
    """
    【业务说明】参研机构（医院/研究中心），受试者与随访计划均归属于某一机构。
    【用法】生成随访计划时校验受试者的注册机构与入组机构一致。
    【使用示例】`Organization.objects.create(name="第一医院", code="H001")`。
    """

    name = models.CharField("机构名称", max_length=100)
    code = models.CharField("机构编码", max_length=30, unique=True)
    organization_type = models.CharField(
        "机构类型",
        max_length=30,
        choices=choices.OrganizationType.choices,
        default=choices.OrganizationType.HOSPITAL,
    )
    status = models.CharField(
        "状态",
        max_length=30,
        choices=choices.OrganizationStatus.choices,
        default=choices.OrganizationStatus.ACTIVE,
    )

    class Meta:
        db_table = "users_organizations"
        verbose_name = "参研机构"
        verbose_name_plural = "参研机构"
        ordering = ("code",)

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.code}-{self.name}"
