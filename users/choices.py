from django.db import models


class OrganizationType(models.TextChoices):
    """【业务说明】参研机构类型；【用法】Organization.organization_type。"""

    HOSPITAL = "hospital", "医院"
    CLINIC = "clinic", "诊所"
    RESEARCH_CENTER = "research_center", "研究中心"
    UNIVERSITY = "university", "大学"
    OTHER = "other", "其它"


class OrganizationStatus(models.TextChoices):
    """【业务说明】机构状态；【用法】Organization.status，仅 ACTIVE 机构参与定时偏离扫描。"""

    ACTIVE = "active", "启用"
    INACTIVE = "inactive", "停用"
    PENDING_APPROVAL = "pending_approval", "待审批"
    SUSPENDED = "suspended", "暂停"


class Gender(models.TextChoices):
    """【业务说明】受试者性别；【用法】PatientProfile.gender。"""

    MALE = "male", "男"
    FEMALE = "female", "女"
    OTHER = "other", "其它"


class PatientStatus(models.TextChoices):
    """【业务说明】受试者在院状态；【用法】PatientProfile.status。"""

    ACTIVE = "active", "在组"
    INACTIVE = "inactive", "未激活"
    WITHDRAWN = "withdrawn", "已退出"
    COMPLETED = "completed", "已完成"
