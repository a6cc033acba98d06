"""排程核心业务模型通用枚举。"""

from django.db import models


class StudyStatus(models.TextChoices):
    PLANNING = "planning", "筹备中"
    ACTIVE = "active", "进行中"
    RECRUITING = "recruiting", "招募中"
    COMPLETED = "completed", "已完成"
    SUSPENDED = "suspended", "已暂停"
    TERMINATED = "terminated", "已终止"


# 仅这两种状态的研究方案允许生成新的随访计划
GENERATABLE_STUDY_STATUSES = (StudyStatus.ACTIVE, StudyStatus.RECRUITING)


class VisitType(models.TextChoices):
    BASELINE = "baseline", "基线"
    ONE_WEEK = "1week", "1周"
    ONE_MONTH = "1month", "1个月"
    THREE_MONTH = "3month", "3个月"
    CUSTOM = "custom", "自定义"


class SurveyStatus(models.TextChoices):
    ACTIVE = "active", "进行中"
    COMPLETED = "completed", "已完成"
    WITHDRAWN = "withdrawn", "已退出"


class VisitStatus(models.TextChoices):
    SCHEDULED = "scheduled", "已排期"
    IN_PROGRESS = "in_progress", "进行中"
    COMPLETED = "completed", "已完成"
    MISSED = "missed", "已错过"
    CANCELLED = "cancelled", "已取消"
    RESCHEDULED = "rescheduled", "改期中"


class DeviationType(models.TextChoices):
    WINDOW_VIOLATION = "window_violation", "超窗"
    MISSED_VISIT = "missed_visit", "漏访"
    EXAMINATION_SKIP = "examination_skip", "必做检查未完成"
    PROTOCOL_CHANGE = "protocol_change", "方案变更"


class DeviationSeverity(models.TextChoices):
    LOW = "low", "低"
    MEDIUM = "medium", "中"
    HIGH = "high", "高"
    CRITICAL = "critical", "严重"
