import django.db.models.deletion
from django.db import migrations, models

CREATED_AT_HELP = "【业务说明】记录数据首次写入时间；【用法】只读字段，自动写入；【示例】2025-01-01 09:00"
UPDATED_AT_HELP = "【业务说明】记录最新修改时间，仪表盘“最近动态”按该字段倒序；【用法】ORM 保存时自动更新；【示例】2025-01-02 18:30"


def timestamp_fields():
    return [
        ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text=CREATED_AT_HELP, verbose_name="创建时间")),
        ("updated_at", models.DateTimeField(auto_now=True, db_index=True, help_text=UPDATED_AT_HELP, verbose_name="更新时间")),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("users", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="ClinicalStudy",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *timestamp_fields(),
                ("study_code", models.CharField(max_length=50, unique=True, verbose_name="研究编号")),
                ("study_name", models.CharField(max_length=200, verbose_name="研究名称")),
                ("description", models.TextField(blank=True, verbose_name="研究描述")),
                ("protocol_version", models.CharField(default="1.0", max_length=20, verbose_name="方案版本")),
                ("start_date", models.DateField(blank=True, null=True, verbose_name="开始日期")),
                ("end_date", models.DateField(blank=True, null=True, verbose_name="结束日期")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("planning", "筹备中"),
                            ("active", "进行中"),
                            ("recruiting", "招募中"),
                            ("completed", "已完成"),
                            ("suspended", "已暂停"),
                            ("terminated", "已终止"),
                        ],
                        default="planning",
                        max_length=20,
                        verbose_name="状态",
                    ),
                ),
                (
                    "visit_template",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text=(
                            "有序访视条目列表，每项包含 visit_number/visit_type/visit_name/"
                            "scheduled_days_from_baseline/window_days_before/window_days_after/"
                            "required_examinations/optional_examinations/examination_order。"
                        ),
                        verbose_name="访视模板",
                    ),
                ),
            ],
            options={
                "verbose_name": "临床研究方案",
                "verbose_name_plural": "临床研究方案",
                "db_table": "core_clinical_studies",
                "ordering": ("-created_at",),
            },
        ),
        migrations.CreateModel(
            name="Survey",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *timestamp_fields(),
                ("name", models.CharField(max_length=200, verbose_name="计划名称")),
                ("description", models.TextField(blank=True, verbose_name="描述")),
                ("baseline_date", models.DateField(verbose_name="基线日期")),
                ("expected_completion_date", models.DateField(verbose_name="预计完成日期")),
                (
                    "status",
                    models.CharField(
                        choices=[("active", "进行中"), ("completed", "已完成"), ("withdrawn", "已退出")],
                        default="active",
                        max_length=20,
                        verbose_name="状态",
                    ),
                ),
                ("total_visits", models.PositiveIntegerField(default=0, verbose_name="访视总数")),
                ("completed_visits", models.PositiveIntegerField(default=0, verbose_name="已完成访视数")),
                ("completion_percentage", models.PositiveSmallIntegerField(default=0, verbose_name="完成百分比")),
                ("assigned_by", models.CharField(max_length=100, verbose_name="分配人")),
                ("conducted_by", models.CharField(blank=True, max_length=100, verbose_name="执行人")),
                (
                    "clinical_study",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="surveys",
                        to="core.clinicalstudy",
                        verbose_name="研究方案",
                    ),
                ),
                (
                    "organization",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="surveys",
                        to="users.organization",
                        verbose_name="入组机构",
                    ),
                ),
                (
                    "patient",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="surveys",
                        to="users.patientprofile",
                        verbose_name="受试者",
                    ),
                ),
            ],
            options={
                "verbose_name": "随访计划",
                "verbose_name_plural": "随访计划",
                "db_table": "core_surveys",
                "ordering": ("-updated_at", "-id"),
                "indexes": [
                    models.Index(fields=["organization", "status"], name="idx_survey_org_status"),
                    models.Index(fields=["clinical_study", "status"], name="idx_survey_study_status"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "active")),
                        fields=("patient", "clinical_study"),
                        name="uniq_active_survey_per_patient_study",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Visit",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                *timestamp_fields(),
                ("sequence", models.PositiveSmallIntegerField(default=0, verbose_name="模板顺序")),
                ("visit_number", models.PositiveSmallIntegerField(verbose_name="访视编号")),
                (
                    "visit_type",
                    models.CharField(
                        choices=[
                            ("baseline", "基线"),
                            ("1week", "1周"),
                            ("1month", "1个月"),
                            ("3month", "3个月"),
                            ("custom", "自定义"),
                        ],
                        max_length=20,
                        verbose_name="访视类型",
                    ),
                ),
                ("visit_name", models.CharField(blank=True, max_length=100, verbose_name="访视名称")),
                ("scheduled_date", models.DateField(verbose_name="计划日期")),
                ("window_start_date", models.DateField(verbose_name="窗口开始")),
                ("window_end_date", models.DateField(verbose_name="窗口结束")),
                ("actual_date", models.DateTimeField(blank=True, null=True, verbose_name="实际访视时间")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("scheduled", "已排期"),
                            ("in_progress", "进行中"),
                            ("completed", "已完成"),
                            ("missed", "已错过"),
                            ("cancelled", "已取消"),
                            ("rescheduled", "改期中"),
                        ],
                        default="scheduled",
                        max_length=20,
                        verbose_name="状态",
                    ),
                ),
                ("completion_percentage", models.PositiveSmallIntegerField(default=0, verbose_name="检查完成百分比")),
                ("required_examinations", models.JSONField(blank=True, default=list, verbose_name="必做检查")),
                ("optional_examinations", models.JSONField(blank=True, default=list, verbose_name="选做检查")),
                ("examination_order", models.JSONField(blank=True, default=list, verbose_name="检查顺序")),
                ("completed_examinations", models.JSONField(blank=True, default=list, verbose_name="已完成检查")),
                ("skipped_examinations", models.JSONField(blank=True, default=list, verbose_name="已跳过检查")),
                ("visit_notes", models.TextField(blank=True, verbose_name="访视备注")),
                ("deviation_reason", models.CharField(blank=True, max_length=255, verbose_name="偏离原因")),
                ("conducted_by", models.CharField(blank=True, max_length=100, verbose_name="执行人")),
                (
                    "survey",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="visits",
                        to="core.survey",
                        verbose_name="随访计划",
                    ),
                ),
                (
                    "clinical_study",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="visits",
                        to="core.clinicalstudy",
                        verbose_name="研究方案",
                    ),
                ),
                (
                    "organization",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="visits",
                        to="users.organization",
                        verbose_name="机构",
                    ),
                ),
                (
                    "patient",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="visits",
                        to="users.patientprofile",
                        verbose_name="受试者",
                    ),
                ),
            ],
            options={
                "verbose_name": "访视",
                "verbose_name_plural": "访视",
                "db_table": "core_visits",
                "ordering": ("survey", "sequence", "id"),
                "indexes": [
                    models.Index(fields=["organization", "status"], name="idx_visit_org_status"),
                    models.Index(fields=["scheduled_date"], name="idx_visit_scheduled_date"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("survey", "visit_number"), name="uniq_visit_number_per_survey"),
                ],
            },
        ),
    ]
