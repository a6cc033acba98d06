import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Organization",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="【业务说明】记录数据首次写入时间；【用法】只读字段，自动写入；【示例】2025-01-01 09:00",
                        verbose_name="创建时间",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        db_index=True,
                        help_text="【业务说明】记录最新修改时间，仪表盘“最近动态”按该字段倒序；【用法】ORM 保存时自动更新；【示例】2025-01-02 18:30",
                        verbose_name="更新时间",
                    ),
                ),
                ("name", models.CharField(max_length=100, verbose_name="机构名称")),
                ("code", models.CharField(max_length=30, unique=True, verbose_name="机构编码")),
                (
                    "organization_type",
                    models.CharField(
                        choices=[
                            ("hospital", "医院"),
                            ("clinic", "诊所"),
                            ("research_center", "研究中心"),
                            ("university", "大学"),
                            ("other", "其它"),
                        ],
                        default="hospital",
                        max_length=30,
                        verbose_name="机构类型",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("active", "启用"),
                            ("inactive", "停用"),
                            ("pending_approval", "待审批"),
                            ("suspended", "暂停"),
                        ],
                        default="active",
                        max_length=30,
                        verbose_name="状态",
                    ),
                ),
            ],
            options={
                "verbose_name": "参研机构",
                "verbose_name_plural": "参研机构",
                "db_table": "users_organizations",
                "ordering": ("code",),
            },
        ),
        migrations.CreateModel(
            name="PatientProfile",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="【业务说明】记录数据首次写入时间；【用法】只读字段，自动写入；【示例】2025-01-01 09:00",
                        verbose_name="创建时间",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        db_index=True,
                        help_text="【业务说明】记录最新修改时间，仪表盘“最近动态”按该字段倒序；【用法】ORM 保存时自动更新；【示例】2025-01-02 18:30",
                        verbose_name="更新时间",
                    ),
                ),
                (
                    "patient_code",
                    models.CharField(
                        help_text="【业务说明】脱敏后的受试者唯一编码；【用法】报表与随访计划命名；【示例】P-001",
                        max_length=50,
                        unique=True,
                        verbose_name="受试者编码",
                    ),
                ),
                (
                    "initials",
                    models.CharField(
                        blank=True,
                        help_text="【业务说明】受试者姓名缩写，不保存全名；【示例】ZS",
                        max_length=10,
                        verbose_name="姓名缩写",
                    ),
                ),
                (
                    "gender",
                    models.CharField(
                        blank=True,
                        choices=[("male", "男"), ("female", "女"), ("other", "其它")],
                        max_length=10,
                        verbose_name="性别",
                    ),
                ),
                ("birth_date", models.DateField(blank=True, null=True, verbose_name="出生日期")),
                ("registration_date", models.DateField(blank=True, null=True, verbose_name="注册日期")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("active", "在组"),
                            ("inactive", "未激活"),
                            ("withdrawn", "已退出"),
                            ("completed", "已完成"),
                        ],
                        default="active",
                        max_length=20,
                        verbose_name="状态",
                    ),
                ),
                (
                    "participating_studies",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="【业务说明】受试者参与的 ClinicalStudy ID 列表，按集合语义维护（不重复）；【示例】[1, 3]",
                        verbose_name="参与的研究",
                    ),
                ),
                (
                    "registered_organization",
                    models.ForeignKey(
                        help_text="【业务说明】受试者建档所在机构；【用法】入组时必须与入组机构一致",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="patients",
                        to="users.organization",
                        verbose_name="注册机构",
                    ),
                ),
            ],
            options={
                "verbose_name": "受试者档案",
                "verbose_name_plural": "受试者档案",
                "db_table": "users_patient_profiles",
                "indexes": [
                    models.Index(fields=["registered_organization", "status"], name="idx_patient_org_status"),
                ],
            },
        ),
    ]
