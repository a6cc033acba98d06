"""排程核心的 Celery 任务。"""

import logging
from collections import Counter

from celery import shared_task

from core.conf import scheduling_config
from core.service.visit import VisitService
from users.choices import OrganizationStatus
from users.models import Organization

logger = logging.getLogger(__name__)


def scan_protocol_deviations(organization_ids=None, now=None) -> dict[int, dict[str, int]]:
    """
    【功能说明】
    - 逐个机构扫描方案偏离，返回 {organization_id: {deviation_type: count}}。
    - organization_ids 缺省时取 SCHEDULING_CONFIG["DEVIATION_SCAN_ORGANIZATIONS"]，
      仍为空则扫描全部 active 机构。
    """

    if organization_ids is None:
        organization_ids = scheduling_config()["DEVIATION_SCAN_ORGANIZATIONS"]
    if organization_ids is None:
        organization_ids = list(
            Organization.objects.filter(status=OrganizationStatus.ACTIVE)
            .order_by("id")
            .values_list("id", flat=True)
        )

    service = VisitService()
    results: dict[int, dict[str, int]] = {}
    for organization_id in organization_ids:
        alerts = service.detect_protocol_deviations(organization_id, now)
        results[organization_id] = dict(Counter(alert.deviation_type for alert in alerts))

    logger.info(
        "方案偏离扫描完成: organizations=%s, alerts=%s",
        len(results),
        sum(sum(counts.values()) for counts in results.values()),
    )
    return results


@shared_task(name="core.scan_protocol_deviations")
def scan_protocol_deviations_task(organization_ids=None) -> dict[str, dict[str, int]]:
    results = scan_protocol_deviations(organization_ids)
    # Celery JSON 序列化要求字典键为字符串
    return {str(organization_id): counts for organization_id, counts in results.items()}
