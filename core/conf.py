"""排程核心业务配置读取。"""

from __future__ import annotations

from typing import Any

from django.conf import settings

DEFAULTS: dict[str, Any] = {
    "ENFORCE_VISIT_TRANSITIONS": False,
    "RECENT_ACTIVITY_LIMIT": 10,
    "VISITS_DUE_DAYS_AHEAD": 7,
    "DEVIATION_SCAN_ORGANIZATIONS": None,
}


def scheduling_config() -> dict[str, Any]:
    """合并默认值与 settings.SCHEDULING_CONFIG，后者优先。每次调用实时读取，测试中可 override_settings。"""

    config = dict(DEFAULTS)
    config.update(getattr(settings, "SCHEDULING_CONFIG", None) or {})
    return config
