"""排程核心的类型化异常。

请求层只需区分三类错误即可映射响应：
- NotFoundError: 研究方案/受试者/随访计划/访视不存在；
- ValidationError: 业务规则校验失败，`code` 标识具体规则；
- StoreError: 存储协作方失败（超时、不可用），原样向上抛出，不做重试。
"""

from __future__ import annotations

from django.core.exceptions import ObjectDoesNotExist
from django.core.exceptions import ValidationError as DjangoValidationError


class SchedulingError(Exception):
    """排程核心异常基类。"""


class NotFoundError(SchedulingError, ObjectDoesNotExist):
    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class ValidationError(SchedulingError, DjangoValidationError):
    """业务规则校验失败；沿用 Django ValidationError，便于表单/视图层直接捕获。"""

    PROTOCOL_NOT_ACTIVE = "protocol_not_active"
    ORGANIZATION_MISMATCH = "organization_mismatch"
    DUPLICATE_ACTIVE_SURVEY = "duplicate_active_survey"
    INVALID_DATE_RANGE = "invalid_date_range"
    INVALID_VISIT_TEMPLATE = "invalid_visit_template"
    UNKNOWN_EXAMINATION = "unknown_examination"
    INVALID_TRANSITION = "invalid_transition"
    MISSING_SCOPE = "missing_scope"

    def __init__(self, message: str, code: str | None = None, params=None):
        DjangoValidationError.__init__(self, message, code=code, params=params)

    @property
    def rule(self) -> str | None:
        return self.code


class StoreError(SchedulingError):
    def __init__(self, operation: str, message: str = ""):
        self.operation = operation
        super().__init__(f"store operation failed: {operation}" + (f" ({message})" if message else ""))
