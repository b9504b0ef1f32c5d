"""
Sync eligibility checks run before a record is transformed.
"""

import logging
from typing import Optional, Tuple

from ..exceptions import ValidationFailure
from ..models.audit import AuditCategory
from ..models.config import SyncConfig
from ..models.record import Record
from ..services.audit import AuditTrail
from .hooks import HookRegistry
from .transforms import FieldTransformer, is_empty

logger = logging.getLogger(__name__)


class EligibilityValidator:
    """
    Decides whether a record may be synced.

    Built-in checks run first (status, approval flag, required fields), then
    the registered extension checks. The result is the AND of all of them:
    an extension check can veto an eligible record but never rescue an
    ineligible one, because extension checks only run after every built-in
    check has passed.
    """

    def __init__(self, hooks: HookRegistry, audit: AuditTrail):
        self.hooks = hooks
        self.audit = audit

    def check(self, record: Record, config: SyncConfig, trigger: Optional[str] = None) -> Tuple[bool, str]:
        """
        Run all checks.

        Returns:
            (eligible, reason); the reason is empty when eligible
        """
        try:
            self._run_checks(record, config)
        except ValidationFailure as e:
            self.audit.warning(
                AuditCategory.VALIDATION,
                str(e),
                record_id=record.record_id,
                trigger=trigger,
                record_type=record.record_type,
                **e.context,
            )
            return False, str(e)
        return True, ""

    def is_eligible(self, record: Record, config: SyncConfig, trigger: Optional[str] = None) -> bool:
        eligible, _ = self.check(record, config, trigger)
        return eligible

    def _run_checks(self, record: Record, config: SyncConfig) -> None:
        if record.status not in config.publishable_statuses:
            raise ValidationFailure(f"Status '{record.status}' is not publishable",
                                    field="post_status", value=record.status)

        if config.approval_field:
            approved = record.get_field(config.approval_field)
            if not FieldTransformer.to_boolean(approved):
                raise ValidationFailure(f"Record is not approved ({config.approval_field})",
                                        field=config.approval_field, value=approved)

        for field in config.required_fields:
            if is_empty(record.get_field(field)):
                raise ValidationFailure(f"Required field missing: {field}", field=field)

        eligible, vetoed_by = self.hooks.check_eligibility(record.record_id)
        if not eligible:
            raise ValidationFailure(f"Rejected by eligibility check {vetoed_by}", check=vetoed_by)
