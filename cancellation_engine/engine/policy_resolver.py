"""
Effective cancellation policy lookup.

Specialist override, then the business-wide policy, then the built-in
default. Resolution never fails: a missing or unreadable stored policy
degrades to the next level. Policies are read on every call, never cached,
because administrators may change them between requests.
"""

import logging
from typing import Callable, Optional

from cancellation_engine.config import PolicyDefaultsConfig, settings
from cancellation_engine.schemas.policy_schema import (
    AppliesTo,
    CancellationPolicy,
    PartialRefund,
    PolicyScope,
    PolicySource,
    ResolvedPolicy,
)
from cancellation_engine.stores.interfaces import PolicyStore

logger = logging.getLogger(__name__)


def default_policy(
    defaults: PolicyDefaultsConfig = settings.policy_defaults,
    currency: str = settings.business.currency,
) -> CancellationPolicy:
    """Built-in policy: 24h free, 2h no-refund, 50% in between, 15 min grace."""
    return CancellationPolicy(
        scope=PolicyScope.SALON,
        free_cancel_hours=defaults.free_cancel_hours,
        no_refund_hours=defaults.no_refund_hours,
        reschedule_allowed_hours=defaults.reschedule_allowed_hours,
        partial_refund=PartialRefund(percent=defaults.partial_refund_percent),
        grace_minutes=defaults.grace_minutes,
        applies_to=AppliesTo(defaults.applies_to),
        currency=currency,
    )


class PolicyResolver:
    """Resolves the policy governing one appointment's cancellation."""

    def __init__(
        self,
        store: PolicyStore,
        fallback: Optional[CancellationPolicy] = None,
    ) -> None:
        self._store = store
        self._fallback = fallback or default_policy()

    def _lookup(
        self, source: PolicySource, fetch: Callable[[], Optional[CancellationPolicy]]
    ) -> Optional[CancellationPolicy]:
        try:
            return fetch()
        except Exception:
            logger.warning(
                "Ignoring unreadable %s cancellation policy", source.value, exc_info=True
            )
            return None

    def resolve(self, tenant_id: str, specialist_id: Optional[str]) -> ResolvedPolicy:
        if specialist_id:
            policy = self._lookup(
                PolicySource.SPECIALIST,
                lambda: self._store.find_specialist_policy(tenant_id, specialist_id),
            )
            if policy is not None:
                return ResolvedPolicy(policy=policy, source=PolicySource.SPECIALIST)

        policy = self._lookup(
            PolicySource.SALON, lambda: self._store.find_business_policy(tenant_id)
        )
        if policy is not None:
            return ResolvedPolicy(policy=policy, source=PolicySource.SALON)

        logger.debug("No stored policy for tenant %s, using default", tenant_id)
        return ResolvedPolicy(policy=self._fallback.model_copy(), source=PolicySource.DEFAULT)
