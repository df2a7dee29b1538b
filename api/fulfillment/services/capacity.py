from __future__ import annotations

import logging

from fulfillment.services.records import RECONCILABLE_POSTING_STATUSES, PostingUnit

logger = logging.getLogger(__name__)


class CapacityLedger:
    """Accepted-slot bookkeeping for one posting.

    The ledger is the only code that moves a posting between ``open`` and
    ``filled``; both values are a function of the accepted count.
    """

    async def accepted_count(self, unit: PostingUnit) -> int:
        return await unit.count_accepted()

    async def has_capacity(self, unit: PostingUnit) -> bool:
        return await self.accepted_count(unit) < unit.posting.team_size_max

    async def reconcile_posting_status(self, unit: PostingUnit) -> str:
        posting = unit.posting
        if posting.status not in RECONCILABLE_POSTING_STATUSES:
            return posting.status

        accepted = await self.accepted_count(unit)
        target = "filled" if accepted >= posting.team_size_max else "open"
        if target != posting.status:
            logger.info(
                "posting status reconciled posting=%s from=%s to=%s accepted=%s max=%s",
                posting.id,
                posting.status,
                target,
                accepted,
                posting.team_size_max,
            )
            posting.status = target
            await unit.save_posting()
        return posting.status
