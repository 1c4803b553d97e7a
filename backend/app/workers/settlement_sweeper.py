"""Settlement sweeper: settles declared draws and re-drives failed payouts."""

import logging
from datetime import timedelta

import app.database as _db
from app.config import settings
from app.services.errors import SettlementError, SettlementInProgressError
from app.services.result_service import list_unsettled_results
from app.services.settlement_service import retry_pending_payouts, settle_draw
from app.workers._state import get_synced_at, recently_synced, set_synced

logger = logging.getLogger("matka.settlement_sweeper")


async def settle_declared_draws() -> int:
    """Settle every declared draw that has no settlement marker yet.

    Covers results whose event was lost (bus disabled, process restart) and
    runs that crashed part-way. Smart sleep: between full sweeps (every six
    intervals) a run only proceeds when a result was declared since the last
    sweep.
    """
    state_key = "settlement_sweeper"
    if await recently_synced(state_key, timedelta(minutes=settings.SWEEPER_INTERVAL_MINUTES * 6)):
        last = await get_synced_at(state_key)
        newer = await _db.db.declared_results.find_one({"declared_at": {"$gte": last}}, {"_id": 1})
        if not newer:
            logger.debug("Smart sleep: no draws declared since last sweep")
            return 0

    settled = 0
    skipped = 0
    for result in await list_unsettled_results():
        try:
            await settle_draw(result.draw_id)
            settled += 1
        except SettlementInProgressError:
            skipped += 1
        except SettlementError as exc:
            logger.error("Sweeper could not settle draw %s: %s", result.draw_id, exc)
        except Exception:
            # One broken draw must not stop the sweep; the next run retries it.
            logger.exception("Sweeper failed on draw %s", result.draw_id)

    if settled or skipped:
        logger.info("Settlement sweep complete: %d settled, %d in progress elsewhere", settled, skipped)
    await set_synced(state_key, settled=settled, skipped=skipped)
    return settled


async def reconcile_payouts() -> int:
    """Retry wallet credits for won bets whose payout is still pending."""
    credited = await retry_pending_payouts()
    if credited:
        logger.info("Payout reconciliation credited %d bets", credited)
    await set_synced("payout_reconciler", credited=credited)
    return credited
