"""
Keeps `CaregiverProfile.verified` equal to `account.status == approved`.

approve/reject write both records in one database call. reconcile() is the
compensating sweep: it recomputes the flag from the account status and
repairs drift, re-checking the status under the database lock before every
write so it never acts on a stale read. It is idempotent.
"""

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable

from carematch.database import MarketplaceDatabase
from carematch.errors import ConsistencyError, NotFoundError
from carematch.logger import get_logger
from carematch.models import (
    Account,
    AccountStatus,
    CaregiverProfile,
    Mismatch,
    ReconciliationReport,
)

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

DEFAULT_FLAG_THRESHOLD = 3


class VerificationService:
    def __init__(
        self,
        database: MarketplaceDatabase,
        *,
        flag_threshold: int = DEFAULT_FLAG_THRESHOLD,
        violation_counts: Counter | None = None,
    ) -> None:
        self.database = database
        self.flag_threshold = flag_threshold
        # account id -> number of repaired violations, shared across sweeps
        self.violation_counts = Counter() if violation_counts is None else violation_counts

    def approve(self, account_id: str) -> tuple[Account, CaregiverProfile]:
        return self._decide(account_id, AccountStatus.APPROVED)

    def reject(self, account_id: str) -> tuple[Account, CaregiverProfile]:
        return self._decide(account_id, AccountStatus.REJECTED)

    def _decide(
        self, account_id: str, status: AccountStatus
    ) -> tuple[Account, CaregiverProfile]:
        account = self.database.account(account_id)
        if account is None:
            raise NotFoundError("account not found", account_id=account_id)
        caregiver = self.database.caregiver_for_account(account_id)
        if caregiver is None:
            raise NotFoundError(
                "caregiver profile not found", account_id=account_id
            )

        account = account.model_copy(update={"status": status})
        caregiver = caregiver.model_copy(
            update={"verified": status == AccountStatus.APPROVED}
        )
        self.database.write_verification(account, caregiver)

        get_logger(__name__, account_id=account_id, caregiver_id=caregiver.id).info(
            "caregiver %s", status
        )
        return account, caregiver

    def reconcile(self) -> ReconciliationReport:
        report = ReconciliationReport()

        for caregiver in self.database.caregivers():
            report.checked += 1
            log = get_logger(
                __name__, account_id=caregiver.account_id, caregiver_id=caregiver.id
            )

            account = self.database.account(caregiver.account_id)
            if account is None:
                log.warning("caregiver profile has no account")
                report.orphaned.append(caregiver.id)
                continue

            expected = account.status == AccountStatus.APPROVED
            if caregiver.verified == expected:
                continue

            error = ConsistencyError(
                "verified flag disagrees with account status",
                account_status=account.status,
                verified=caregiver.verified,
            )
            log.warning("%s (%s)", error.message, error.details)

            written = self.database.set_verified_if_status(
                caregiver.id, account.id, account.status, expected
            )
            if not written:
                log.info("skipped repair: record changed during sweep")
                continue

            report.mismatches.append(
                Mismatch(
                    account_id=account.id,
                    caregiver_id=caregiver.id,
                    account_status=account.status,
                    verified_before=caregiver.verified,
                    verified_after=expected,
                )
            )
            self.violation_counts[account.id] += 1
            if self.violation_counts[account.id] >= self.flag_threshold:
                log.error(
                    "repeated verification drift (%d repairs), needs operator attention",
                    self.violation_counts[account.id],
                )
                report.flagged_accounts.append(account.id)

        report.corrected_count = len(report.mismatches)
        logger.info(
            "reconciliation checked %d caregivers, corrected %d, orphaned %d",
            report.checked,
            report.corrected_count,
            len(report.orphaned),
        )
        return report


async def run_reconciliation_schedule(
    service: VerificationService,
    *,
    interval_seconds: float,
    sleep_fn: SleepFn = asyncio.sleep,
) -> None:
    """
    Run `service.reconcile()` every `interval_seconds` until cancelled.
    Each sweep runs in a worker thread, off the event loop.
    """
    try:
        while True:
            await sleep_fn(interval_seconds)
            try:
                await asyncio.to_thread(service.reconcile)
            except Exception:
                logger.exception("scheduled reconciliation failed")
    except asyncio.CancelledError:
        return
