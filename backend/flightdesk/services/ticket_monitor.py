from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from flightdesk.core.config import Settings
from flightdesk.models.domain import SupplierStatus
from flightdesk.services.booking_machine import BookingStateMachine, utcnow
from flightdesk.storage.repository import InMemoryRepository

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    started_at: datetime
    candidates: int = 0
    issued: int = 0
    still_pending: int = 0
    failed: int = 0
    errors: int = 0

    def as_dict(self) -> Dict[str, object]:
        return {
            "started_at": self.started_at.isoformat(),
            "candidates": self.candidates,
            "issued": self.issued,
            "still_pending": self.still_pending,
            "failed": self.failed,
            "errors": self.errors,
        }


@dataclass
class MonitorStatus:
    running: bool
    interval_seconds: float
    batch_size: int
    sweeps: int = 0
    last_sweep: Optional[SweepReport] = None


class TicketIssuanceMonitor:
    """
    Periodic sweep over bookings that are paid and saved but not ticketed.

    Owned by the application: ``start()``/``stop()`` control a single daemon
    thread, and ``sweep()`` can be called directly (tests, the retry script).
    """

    def __init__(
        self,
        repository: InMemoryRepository,
        machine: BookingStateMachine,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.machine = machine
        self.settings = settings
        self.clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._sweeps = 0
        self._last: Optional[SweepReport] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="ticket-monitor", daemon=True)
        self._thread.start()
        logger.info(
            "Ticket issuance monitor started (every %.0fs, batch %s)",
            self.settings.monitor_interval_seconds, self.settings.monitor_batch_size,
        )

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Ticket issuance monitor stopped")

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.sweep()
            except Exception:  # noqa: BLE001
                logger.exception("Ticket issuance sweep crashed")
            self._stop.wait(self.settings.monitor_interval_seconds)

    def sweep(self) -> SweepReport:
        report = SweepReport(started_at=self.clock())
        if not self.settings.supplier_enabled:
            logger.debug("Supplier integration disabled; skipping sweep")
            self._record(report)
            return report

        candidates = self.repository.find_issuance_candidates(self.settings.monitor_batch_size)
        report.candidates = len(candidates)
        if candidates:
            logger.info("Found %s booking(s) pending ticket issuance", len(candidates))

        for candidate in candidates:
            try:
                booking = self.machine.issue_ticket(candidate.booking_id)
            except Exception as exc:  # noqa: BLE001
                report.errors += 1
                logger.warning("Issuance retry for %s failed: %s", candidate.booking_id, exc)
                continue
            if booking.supplier_status == SupplierStatus.issued:
                report.issued += 1
            elif booking.supplier_status == SupplierStatus.failed:
                report.failed += 1
            else:
                report.still_pending += 1

        self._record(report)
        return report

    def _record(self, report: SweepReport) -> None:
        self._sweeps += 1
        self._last = report

    def status(self) -> MonitorStatus:
        return MonitorStatus(
            running=self.running,
            interval_seconds=self.settings.monitor_interval_seconds,
            batch_size=self.settings.monitor_batch_size,
            sweeps=self._sweeps,
            last_sweep=self._last,
        )
