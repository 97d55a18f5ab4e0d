#!/usr/bin/env python
"""Retry ticket issuance for one booking against a running FlightDesk server."""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import requests

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from flightdesk.core.logging import configure_logging

logger = logging.getLogger("retry_booking")


def retry_booking(booking_id: str, base_url: str, session: Optional[requests.Session] = None) -> dict:
    http = session or requests.Session()
    resp = http.post(f"{base_url.rstrip('/')}/bookings/{booking_id}/issue", timeout=60)
    body = resp.json() if resp.content else {}
    if resp.status_code >= 400:
        raise RuntimeError(f"{resp.status_code}: {body.get('detail') or body}")
    return body


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("booking_id")
    parser.add_argument("--base-url", default="http://localhost:8000")
    args = parser.parse_args(argv)
    configure_logging()

    try:
        booking = retry_booking(args.booking_id, args.base_url)
    except (requests.RequestException, RuntimeError) as exc:
        logger.error("Retry for %s failed: %s", args.booking_id, exc)
        return 1

    logger.info(
        "Booking %s: supplier status %s, order %s",
        booking.get("booking_id"), booking.get("supplier_status"), booking.get("supplier_order_id"),
    )
    ticket = booking.get("ticket")
    if ticket:
        logger.info("Ticket %s, PNR %s", ticket.get("ticket_number"), ticket.get("record_locator"))
        return 0
    logger.warning("Not issued yet: %s", booking.get("error"))
    return 2


if __name__ == "__main__":
    sys.exit(main())
