#!/usr/bin/env python3
"""
Run a full draft → M-Pesa payment → finalization checkout against the mock
backend and print each stage to the terminal.

Usage (from repo root):
  python scripts/run_checkout_demo.py            # payment completes
  python scripts/run_checkout_demo.py --fail     # payment fails on the handset
  python scripts/run_checkout_demo.py --partial  # payment completes, application update fails once
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.checkout.flow import CheckoutFlow
from src.integrations.clients.mocks.applications import MockApplicationsClient
from src.integrations.clients.mocks.mpesa import MpesaMockClient
from src.integrations.contracts.errors import PaymentTerminalFailure
from src.utils.checkout_config import CheckoutConfig, PaymentTimersConfig


def setup_logging():
    """Log to terminal at INFO so every stage is visible."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
    )


def print_stage(title: str, data: dict | list | str):
    """Print a stage header and data to the terminal."""
    print("\n" + "=" * 60)
    print(f"  {title}")
    print("=" * 60)
    if isinstance(data, (dict, list)):
        print(json.dumps(data, indent=2, default=str))
    else:
        print(data)
    print()


FORM_SNAPSHOT = {
    "firstName": "Jane",
    "lastName": "Demo",
    "mobileNumber": "0712345678",
    "emailAddress": "jane@example.com",
    "insuranceType": "travel",
    "destination": "Tanzania",
    "travelPurpose": "  ",
    "selectedPlan": {"id": "plan-gold", "name": "Gold"},
    "premiumAmount": 48000,
    "currentStep": 5,
    "documents": {
        "passport": {"name": "passport.pdf", "type": "application/pdf", "content": b"%PDF-1.4 demo"},
        "nationalId": {"name": "id.png", "type": "image/png", "content": b"\x89PNG demo"},
    },
}


async def main(fail: bool, partial: bool):
    setup_logging()

    applications = MockApplicationsClient()
    payments = MpesaMockClient(
        status_script=["pending", "failed" if fail else "completed"],
        receipt_number="QAX123",
    )
    # Short timers so the demo finishes in a couple of seconds
    config = CheckoutConfig(timers=PaymentTimersConfig(poll_interval_seconds=0.5, countdown_seconds=60, tick_seconds=0.1))
    flow = CheckoutFlow(applications, payments, config=config, insurance_type="travel")

    print_stage("REVIEW: Form snapshot", {k: v for k, v in FORM_SNAPSHOT.items() if k != "documents"})
    draft = await flow.proceed_to_payment(FORM_SNAPSHOT)
    print_stage("DRAFT APPLICATION", flow.snapshot()["application"])

    if partial:
        applications.fail_on("update_application")

    await flow.start_payment("+254 712 345 678")
    print_stage("PAYMENT INITIATED", flow.session.snapshot())

    try:
        await flow.session.wait()
    except PaymentTerminalFailure as exc:
        print_stage(f"PAYMENT {exc.state.upper()}", {"reason": exc.reason})
        flow.close()
        return
    await flow.session.join()

    print_stage("CHECKOUT AFTER PAYMENT", flow.snapshot())

    if flow.partial_failure is not None:
        print_stage("RETRYING FINALIZATION", flow.partial_failure.message)
        await flow.retry_finalization()
        print_stage("CHECKOUT AFTER RETRY", flow.snapshot())

    print_stage("BACKEND CALLS", dict(applications.calls))
    print_stage("STORED DOCUMENTS", [d.__dict__ for d in applications.documents[draft.application_id]])
    flow.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--fail", action="store_true", help="payment fails on the handset")
    parser.add_argument("--partial", action="store_true", help="application update fails once after payment")
    args = parser.parse_args()
    asyncio.run(main(args.fail, args.partial))
