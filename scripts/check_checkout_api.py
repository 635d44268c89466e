#!/usr/bin/env python3
"""
Smoke test for a running checkout API: draft, payment, polling until the
checkout settles, then teardown.

Start the API first (in another terminal), with mock integrations:
  INTEGRATIONS_MODE=mock API_KEYS=dev-key uvicorn src.api.main:app --host 127.0.0.1 --port 8000

Then run this script:
  python scripts/check_checkout_api.py --api-key dev-key
  python scripts/check_checkout_api.py --base-url http://127.0.0.1:8000 --phone 0712345678

If you see "Connection refused", the API is not running; start uvicorn as above.
"""

from __future__ import annotations

import argparse
import sys
import time
import uuid
from typing import Any, Dict

import httpx

FORM = {
    "firstName": "Jane",
    "lastName": "Demo",
    "mobileNumber": "0712345678",
    "emailAddress": "jane@example.com",
    "insuranceType": "health",
    "premiumAmount": 48000,
    "selectedPlan": {"id": "plan-silver"},
}


def call(client: httpx.Client, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
    r = client.request(method, path, **kwargs)
    r.raise_for_status()
    return r.json()


def main() -> int:
    parser = argparse.ArgumentParser(description="Smoke test the checkout API")
    parser.add_argument("--base-url", default="http://localhost:8000", help="API base URL")
    parser.add_argument("--api-key", default="dev-key", help="Value for the X-API-KEY header")
    parser.add_argument("--phone", default="0712345678", help="M-Pesa number for the STK prompt")
    parser.add_argument("--timeout", type=int, default=60, help="Seconds to wait for the payment to settle")
    args = parser.parse_args()

    submission_id = f"smoke-{uuid.uuid4().hex[:8]}"
    prefix = f"/api/v1/checkout/{submission_id}"
    print(f"=== Checkout API smoke test ({submission_id}) ===\n")

    with httpx.Client(base_url=args.base_url.rstrip("/"), headers={"X-API-KEY": args.api_key}, timeout=30) as client:
        try:
            print("1) POST /draft")
            state = call(client, "POST", f"{prefix}/draft", json=FORM)
            application = state["application"]
            print(f"   application {application['application_number']} status={application['status']}\n")

            print("2) POST /payment")
            state = call(client, "POST", f"{prefix}/payment", json={"phone_number": args.phone})
            print(f"   reference={state['payment']['payment_reference']} step={state['current_step']}\n")

            print("3) GET (polling)")
            deadline = time.monotonic() + args.timeout
            while state["current_step"] == "processing" and time.monotonic() < deadline:
                time.sleep(2)
                state = call(client, "GET", prefix)
                print(f"   step={state['current_step']} remaining={state['remaining_seconds']}s")
            print()
        except httpx.HTTPError as e:
            print(f"   FAIL: {e}")
            if isinstance(e, httpx.ConnectError):
                print("   -> Start the API first: uvicorn src.api.main:app --host 127.0.0.1 --port 8000")
            if isinstance(e, httpx.HTTPStatusError):
                print(f"   body: {e.response.text[:500]}")
            return 1
        finally:
            client.delete(prefix)

    print(f"Result: step={state['current_step']} error={state['error_message']}")
    if state["current_step"] == "success":
        print(f"   application status={state['application']['status']} receipt={state['payment']['receipt_number']}")
        return 0
    return 1


if __name__ == "__main__":
    sys.exit(main())
