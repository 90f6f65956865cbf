"""
End-to-end run: one escrow payment against a live payment service.

Needs ESCROW_PAYMENT_SERVICE_URL, ESCROW_PAYMENT_API_KEY and
ESCROW_AGENT_IDENTIFIER in the environment.
"""

import json
import logging
import sys
import threading
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from agent_escrow import EventType, PaymentLifecycleEngine, generate_purchaser_identifier


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")
    print("🚀 agent-escrow E2E — payment lifecycle on Preprod")
    print("=" * 55)
    print()

    engine = PaymentLifecycleEngine()
    funds_locked = threading.Event()
    settled = threading.Event()
    engine.on(EventType.FUNDS_LOCKED, lambda payment: funds_locked.set())
    engine.on(EventType.COMPLETED, lambda payment: settled.set())
    engine.on(
        EventType.MONITOR_ERROR,
        lambda err: print(f"   ⚠️  Poll failed for {err.blockchain_identifier}: {err.error}"),
    )

    # 1. Create payment request
    print("1️⃣  Creating payment request...")
    purchaser = generate_purchaser_identifier()
    task = {"task": "sum", "numbers": [19, 23]}
    payment = engine.create_payment_request(purchaser, input_data=task, metadata="e2e demo")
    print(f"   ✅ Blockchain identifier: {payment.blockchain_identifier}")
    print(f"   Pay by: {payment.pay_by_time}")
    print()

    # 2. Wait for the purchaser to lock funds
    print("2️⃣  Monitoring until funds are locked (Ctrl-C to abort)...")
    engine.start_monitoring(interval_seconds=10)
    try:
        while not funds_locked.wait(timeout=1):
            pass
    except KeyboardInterrupt:
        print("   ❌ Aborted, authorizing refund")
        engine.authorize_refund(payment.blockchain_identifier)
        engine.close()
        return
    print("   ✅ Funds locked")
    print()

    # 3. Do the work and submit the result hash
    print("3️⃣  Submitting result...")
    output = json.dumps({"sum": sum(task["numbers"])}, separators=(",", ":"))
    engine.submit_result(payment.blockchain_identifier, output)
    print(f"   ✅ Result submitted (keep for disputes): {output}")
    print()

    # 4. Wait for settlement
    print("4️⃣  Waiting for withdrawal...")
    if settled.wait(timeout=3600):
        print("   🎉 Payment settled")
    else:
        current = engine.get_payment(payment.blockchain_identifier)
        print(f"   ⏱️  Still {current.state_label if current else 'unknown'} after an hour")

    print()
    print("=" * 55)
    engine.close()


if __name__ == "__main__":
    main()
