#!/usr/bin/env python3
"""
Demo script: fund a sample event end to end through the API.

Creates a two-gift event, activates it, pledges the full target, pushes
payment confirmations onto the confirmations queue and polls until the
event completes and its order appears.

Run against LocalStack: python scripts/seed_data.py --local
Run against AWS:        python scripts/seed_data.py --endpoint https://your-api.execute-api.us-east-1.amazonaws.com/v1
"""
import argparse
import json
import time
import uuid
from datetime import date, timedelta

import boto3
import requests

parser = argparse.ArgumentParser()
parser.add_argument("--endpoint", default="http://localhost:4566/restapis/local/v1/_user_request_")
parser.add_argument("--local", action="store_true")
parser.add_argument("--queue-name", default="giftpool-payment-confirmations")
parser.add_argument("--products", nargs="+", default=["prod-001", "prod-002"])
args = parser.parse_args()

BASE_URL = "http://localhost:8000" if args.local else args.endpoint
HEADERS = {"Content-Type": "application/json"}

today = date.today()
event_payload = {
    "owner_id": f"owner-{uuid.uuid4().hex[:8]}",
    "title": "Amina's graduation",
    "category": "graduation",
    "description": "Pooling for a laptop and headphones",
    "visibility": "public",
    "start_date": today.isoformat(),
    "end_date": (today + timedelta(days=14)).isoformat(),
    "line_items": [{"product_id": p, "quantity": 1} for p in args.products],
}

idempotency_key = str(uuid.uuid4())

print(f"Creating event with idempotency_key={idempotency_key}")
print(f"Payload: {json.dumps(event_payload, indent=2)}")
print()

resp = requests.post(
    f"{BASE_URL}/events",
    json=event_payload,
    headers={**HEADERS, "Idempotency-Key": idempotency_key},
    timeout=30,
)
print(f"Response [{resp.status_code}]: {json.dumps(resp.json(), indent=2)}")
resp.raise_for_status()
event = resp.json()
event_id = event["event_id"]
target = event["target_amount_cents"]

print("\nSubmitting SAME request again to test idempotency...")
resp2 = requests.post(
    f"{BASE_URL}/events",
    json=event_payload,
    headers={**HEADERS, "Idempotency-Key": idempotency_key},  # Same key!
    timeout=30,
)
assert resp2.json().get("event_id") == event_id, "Idempotency broken! Got different event_id"
print("Idempotency verified: same event_id returned for duplicate request.")

resp = requests.post(f"{BASE_URL}/events/{event_id}/activate", headers=HEADERS, timeout=30)
print(f"\nActivated [{resp.status_code}]: status={resp.json().get('status')} share_code={resp.json().get('share_code')}")

# Split the target into three pledges, the last one covering the remainder
shares = [target // 3, target // 3]
shares.append(target - sum(shares))
references = []
for i, amount in enumerate(shares, 1):
    reference = f"pay-{uuid.uuid4().hex[:12]}"
    resp = requests.post(
        f"{BASE_URL}/events/{event_id}/contributions",
        json={
            "contributor_id": f"friend-{i}",
            "amount_cents": amount,
            "payment_reference": reference,
            "payment_method": "mobile_money",
            "message": "Congratulations!",
        },
        headers=HEADERS,
        timeout=30,
    )
    print(f"  Pledge {i} [{resp.status_code}]: {amount} cents ref={reference}")
    references.append((reference, amount))

sqs = boto3.client("sqs", endpoint_url="http://localhost:4566" if args.local else None)
queue_url = sqs.get_queue_url(QueueName=args.queue_name)["QueueUrl"]
for reference, amount in references:
    sqs.send_message(QueueUrl=queue_url, MessageBody=json.dumps({
        "payment_reference": reference,
        "event_id": event_id,
        "amount_cents": amount,
        "outcome": "confirmed",
    }))
print(f"\nQueued {len(references)} payment confirmations. Polling progress...")

for attempt in range(15):
    time.sleep(2)
    progress = requests.get(f"{BASE_URL}/events/{event_id}/progress", timeout=10).json()
    print(f"  Attempt {attempt + 1}: {progress.get('status')} {progress.get('percent')}%")
    if progress.get("status") in ("completed", "cancelled"):
        break
else:
    print("Timed out waiting for completion.")

resp = requests.get(f"{BASE_URL}/events/{event_id}/order", timeout=10)
if resp.status_code == 200:
    order = resp.json()
    print(f"\nOrder {order['order_id']} created for seller {order['seller_id']}: {order['funded_amount_cents']} cents")
else:
    print(f"\nNo order yet [{resp.status_code}]. Check CloudWatch logs for details.")
