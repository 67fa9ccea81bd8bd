#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import random
from concurrent.futures import ThreadPoolExecutor

import requests

MENU = [
    {"name": "Noodles", "unit_price": "40", "prep_minutes": 6},
    {"name": "Curry", "unit_price": "60", "prep_minutes": 9},
    {"name": "Fried Rice", "unit_price": "55", "prep_minutes": 7},
    {"name": "Tea", "unit_price": "15", "prep_minutes": 1},
]


def _cart(rng: random.Random, customer_id: str) -> dict:
    picks = rng.sample(MENU, k=rng.randint(1, 3))
    items = [{**item, "quantity": rng.randint(1, 2)} for item in picks]
    total = sum(int(item["unit_price"]) * item["quantity"] for item in items)
    return {"customer_id": customer_id, "line_items": items, "total_amount": str(total)}


def _place_and_pay(base_url: str, customer_key: str, customer_id: str, cart: dict) -> dict:
    headers = {"X-API-Key": customer_key, "X-Customer-Id": customer_id}
    created = requests.post(f"{base_url}/orders", json=cart, headers=headers, timeout=30)
    created.raise_for_status()
    order_id = created.json()["id"]

    paid = requests.post(f"{base_url}/orders/{order_id}/checkout", headers=headers, timeout=30)
    paid.raise_for_status()
    return paid.json()["order"]


def main() -> None:
    parser = argparse.ArgumentParser(description="Place concurrent orders against a running canteen queue")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--orders", type=int, default=20)
    parser.add_argument("--workers", type=int, default=8)
    parser.add_argument("--customer-key", default="canteen-customer-dev-key")
    parser.add_argument("--staff-key", default="canteen-staff-dev-key")
    parser.add_argument("--advance", type=int, default=3, help="orders the kitchen moves to READY afterwards")
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    rng = random.Random(args.seed)
    jobs = [(f"student-{i:03d}", _cart(rng, f"student-{i:03d}")) for i in range(args.orders)]
    with ThreadPoolExecutor(max_workers=args.workers) as pool:
        queued = list(
            pool.map(lambda job: _place_and_pay(args.base_url, args.customer_key, job[0], job[1]), jobs)
        )

    numbers = sorted(order["queue_number"] for order in queued if order["queue_number"] is not None)
    duplicates = len(numbers) - len(set(numbers))
    print(f"Queued {len(queued)} orders, numbers {numbers[:1]}..{numbers[-1:]}, duplicates={duplicates}")

    staff = {"X-API-Key": args.staff_key}
    for order in sorted(queued, key=lambda item: item["queue_number"] or 0)[: args.advance]:
        for target in ("PREPARING", "READY"):
            resp = requests.post(
                f"{args.base_url}/orders/{order['id']}/transitions",
                json={"to_state": target},
                headers=staff,
                timeout=30,
            )
            resp.raise_for_status()

    live = requests.get(f"{args.base_url}/queue/live", headers=staff, timeout=30)
    live.raise_for_status()
    print(json.dumps(live.json(), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
