"""
Chaos Simulation Script

Drives many orders through their lifecycle against a running API and fires
conflicting requests at the same order to check that exactly one wins.
Run from project root: python scripts/simulate.py

Version: 4.0.0
"""

import argparse
import asyncio
import random
import sys
import time
from datetime import datetime
from typing import Any

import httpx

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 50

# Sample data for random orders
CHEFS = ["chef_anita", "chef_rahul", "chef_meera", "chef_vikram"]
DELIVERY_PARTNERS = ["dp_arjun", "dp_kiran", "dp_sana"]
STREETS = ["MG Road", "FC Road", "Baner Road", "Koregaon Park", "Aundh Road"]
MENU_ITEMS = [
    {"menu_item_id": "menu_101", "name": "Paneer Butter Masala", "price": 220.0},
    {"menu_item_id": "menu_102", "name": "Dal Tadka", "price": 140.0},
    {"menu_item_id": "menu_103", "name": "Jeera Rice", "price": 90.0},
    {"menu_item_id": "menu_104", "name": "Butter Naan", "price": 35.0},
    {"menu_item_id": "menu_105", "name": "Gulab Jamun", "price": 60.0},
]

DELIVERY_PATH = [
    ("accepted", "chef"),
    ("preparing", "chef"),
    ("ready", "chef"),
    ("out_for_delivery", "delivery"),
    ("delivered", "delivery"),
]


def generate_order_payload(order_num: int) -> dict[str, Any]:
    """Generate payload for /api/orders endpoint."""
    items = []
    for item in random.sample(MENU_ITEMS, random.randint(1, 3)):
        items.append({**item, "quantity": random.randint(1, 3)})

    return {
        "customer_id": f"cust_{order_num:04d}",
        "chef_id": random.choice(CHEFS),
        "delivery_address": f"{random.randint(1, 999)} {random.choice(STREETS)}, Pune",
        "items": items,
    }


async def race_accept_and_cancel(client: httpx.AsyncClient, order_id: str) -> dict[str, Any]:
    """Chef accepts while customer cancels. Exactly one may succeed."""
    accept, cancel = await asyncio.gather(
        client.post(
            f"{API_BASE_URL}/api/orders/{order_id}/transitions",
            json={"target_status": "accepted", "actor_role": "chef", "expected_version": 1},
        ),
        client.post(
            f"{API_BASE_URL}/api/orders/{order_id}/cancel",
            json={"actor_role": "customer", "reason": "Changed my mind", "expected_version": 1},
        ),
    )
    winners = [r for r in (accept, cancel) if r.status_code == 200]
    return {
        "consistent": len(winners) == 1,
        "accepted": accept.status_code == 200,
    }


async def run_order(client: httpx.AsyncClient, order_num: int, race: bool) -> dict[str, Any]:
    """Create one order and walk it to delivery, then tip."""
    start_time = time.time()
    result: dict[str, Any] = {"order_num": order_num, "success": False}

    response = await client.post(f"{API_BASE_URL}/api/orders", json=generate_order_payload(order_num))
    if response.status_code != 201:
        result["error"] = response.text[:100]
        return result

    order = response.json()
    order_id = order["id"]
    result["order_id"] = order_id
    result["total"] = order["total_amount"]

    path = DELIVERY_PATH
    if race:
        outcome = await race_accept_and_cancel(client, order_id)
        result["race_consistent"] = outcome["consistent"]
        if not outcome["accepted"]:
            result["success"] = outcome["consistent"]
            result["cancelled"] = True
            result["time"] = round(time.time() - start_time, 3)
            return result
        path = DELIVERY_PATH[1:]

    delivery_person = random.choice(DELIVERY_PARTNERS)
    for status, actor in path:
        if status == "out_for_delivery":
            await client.post(
                f"{API_BASE_URL}/api/orders/{order_id}/delivery-person",
                json={"delivery_person_id": delivery_person},
            )
        response = await client.post(
            f"{API_BASE_URL}/api/orders/{order_id}/transitions",
            json={"target_status": status, "actor_role": actor},
        )
        if response.status_code != 200:
            result["error"] = f"{status}: {response.text[:100]}"
            return result

    response = await client.post(
        f"{API_BASE_URL}/api/tips",
        json={
            "from_user_id": order["customer_id"],
            "recipient_id": delivery_person,
            "recipient_type": "delivery",
            "amount": random.choice([20.0, 30.0, 50.0]),
            "message": "Thanks for the quick delivery!",
            "order_id": order_id,
        },
    )
    result["tip_status"] = response.json().get("status") if response.status_code == 202 else None
    result["success"] = response.status_code == 202
    result["time"] = round(time.time() - start_time, 3)
    return result


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_orders: int = TOTAL_ORDERS, race: bool = True) -> dict[str, Any]:
    """
    Run the chaos simulation.

    Args:
        num_orders: Number of orders to simulate
        race: Fire accept/cancel at the same time for every order
    """
    print("=" * 70)
    print("CHAOS SIMULATION - ORDER LIFECYCLE UNDER CONCURRENCY")
    print("=" * 70)
    print(f"Total Orders: {num_orders}")
    print(f"Target: {API_BASE_URL}")
    print(f"Race accept/cancel: {race}")
    print(f"Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient(timeout=30.0) as client:
        results = await asyncio.gather(*[
            run_order(client, i + 1, race) for i in range(num_orders)
        ])
    total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    cancelled = [r for r in results if r.get("cancelled")]
    inconsistent = [r for r in results if r.get("race_consistent") is False]

    print("\n" + "=" * 70)
    print("SIMULATION RESULTS")
    print("=" * 70)
    print(f"Successful flows: {len(successful)}/{num_orders}")
    print(f"Cancelled in race: {len(cancelled)}")
    print(f"Failed flows: {len(failed)}")
    print(f"Inconsistent races: {len(inconsistent)}")
    print(f"Total Time: {total_time}s")

    timed = [r for r in successful if "time" in r]
    if timed:
        avg_time = round(sum(r["time"] for r in timed) / len(timed), 3)
        print(f"Average flow time: {avg_time}s")

    if failed:
        print("\nFailed flow details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")

    print("=" * 70)
    return {
        "total": num_orders,
        "successful": len(successful),
        "failed": len(failed),
        "inconsistent": len(inconsistent),
        "total_time": total_time,
    }


async def preflight() -> bool:
    """Check the API is up before firing traffic."""
    async with httpx.AsyncClient() as client:
        try:
            response = await client.get(f"{API_BASE_URL}/health")
        except httpx.HTTPError as e:
            print(f"Health check failed: {e}")
            return False

    if response.status_code != 200:
        print(f"Health check failed: {response.text}")
        return False

    data = response.json()
    print(f"Status: {data.get('status')} ({data.get('environment')})")
    print(f"Order store: {data.get('order_store')}, payment: {data.get('payment_service')}")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Chaos Simulation Script")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--no-race", action="store_true", help="Do not race accept against cancel")
    args = parser.parse_args()

    if not asyncio.run(preflight()):
        sys.exit(1)

    summary = asyncio.run(run_simulation(args.orders, race=not args.no_race))
    sys.exit(1 if summary["inconsistent"] else 0)
