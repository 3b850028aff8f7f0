"""
Chaos Simulation Script

Drives many concurrent orders through the full flow against a running
server in development mode (mock gateway, mock push):

    create order -> open session (twice, concurrently) -> duplicated and
    out-of-order gateway callbacks -> accept -> mark_ready -> complete

and checks the invariants that must survive the chaos: one session per
order, one paid transition per order, contradictions reported as 409.

Run from project root:
    python scripts/simulate.py --seed          # create demo catalog rows
    python scripts/simulate.py --orders 50
"""

import argparse
import asyncio
import random
import sys
import time
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8080"
TOTAL_ORDERS = 50

MENU_ITEMS = [
    ("Paneer Tikka", 24000),
    ("Masala Dosa", 12000),
    ("Veg Biryani", 18000),
    ("Gulab Jamun", 6000),
    ("Mango Lassi", 8000),
]


# =============================================================================
# SEEDING
# =============================================================================

async def seed() -> dict[str, Any]:
    """Insert a restaurant with an owner, a few customers and a menu."""
    from foodhub.database import async_session_maker, init_db
    from foodhub.models import MenuItem, Restaurant, User

    await init_db()
    stamp = datetime.now().strftime("%H%M%S")

    async with async_session_maker() as db:
        owner = User(username=f"owner_{stamp}", display_name="Demo Owner")
        customers = [User(username=f"customer_{stamp}_{i}") for i in range(5)]
        db.add_all([owner, *customers])
        await db.flush()

        restaurant = Restaurant(name=f"Demo Kitchen {stamp}", owner_id=owner.id)
        db.add(restaurant)
        await db.flush()

        items = [MenuItem(restaurant_id=restaurant.id, name=n, price=p) for n, p in MENU_ITEMS]
        db.add_all(items)
        await db.commit()

        print("✅ Seeded demo data")
        print(f"   Restaurant: {restaurant.id}")
        print(f"   Customers:  {', '.join(str(c.id) for c in customers)}")
        print(f"   Menu items: {', '.join(str(i.id) for i in items)}")
        return {
            "restaurant_id": str(restaurant.id),
            "customer_ids": [str(c.id) for c in customers],
            "item_ids": [str(i.id) for i in items],
        }


# =============================================================================
# ORDER FLOW
# =============================================================================

async def run_order(client: httpx.AsyncClient, order_num: int, catalog: dict) -> dict[str, Any]:
    """Push one order through the whole lifecycle with injected duplicates."""
    start = time.time()
    restaurant_id = catalog["restaurant_id"]
    outcome: dict[str, Any] = {"order_num": order_num, "success": False}

    lines = [
        {"item_id": item_id, "quantity": random.randint(1, 3)}
        for item_id in random.sample(catalog["item_ids"], k=random.randint(1, 3))
    ]
    response = await client.post(
        f"{API_BASE_URL}/api/orders",
        json={
            "restaurant_id": restaurant_id,
            "customer_id": random.choice(catalog["customer_ids"]),
            "lines": lines,
        },
    )
    if response.status_code != 201:
        outcome["error"] = f"create: {response.text[:100]}"
        return outcome
    order_id = response.json()["order_id"]
    outcome["order_id"] = order_id
    outcome["total"] = response.json()["total"]

    # Two clients race to open a session; exactly one may win
    opens = await asyncio.gather(
        client.post(f"{API_BASE_URL}/api/orders/{order_id}/payment-session"),
        client.post(f"{API_BASE_URL}/api/orders/{order_id}/payment-session"),
    )
    created = [r for r in opens if r.status_code == 201]
    conflicts = [r for r in opens if r.status_code == 409]
    if len(created) != 1 or len(conflicts) != 1:
        outcome["error"] = f"open: {[r.status_code for r in opens]}"
        return outcome
    session = created[0].json()

    # The gateway delivers success twice, and sometimes a late failure too
    callback_url = f"{API_BASE_URL}/api/payment-sessions/{session['session_id']}/callback"
    reports = [{"status": "success", "gateway_order_ref": session["gateway_order_ref"]}] * 2
    if random.random() < 0.3:
        reports.append({"status": "failed", "gateway_order_ref": session["gateway_order_ref"]})
    random.shuffle(reports)

    answers = await asyncio.gather(*(client.post(callback_url, json=r) for r in reports))
    codes = [a.status_code for a in answers]
    changed = [a.json().get("changed") for a in answers if a.status_code == 200]
    outcome["callbacks"] = codes
    outcome["incidents"] = codes.count(409)
    if changed.count(True) != 1:
        outcome["error"] = f"callbacks changed state {changed.count(True)} times: {codes}"
        return outcome

    order = (await client.get(f"{API_BASE_URL}/api/orders/{order_id}")).json()
    if order["status"] == "cancelled":
        # The failure report landed first; the order stays cancelled
        outcome["success"] = True
        outcome["final_status"] = "cancelled"
        outcome["time"] = round(time.time() - start, 3)
        return outcome

    for action in ("accept", "mark_ready", "complete"):
        response = await client.post(
            f"{API_BASE_URL}/api/orders/{order_id}/transition",
            json={"action": action, "restaurant_id": restaurant_id},
        )
        if response.status_code != 200:
            outcome["error"] = f"{action}: {response.text[:100]}"
            return outcome

    outcome["success"] = True
    outcome["final_status"] = "completed"
    outcome["time"] = round(time.time() - start, 3)
    return outcome


async def run_simulation(catalog: dict, num_orders: int = TOTAL_ORDERS) -> dict[str, Any]:
    """
    Run the chaos simulation.

    Args:
        catalog: restaurant, customer and menu item ids to order from
        num_orders: Number of orders to simulate
    """
    print("=" * 70)
    print("🔥 CHAOS SIMULATION - HIGH CONCURRENCY TEST")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient(timeout=30) as client:
        print("\n🚀 Firing orders...\n")
        results = await asyncio.gather(
            *(run_order(client, i + 1, catalog) for i in range(num_orders))
        )
    total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    completed = [r for r in successful if r.get("final_status") == "completed"]
    cancelled = [r for r in successful if r.get("final_status") == "cancelled"]
    incidents = sum(r.get("incidents", 0) for r in results)

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Consistent Orders: {len(successful)}/{num_orders}")
    print(f"   Completed: {len(completed)}")
    print(f"   Cancelled by failed payment: {len(cancelled)}")
    print(f"⚠️  Contradicting callbacks answered 409: {incidents}")
    print(f"❌ Inconsistent Orders: {len(failed)}/{num_orders}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        print(f"\n📈 Average flow time: {avg_time}s")
        print(f"   💰 Total paid: {sum(r.get('total', 0) for r in completed) / 100:.2f}")

    if failed:
        print("\n⚠️  Inconsistent Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")

    print("\n" + "=" * 70)
    print("🔍 VERIFICATION STEPS")
    print("=" * 70)
    print(f"1. GET {API_BASE_URL}/api/payment-incidents lists every 409 above")
    print("2. Check the server log for one 'paid' notification per completed order")
    print("=" * 70)

    return {
        "total": num_orders,
        "successful": len(successful),
        "failed": len(failed),
        "total_time": total_time,
        "results": results,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Chaos Simulation Script")
    parser.add_argument("--seed", action="store_true", help="Create demo catalog rows and exit")
    parser.add_argument("--restaurant", help="Restaurant id to order from")
    parser.add_argument("--customers", nargs="+", help="Customer ids")
    parser.add_argument("--items", nargs="+", help="Menu item ids of the restaurant")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    args = parser.parse_args()

    if args.seed:
        asyncio.run(seed())
        sys.exit(0)

    if not (args.restaurant and args.customers and args.items):
        parser.error("--restaurant, --customers and --items are required (see --seed)")

    catalog = {
        "restaurant_id": args.restaurant,
        "customer_ids": args.customers,
        "item_ids": args.items,
    }
    summary = asyncio.run(run_simulation(catalog, args.orders))
    sys.exit(0 if summary["failed"] == 0 else 1)
