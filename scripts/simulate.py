"""
Chaos Simulation Script

Fires concurrent requests at one table to check the order core under load:
    1. N guests ask for the table's current order at the same time
       -> every guest must get the same order id
    2. N guests add items at the same time
       -> the order total must equal the sum of its items
    3. A guest locks the order

Run from project root:
    python scripts/simulate.py --in-memory
    python scripts/simulate.py --base-url http://localhost:8003 --table-id <uuid> --item-id <uuid> [--item-id <uuid> ...]

``--in-memory`` seeds a restaurant in memory and drives the app in-process.
"""

import argparse
import asyncio
import random
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional

import httpx

API_PREFIX = "/api/v1"
TOTAL_GUESTS = 50

MENU_ITEMS = [
    ("Pizza Margherita", 1499),
    ("Pepperoni Pizza", 1699),
    ("Caesar Salad", 899),
    ("Garlic Bread", 599),
    ("Tiramisu", 799),
    ("Sparkling Water", 349),
]


# =============================================================================
# TARGETS
# =============================================================================

@asynccontextmanager
async def in_memory_target() -> AsyncIterator[tuple[httpx.AsyncClient, str, list[str]]]:
    """App wired to seeded in-memory repositories, called through ASGI."""
    from dining.main import create_app
    from dining.repository import InMemoryOrdersRepository, InMemoryPaymentsRepository
    from dining.services.payment import MockPaymentProvider

    repo = InMemoryOrdersRepository()
    restaurant_id = repo.add_restaurant("Simulation Bistro", currency="eur")
    table_id = repo.add_table(restaurant_id, "T-Sim")
    item_ids = [str(repo.add_menu_item(restaurant_id, name, price)) for name, price in MENU_ITEMS]

    app = create_app(
        orders_repository=repo,
        payments_repository=InMemoryPaymentsRepository(),
        payment_provider=MockPaymentProvider(),
    )

    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://simulation") as client:
            yield client, str(table_id), item_ids


@asynccontextmanager
async def remote_target(
    base_url: str,
    table_id: str,
    item_ids: list[str],
) -> AsyncIterator[tuple[httpx.AsyncClient, str, list[str]]]:
    async with httpx.AsyncClient(base_url=base_url, timeout=30.0) as client:
        yield client, table_id, item_ids


# =============================================================================
# GUEST ACTIONS
# =============================================================================

async def fetch_current_order(client: httpx.AsyncClient, table_id: str, guest: int) -> dict[str, Any]:
    start_time = time.time()
    try:
        response = await client.get(f"{API_PREFIX}/orders/current", params={"tableId": table_id})
    except httpx.HTTPError as e:
        return {"guest": guest, "success": False, "error": str(e)[:100], "time": 0.0}

    elapsed = round(time.time() - start_time, 3)
    if response.status_code != 200:
        return {"guest": guest, "success": False, "error": response.text[:100], "time": elapsed}

    return {"guest": guest, "success": True, "order_id": response.json()["data"]["id"], "time": elapsed}


async def add_random_item(
    client: httpx.AsyncClient,
    order_id: str,
    item_ids: list[str],
    guest: int,
) -> dict[str, Any]:
    item_id = random.choice(item_ids)
    start_time = time.time()
    try:
        response = await client.post(f"{API_PREFIX}/orders/{order_id}/items", json={"item_id": item_id})
    except httpx.HTTPError as e:
        return {"guest": guest, "success": False, "error": str(e)[:100], "time": 0.0}

    elapsed = round(time.time() - start_time, 3)
    if response.status_code != 200:
        return {"guest": guest, "success": False, "error": response.text[:100], "time": elapsed}

    return {"guest": guest, "success": True, "time": elapsed}


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(
    num_guests: int = TOTAL_GUESTS,
    base_url: Optional[str] = None,
    table_id: Optional[str] = None,
    item_ids: Optional[list[str]] = None,
) -> bool:
    """
    Run the simulation; returns True when every check passed.
    """
    target = in_memory_target() if base_url is None else remote_target(base_url, table_id, item_ids)

    print("=" * 70)
    print("🔥 CHAOS SIMULATION - ONE TABLE, MANY GUESTS")
    print("=" * 70)
    print(f"📋 Guests: {num_guests}")
    print(f"🎯 Target: {base_url or 'in-memory'}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    checks: list[tuple[str, bool]] = []
    start_time = time.time()

    async with target as (client, table, items):
        print("\n🚀 Everybody asks for the current order...\n")
        lookups = await asyncio.gather(
            *(fetch_current_order(client, table, i + 1) for i in range(num_guests))
        )
        order_ids = {r["order_id"] for r in lookups if r["success"]}
        checks.append(("all lookups succeeded", all(r["success"] for r in lookups)))
        checks.append(("exactly one current order", len(order_ids) == 1))

        if len(order_ids) != 1:
            print(f"❌ Got order ids: {sorted(order_ids)}")
        else:
            order_id = order_ids.pop()

            print("🚀 Everybody adds an item...\n")
            additions = await asyncio.gather(
                *(add_random_item(client, order_id, items, i + 1) for i in range(num_guests))
            )
            checks.append(("all items added", all(r["success"] for r in additions)))

            order = (await client.get(f"{API_PREFIX}/orders/{order_id}")).json()["data"]
            item_sum = sum(item["price_in_cents"] for item in order["items"])
            checks.append(("total equals sum of items", order["total_price_in_cents"] == item_sum))
            checks.append(("no item lost", len(order["items"]) >= sum(r["success"] for r in additions)))

            response = await client.patch(f"{API_PREFIX}/orders/{order_id}", json={"status": "locked"})
            checks.append(("order locked", response.status_code == 200))

            print(f"🧾 Order {order_id}: {len(order['items'])} items, total {order['total_price_in_cents']} {order['currency']}")

    total_time = round(time.time() - start_time, 2)

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    for name, passed in checks:
        print(f"{'✅' if passed else '❌'} {name}")
    print(f"\n⏱️  Total Time: {total_time}s")
    print("=" * 70)

    return all(passed for _, passed in checks)


def main() -> None:
    parser = argparse.ArgumentParser(description="Concurrent order simulation")
    parser.add_argument("--guests", type=int, default=TOTAL_GUESTS, help="Number of concurrent guests")
    parser.add_argument("--in-memory", action="store_true", help="Run against a seeded in-process app")
    parser.add_argument("--base-url", default="http://localhost:8003", help="Running service URL")
    parser.add_argument("--table-id", help="Table to order at (remote mode)")
    parser.add_argument("--item-id", action="append", default=[], help="Menu item id (remote mode, repeatable)")
    args = parser.parse_args()

    if not args.in_memory and (not args.table_id or not args.item_id):
        parser.error("--table-id and at least one --item-id are required unless --in-memory is set")

    passed = asyncio.run(
        run_simulation(
            num_guests=args.guests,
            base_url=None if args.in_memory else args.base_url,
            table_id=args.table_id,
            item_ids=args.item_id,
        )
    )
    raise SystemExit(0 if passed else 1)


if __name__ == "__main__":
    main()
