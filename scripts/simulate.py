"""
Market Chaos Simulation Script

Fires concurrent buys and sells from many investors at one business to
check that the ledger holds up under contention (no lost updates, no
negative supply, no duplicate positions).
Run from project root: python scripts/simulate.py

Version: 1.0.0
"""

import asyncio
import sys
import random
import time
import argparse
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8080"
TOTAL_TRADES = 50
TOTAL_INVESTORS = 10
INITIAL_SUPPLY = 500

BUSINESS_NAMES = ["Pizza Palace", "Burger Barn", "Sushi Spot", "Taco Town", "Pasta Place"]
CITIES = ["Moscow", "New York", "Berlin", "Lisbon"]


def generate_business_payload() -> dict[str, Any]:
    """Generate a random business."""
    name = random.choice(BUSINESS_NAMES)
    return {
        "name": f"{name} {random.randint(100, 999)}",
        "description": "Chaos simulation business",
        "category": "restaurant",
        "city": random.choice(CITIES),
        "owner_id": f"owner-{random.randint(1000, 9999)}",
    }


# =============================================================================
# SETUP
# =============================================================================

async def setup_business(client: httpx.AsyncClient, supply: int) -> dict[str, Any]:
    """Create a business and raise its supply to ``supply`` tokens."""
    response = await client.post(f"{API_BASE_URL}/api/businesses", json=generate_business_payload())
    response.raise_for_status()
    data = response.json()
    business_id = data["business"]["id"]

    if supply > 1:
        response = await client.post(
            f"{API_BASE_URL}/api/businesses/{business_id}/tokens/mint",
            json={"amount": supply - 1, "reason": "Simulation seed"},
        )
        response.raise_for_status()
        data["token"] = response.json()["token"]

    return data


# =============================================================================
# TRADES
# =============================================================================

async def send_trade(
    client: httpx.AsyncClient,
    business_id: str,
    trade_num: int,
    investors: list[str],
) -> dict[str, Any]:
    """Buy (70%) or sell (30%) as a random investor."""
    user_id = random.choice(investors)
    side = "buy" if random.random() < 0.7 else "sell"
    start_time = time.time()

    try:
        if side == "buy":
            response = await client.post(
                f"{API_BASE_URL}/api/businesses/{business_id}/subscribe",
                json={"tokens_amount": random.randint(1, 20)},
                headers={"X-User-ID": user_id},
                timeout=30.0,
            )
        else:
            response = await client.delete(
                f"{API_BASE_URL}/api/businesses/{business_id}/unsubscribe",
                headers={"X-User-ID": user_id},
                timeout=30.0,
            )
        elapsed = round(time.time() - start_time, 3)

        if response.status_code == 200:
            data = response.json()
            return {
                "trade_num": trade_num,
                "success": True,
                "side": side,
                "user_id": user_id,
                "price": data["token"]["price"],
                "time": elapsed,
            }
        return {
            "trade_num": trade_num,
            "success": False,
            "side": side,
            "user_id": user_id,
            "status": response.status_code,
            "error": response.text[:100],
            "time": elapsed,
        }
    except Exception as e:
        elapsed = round(time.time() - start_time, 3)
        return {
            "trade_num": trade_num,
            "success": False,
            "side": side,
            "user_id": user_id,
            "error": str(e)[:100],
            "time": elapsed,
        }


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(
    num_trades: int = TOTAL_TRADES,
    num_investors: int = TOTAL_INVESTORS,
    supply: int = INITIAL_SUPPLY,
) -> dict[str, Any]:
    """
    Run the chaos simulation.

    Args:
        num_trades: Number of concurrent trades
        num_investors: Size of the investor pool trades are drawn from
        supply: Token supply the business starts with
    """
    print("=" * 70)
    print("🔥 MARKET CHAOS SIMULATION - HIGH CONCURRENCY TEST")
    print("=" * 70)
    print(f"📋 Total Trades: {num_trades}")
    print(f"👥 Investors: {num_investors}")
    print(f"🪙 Initial Supply: {supply}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    investors = [f"investor-{i + 1}" for i in range(num_investors)]

    async with httpx.AsyncClient() as client:
        setup = await setup_business(client, supply)
        business_id = setup["business"]["id"]
        print(f"\n🏪 Business: {setup['business']['name']} ({business_id})")
        print(f"   Token: {setup['token']['symbol']} @ ${setup['token']['price']}")

        print("\n🚀 Firing trades...\n")
        start_time = time.time()
        tasks = [send_trade(client, business_id, i + 1, investors) for i in range(num_trades)]
        results = await asyncio.gather(*tasks)
        total_time = round(time.time() - start_time, 2)

        token = (await client.get(f"{API_BASE_URL}/api/businesses/{business_id}/tokens")).json()

    # Analyze results
    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    buys = [r for r in successful if r["side"] == "buy"]
    sells = [r for r in successful if r["side"] == "sell"]
    # A sell from an investor with no position is an expected 404
    unexpected = [r for r in failed if r.get("status") not in (400, 404)]

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)

    print(f"\n✅ Successful Trades: {len(successful)}/{num_trades}")
    print(f"   Buys: {len(buys)}  Sells: {len(sells)}")
    print(f"❌ Rejected Trades: {len(failed)}/{num_trades}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        prices = [r["price"] for r in successful]
        print(f"\n📈 Performance Metrics:")
        print(f"   Average Response: {avg_time}s")
        print(f"   Fastest: {min(r['time'] for r in successful)}s")
        print(f"   Slowest: {max(r['time'] for r in successful)}s")
        print(f"   💰 Price range: ${min(prices):.2f} - ${max(prices):.2f}")

    print(f"\n🪙 Final token: supply={token['total_supply']} price=${token['price']}")

    if unexpected:
        print(f"\n⚠️  Unexpected Failures (showing first 5):")
        for f in unexpected[:5]:
            print(f"   Trade #{f['trade_num']} [{f['side']}]: {f.get('error', 'Unknown error')}")

    print("\n" + "=" * 70)
    print("🔍 VERIFICATION STEPS")
    print("=" * 70)
    print(f"1. Run: python scripts/verify.py {business_id} --supply {supply}")
    print(f"2. Visit {API_BASE_URL}/docs to inspect the ledger")
    print("=" * 70)

    return {
        "business_id": business_id,
        "total": num_trades,
        "successful": len(successful),
        "failed": len(failed),
        "total_time": total_time,
        "results": results,
    }


async def test_single_flows() -> bool:
    """Test individual flows before chaos simulation."""
    print("\n" + "=" * 70)
    print("🧪 TESTING INDIVIDUAL FLOWS")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        # Test 1: Health check
        print("\n1️⃣ Health Check...")
        response = await client.get(f"{API_BASE_URL}/health")
        if response.status_code == 200:
            data = response.json()
            print(f"   ✅ Status: {data.get('status')}")
            print(f"   Database: {data.get('database')}")
            print(f"   WebSocket clients: {data.get('websocket_clients')}")
        else:
            print(f"   ❌ Failed: {response.text}")
            return False

        # Test 2: Business with initial token
        print("\n2️⃣ Business Creation...")
        setup = await setup_business(client, 10)
        business_id = setup["business"]["id"]
        print(f"   ✅ Business {business_id} created")
        print(f"   Token: {setup['token']['symbol']} supply={setup['token']['total_supply']}")

        # Test 3: Buy then sell
        print("\n3️⃣ Subscribe / Unsubscribe...")
        headers = {"X-User-ID": "preflight-investor"}
        response = await client.post(
            f"{API_BASE_URL}/api/businesses/{business_id}/subscribe",
            json={"tokens_amount": 5},
            headers=headers,
        )
        if response.status_code != 200:
            print(f"   ❌ Subscribe failed: {response.text[:100]}")
            return False
        print(f"   ✅ Bought 5 tokens, new price ${response.json()['token']['price']}")

        response = await client.delete(
            f"{API_BASE_URL}/api/businesses/{business_id}/unsubscribe",
            headers=headers,
        )
        if response.status_code != 200:
            print(f"   ❌ Unsubscribe failed: {response.text[:100]}")
            return False
        data = response.json()
        print(f"   ✅ Sold {data['tokens_returned']} tokens for ${data['refund_amount']}")

    print("\n" + "=" * 70)
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Market Chaos Simulation Script")
    parser.add_argument("--trades", type=int, default=TOTAL_TRADES, help="Number of trades")
    parser.add_argument("--investors", type=int, default=TOTAL_INVESTORS, help="Number of investors")
    parser.add_argument("--supply", type=int, default=INITIAL_SUPPLY, help="Initial token supply")
    parser.add_argument("--skip-tests", action="store_true", help="Skip individual tests")
    args = parser.parse_args()

    # Run tests first
    if not args.skip_tests:
        success = asyncio.run(test_single_flows())
        if not success:
            print("\n❌ Pre-flight tests failed. Fix issues before running simulation.")
            sys.exit(1)

        print("\n✅ Pre-flight tests passed!")
        input("\nPress Enter to start chaos simulation...")

    # Run simulation
    asyncio.run(run_simulation(args.trades, args.investors, args.supply))
