"""
Ledger Verification Script

Checks the ledger of one business after a simulation:
    - available supply + tokens held by investors == initial supply
    - tokens held by investors == tokens bought - tokens sold
    - every investor holds at most one position
Run from project root: python scripts/verify.py <business_id> --supply 500

Version: 1.0.0
"""

import sys
import argparse
from collections import Counter
from datetime import datetime

import httpx

API_BASE_URL = "http://localhost:8080"


def verify_ledger(business_id: str, initial_supply: int) -> bool:
    """Verify ledger consistency for ``business_id``."""

    print("=" * 60)
    print("🔍 LEDGER VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"🏪 Business: {business_id}")
    print("=" * 60)

    with httpx.Client(base_url=API_BASE_URL, timeout=30.0) as client:
        token_response = client.get(f"/api/businesses/{business_id}/tokens")
        if token_response.status_code != 200:
            print(f"\n❌ Token not found: {token_response.text[:100]}")
            return False
        token = token_response.json()
        subscribers = client.get(f"/api/businesses/{business_id}/subscribers").json()
        history = client.get(f"/api/businesses/{business_id}/transactions").json()

    ok = True
    held = subscribers["total_tokens_sold"]
    stats = history["stats"]

    # Statistics
    print(f"\n📊 STATISTICS:")
    print(f"   Available Supply: {token['total_supply']}")
    print(f"   Price: ${token['price']:.2f}")
    print(f"   Investors: {subscribers['subscriber_count']}")
    print(f"   Tokens Held: {held}")
    print(f"   Transactions: {history['count']}")

    # Supply conservation
    if token["total_supply"] + held != initial_supply:
        print(f"\n⚠️ Supply mismatch: {token['total_supply']} + {held} != {initial_supply}")
        ok = False
    else:
        print(f"\n✅ Supply conserved ({initial_supply})")

    # Positions match the trade log
    if stats["net_tokens"] != held:
        print(f"⚠️ Trade log nets {stats['net_tokens']} tokens, investors hold {held}")
        ok = False
    else:
        print(f"✅ Trade log matches positions")

    # One position per investor
    duplicates = [u for u, n in Counter(s["user_id"] for s in subscribers["subscribers"]).items() if n > 1]
    if duplicates:
        print(f"⚠️ Duplicate positions: {duplicates}")
        ok = False
    else:
        print(f"✅ No duplicate positions")

    # Money
    print(f"\n💰 MONEY:")
    print(f"   Bought: ${stats['total_buy_amount']:.2f} ({stats['total_tokens_bought']} tokens)")
    print(f"   Sold:   ${stats['total_sell_amount']:.2f} ({stats['total_tokens_sold']} tokens)")
    print(f"   Net:    ${stats['net_amount']:.2f}")

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE" if ok else "❌ VERIFICATION FAILED")
    print("=" * 60)

    return ok


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Ledger Verification Script")
    parser.add_argument("business_id", help="Business to verify")
    parser.add_argument("--supply", type=int, default=500, help="Initial token supply")
    args = parser.parse_args()

    sys.exit(0 if verify_ledger(args.business_id, args.supply) else 1)
