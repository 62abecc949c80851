#!/usr/bin/env python3
"""
Demo seed script — populates a running server with sample credit activity.

!! NOT FOR PRODUCTION !!
This script acts as the billing service: it calls the internal endpoints
with the shared internal token to create accounts, spend credits on fake
content generation, and add purchases, bonuses and refunds. It is intended
ONLY for local demos and frontend development.

Usage:
    # With the API server running on localhost:8000 and INTERNAL_TOKEN set:
    python demo/seed.py

    # Explicit token / custom server URL:
    python demo/seed.py --token my-internal-token --base-url http://localhost:9000

    # Reset the database:
    python demo/seed.py --reset

After seeding, the summary prints a bearer token for each demo account so
the /credits endpoints can be tried directly (requires SECRET_KEY to match
the server's).
"""

import argparse
import asyncio
import os
import random
import sys

import httpx

BASE_URL = "http://localhost:8000"

# ---------------------------------------------------------------------------
# Demo accounts
# ---------------------------------------------------------------------------

ACCOUNTS = [
    {"account_id": "demo-alice", "generations": 6, "purchases": [25]},
    {"account_id": "demo-bob", "generations": 12, "purchases": []},
    {"account_id": "demo-carol", "generations": 3, "purchases": [10, 50]},
    {"account_id": "demo-dave", "generations": 0, "purchases": []},
]

GENERATION_DESCRIPTIONS = [
    "Image generation", "Video generation", "Product description",
    "Blog post draft", "Social media caption", "Logo concept",
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def log(msg: str) -> None:
    print(f"  {msg}")


def internal_header(token: str) -> dict:
    return {"X-Internal-Token": token}


async def ensure(client: httpx.AsyncClient, token: str, account_id: str) -> dict:
    resp = await client.post(
        f"{BASE_URL}/internal/accounts/{account_id}/ensure",
        headers=internal_header(token),
    )
    resp.raise_for_status()
    return resp.json()


async def spend(client: httpx.AsyncClient, token: str, account_id: str,
                amount: int, description: str) -> httpx.Response:
    """Spend credits; a 422 (not enough credits) is a normal outcome here."""
    return await client.post(
        f"{BASE_URL}/internal/accounts/{account_id}/spend",
        json={"amount": amount, "description": description},
        headers=internal_header(token),
    )


async def grant(client: httpx.AsyncClient, token: str, account_id: str,
                amount: int, kind: str, description: str) -> dict:
    resp = await client.post(
        f"{BASE_URL}/internal/accounts/{account_id}/grant",
        json={"amount": amount, "kind": kind, "description": description},
        headers=internal_header(token),
    )
    resp.raise_for_status()
    return resp.json()


async def get_stats(client: httpx.AsyncClient, bearer: str) -> dict:
    resp = await client.get(
        f"{BASE_URL}/credits/stats",
        headers={"Authorization": f"Bearer {bearer}"},
    )
    resp.raise_for_status()
    return resp.json()


# ---------------------------------------------------------------------------
# Seed logic
# ---------------------------------------------------------------------------

async def seed_account(client: httpx.AsyncClient, token: str, spec: dict) -> None:
    account_id = spec["account_id"]
    balance = await ensure(client, token, account_id)
    log(f"{account_id}: starting balance {balance['balance']}")

    for amount in spec["purchases"]:
        result = await grant(client, token, account_id, amount, "PURCHASE",
                             f"Credit pack ({amount} credits)")
        log(f"  Purchased {amount} -> balance {result['new_balance']}")

    rejected = 0
    for _ in range(spec["generations"]):
        resp = await spend(client, token, account_id, random.randint(1, 3),
                           random.choice(GENERATION_DESCRIPTIONS))
        if resp.status_code == 422:
            rejected += 1
            continue
        resp.raise_for_status()

        # Occasionally the generation "fails" afterwards and is refunded
        if random.random() < 0.15:
            await grant(client, token, account_id, 1, "REFUND", "Generation failed")

    if rejected:
        log(f"  {rejected} generation(s) rejected for insufficient credits")

    if account_id == "demo-dave":
        await grant(client, token, account_id, 5, "BONUS", "Referral bonus")
        log("  Referral bonus: 5")


async def seed(base_url: str, token: str) -> None:
    global BASE_URL
    BASE_URL = base_url

    print("\n========================================")
    print("  DEMO SEED — NOT FOR PRODUCTION")
    print("========================================\n")

    async with httpx.AsyncClient(timeout=30.0) as client:
        # Health check
        try:
            health = await client.get(f"{BASE_URL}/health")
            health.raise_for_status()
        except (httpx.ConnectError, httpx.HTTPStatusError):
            print(f"  ERROR: Cannot connect to {BASE_URL}")
            print("  Start the server first: uvicorn credit_ledger.main:app --reload\n")
            sys.exit(1)

        print("Seeding accounts...")
        for spec in ACCOUNTS:
            await seed_account(client, token, spec)

        # --- Summary ---
        from credit_ledger.security import create_access_token

        print("\n========================================")
        print("  SEED COMPLETE — Account Stats")
        print("========================================")
        print(f"\n  {'Account':<14s} {'Earned':>7s} {'Used':>6s} {'Balance':>8s} {'Consistent'}")
        print(f"  {'─' * 14} {'─' * 7} {'─' * 6} {'─' * 8} {'─' * 10}")
        bearers = {}
        for spec in ACCOUNTS:
            bearer = create_access_token({"sub": spec["account_id"]})
            bearers[spec["account_id"]] = bearer
            stats = await get_stats(client, bearer)
            print(
                f"  {spec['account_id']:<14s} {stats['total_earned']:>7d} "
                f"{stats['total_used']:>6d} {stats['current_balance']:>8d} "
                f"{stats['consistent']}"
            )

    print("\n  Bearer tokens (30 minutes):")
    for account_id, bearer in bearers.items():
        print(f"    {account_id}: {bearer}")
    print()


def reset_database() -> None:
    """Delete the SQLite database file so the server recreates it on restart."""
    db_path = os.path.join(os.path.dirname(__file__), "..", "data", "credits.db")
    db_path = os.path.normpath(db_path)

    if os.path.exists(db_path):
        os.remove(db_path)
        print(f"\n  Deleted {db_path}")
        print("  Restart the server to recreate empty tables.\n")
    else:
        print(f"\n  No database found at {db_path}\n")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

async def main() -> None:
    parser = argparse.ArgumentParser(
        description="Demo seed script — NOT FOR PRODUCTION",
        epilog="Creates sample credit accounts and activity for demos.",
    )
    parser.add_argument(
        "--base-url", default="http://localhost:8000",
        help="Base URL of the running API (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--token", default=os.environ.get("INTERNAL_TOKEN"),
        help="Internal token for the billing endpoints (default: $INTERNAL_TOKEN)",
    )
    parser.add_argument(
        "--reset", action="store_true",
        help="Delete the database file and exit (restart server to recreate)",
    )
    args = parser.parse_args()

    if args.reset:
        reset_database()
        return

    if not args.token:
        parser.error("--token is required when INTERNAL_TOKEN is not set")

    await seed(args.base_url, args.token)


if __name__ == "__main__":
    asyncio.run(main())
