"""
Onboarding Simulation Script

Runs many WhatsApp onboarding flows at once against a local server in
development mode (mock Twilio, OTP 123456).
Run from project root: python scripts/simulate.py

Restaurants are seeded straight into DATABASE_URL, so the script must
point at the same database as the server.
"""

import asyncio
import sys
import os
import random
import time
import argparse
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from sufrah.core.config import get_settings
from sufrah.database import async_session_maker, init_db
from sufrah.models import Restaurant, User

# Configuration
API_BASE_URL = "http://localhost:8000"
TOTAL_FLOWS = 20

RESTAURANT_NAMES = ["Al Baik", "Shawarma House", "Mandi Palace", "Kabsa Corner", "Falafel Stop", "Grill Point"]


def random_phone() -> str:
    return f"+9665{random.randint(10000000, 99999999)}"


async def seed_restaurant() -> dict[str, str]:
    """Create an owner and their restaurant; returns the owner's phone and restaurant id."""
    async with async_session_maker() as db:
        user = User(phone=random_phone(), name="Simulated Owner", is_verified=True)
        db.add(user)
        await db.flush()
        restaurant = Restaurant(
            user_id=user.id,
            name=f"{random.choice(RESTAURANT_NAMES)} #{random.randint(1, 999)}",
            phone=user.phone,
        )
        db.add(restaurant)
        await db.commit()
        return {"owner_phone": user.phone, "restaurant_id": restaurant.id}


# =============================================================================
# FLOWS
# =============================================================================

async def run_flow(flow_num: int, otp_code: str) -> dict[str, Any]:
    """start -> (poll) -> verify for one restaurant."""
    owner = await seed_restaurant()
    start_time = time.time()

    cookies = {"user-phone": quote(owner["owner_phone"])}
    async with httpx.AsyncClient(base_url=API_BASE_URL, cookies=cookies, timeout=30.0) as client:
        try:
            response = await client.post(
                "/api/onboarding/whatsapp/start",
                json={"phone": random_phone(), "restaurantId": owner["restaurant_id"]},
            )
            if response.status_code != 200:
                return {"flow": flow_num, "success": False, "step": "start", "error": response.text[:100]}

            data = response.json()
            sender_sid = data["bot"]["sender_sid"]

            # Sender not ready yet: the status endpoint requests the OTP once it is
            for _ in range(5):
                if data.get("has_verification") or (data.get("bot") or {}).get("verification_sid"):
                    break
                await asyncio.sleep(1)
                data = (await client.get("/api/onboarding/whatsapp")).json()

            response = await client.post(
                "/api/onboarding/whatsapp/verify",
                json={"senderSid": sender_sid, "code": otp_code},
            )
            elapsed = round(time.time() - start_time, 3)

            if response.status_code != 200:
                return {"flow": flow_num, "success": False, "step": "verify", "error": response.text[:100], "time": elapsed}

            return {
                "flow": flow_num,
                "success": response.json()["bot"]["status"] == "ACTIVE",
                "step": "verify",
                "time": elapsed,
            }
        except httpx.HTTPError as e:
            return {"flow": flow_num, "success": False, "step": "request", "error": str(e)[:100]}


async def run_simulation(num_flows: int = TOTAL_FLOWS) -> dict[str, Any]:
    """Fire ``num_flows`` onboarding flows concurrently and summarize."""
    print("=" * 70)
    print("📱 WHATSAPP ONBOARDING SIMULATION")
    print("=" * 70)
    print(f"📋 Flows: {num_flows}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    await init_db()
    otp_code = get_settings().mock_otp_code

    start_time = time.time()
    results = await asyncio.gather(*[run_flow(i + 1, otp_code) for i in range(num_flows)])
    total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]

    print(f"\n✅ Activated: {len(successful)}/{num_flows}")
    print(f"❌ Failed: {len(failed)}/{num_flows}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        print(f"   Average flow: {avg_time}s")

    if failed:
        print("\n⚠️  Failed flows (first 5):")
        for f in failed[:5]:
            print(f"   Flow #{f['flow']} [{f['step']}]: {f.get('error', 'not active')}")

    print("=" * 70)
    return {"total": num_flows, "successful": len(successful), "failed": len(failed), "total_time": total_time}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Onboarding Simulation Script")
    parser.add_argument("--flows", type=int, default=TOTAL_FLOWS, help="Number of concurrent flows")
    parser.add_argument("--url", default=API_BASE_URL, help="Server base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url
    summary = asyncio.run(run_simulation(args.flows))
    sys.exit(0 if summary["failed"] == 0 else 1)
