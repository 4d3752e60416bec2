"""
Watch a community's attendance live, or check people in and out, from the terminal.

    python -m checkin_gateway.watch_community --community C1
    python -m checkin_gateway.watch_community --check-in P1
"""

import argparse
import asyncio
import os
import sys

from .backend_client import CheckinClient, CheckinError

BACKEND_URL = os.environ.get("BACKEND_URL", "http://localhost:8000")


def format_person(fields: dict) -> str:
    name = f"{fields.get('firstName', '')} {fields.get('lastName', '')}".strip()
    company = fields.get('companyName') or '-'
    check_in = fields.get('checkInDate') or 'N/A'
    check_out = fields.get('checkOutDate') or 'N/A'
    return f"{name:<30} {company:<20} in: {check_in:<26} out: {check_out}"


async def watch(client: CheckinClient, community_id: str):
    print(f"\nWatching community {community_id} (Ctrl+C to stop)")
    async for frame in client.subscribe("people", community_id):
        msg = frame.get("msg")
        if msg == "ready":
            print("-" * 60)
        elif msg == "removed":
            print(f"  [-] {frame['id']}")
        else:
            marker = "+" if msg == "added" else "~"
            print(f"  [{marker}] {format_person(frame.get('fields', {}))}")


async def transition(client: CheckinClient, action: str, person_id: str) -> bool:
    try:
        if action == "check-in":
            result = await client.check_in(person_id)
        else:
            result = await client.check_out(person_id)
    except CheckinError as e:
        print(f"  > {action} FAILED: {e.kind} ({e.reason or '-'}) {e}")
        return False
    print(f"  > {action} OK at {result.get('timestamp')}")
    return True


async def main(args) -> int:
    client = CheckinClient(args.backend)
    try:
        print("Checking backend health...")
        health = await client.health_check()
        print(f"Backend Status: {health.get('status')}")
        if health.get('status') != 'online':
            print("Backend is offline. Please start checkin-backend first.")
            return 1

        if args.check_in:
            return 0 if await transition(client, "check-in", args.check_in) else 1
        if args.check_out:
            return 0 if await transition(client, "check-out", args.check_out) else 1
        await watch(client, args.community)
        return 0
    finally:
        await client.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Event Check-in Terminal")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--community", type=str, help="Community ID to watch live")
    group.add_argument("--check-in", type=str, metavar="PERSON_ID", help="Check a person in")
    group.add_argument("--check-out", type=str, metavar="PERSON_ID", help="Check a person out")
    parser.add_argument("--backend", type=str, default=BACKEND_URL, help="Backend URL")

    try:
        sys.exit(asyncio.run(main(parser.parse_args())))
    except KeyboardInterrupt:
        print("\nStopped")
