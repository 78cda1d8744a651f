#!/usr/bin/env python3
"""CLI script to register a conferencing server in the scheduler.

Usage:
    uv run python scripts/register_server.py --url https://bbb1.example.com/bigbluebutton/ --secret s3cret --limit 200
    uv run python scripts/register_server.py --url https://bbb1.example.com/bigbluebutton/ --secret s3cret --limit 200 --probe

Connects directly to the database using DATABASE_URL from environment or .env file.
With --probe, the server's API is called once before registration and the
server is stored inactive if it does not answer.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.conference
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def register(url: str, secret: str, limit: int, probe: bool) -> None:
    """Register a server by calling the repository directly."""
    from src.conference.backend.client import BigBlueButtonClient
    from src.conference.core.database import close_db, get_session, init_db
    from src.conference.core.errors import ConferenceError
    from src.conference.servers.repository import ServerRepository
    from src.conference.servers.schemas import ServerCreate

    await init_db()

    healthy = True
    if probe:
        try:
            await BigBlueButtonClient(base_url=url, secret=secret, max_attempts=1).probe()
        except ConferenceError as exc:
            healthy = False
            print(f"Probe failed: {exc.message}")

    repository = ServerRepository(session_factory=get_session)
    server = await repository.create_server(ServerCreate(url=url, secret=secret, limit=limit))
    if not healthy:
        server = await repository.set_liveness(server.id, False)

    print("Server registered successfully:")
    print(f"  ID:     {server.id}")
    print(f"  URL:    {server.url}")
    print(f"  Limit:  {server.limit}")
    print(f"  Active: {server.is_active}")

    await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Register a conferencing server")
    parser.add_argument("--url", required=True, help="Base URL of the BigBlueButton API")
    parser.add_argument("--secret", required=True, help="Shared secret used to sign API calls")
    parser.add_argument("--limit", required=True, type=int, help="Max concurrent users")
    parser.add_argument("--probe", action="store_true", help="Check the API answers before registering")
    args = parser.parse_args()

    if args.limit < 0:
        parser.error("--limit must be >= 0")

    asyncio.run(register(args.url, args.secret, args.limit, args.probe))


if __name__ == "__main__":
    main()
