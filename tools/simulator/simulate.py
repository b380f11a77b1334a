#!/usr/bin/env python3
"""botstats fleet simulator.

Spins up fake chat-bot instances that connect, heartbeat, report messages
and reactions, and now and then drop off and reconnect.

Usage:
    # 5 bots for one minute
    python -m tools.simulator.simulate --server http://localhost:3000 --bots 5 --duration 60

    # Flaky fleet: frequent drops, short sessions
    python -m tools.simulator.simulate --server http://localhost:3000 --bots 20 --drop-chance 0.2
"""

from __future__ import annotations

import argparse
import asyncio
import random
import time
import uuid
from dataclasses import dataclass

import httpx

USER_AGENTS = [
    "whatsapp-web.js/1.23.0",
    "whatsapp-web.js/1.22.2",
    "baileys/6.5.0",
]
MESSAGE_TYPES = ["text", "text", "text", "image", "audio", "sticker"]
REACTIONS = ["👍", "❤️", "😂"]
DISCONNECT_REASONS = ["normal", "normal", "network_error", "timeout", "logout"]


@dataclass
class SimBot:
    user_id: str
    user_agent: str
    instance_id: str | None = None
    connected: bool = False
    events_sent: int = 0
    reconnects: int = 0
    errors: int = 0


def make_track_payload(bot: SimBot, rng: random.Random) -> dict:
    """One tracked event: mostly messages, some reactions and status updates."""
    roll = rng.random()
    if roll < 0.7:
        event_type, payload = "message", {"messageType": rng.choice(MESSAGE_TYPES)}
    elif roll < 0.9:
        event_type, payload = "message_reaction", {"reaction": rng.choice(REACTIONS)}
    else:
        event_type, payload = "status_update", {"status": rng.choice(["online", "away"])}
    return {
        "instanceId": bot.instance_id,
        "userId": bot.user_id,
        "eventType": event_type,
        "payload": payload,
    }


async def _post(client: httpx.AsyncClient, bot: SimBot, url: str, body: dict) -> dict | None:
    try:
        resp = await client.post(url, json=body)
    except httpx.RequestError:
        bot.errors += 1
        return None
    if resp.status_code != 200:
        bot.errors += 1
        return None
    bot.events_sent += 1
    return resp.json()


async def run_bot(
    client: httpx.AsyncClient,
    bot: SimBot,
    server_url: str,
    events_per_minute: float,
    drop_chance: float,
    duration_seconds: float,
    rng: random.Random,
) -> None:
    """Simulate a single bot for ``duration_seconds``."""
    interval = 60.0 / events_per_minute
    end_time = time.monotonic() + duration_seconds

    while time.monotonic() < end_time:
        if not bot.connected:
            result = await _post(client, bot, f"{server_url}/api/connect", {
                "userId": bot.user_id,
                "instanceId": bot.instance_id,
                "userAgent": bot.user_agent,
            })
            if result is not None:
                if bot.instance_id is not None:
                    bot.reconnects += 1
                bot.instance_id = result["instanceId"]
                bot.connected = True
        elif rng.random() < drop_chance:
            await _post(client, bot, f"{server_url}/api/disconnect", {
                "instanceId": bot.instance_id,
                "reason": rng.choice(DISCONNECT_REASONS),
            })
            bot.connected = False
        elif rng.random() < 0.3:
            await _post(client, bot, f"{server_url}/api/heartbeat", {"instanceId": bot.instance_id})
        else:
            await _post(client, bot, f"{server_url}/api/track", make_track_payload(bot, rng))

        await asyncio.sleep(interval)

    if bot.connected:
        await _post(client, bot, f"{server_url}/api/disconnect", {
            "instanceId": bot.instance_id,
            "reason": "normal",
        })
        bot.connected = False


async def run_simulation(args: argparse.Namespace) -> None:
    """Run the full simulation."""
    rng = random.Random(args.seed)
    bots = [
        SimBot(user_id=f"sim-{uuid.uuid4().hex[:8]}", user_agent=rng.choice(USER_AGENTS))
        for _ in range(args.bots)
    ]

    print(f"Starting simulation: {args.bots} bots, {args.events_per_minute} events/min each")
    print(f"  Duration: {args.duration}s")
    print(f"  Drop chance per tick: {args.drop_chance}")
    print(f"  Server: {args.server}")
    print()

    start = time.monotonic()

    async with httpx.AsyncClient(timeout=10.0) as client:
        tasks = [
            run_bot(client, bot, args.server, args.events_per_minute,
                    args.drop_chance, args.duration, rng)
            for bot in bots
        ]
        await asyncio.gather(*tasks)

        elapsed = time.monotonic() - start
        total_events = sum(b.events_sent for b in bots)
        total_errors = sum(b.errors for b in bots)

        print(f"\nSimulation complete in {elapsed:.1f}s")
        print(f"  Total requests accepted: {total_events}")
        print(f"  Total reconnects: {sum(b.reconnects for b in bots)}")
        print(f"  Total errors: {total_errors}")
        print(f"  Throughput: {total_events / elapsed:.1f} req/sec")

        # Check collector stats
        try:
            resp = await client.get(f"{args.server}/api/stats")
        except httpx.RequestError:
            return
        if resp.status_code == 200:
            stats = resp.json()
            print("\nCollector stats:")
            print(f"  Instances: {stats['totalInstances']} ({stats['activeInstances']} active)")
            print(f"  Users: {stats['totalUsers']} ({stats['activeUsers']} active)")
            print(f"  Peak connections: {stats['statistics']['peakConnections']}")
            quality = stats["statistics"]["qualityMetrics"]
            print(f"  Stability / health / quality: {quality['stabilityScore']:.1f} / "
                  f"{quality['healthScore']} / {quality['connectionQuality']:.1f}")


def main():
    parser = argparse.ArgumentParser(description="botstats fleet simulator")
    parser.add_argument("--server", default="http://localhost:3000", help="Collector URL")
    parser.add_argument("--bots", type=int, default=5, help="Number of simulated bots")
    parser.add_argument("--duration", type=int, default=60, help="Simulation duration in seconds")
    parser.add_argument("--events-per-minute", type=float, default=30, help="Requests per minute per bot")
    parser.add_argument("--drop-chance", type=float, default=0.05,
                        help="Chance per tick that a connected bot disconnects")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")

    args = parser.parse_args()
    asyncio.run(run_simulation(args))


if __name__ == "__main__":
    main()
