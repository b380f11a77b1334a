"""Tests for the fleet simulator's payload builders."""

from __future__ import annotations

import random

from tools.simulator.simulate import SimBot, make_track_payload


def test_track_payloads_match_collector_fields():
    rng = random.Random(3)
    bot = SimBot(user_id="sim-1", user_agent="baileys/6.5.0", instance_id="abc")

    seen = set()
    for _ in range(200):
        payload = make_track_payload(bot, rng)
        assert payload["instanceId"] == "abc"
        assert payload["userId"] == "sim-1"
        assert isinstance(payload["payload"], dict)
        seen.add(payload["eventType"])

    assert seen == {"message", "message_reaction", "status_update"}
