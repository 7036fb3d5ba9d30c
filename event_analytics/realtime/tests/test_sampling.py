import random

from django.test import override_settings

from event_analytics.realtime.sampling import MoveSampler


def test_non_move_actions_always_kept():
    sampler = MoveSampler(0.0)
    assert sampler("click")
    assert sampler("hover")
    assert not sampler("move")


def test_full_rate_keeps_every_move():
    sampler = MoveSampler(1.0)
    assert all(sampler("move") for _ in range(50))


def test_rate_is_clamped():
    assert MoveSampler(4).rate == 1.0
    assert MoveSampler(-1).rate == 0.0


def test_partial_rate_is_roughly_respected():
    sampler = MoveSampler(0.25, rng=random.Random(1234))  # noqa: S311
    kept = sum(sampler("move") for _ in range(4000))
    assert 800 < kept < 1200


@override_settings(TRACKING_MOVE_SAMPLE_RATE=0.5)
def test_from_settings():
    assert MoveSampler.from_settings().rate == 0.5
