"""Tests for AnimationScheduler frame loops."""
import asyncio
from typing import List

import numpy as np
import pytest

from cvae_anim.animation import AnimationScheduler, CancellationToken, Frame
from cvae_anim.codec import FrameCodec
from cvae_anim.config import EngineConfig
from cvae_anim.errors import InferenceError, InvalidLabelError
from cvae_anim.infer import InferenceEngine
from cvae_anim.labels import LabelRegistry
from cvae_anim.latent import LatentSampler
from tests.helpers import FailingDecoder, RecordingDecoder


def make_scheduler(labels, decoder, **config) -> AnimationScheduler:
    cfg = EngineConfig(frame_delay=0.0, **config)
    return AnimationScheduler(
        engine=InferenceEngine(decoder, latent_dim=cfg.latent_dim),
        registry=LabelRegistry(labels, label_offset=cfg.label_offset),
        sampler=LatentSampler(cfg.latent_dim, seed=42),
        codec=FrameCodec(),
        config=cfg,
    )


def collect(coro_factory) -> List[Frame]:
    frames: List[Frame] = []

    def on_frame(err, frame):
        assert err is None
        frames.append(frame)

    result = asyncio.run(coro_factory(on_frame))
    assert result is None
    return frames


def test_generate_one_builds_frame(labels) -> None:
    decoder = RecordingDecoder(height=4, width=6)
    frame = asyncio.run(make_scheduler(labels, decoder).generate_one("dog"))
    assert frame.shape == (4, 6, 4)
    assert len(frame.raw) == 4 * 6 * 4
    assert frame.label_vector.tolist() == [0.0, 1.0, 0.0, 0.0]
    assert decoder.calls[0][1].tolist() == [[0.0, 1.0, 0.0, 0.0]]


def test_generate_one_unknown_label_never_calls_decoder(labels) -> None:
    decoder = RecordingDecoder()
    with pytest.raises(InvalidLabelError):
        asyncio.run(make_scheduler(labels, decoder).generate_one("fish"))
    assert decoder.calls == []


def test_generate_one_same_latent_same_inputs(labels) -> None:
    decoder = RecordingDecoder()
    scheduler = make_scheduler(labels, decoder)
    latent = np.linspace(0.0, 1.0, 16, dtype=np.float32)
    asyncio.run(scheduler.generate_one("cat", latent=latent))
    asyncio.run(scheduler.generate_one("cat", latent=latent))
    (z1, y1), (z2, y2) = decoder.calls
    np.testing.assert_array_equal(z1, z2)
    np.testing.assert_array_equal(y1, y2)


def test_free_walk_produces_hundred_frames(labels) -> None:
    decoder = RecordingDecoder()
    scheduler = make_scheduler(labels, decoder)
    frames = collect(lambda cb: scheduler.animate_free_walk("bird", cb))
    assert len(frames) == 100
    assert [f.index for f in frames] == list(range(100))
    assert len(decoder.calls) == 100
    assert not np.array_equal(frames[0].latent, frames[-1].latent)
    for frame in frames:
        assert frame.label_vector.tolist() == [0.0, 0.0, 1.0, 0.0]


def test_free_walk_steps_are_partial(labels) -> None:
    scheduler = make_scheduler(labels, RecordingDecoder(), frame_count=3)
    frames = collect(lambda cb: scheduler.animate_free_walk("cat", cb))
    first, second = frames[0].latent, frames[1].latent
    delta = np.abs(second - first)
    # a 0.2 step towards a point in [0, 1) moves each component by less than 0.2
    assert np.all(delta < 0.2 + 1e-6)
    assert np.any(delta > 0.0)


def test_interpolate_weights(labels) -> None:
    decoder = RecordingDecoder()
    scheduler = make_scheduler(labels, decoder)
    frames = collect(lambda cb: scheduler.animate_interpolate("cat", cb))
    assert len(frames) == 100
    np.testing.assert_allclose(frames[0].label_vector, [1.0, 0.0, 0.0, 0.0], atol=1e-6)
    np.testing.assert_allclose(frames[50].label_vector, [0.5, 0.5, 0.0, 0.0], atol=1e-6)
    np.testing.assert_allclose(frames[99].label_vector, [0.01, 0.99, 0.0, 0.0], atol=1e-6)

    current = [float(f.label_vector[0]) for f in frames]
    nxt = [float(f.label_vector[1]) for f in frames]
    np.testing.assert_allclose(np.diff(current), -0.01, atol=1e-6)
    np.testing.assert_allclose(np.diff(nxt), 0.01, atol=1e-6)
    np.testing.assert_allclose(np.add(current, nxt), 1.0, atol=1e-6)
    for frame in frames:
        assert np.count_nonzero(frame.label_vector) <= 2


def test_interpolate_holds_latent_constant(labels) -> None:
    decoder = RecordingDecoder()
    scheduler = make_scheduler(labels, decoder, frame_count=10)
    collect(lambda cb: scheduler.animate_interpolate("dog", cb))
    first = decoder.calls[0][0]
    for latent, _ in decoder.calls:
        np.testing.assert_array_equal(latent, first)


def test_interpolate_last_label_wraps(labels) -> None:
    scheduler = make_scheduler(labels, RecordingDecoder(), frame_count=4)
    frames = collect(lambda cb: scheduler.animate_interpolate("bird", cb))
    np.testing.assert_allclose(frames[2].label_vector, [0.5, 0.0, 0.5, 0.0], atol=1e-6)


def test_interpolate_last_label_reject(labels) -> None:
    decoder = RecordingDecoder()
    scheduler = make_scheduler(labels, decoder, interpolation_edge="reject")
    with pytest.raises(InvalidLabelError):
        asyncio.run(scheduler.animate_interpolate("bird", lambda err, frame: None))
    assert decoder.calls == []


def test_interpolate_unknown_label_raises(labels) -> None:
    decoder = RecordingDecoder()
    with pytest.raises(InvalidLabelError):
        asyncio.run(make_scheduler(labels, decoder).animate_interpolate("fish", lambda err, frame: None))
    assert decoder.calls == []


def test_cancellation_stops_after_current_frame(labels) -> None:
    decoder = RecordingDecoder()
    scheduler = make_scheduler(labels, decoder)
    token = CancellationToken()
    frames: List[Frame] = []

    def on_frame(err, frame):
        frames.append(frame)
        if len(frames) == 3:
            token.cancel()

    asyncio.run(scheduler.animate_free_walk("cat", on_frame, cancel=token))
    assert len(frames) == 3
    assert len(decoder.calls) == 3
    assert token.cancelled


@pytest.mark.parametrize("method", ["animate_free_walk", "animate_interpolate"])
def test_cancelled_token_renders_nothing(labels, method: str) -> None:
    decoder = RecordingDecoder()
    scheduler = make_scheduler(labels, decoder)
    token = CancellationToken()
    token.cancel()

    frames = collect(lambda on_frame: getattr(scheduler, method)("cat", on_frame, cancel=token))
    assert frames == []
    assert decoder.calls == []


def test_frame_error_aborts_loop(labels) -> None:
    decoder = FailingDecoder(fail_on=5)
    scheduler = make_scheduler(labels, decoder)
    frames: List[Frame] = []
    with pytest.raises(InferenceError):
        asyncio.run(scheduler.animate_interpolate("cat", lambda err, frame: frames.append(frame)))
    assert len(frames) == 4
    assert len(decoder.calls) == 5


def test_iterators_support_pull_consumption(labels) -> None:
    scheduler = make_scheduler(labels, RecordingDecoder(), frame_count=5)

    async def pull():
        return [frame.index async for frame in scheduler.iter_interpolate("dog")]

    assert asyncio.run(pull()) == [0, 1, 2, 3, 4]


def test_iterators_validate_eagerly(labels) -> None:
    scheduler = make_scheduler(labels, RecordingDecoder())
    with pytest.raises(InvalidLabelError):
        scheduler.iter_free_walk("fish")


def test_pacing_delay_is_awaited(labels, monkeypatch) -> None:
    delays = []
    real_sleep = asyncio.sleep

    async def fake_sleep(seconds, *args, **kwargs):
        delays.append(seconds)
        await real_sleep(0)

    monkeypatch.setattr("cvae_anim.animation.asyncio.sleep", fake_sleep)
    cfg = EngineConfig(frame_count=4, frame_delay=0.05)
    scheduler = AnimationScheduler(
        engine=InferenceEngine(RecordingDecoder()),
        registry=LabelRegistry(labels),
        sampler=LatentSampler(16, seed=1),
        codec=FrameCodec(),
        config=cfg,
    )
    asyncio.run(scheduler.animate_free_walk("cat", lambda err, frame: None))
    assert delays == [0.05, 0.05, 0.05]
