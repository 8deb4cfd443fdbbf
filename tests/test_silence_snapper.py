import numpy as np
import pytest

from overlaysync.models import AudioBuffer
from overlaysync.silence_snapper import SilenceSnapper


def test_snaps_to_quiet_sample_in_window(loud_audio):
    snapper = SilenceSnapper(loud_audio, window_ms=100, threshold=0.1)
    assert snapper.snap(1.0) == pytest.approx(1.05)


def test_quiet_sample_outside_window_is_ignored(loud_audio):
    snapper = SilenceSnapper(loud_audio, window_ms=100, threshold=0.1)
    assert snapper.snap(2.0) == 2.0
    assert snapper.snap(1.0, window_ms=20) == 1.0


def test_nothing_below_threshold_returns_input(loud_audio):
    snapper = SilenceSnapper(loud_audio, window_ms=100, threshold=0.005)
    assert snapper.snap(1.0) == 1.0


def test_disabled_or_missing_audio_returns_input(loud_audio):
    assert SilenceSnapper(loud_audio, enabled=False).snap(1.0) == 1.0
    assert SilenceSnapper(None).snap(1.0) == 1.0
    empty = AudioBuffer(sample_rate=1000, samples=np.zeros(0, dtype=np.float32))
    assert SilenceSnapper(empty).snap(1.0) == 1.0


def test_window_is_clamped_to_buffer(loud_audio):
    snapper = SilenceSnapper(loud_audio, window_ms=100)
    assert snapper.snap(0.02) == 0.02
    assert snapper.snap(50.0) == 50.0


def test_snap_never_moves_further_than_window():
    rng = np.random.default_rng(0)
    audio = AudioBuffer(sample_rate=8000, samples=rng.uniform(-1, 1, 8000 * 3).astype(np.float32))
    snapper = SilenceSnapper(audio, window_ms=100, threshold=0.5)
    for t in rng.uniform(-0.5, 3.5, 200):
        assert abs(snapper.snap(float(t)) - t) <= 0.1 + 1e-9
