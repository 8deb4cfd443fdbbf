import ffmpeg
import numpy as np
import pytest

from overlaysync import audio_decoder
from overlaysync.audio_decoder import AudioDecoder
from overlaysync.exceptions import AudioDecodeError


class FakeStream:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.output_kwargs = None
        self.run_kwargs = None

    def output(self, target, **kwargs):
        self.output_kwargs = kwargs
        return self

    def run(self, **kwargs):
        self.run_kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "narration.mp3"
    path.write_bytes(b"\x00" * 8)
    return str(path)


def test_decode_reads_float_samples(monkeypatch, audio_file):
    samples = np.array([0.0, 0.5, -0.25, 0.125], dtype=np.float32)
    stream = FakeStream(result=(samples.tobytes(), b""))
    monkeypatch.setattr(audio_decoder.ffmpeg, "input", lambda path: stream)

    buffer = AudioDecoder(sample_rate=4).decode(audio_file)

    assert buffer.sample_rate == 4
    assert buffer.duration == 1.0
    np.testing.assert_array_equal(buffer.samples, samples)
    assert stream.output_kwargs["ac"] == 1
    assert stream.run_kwargs["cmd"] == "ffmpeg"


def test_decode_wraps_ffmpeg_errors(monkeypatch, audio_file):
    stream = FakeStream(error=ffmpeg.Error("ffmpeg", b"", b"Invalid data found"))
    monkeypatch.setattr(audio_decoder.ffmpeg, "input", lambda path: stream)
    with pytest.raises(AudioDecodeError, match="Invalid data found"):
        AudioDecoder().decode(audio_file)


def test_decode_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        AudioDecoder().decode(str(tmp_path / "missing.mp3"))


def test_probe_duration(monkeypatch, audio_file):
    monkeypatch.setattr(audio_decoder.ffmpeg, "probe", lambda path, cmd: {"format": {"duration": "12.5"}})
    assert AudioDecoder().probe_duration(audio_file) == 12.5


def test_probe_duration_falls_back_to_audio_stream(monkeypatch, audio_file):
    probe = {"format": {}, "streams": [{"codec_type": "video"}, {"codec_type": "audio", "duration": "3.0"}]}
    monkeypatch.setattr(audio_decoder.ffmpeg, "probe", lambda path, cmd: probe)
    assert AudioDecoder().probe_duration(audio_file) == 3.0


def test_probe_without_duration(monkeypatch, audio_file):
    monkeypatch.setattr(audio_decoder.ffmpeg, "probe", lambda path, cmd: {"format": {}, "streams": []})
    with pytest.raises(AudioDecodeError):
        AudioDecoder().probe_duration(audio_file)
