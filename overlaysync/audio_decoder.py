"""Decodes audio files into amplitude buffers using ffmpeg."""

import ffmpeg
import os
import logging
from typing import Optional

import numpy as np

from .exceptions import AudioDecodeError
from .models import AudioBuffer

logger = logging.getLogger(__name__)

class AudioDecoder:
    """Reads audio resources as normalized mono PCM for silence snapping."""

    def __init__(self, ffmpeg_path: Optional[str] = None, sample_rate: int = 16000):
        """
        Initializes the AudioDecoder.

        Args:
            ffmpeg_path: Optional path to the ffmpeg executable.
                         If None, assumes ffmpeg is in the system PATH.
            sample_rate: Sample rate to decode to. The snapper works on a 100ms
                         window, so 16kHz is plenty.
        """
        self.ffmpeg_cmd = ffmpeg_path or 'ffmpeg'
        self.sample_rate = sample_rate
        logger.info(f"Using ffmpeg command: {self.ffmpeg_cmd}")

    def decode(self, audio_path: str) -> AudioBuffer:
        """
        Decodes an audio file to mono float32 samples in [-1, 1].

        Args:
            audio_path: Path to any audio file ffmpeg can read.

        Returns:
            An AudioBuffer with the configured sample rate.

        Raises:
            FileNotFoundError: If the audio file does not exist.
            AudioDecodeError: If ffmpeg fails to decode the audio.
        """
        logger.info(f"Decoding audio for waveform analysis: {audio_path}")
        if not os.path.exists(audio_path):
            raise FileNotFoundError(f"Audio file not found: {audio_path}")

        try:
            # f32le to stdout -> raw little-endian float samples, already normalized
            out, _ = (
                ffmpeg
                .input(audio_path)
                .output('pipe:', format='f32le', acodec='pcm_f32le', ac=1, ar=self.sample_rate)
                .run(cmd=self.ffmpeg_cmd, capture_stdout=True, capture_stderr=True)
            )
        except ffmpeg.Error as e:
            stderr_output = e.stderr.decode('utf-8', errors='replace') if e.stderr else "No stderr output"
            logger.error(f"ffmpeg stderr: {stderr_output}")
            raise AudioDecodeError(f"ffmpeg failed to decode {audio_path}: {stderr_output}") from e
        except Exception as e:
            logger.error(f"Unexpected error during audio decoding: {e}", exc_info=True)
            raise AudioDecodeError(f"An unexpected error occurred decoding {audio_path}: {e}") from e

        samples = np.frombuffer(out, dtype=np.float32)
        buffer = AudioBuffer(sample_rate=self.sample_rate, samples=samples)
        logger.info(f"Decoded {buffer.duration:.2f}s of audio ({len(samples)} samples @ {self.sample_rate}Hz)")
        return buffer

    def probe_duration(self, audio_path: str) -> float:
        """
        Returns the duration of an audio file in seconds.

        Raises:
            FileNotFoundError: If the audio file does not exist.
            AudioDecodeError: If the duration cannot be determined.
        """
        if not os.path.exists(audio_path):
            raise FileNotFoundError(f"Audio file not found: {audio_path}")
        try:
            probe = ffmpeg.probe(audio_path, cmd=self.ffmpeg_cmd.replace('ffmpeg', 'ffprobe'))
        except ffmpeg.Error as e:
            stderr_output = e.stderr.decode('utf-8', errors='replace') if e.stderr else "No stderr output"
            raise AudioDecodeError(f"ffprobe failed for {audio_path}: {stderr_output}") from e

        duration = probe.get('format', {}).get('duration')
        if duration is None:
            for stream in probe.get('streams', []):
                if stream.get('codec_type') == 'audio' and stream.get('duration'):
                    duration = stream['duration']
                    break
        if duration is None:
            raise AudioDecodeError(f"Could not determine duration of {audio_path}")
        return float(duration)
