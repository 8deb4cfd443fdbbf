"""Alignment service backed by Whisper word timestamps."""

import whisper
import logging
import torch
import os
from typing import List, Optional, Sequence, Tuple

from .alignment import AlignmentService, TranscriptMatcher
from .models import AlignmentTranscript, SyncUnit
from .exceptions import AlignmentError

logger = logging.getLogger(__name__)

class WhisperAlignmentService(AlignmentService):
    """Transcribes the audio with word timestamps and matches units onto the words."""

    def __init__(
        self,
        model_name: str = "base.en",
        device: str = "cuda",
        fp16: bool = True,
        matcher: Optional[TranscriptMatcher] = None
    ):
        """
        Initializes the WhisperAlignmentService.

        Args:
            model_name: The name of the Whisper model to use (e.g., "base", "medium.en").
            device: The device to run the model on ("cuda" or "cpu").
            fp16: Whether to use float16 precision (faster on compatible GPUs).
            matcher: Maps units onto transcript words; defaults to TranscriptMatcher().

        Raises:
            ValueError: If the specified device is invalid.
            AlignmentError: If the model fails to load.
        """
        self.model_name = model_name
        self.device = device
        self.fp16 = fp16
        self.matcher = matcher or TranscriptMatcher()

        if self.device == "cuda" and not torch.cuda.is_available():
            logger.warning("CUDA device requested but not available. Falling back to CPU.")
            self.device = "cpu"
        elif self.device not in ["cuda", "cpu"]:
             raise ValueError(f"Invalid device specified: {self.device}. Choose 'cuda' or 'cpu'.")

        logger.info(f"Initializing WhisperAlignmentService with model '{self.model_name}' on device '{self.device}' (FP16: {self.fp16})")
        try:
            self.model = whisper.load_model(self.model_name, device=self.device)
            logger.info(f"Whisper model '{self.model_name}' loaded successfully.")
        except Exception as e:
            logger.error(f"Failed to load Whisper model '{self.model_name}': {e}", exc_info=True)
            raise AlignmentError(f"Failed to load Whisper model '{self.model_name}': {e}", retryable=False) from e

    def transcribe_words(self, audio_path: str, language: str) -> Tuple[List[Tuple[str, float, float]], str]:
        """
        Runs Whisper and flattens its segments into timestamped words.

        Returns:
            The (text, start, end) word list and the detected language.

        Raises:
            FileNotFoundError: If the audio file doesn't exist.
            AlignmentError: If transcription fails.
        """
        logger.info(f"Transcribing with word timestamps: {audio_path}")
        if not os.path.exists(audio_path):
             raise FileNotFoundError(f"Audio file not found: {audio_path}")

        try:
            result = self.model.transcribe(
                audio_path,
                language=language,
                word_timestamps=True,
                fp16=self.fp16 if self.device == "cuda" else False, # FP16 only works on CUDA
                verbose=None
            )
        except Exception as e:
            logger.error(f"Error during Whisper transcription process for {audio_path}: {e}", exc_info=True)
            raise AlignmentError(f"Whisper transcription failed for {audio_path}: {e}") from e

        words = []
        for seg_data in result.get('segments', []):
            for word in seg_data.get('words', []):
                if 'start' in word and 'end' in word and word.get('word', '').strip():
                    words.append((word['word'].strip(), float(word['start']), float(word['end'])))
        if not words:
            logger.warning("Transcription produced no timestamped words.")
        logger.info(f"Transcription completed: {len(words)} words, language {result.get('language', 'N/A')}")
        return words, result.get('language')

    def align(self, text_units: Sequence[SyncUnit], audio_path: str, language: str) -> AlignmentTranscript:
        words, detected = self.transcribe_words(audio_path, language)
        transcript = self.matcher.match(text_units, words)
        transcript.language = detected or language
        return transcript
