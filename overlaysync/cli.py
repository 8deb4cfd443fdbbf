"""Command-Line Interface handler for OverlaySync."""

import argparse
import logging
import os
import sys
from typing import Optional, Tuple

import yaml

from .config_loader import ConfigLoader
from .log_setup import parse_log_level, setup_logging
from .audio_decoder import AudioDecoder
from .alignment import AlignmentStrategy, ForcedAlignmentStrategy, LinearSpreadStrategy, TranscriptMatcher
from .sync_pipeline import SyncPipeline
from .exceptions import OverlaySyncError, ConfigurationError, AlignmentError

logger = logging.getLogger(__name__) # Get logger for this module


def build_strategies(
    config: dict,
    audio_decoder: AudioDecoder
) -> Tuple[Optional[AlignmentStrategy], Optional[AlignmentStrategy]]:
    """
    Creates the primary and fallback alignment strategies from the configuration.

    Returns:
        (primary, fallback). The primary is None when forced alignment could
        not be set up but linear fallback is allowed.

    Raises:
        AlignmentError: If forced alignment cannot be set up and fallback is disabled.
    """
    linear = LinearSpreadStrategy(duration_provider=audio_decoder.probe_duration)
    if config.get('alignment_method', 'forced') == 'linear':
        return linear, None

    fallback = linear if config.get('fallback_to_linear', True) else None
    device = config.get('device', 'cuda')
    try:
        # whisper and torch are only imported for forced alignment
        from .whisper_aligner import WhisperAlignmentService
        service = WhisperAlignmentService(
            model_name=config.get('whisper_model', 'base.en'),
            device=device,
            fp16=config.get('whisper_fp16', True) if device == 'cuda' else False,
            matcher=TranscriptMatcher(
                lookahead_words=int(config.get('match_lookahead_words', 40)),
                min_ratio=float(config.get('min_match_ratio', 0.6)),
            ),
        )
    except AlignmentError as e:
        if fallback is None:
            raise
        logger.warning(f"Forced alignment unavailable ({e}); linear spread will be used.")
        return None, fallback
    return ForcedAlignmentStrategy(service), fallback


class CLIHandler:
    """Parses arguments and orchestrates the OverlaySync process."""

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """Creates the argument parser for the CLI."""
        parser = argparse.ArgumentParser(
            description="OverlaySync: Synchronize EPUB text units with narration audio and save sync blocks.",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter # Show defaults in help
        )
        parser.add_argument(
            "-d", "--document",
            required=True,
            help="Path to the tagged XHTML (or YAML/JSON unit tree) document."
        )
        parser.add_argument(
            "-a", "--audio",
            required=True,
            help="Path to the narration audio file."
        )
        parser.add_argument(
            "--document-id",
            default=None,
            help="Key to save the sync blocks under. Defaults to the document file name."
        )
        parser.add_argument(
            "-o", "--output-dir",
            default=None, # Default taken from config file
            help="Override the sync block output directory specified in the config file."
        )
        parser.add_argument(
            "-c", "--config",
            default="config.yaml",
            help="Path to the configuration YAML file."
        )
        parser.add_argument(
            "--method",
            default=None,
            choices=["forced", "linear"],
            help="Override the alignment method specified in config."
        )
        parser.add_argument(
            "--granularity",
            default=None,
            choices=["paragraph", "sentence", "word"],
            help="Override the level that alignment targets."
        )
        parser.add_argument(
            "--marks",
            default=None,
            help="YAML mark script to replay instead of running automatic alignment."
        )
        parser.add_argument(
            "--log-level",
            default="INFO",
            choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            help="Set the logging level for console and file output."
        )
        parser.add_argument(
            "--device",
            default=None, # Default taken from config
            choices=["cuda", "cpu"],
            help="Override the processing device (cuda or cpu) specified in config."
        )
        parser.add_argument(
            "--start",
            type=float,
            default=0.0,
            help="Start of the audio window used for alignment, in seconds."
        )
        parser.add_argument(
            "--end",
            type=float,
            default=None,
            help="End of the audio window used for alignment, in seconds. Defaults to the full duration."
        )

        return parser

    def run(self, argv=None) -> None:
        """Parses arguments, sets up logging, loads config, and runs the pipeline."""
        args = self.parser.parse_args(argv)

        # Console only until the config says where the log file lives
        log_level = parse_log_level(args.log_level)
        setup_logging(log_level=log_level)

        try:
            config = ConfigLoader().load_config(args.config)
        except (ConfigurationError, FileNotFoundError) as e:
            logger.critical(f"Cannot use configuration {args.config}: {e}")
            sys.exit(1)

        setup_logging(log_level=log_level, log_dir=config['log_dir'], log_file=config['log_file'])

        overrides = {
            'output_dir': args.output_dir,
            'device': args.device,
            'alignment_method': args.method,
            'granularity': args.granularity,
        }
        for key, value in overrides.items():
            if value:
                logger.info(f"Using {key}={value} from the command line")
                config[key] = value

        # --- Validate Input Paths ---
        for label, path in (("document", args.document), ("audio", args.audio)):
            if not os.path.isfile(path):
                logger.critical(f"Input {label} file not found or is not a file: {path}")
                sys.exit(1)
        if args.end is not None and args.end <= args.start:
            logger.critical(f"Alignment window is empty: --start {args.start} --end {args.end}")
            sys.exit(1)

        try:
            script = None
            if args.marks:
                script = self._load_script(args.marks)

            # --- Instantiate Components ---
            logger.info("Initializing OverlaySync components...")
            audio_decoder = AudioDecoder(
                ffmpeg_path=config.get('ffmpeg_path'), # None if not specified
                sample_rate=int(config.get('sample_rate', 16000))
            )
            if script is not None:
                # Replays never align, so skip loading a model
                strategy, fallback = LinearSpreadStrategy(audio_decoder.probe_duration), None
            else:
                strategy, fallback = build_strategies(config, audio_decoder)
            pipeline = SyncPipeline(
                config=config,
                strategy=strategy,
                fallback_strategy=fallback,
                audio_decoder=audio_decoder,
            )
            logger.info("Components initialized successfully.")

            # --- Run Pipeline ---
            summary = pipeline.run(
                args.document,
                args.audio,
                document_id=args.document_id,
                window_start=args.start,
                window_end=args.end,
                script=script,
            )
            logger.info(f"OverlaySync finished successfully: {len(summary.blocks)} blocks "
                        f"({summary.method}), {len(summary.skipped)} skipped -> {summary.output_path}")
            sys.exit(0)

        except OverlaySyncError as e:
            logger.error(f"Sync failed: {e}")
            sys.exit(1)
        except FileNotFoundError as e:
            logger.error(f"File not found: {e}")
            sys.exit(1)
        except KeyboardInterrupt:
            logger.warning("Interrupted (Ctrl+C).")
            sys.exit(1)
        except Exception as e:
            logger.critical(f"Unexpected error: {e}", exc_info=True)
            sys.exit(2)

    @staticmethod
    def _load_script(path: str) -> list:
        """Reads a YAML mark script (a list of single-key actions)."""
        try:
            with open(path, 'r', encoding='utf-8') as f:
                script = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Could not read mark script {path}: {e}") from e
        if not isinstance(script, list):
            raise ConfigurationError(f"Mark script {path} must be a list of actions.")
        return script
