#!/usr/bin/env python3
"""
OverlaySync Batch Processing Entry Point

Processes every XHTML document in a directory that has a narration audio
file with the same stem, saving one sync block file per document.
"""

import argparse
import logging
import os
import sys
import time
from typing import List, Tuple

# Progress bar library
from tqdm import tqdm

from overlaysync.config_loader import ConfigLoader
from overlaysync.log_setup import parse_log_level, setup_logging
from overlaysync.audio_decoder import AudioDecoder
from overlaysync.cli import build_strategies
from overlaysync.sync_pipeline import SyncPipeline
from overlaysync.exceptions import OverlaySyncError, ConfigurationError, FileSystemError
from overlaysync.utils import ensure_dir_exists

# Initialize logger for this script
logger = logging.getLogger(__name__)

DOCUMENT_EXTENSIONS = (".xhtml", ".html", ".htm")
AUDIO_EXTENSIONS = (".mp3", ".m4a", ".wav", ".ogg", ".flac", ".aac")

def find_document_pairs(input_dir: str) -> List[Tuple[str, str]]:
    """
    Finds XHTML documents with a matching audio file, ordered by document name.

    Args:
        input_dir: The directory to search.

    Returns:
        A list of (document_path, audio_path) tuples.

    Raises:
        FileNotFoundError: If the input directory doesn't exist.
        ValueError: If the input path is not a directory.
    """
    if not os.path.exists(input_dir):
        raise FileNotFoundError(f"Input directory not found: {input_dir}")
    if not os.path.isdir(input_dir):
        raise ValueError(f"Input path is not a directory: {input_dir}")

    logger.info(f"Scanning directory for documents and audio: {input_dir}")
    documents = {}
    audio_files = {}
    for filename in sorted(os.listdir(input_dir)):
        filepath = os.path.join(input_dir, filename)
        if not os.path.isfile(filepath):
            continue
        stem, ext = os.path.splitext(filename)
        ext = ext.lower()
        if ext in DOCUMENT_EXTENSIONS:
            documents[stem] = filepath
        elif ext in AUDIO_EXTENSIONS:
            audio_files.setdefault(stem, filepath) # First match alphabetically wins

    pairs = []
    for stem, document_path in sorted(documents.items()):
        if stem in audio_files:
            pairs.append((document_path, audio_files[stem]))
        else:
            logger.warning(f"No audio file found for {os.path.basename(document_path)}. Skipping.")

    logger.info(f"Found {len(pairs)} document/audio pairs ({len(documents)} documents).")
    return pairs


def sync_documents(pipeline: SyncPipeline, pairs: List[Tuple[str, str]]) -> Tuple[int, List[str]]:
    """
    Runs the pipeline over each document/audio pair.

    A failing document is logged and counted; the batch carries on with the next one.

    Returns:
        The number of documents synced and the names of those that failed.
    """
    synced = 0
    failed = []
    with tqdm(total=len(pairs), unit="doc", desc="Syncing") as pbar:
        for document_path, audio_path in pairs:
            name = os.path.basename(document_path)
            pbar.set_postfix_str(name[:30])
            started = time.time()
            try:
                summary = pipeline.run(document_path, audio_path)
            except (OverlaySyncError, FileNotFoundError) as e:
                logger.error(f"Sync failed for '{name}': {e}")
                failed.append(name)
            except Exception as e:
                logger.error(f"Unexpected error syncing '{name}': {e}", exc_info=True)
                failed.append(name)
            else:
                synced += 1
                logger.info(f"{name}: {len(summary.blocks)} blocks via {summary.method}, "
                            f"{len(summary.skipped)} skipped ({time.time() - started:.2f}s)")
            finally:
                pbar.update(1)
    return synced, failed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="OverlaySync Batch: sync every XHTML document in a directory with its narration.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("-i", "--input-dir", required=True,
                        help="Directory holding the XHTML documents and their audio files.")
    parser.add_argument("-o", "--output-dir", default=None,
                        help="Where sync block files go. Defaults to <input-dir>/sync_blocks.")
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to the configuration YAML file.")
    parser.add_argument("--method", default=None, choices=["forced", "linear"],
                        help="Alignment method, overriding the config.")
    parser.add_argument("--granularity", default=None, choices=["paragraph", "sentence", "word"],
                        help="Level that alignment targets, overriding the config.")
    parser.add_argument("--device", default=None, choices=["cuda", "cpu"],
                        help="Whisper device, overriding the config.")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Logging level for console and file output.")
    return parser


def run_batch_processing(argv=None):
    """Parses arguments, builds the pipeline once and syncs every document pair."""
    args = build_parser().parse_args(argv)
    log_level = parse_log_level(args.log_level)
    setup_logging(log_level=log_level)

    try:
        config = ConfigLoader().load_config(args.config)
    except (ConfigurationError, FileNotFoundError) as e:
        logger.critical(f"Failed to load configuration: {e}")
        sys.exit(1)
    setup_logging(log_level=log_level, log_dir=config['log_dir'], log_file='overlaysync_batch.log')

    for key, value in (("alignment_method", args.method), ("granularity", args.granularity),
                       ("device", args.device)):
        if value:
            logger.info(f"Using {key}={value} from the command line")
            config[key] = value

    try:
        pairs = find_document_pairs(args.input_dir)
    except (FileNotFoundError, ValueError) as e:
        logger.critical(f"Input directory error: {e}")
        sys.exit(1)
    if not pairs:
        logger.warning(f"Nothing to sync in {args.input_dir}.")
        sys.exit(0)

    config['output_dir'] = args.output_dir or os.path.join(args.input_dir, "sync_blocks")
    try:
        ensure_dir_exists(config['output_dir'])
        # One decoder and one whisper model shared by every document
        audio_decoder = AudioDecoder(
            ffmpeg_path=config.get('ffmpeg_path'),
            sample_rate=int(config.get('sample_rate', 16000))
        )
        strategy, fallback = build_strategies(config, audio_decoder)
        pipeline = SyncPipeline(config=config, strategy=strategy, fallback_strategy=fallback,
                                audio_decoder=audio_decoder)
    except (FileSystemError, OverlaySyncError) as e:
        logger.critical(f"Could not set up the batch: {e}")
        sys.exit(1)

    batch_started = time.time()
    logger.info(f"Syncing {len(pairs)} documents into {config['output_dir']}")
    try:
        synced, failed = sync_documents(pipeline, pairs)
    except KeyboardInterrupt:
        logger.warning("Batch interrupted (Ctrl+C).")
        sys.exit(1)

    logger.info(f"Batch finished in {time.time() - batch_started:.2f}s: {synced}/{len(pairs)} synced")
    if failed:
        logger.error(f"Failed documents: {', '.join(failed)}")
        sys.exit(1)


if __name__ == "__main__":
    if sys.version_info < (3, 9):
        sys.stderr.write("OverlaySync requires Python 3.9 or later.\n")
        sys.exit(1)

    run_batch_processing()
