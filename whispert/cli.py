"""Command-Line Interface handler for whisper-t."""

import argparse
import logging
import os
import sys
from typing import List, Optional

from .config_loader import ConfigLoader
from .log_setup import setup_logging
from .segmenter import MediaSegmenter
from .transcriber import OpenAITranscriber
from .pipeline import TranscriptionPipeline
from .models import Transcript
from .exceptions import WhisperTError, ConfigurationError

logger = logging.getLogger(__name__) # Get logger for this module

# argparse destination -> configuration key
_OVERRIDES = {
    'model': 'model',
    'language': 'language',
    'segment_duration': 'segment_duration',
    'overlap': 'overlap_duration',
    'max_concurrency': 'max_concurrency',
    'max_attempts': 'max_attempts',
    'timeout': 'request_timeout',
    'temp_dir': 'temp_dir',
}


def _fail(message: str, code: int = 1) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(code)


class CLIHandler:
    """Parses arguments and orchestrates the transcription process."""

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """Creates the argument parser for the CLI."""
        parser = argparse.ArgumentParser(
            prog="whisper-t",
            description="Transcribe an audio or video file with a remote speech-to-text API.",
            epilog="USAGE: OPENAI_API_KEY={your api key} whisper-t {file}",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter # Show defaults in help
        )
        parser.add_argument(
            "file",
            help="Path to the audio or video file to transcribe."
        )
        parser.add_argument(
            "-c", "--config",
            default=None,
            help="Path to a YAML configuration file. Built-in defaults are used when omitted."
        )
        parser.add_argument(
            "-o", "--output",
            default=None,
            help="Also write the transcript to this file."
        )
        parser.add_argument("--model", default=None, help="Override the transcription model.")
        parser.add_argument("--language", default=None, help="ISO-639-1 language hint for the model.")
        parser.add_argument(
            "--segment-duration", type=float, default=None,
            help="Override the segment length in seconds."
        )
        parser.add_argument(
            "--overlap", type=float, default=None,
            help="Override the overlap between consecutive segments in seconds."
        )
        parser.add_argument(
            "--max-concurrency", type=int, default=None,
            help="Override the number of concurrent transcription calls."
        )
        parser.add_argument(
            "--max-attempts", type=int, default=None,
            help="Override the number of attempts per segment."
        )
        parser.add_argument(
            "--timeout", type=float, default=None,
            help="Override the per-request timeout in seconds."
        )
        parser.add_argument(
            "--fail-fast",
            action="store_true",
            help="Abort all remaining work after the first segment that fails for good."
        )
        parser.add_argument(
            "--temp-dir",
            default=None, # Default taken from config file
            help="Override the directory used for temporary segment files."
        )
        parser.add_argument(
            "--no-progress",
            action="store_true",
            help="Do not show the progress bar."
        )
        parser.add_argument(
            "--log-level",
            default="WARNING",
            choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            help="Set the logging level for console and file output."
        )
        return parser

    def _apply_overrides(self, config: dict, args: argparse.Namespace) -> dict:
        for dest, key in _OVERRIDES.items():
            value = getattr(args, dest)
            if value is not None:
                logger.info(f"Overriding {key} from config with CLI argument: {value}")
                config[key] = value
        if args.fail_fast:
            config['fail_fast'] = True
        if args.no_progress:
            config['show_progress'] = False
        return ConfigLoader().validate(config)

    def _report(self, transcript: Transcript, output_path: Optional[str]) -> None:
        """Prints the transcript and, for partial results, a failure summary on stderr."""
        print(transcript.text)
        if output_path:
            try:
                with open(output_path, 'w', encoding='utf-8') as f:
                    f.write(transcript.text + "\n")
                logger.info(f"Transcript saved to: {output_path}")
            except OSError as e:
                _fail(f"could not write transcript to {output_path}: {e}")

        if transcript.is_partial:
            print(
                f"Warning: {len(transcript.failures)} of {transcript.segment_count} segment(s) failed:",
                file=sys.stderr
            )
            for index in transcript.failed_indices:
                print(f"  segment {index}: {transcript.failures[index]}", file=sys.stderr)

    def run(self, argv: Optional[List[str]] = None) -> None:
        """Parses arguments, sets up logging, loads config, and runs the pipeline."""
        args = self.parser.parse_args(argv)

        log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
        setup_logging(log_level=log_level)

        # --- Load Configuration ---
        try:
            config = ConfigLoader().load_config(args.config)
            config = self._apply_overrides(config, args)
        except ConfigurationError as e:
            logger.debug("Configuration failure", exc_info=True)
            _fail(f"invalid configuration: {e}")
        except FileNotFoundError as e:
            _fail(str(e))

        if config.get('log_dir'):
            setup_logging(log_level=log_level, log_dir=config['log_dir'], log_file=config['log_file'])

        # --- Credential ---
        api_key_env = config['api_key_env']
        api_key = os.environ.get(api_key_env, "")
        if not api_key:
            _fail(f"Required {api_key_env}")

        if not os.path.isfile(args.file):
            _fail(f"Failed to open audio file: {args.file} does not exist or is not a file")

        pipeline = None
        try:
            segmenter = MediaSegmenter(
                segment_duration=config['segment_duration'],
                overlap_duration=config['overlap_duration'],
                ffmpeg_path=config.get('ffmpeg_path'),
                ffprobe_path=config.get('ffprobe_path'),
                sample_rate=config['sample_rate'],
                channels=config['channels'],
            )
            transcriber = OpenAITranscriber(
                api_key=api_key,
                model=config['model'],
                endpoint=config['endpoint'],
                timeout=config['request_timeout'],
                language=config.get('language'),
                prompt=config.get('prompt'),
                temperature=config.get('temperature'),
            )
            pipeline = TranscriptionPipeline(config=config, segmenter=segmenter, transcriber=transcriber)
            transcript = pipeline.transcribe(args.file)
        except WhisperTError as e:
            _fail(f"transcription error: {e}")
        except KeyboardInterrupt:
            if pipeline is not None:
                pipeline.cancel()
            logger.warning("Process interrupted by user (Ctrl+C). Exiting.")
            _fail("interrupted", code=130)
        except Exception as e:
            logger.critical(f"An unexpected critical error occurred at the top level: {e}", exc_info=True)
            _fail(f"unexpected error: {e}", code=2)

        if transcript.succeeded_count == 0:
            _fail(
                f"transcription error: all {transcript.segment_count} segment(s) failed: "
                + "; ".join(f"segment {i}: {msg}" for i, msg in sorted(transcript.failures.items()))
            )

        self._report(transcript, args.output)
        sys.exit(0)


def main() -> None:
    """Console-script entry point."""
    CLIHandler().run()
