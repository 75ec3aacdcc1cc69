"""
Command Line Interface for ConsultScribe
========================================

This module provides the command-line interface for turning recorded
consultations into transcripts and SOAP notes.

Usage:
------
    # Process a single recording
    consultscribe consultation.webm --language Malayalam

    # Process with options
    consultscribe consultation.wav --output ./results --verbose

    # Transcription only (no SOAP generation)
    consultscribe consultation.mp3 --transcribe-only

    # Generate a SOAP note from text directly
    consultscribe --text "Patient reports fever for three days..."

CLI Design Principles:
---------------------
1. Sensible defaults (works out of the box)
2. Clear help messages
3. Progress feedback
4. Exit codes for scripting
"""

import argparse
import json
import logging
import mimetypes
import os
import sys
from pathlib import Path
from typing import Optional

from config import get_settings
from core.pipeline import create_pipeline, save_result_to_file
from exceptions import ConsultScribeError
from models import ProcessingStatus


# Extensions mimetypes does not know on every platform
_EXTENSION_MIME_TYPES = {
    ".wav": "audio/wav",
    ".mp3": "audio/mpeg",
    ".webm": "audio/webm",
    ".ogg": "audio/ogg",
    ".m4a": "audio/m4a",
    ".flac": "audio/flac",
}


# ANSI colors for terminal output
class Colors:
    """ANSI color codes for pretty terminal output."""
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'


def colorize(text: str, color: str) -> str:
    """Add color to text if terminal supports it."""
    if sys.stdout.isatty():
        return f"{color}{text}{Colors.ENDC}"
    return text


def guess_mime_type(path: str) -> str:
    """MIME type for an audio file, from its extension."""
    suffix = Path(path).suffix.lower()
    if suffix in _EXTENSION_MIME_TYPES:
        return _EXTENSION_MIME_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(path)
    return guessed or "audio/wav"


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        prog="consultscribe",
        description="Convert recorded consultations to speaker-labeled transcripts and SOAP notes",
        epilog="Example: consultscribe consultation.webm --language Hindi --output ./notes",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        "audio_file",
        nargs="?",  # Optional (can use --text instead)
        help="Path to the audio file to process"
    )

    parser.add_argument(
        "--text", "-t",
        type=str,
        help="Generate a SOAP note from text instead of an audio file"
    )

    parser.add_argument(
        "--language", "-l",
        type=str,
        default="English",
        help="Consultation language: English, Hindi, Malayalam or Arabic (default: English)"
    )

    # Output options
    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Output directory for results (default: CONSULTSCRIBE_OUTPUT_DIR or ./output)"
    )

    parser.add_argument(
        "--no-save",
        action="store_true",
        help="Don't save results to files, just print"
    )

    parser.add_argument(
        "--transcribe-only",
        action="store_true",
        help="Only transcribe audio, don't generate a SOAP note"
    )

    parser.add_argument(
        "--ollama-model",
        type=str,
        help="Ollama model name (overrides config)"
    )

    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use in-memory storage, speech and text backends (no cloud calls)"
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Output result as JSON"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Minimal output"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output with debug info"
    )

    return parser


def setup_logging_for_cli(verbose: bool, quiet: bool) -> None:
    """Configure logging based on CLI flags."""
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s"
    )


def progress_callback(status: ProcessingStatus, message: str, percent: int) -> None:
    """Print pipeline progress updates."""
    status_colors = {
        ProcessingStatus.PENDING: Colors.YELLOW,
        ProcessingStatus.TRANSCRIBING: Colors.BLUE,
        ProcessingStatus.DIARIZING: Colors.BLUE,
        ProcessingStatus.GENERATING: Colors.CYAN,
        ProcessingStatus.COMPLETED: Colors.GREEN,
        ProcessingStatus.FAILED: Colors.RED,
    }

    color = status_colors.get(status, Colors.ENDC)
    status_str = f"[{status.value.upper():^12}]"
    print(f"{colorize(status_str, color)} {percent:>3}% {message}")


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def main(args: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        args: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code (0 for success, 1 for errors, 130 when interrupted)
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    setup_logging_for_cli(parsed_args.verbose, parsed_args.quiet)

    if not parsed_args.audio_file and not parsed_args.text:
        parser.error("Either audio_file or --text is required")

    try:
        # get_settings() is cached, so overrides go into the environment first
        if parsed_args.ollama_model:
            os.environ["CONSULTSCRIBE_OLLAMA_MODEL"] = parsed_args.ollama_model

        settings = get_settings()
        use_mock = parsed_args.mock or settings.use_mock_backends
        pipeline = create_pipeline(settings, use_mock=use_mock)
        output_dir = parsed_args.output or settings.output_dir

        if parsed_args.text:
            if not parsed_args.quiet:
                print(colorize("\nGenerating SOAP note from text...\n", Colors.CYAN))

            soap = pipeline.generate_soap_only(parsed_args.text)
            if parsed_args.json:
                _print_json(soap.value.model_dump(mode="json", by_alias=True))
            else:
                print(soap.value.to_formatted_string())
            if soap.degraded:
                print(colorize(f"\nWarning: fallback note used ({soap.reason})", Colors.YELLOW))

        else:
            audio_bytes = Path(parsed_args.audio_file).read_bytes()
            mime_type = guess_mime_type(parsed_args.audio_file)
            callback = None if parsed_args.quiet else progress_callback

            if parsed_args.transcribe_only:
                if not parsed_args.quiet:
                    print(colorize(f"\nTranscribing: {parsed_args.audio_file}\n", Colors.CYAN))

                transcript = pipeline.transcribe(
                    audio_bytes, mime_type, parsed_args.language, progress_callback=callback
                )
                if parsed_args.json:
                    _print_json(transcript.model_dump(mode="json", by_alias=True))
                else:
                    print(colorize("\n--- TRANSCRIPT ---\n", Colors.HEADER))
                    print(transcript.get_formatted_transcript())

            else:
                if not parsed_args.quiet:
                    print(colorize(f"\nProcessing: {parsed_args.audio_file}\n", Colors.CYAN))

                result = pipeline.process(
                    audio_bytes,
                    mime_type,
                    parsed_args.language,
                    progress_callback=callback
                )

                if parsed_args.json:
                    _print_json(result.model_dump(mode="json", by_alias=True))
                else:
                    print(result.soap_note.to_formatted_string())
                    if result.insights:
                        print(colorize("\nKEY INSIGHTS", Colors.HEADER))
                        for insight in result.insights:
                            print(f"  - {insight}")

                for warning in result.warnings:
                    print(colorize(f"Warning: {warning}", Colors.YELLOW))

                if not parsed_args.no_save:
                    saved = save_result_to_file(result, output_dir)
                    if not parsed_args.quiet:
                        print(colorize(f"\nResults saved to: {output_dir}", Colors.GREEN))
                        for file_type, path in saved.items():
                            print(f"   - {file_type}: {path}")

        if not parsed_args.quiet:
            print(colorize("\nDone!\n", Colors.GREEN))
        return 0

    except ConsultScribeError as e:
        print(colorize(f"\nError: {e.message}", Colors.RED))
        if parsed_args.verbose and e.details:
            print(colorize(f"   Details: {e.details}", Colors.YELLOW))
        return 1

    except OSError as e:
        print(colorize(f"\nCannot read input: {e}", Colors.RED))
        return 1

    except KeyboardInterrupt:
        print(colorize("\n\nInterrupted by user", Colors.YELLOW))
        return 130


if __name__ == "__main__":
    sys.exit(main())
