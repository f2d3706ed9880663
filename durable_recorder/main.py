"""Command line entry point for the durable recorder."""

import sys
import time
import asyncio
import argparse
import logging
from pathlib import Path
from typing import List, Optional

import numpy as np
from rich.console import Console
from rich.table import Table
from scipy.io import wavfile

from .audio.decoder import WavAudioDecoder, pcm_to_float
from .audio.wav import encode_wav_pcm16_mono
from .config import RecorderConfig
from .errors import IncompleteTiming, RecorderError
from .models.audio import DecodedAudio
from .models.session import Session
from .playback.extractor import RangeAudioExtractor
from .services import ChunkRecorder, RecordingSlicesService, SessionAnalysisService, SessionEventPublisher
from .storage.file_manager import FileSessionStore

logger = logging.getLogger(__name__)


class Server:
    """Wires configuration, storage and services for one CLI invocation."""

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None):
        # Load configuration
        self.config = RecorderConfig(config_path)
        # Command line level overrides config
        setup_logging(self.config, log_level or self.config.logging.level)
        self.console = Console()

    def init(self) -> None:
        logger.info("Initializing services...")
        self.store = FileSessionStore(self.config.get_data_directory())
        self.decoder = WavAudioDecoder()
        self.publisher = SessionEventPublisher()
        self.recorder = ChunkRecorder(self.store, self.publisher)
        self.analysis = SessionAnalysisService(self.store, self.decoder, self.config, self.publisher)
        self.extractor = RangeAudioExtractor(self.store, self.decoder, self.config.extraction)
        self.slices = RecordingSlicesService(self.extractor, self.analysis)

    async def list_sessions(self) -> None:
        sessions = await self.store.list_sessions()
        table = Table(title="Sessions")
        table.add_column("Session", style="cyan")
        table.add_column("Started")
        table.add_column("Duration", justify="right")
        table.add_column("Chunks", justify="right")
        table.add_column("Timing")
        table.add_column("Status")
        for session in sessions:
            table.add_row(
                session.id,
                time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(session.started_at / 1000)),
                f"{session.duration_ms / 1000:.1f}s",
                str(session.chunk_count),
                session.timing_status.value,
                session.status.value,
            )
        self.console.print(table)

        totals = await self.store.storage_totals()
        self.console.print(f"{totals['session_count']} session(s), {totals['chunk_count']} chunk(s), "
                           f"{totals['total_bytes'] / (1024 * 1024):.2f} MB")

    async def verify(self, session_id: str, strict: bool) -> None:
        timing = await self.analysis.ensure_timing(session_id)
        if strict and not timing.is_verified:
            raise IncompleteTiming(session_id, timing.missing_chunk_ids, timing)

        self.console.print(f"[bold]{session_id}[/bold]: {timing.status.value}, "
                           f"{timing.total_verified_duration_ms / 1000:.2f}s verified, "
                           f"{len(timing.updated_chunk_ids)} chunk(s) updated")
        if timing.missing_chunk_ids:
            self.console.print(f"[yellow]Missing durations:[/yellow] {', '.join(timing.missing_chunk_ids)}")

    async def segments(self, session_id: str) -> None:
        segments = await self.analysis.list_or_extend_segments(session_id)
        table = Table(title=f"Segments for {session_id}")
        table.add_column("Snip", justify="right", style="cyan")
        table.add_column("Start", justify="right")
        table.add_column("End", justify="right")
        table.add_column("Duration", justify="right")
        table.add_column("Break")
        for segment in segments:
            table.add_row(
                str(segment.index + 1),
                f"{segment.start_ms / 1000:.2f}s",
                f"{segment.end_ms / 1000:.2f}s",
                f"{segment.duration_ms / 1000:.2f}s",
                segment.break_reason.value,
            )
        self.console.print(table)

    async def export(self, session_id: str, output: str,
                     start_ms: Optional[float], end_ms: Optional[float]) -> None:
        if start_ms is None and end_ms is None:
            audio = await self.slices.export_session(session_id)
            data, duration_ms = audio.data, audio.duration_ms
        else:
            extraction = await self.slices.extract_range(session_id,
                                                         0 if start_ms is None else start_ms,
                                                         float("inf") if end_ms is None else end_ms)
            data, duration_ms = extraction.waveform_bytes, extraction.duration_ms
            if extraction.anomalies:
                self.console.print(f"[yellow]Cumulative chunk anomaly in "
                                   f"{len(extraction.anomalies)} chunk(s); sliced by absolute offset[/yellow]")

        output_path = Path(output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'wb') as f:
            f.write(data)
        self.console.print(f"Wrote {duration_ms / 1000:.2f}s to {output_path}")

    async def ingest(self, wav_path: str, chunk_ms: int) -> Session:
        """Split a WAV file into fixed-length chunks and record them as a new session."""
        sample_rate, raw = wavfile.read(wav_path)
        samples = DecodedAudio(samples=pcm_to_float(raw), sample_rate=int(sample_rate)).mono()
        session = await self.recorder.create_session(mime_type="audio/wav", title=Path(wav_path).stem)

        frames_per_chunk = max(1, int(sample_rate * chunk_ms / 1000))
        offsets: List[int] = list(range(0, samples.shape[0], frames_per_chunk))
        for offset in offsets:
            piece = samples[offset:offset + frames_per_chunk]
            start = session.started_at + int(round(offset / sample_rate * 1000))
            end = session.started_at + int(round((offset + piece.shape[0]) / sample_rate * 1000))
            await self.recorder.append_chunk(session.id, encode_wav_pcm16_mono(np.asarray(piece), sample_rate),
                                             start, end)

        session = await self.recorder.finish_session(session.id)
        self.console.print(f"Ingested {wav_path} as session [bold]{session.id}[/bold] "
                           f"({len(offsets)} chunk(s))")
        return session


def setup_logging(config: RecorderConfig, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.logging.file_path
    console_output = config.logging.console_output

    # Create logs directory if it doesn't exist
    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Console handler - only if enabled in config
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("Durable recorder starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="durable-recorder - inspect, segment and export chunked recordings"
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: built-in settings)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config, INFO)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="durable-recorder v0.1.0"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("sessions", help="List stored sessions")

    verify = commands.add_parser("verify", help="Reconcile chunk timing for a session")
    verify.add_argument("session_id")
    verify.add_argument("--strict", action="store_true",
                        help="Fail when some chunks still lack a verified duration")

    segments = commands.add_parser("segments", help="List (and extend) a session's segments")
    segments.add_argument("session_id")

    export = commands.add_parser("export", help="Export a session or time range as WAV")
    export.add_argument("session_id")
    export.add_argument("--output", "-o", required=True, help="Destination WAV file")
    export.add_argument("--start", type=float, help="Range start in milliseconds")
    export.add_argument("--end", type=float, help="Range end in milliseconds")

    ingest = commands.add_parser("ingest", help="Record a WAV file as a new chunked session")
    ingest.add_argument("wav_path")
    ingest.add_argument("--chunk-ms", type=int, default=2000, help="Chunk length in milliseconds (default: 2000)")

    return parser


async def run_command(server: Server, args: argparse.Namespace) -> None:
    if args.command == "sessions":
        await server.list_sessions()
    elif args.command == "verify":
        await server.verify(args.session_id, args.strict)
    elif args.command == "segments":
        await server.segments(args.session_id)
    elif args.command == "export":
        await server.export(args.session_id, args.output, args.start, args.end)
    elif args.command == "ingest":
        await server.ingest(args.wav_path, args.chunk_ms)


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the durable recorder CLI."""
    args = build_parser().parse_args(argv)

    try:
        server = Server(args.config, args.log_level)
        server.init()
        asyncio.run(run_command(server, args))
    except KeyboardInterrupt:
        print("\nInterrupted")
    except (RecorderError, FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        logging.error(f"Command failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
