#!/usr/bin/env python3
"""
Ambient Volume Control

Listens to the room through the microphone while music plays and sets the
output volume a target number of dB above the measured ambient noise.
"""

import argparse
import sys
import time

from audio_monitor import list_input_devices
from config import Config
from config_persistence import get_report_dir, load_config, save_config
from logging_utils import get_log_level, log_event, set_log_level
from monitoring import MonitoringOrchestrator
from session_reporter import SessionReporter
from song_events import MediaSessionRegistry
from volume_sinks import create_volume_sink


def apply_cli_overrides(config: Config, args: argparse.Namespace) -> None:
    """Copy command-line overrides onto the loaded config."""
    if args.log_level:
        config.log_level = args.log_level.upper()
    if args.dry_run:
        config.volume.dry_run = True
    if args.device is not None:
        config.audio.device_index = args.device
    if args.target_ratio is not None:
        config.volume.target_ratio_db = args.target_ratio
    if args.min_volume is not None:
        config.volume.min_volume_step = args.min_volume
    if args.no_report:
        config.report_generation_enabled = False


def print_devices() -> None:
    print("Available Input Devices:\n")
    for d in list_input_devices():
        print(f"[{d['index']}] {d['name']}")
        print(f"    Input: {d['inputs']} channels, Default SR: {d['sample_rate']} Hz")
        print()


def run_monitor(config: Config, status_interval: float,
                song_source: MediaSessionRegistry | None = None) -> int:
    """Run until Ctrl+C. Player integrations register sessions on ``song_source``."""
    sink = create_volume_sink(config.volume)
    reporter = SessionReporter(get_report_dir()) if config.report_generation_enabled else None
    if song_source is None:
        song_source = MediaSessionRegistry()
    monitor = MonitoringOrchestrator(config, sink, song_source, reporter=reporter)

    monitor.start()
    print("Ambient Volume Control running. Ctrl+C to stop\n")
    try:
        while True:
            time.sleep(status_interval)
            state = monitor.snapshot()
            ambient = "--" if state.last_ambient_db is None else f"{state.last_ambient_db:5.1f}"
            print(f"\rLevel: {state.current_db:5.1f} dB | Floor: {state.rolling_ambient_db:5.1f} dB | "
                  f"Ambient: {ambient} dB | Vol: {state.current_volume}/{state.max_volume} | "
                  f"{'GAP' if state.silence_detected else 'music'}",
                  end="", flush=True)
    except KeyboardInterrupt:
        print()
    finally:
        monitor.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run Ambient Volume Control")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        type=str.upper, help="Override the configured log level")
    parser.add_argument("--dry-run", action="store_true",
                        help="Compute volume decisions without touching the system mixer")
    parser.add_argument("--device", type=int, default=None, help="Input device index")
    parser.add_argument("--target-ratio", type=float, default=None,
                        help="dB the music should sit above ambient noise")
    parser.add_argument("--min-volume", type=int, default=None, help="Lowest volume step to set")
    parser.add_argument("--list-devices", action="store_true", help="List input devices and exit")
    parser.add_argument("--no-report", action="store_true", help="Do not write session reports")
    parser.add_argument("--save-config", action="store_true",
                        help="Persist the effective config (including overrides)")
    parser.add_argument("--status-interval", type=float, default=0.5,
                        help="Seconds between status line updates (default: 0.5)")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.list_devices:
        print_devices()
        sys.exit(0)

    config = load_config()
    apply_cli_overrides(config, args)
    set_log_level(config.log_level)

    if args.save_config:
        save_config(config)

    log_event("INFO", "App", "Starting", log_level=get_log_level(), dry_run=config.volume.dry_run,
              target_ratio_db=config.volume.target_ratio_db)
    sys.exit(run_monitor(config, max(0.1, args.status_interval)))


if __name__ == "__main__":
    main()
