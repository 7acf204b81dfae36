"""Command-line entry point for the AirSync receiver."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from airsync.audio import PLAYBACK_BACKENDS, query_devices
from airsync.calibration.applier import override_latency_from_env
from airsync.calibration.chirp import write_chirp_wav
from airsync.calibration.models import ChirpConfig
from airsync.calibration.signal import SAMPLE_RATE, write_structured_signal
from airsync.daemon.daemon import DaemonConfig, ReceiverDaemon
from airsync.settings import get_receiver_settings
from airsync.shairport import generate_config, render_config_file

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def resolve_log_level(value: object) -> str | None:
    """Normalize a configured log level name, or None if it is not one."""
    level = str(value).upper()
    return level if level in LOG_LEVELS else None


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="airsync-receiver", description="AirSync receiver calibration service"
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=None,
        help="Logging level (default: INFO)",
    )
    sub = parser.add_subparsers(dest="command")

    daemon = sub.add_parser("daemon", help="Run the calibration HTTP service (default)")
    daemon.add_argument("--config-dir", default=None, help="Settings directory")
    daemon.add_argument("--name", default=None, help="Receiver name")
    daemon.add_argument("--id", dest="receiver_id", default=None, help="Receiver identifier")
    daemon.add_argument("--port", type=int, default=None, help="HTTP listen port")
    daemon.add_argument("--device", default=None, help="ALSA output device, e.g. hw:1,0")
    daemon.add_argument(
        "--shairport-config", default=None, help="Path of the shairport-sync config file"
    )
    daemon.add_argument("--playback", choices=PLAYBACK_BACKENDS, default=None)
    daemon.add_argument("--gain", type=float, default=None, help="Playback gain 0-1")
    daemon.add_argument(
        "--force-latency-ms",
        type=float,
        default=None,
        help="Apply this latency instead of every measurement (diagnostics)",
    )
    daemon.add_argument("--no-mdns", action="store_true", help="Do not advertise via mDNS")

    signal_cmd = sub.add_parser("generate-signal", help="Write the structured calibration WAV")
    signal_cmd.add_argument("path", type=Path)

    chirp = sub.add_parser("generate-chirp", help="Write a chirp burst WAV")
    chirp.add_argument("path", type=Path)
    chirp.add_argument("--sample-rate", type=int, default=SAMPLE_RATE)
    chirp.add_argument("--gain", type=float, default=1.0)

    config = sub.add_parser("generate-config", help="Write a shairport-sync config file")
    config.add_argument("path", type=Path)
    config.add_argument("name", nargs="?", default=None)
    config.add_argument("--device", default=None, help="ALSA output device, e.g. hw:0,0")

    sub.add_parser("list-audio-devices", help="List audio output devices")
    return parser


async def _run_daemon(args: argparse.Namespace) -> int:
    settings = await get_receiver_settings(getattr(args, "config_dir", None))
    if args.log_level is None and settings.log_level:
        level = resolve_log_level(settings.log_level)
        if level is not None:
            logging.getLogger().setLevel(level)
        else:
            logger.warning("Ignoring unknown log level %r in settings", settings.log_level)

    # Command-line values apply to this run only
    for attr, value in (
        ("name", getattr(args, "name", None)),
        ("listen_port", getattr(args, "port", None)),
        ("output_device", getattr(args, "device", None)),
        ("config_path", getattr(args, "shairport_config", None)),
        ("playback_backend", getattr(args, "playback", None)),
        ("playback_gain", getattr(args, "gain", None)),
    ):
        if value is not None:
            setattr(settings, attr, value)

    override = getattr(args, "force_latency_ms", None)
    if override is None:
        override = override_latency_from_env()

    daemon = ReceiverDaemon(
        DaemonConfig(
            settings=settings,
            receiver_id=getattr(args, "receiver_id", None),
            override_latency_ms=override,
            advertise=not getattr(args, "no_mdns", False),
        )
    )
    return await daemon.run()


def _generate_config(args: argparse.Namespace) -> int:
    config = generate_config(args.name)
    if args.device:
        config.output_device = args.device
    args.path.parent.mkdir(parents=True, exist_ok=True)
    args.path.write_text(render_config_file(config))
    print(f"Wrote shairport-sync config to {args.path}")  # noqa: T201
    return 0


def _list_audio_devices() -> int:
    for device in query_devices():
        default = " (default)" if device.is_default else ""
        print(  # noqa: T201
            f"{device.index}: {device.name} "
            f"[{device.output_channels}ch, {device.sample_rate:.0f}Hz]{default}"
        )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command-line interface."""
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level or "INFO", format=LOG_FORMAT)

    command = args.command or "daemon"
    try:
        if command == "daemon":
            return asyncio.run(_run_daemon(args))
        if command == "generate-signal":
            signal = write_structured_signal(args.path)
            print(f"Wrote {signal.path} and {signal.spec_path}")  # noqa: T201
            return 0
        if command == "generate-chirp":
            write_chirp_wav(args.path, ChirpConfig(), args.sample_rate, args.gain)
            print(f"Wrote chirp WAV to {args.path}")  # noqa: T201
            return 0
        if command == "generate-config":
            return _generate_config(args)
        if command == "list-audio-devices":
            return _list_audio_devices()
    except KeyboardInterrupt:
        return 130
    except OSError as err:
        logger.error("%s failed: %s", command, err)
        return 1
    return 2


if __name__ == "__main__":
    sys.exit(main())
