"""
Polyfield field device command line tool.

Sub-commands:
    probe HOST PORT              TCP reachability check
    edm-read                     one reliable (dual) EDM reading
    wind                         sample the wind gauge and average
    scoreboard MARK BIB ATTEMPT  show a result on the scoreboard
    flush-cache [--watch]        resubmit queued results now (or periodically)
"""

import sys
import time
import logging
import argparse
from typing import Dict, Optional

import config
from polyfield_core.errors import DeviceError
from polyfield_core.io.connection_manager import ConnectionManager, DeviceConfig, DeviceRole
from polyfield_core.io.transport import TransportConfig, TransportKind
from polyfield_core.domain.geometry import horizontal_distance
from polyfield_core.domain.wind_monitor import WindMonitor, WindMonitorConfig
from polyfield_core.metrics import get_metrics
from polyfield_core.reliability.dual_read import DualReadConfig, DualReadingSource
from polyfield_core.reliability.result_cache import (
    CacheFlushScheduler,
    ResultCache,
    ResultServerConfig,
    ResultSubmitter,
)
from polyfield_core.reliability.retry import RetryPolicy, connect_with_retry

# Logging
logging.basicConfig(
    level=getattr(logging, config.LOGGING_CONFIG["level"]),
    format=config.LOGGING_CONFIG["format"]
)
logger = logging.getLogger(__name__)


def build_device_config(role: str, overrides: Optional[Dict] = None,
                        read_timeout_s: Optional[float] = None) -> DeviceConfig:
    """Map a DEVICE_CONFIG entry (plus command line overrides) onto a DeviceConfig."""
    entry = dict(config.DEVICE_CONFIG[role])
    for key, value in (overrides or {}).items():
        if value is not None:
            entry[key] = value

    transport = TransportConfig(
        kind=TransportKind(entry["transport"]),
        address=entry["address"],
        port=entry.get("port"),
        baudrate=entry["baudrate"],
        connect_timeout_s=config.EDM_CONFIG["connect_timeout_s"],
    )
    timeouts = {} if read_timeout_s is None else {"read_timeout_s": read_timeout_s}
    return DeviceConfig(role=DeviceRole(role), protocol=entry["protocol"], transport=transport, **timeouts)


def _link_overrides(args) -> Dict:
    return {
        "transport": args.transport,
        "address": args.address,
        "port": args.port,
        "protocol": getattr(args, "protocol", None),
    }


def cmd_probe(args, manager: ConnectionManager) -> int:
    reachable = manager.probe(args.host, args.port, args.timeout)
    print(f"{args.host}:{args.port} {'reachable' if reachable else 'unreachable'}")
    return 0 if reachable else 1


def cmd_edm_read(args, manager: ConnectionManager) -> int:
    device_config = build_device_config(
        "edm", _link_overrides(args), config.EDM_CONFIG["read_timeout_s"]
    )
    connect_with_retry(manager, device_config, RetryPolicy(attempts=args.retries))

    source = DualReadingSource.from_manager(manager, DualReadConfig(
        tolerance_mm=config.EDM_CONFIG["tolerance_mm"],
        inter_read_delay_s=config.EDM_CONFIG["inter_read_delay_s"],
        read_timeout_s=config.EDM_CONFIG["read_timeout_s"],
    ))
    reading = source.read()
    hd_mm = horizontal_distance(reading.slope_distance_mm, reading.vertical_angle_deg)

    print(f"Slope distance:     {reading.slope_distance_mm:10.1f} mm")
    print(f"Vertical angle:     {reading.vertical_angle_deg:10.4f} deg")
    print(f"Horizontal angle:   {reading.horizontal_angle_deg:10.4f} deg")
    print(f"Horizontal distance:{hd_mm / 1000.0:10.3f} m")
    return 0


def cmd_wind(args, manager: ConnectionManager) -> int:
    device_config = build_device_config(
        "wind", _link_overrides(args), config.WIND_CONFIG["read_timeout_s"]
    )
    connect_with_retry(manager, device_config, RetryPolicy(attempts=args.retries))

    monitor = WindMonitor(WindMonitorConfig(
        max_samples=config.WIND_CONFIG["max_samples"],
        window_s=args.window or config.WIND_CONFIG["window_s"],
        poll_interval_s=config.WIND_CONFIG["poll_interval_s"],
    ))
    wind = monitor.measure(manager)
    if wind is None:
        print("No wind samples")
        return 1
    print(f"Wind: {wind:+.1f} m/s ({len(monitor)} samples)")
    return 0


def cmd_scoreboard(args, manager: ConnectionManager) -> int:
    device_config = build_device_config("scoreboard", _link_overrides(args))
    connect_with_retry(manager, device_config, RetryPolicy(attempts=args.retries))

    codec = manager.codec(DeviceRole.SCOREBOARD)
    if args.clear:
        frames = codec.encode_clear()
    else:
        frames = codec.encode_display(args.mark, args.bib, args.attempt)
    manager.send_frames(DeviceRole.SCOREBOARD, frames, config.SCOREBOARD_CONFIG["message_gap_s"])
    for frame in frames:
        print(frame.hex(" ").upper())
    return 0


def cmd_flush_cache(args, manager: ConnectionManager) -> int:
    server = config.RESULT_SERVER_CONFIG
    cache = ResultCache(args.cache or server["cache_path"])
    submitter = ResultSubmitter(
        ResultServerConfig(
            base_url=args.server or server["base_url"],
            connect_timeout_s=server["connect_timeout_s"],
            read_timeout_s=server["read_timeout_s"],
        ),
        cache,
    )
    if args.watch:
        scheduler = CacheFlushScheduler(submitter, server["flush_interval_s"])
        scheduler.start()
        try:
            while scheduler.is_running:
                time.sleep(1.0)
        except KeyboardInterrupt:
            logger.info("Stopping cache flush")
        finally:
            scheduler.stop()
        return 0

    submitted, failed = submitter.flush()
    meta = cache.metadata()
    print(f"Submitted: {submitted}, still queued: {meta.queued}, "
          f"consecutive failures: {meta.consecutive_failures}")
    return 0 if failed == 0 else 1


def _add_link_arguments(parser):
    parser.add_argument('--transport', choices=[kind.value for kind in TransportKind],
                        help='Link type (default from config)')
    parser.add_argument('--address', '-a', type=str, default=None,
                        help='Serial device path or host')
    parser.add_argument('--port', '-p', type=int, default=None,
                        help='TCP port')
    parser.add_argument('--retries', type=int, default=3,
                        help='Connect attempts')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Polyfield field device tool')
    parser.add_argument('--debug', '-d', action='store_true',
                        help='Enable debug logging')
    parser.add_argument('--metrics', action='store_true',
                        help='Print diagnostics counters on exit')
    sub = parser.add_subparsers(dest='command', required=True)

    probe = sub.add_parser('probe', help='TCP reachability check')
    probe.add_argument('host')
    probe.add_argument('port', type=int)
    probe.add_argument('--timeout', type=float, default=config.PROBE_CONFIG["timeout_s"])
    probe.set_defaults(handler=cmd_probe)

    edm = sub.add_parser('edm-read', help='One reliable EDM reading')
    _add_link_arguments(edm)
    edm.set_defaults(handler=cmd_edm_read)

    wind = sub.add_parser('wind', help='Sample and average the wind gauge')
    _add_link_arguments(wind)
    wind.add_argument('--protocol', choices=['wind-generic', 'wind-gill', 'wind-lynx', 'wind-nmea'])
    wind.add_argument('--window', type=float, default=None, help='Averaging window (s)')
    wind.set_defaults(handler=cmd_wind)

    board = sub.add_parser('scoreboard', help='Show a result on the scoreboard')
    _add_link_arguments(board)
    board.add_argument('mark', nargs='?', default='', help='Mark, e.g. 21.34')
    board.add_argument('bib', nargs='?', type=int, default=0)
    board.add_argument('attempt', nargs='?', type=int, default=0)
    board.add_argument('--clear', action='store_true', help='Blank the display')
    board.set_defaults(handler=cmd_scoreboard)

    flush = sub.add_parser('flush-cache', help='Resubmit cached results')
    flush.add_argument('--cache', type=str, default=None, help='Cache file')
    flush.add_argument('--server', type=str, default=None, help='Result server base URL')
    flush.add_argument('--watch', action='store_true',
                       help='Keep flushing at the configured interval until interrupted')
    flush.set_defaults(handler=cmd_flush_cache)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.command == 'scoreboard' and not args.clear and not args.mark:
        logger.error("scoreboard needs MARK BIB ATTEMPT or --clear")
        return 2

    manager = ConnectionManager()
    try:
        return args.handler(args, manager)
    except DeviceError as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    except ValueError as e:
        logger.error("Invalid %s arguments: %s", args.command, e)
        return 2
    finally:
        manager.disconnect_all()
        if args.metrics:
            print(get_metrics().format_summary())


if __name__ == "__main__":
    sys.exit(main())
