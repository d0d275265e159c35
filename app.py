# -*- coding: utf-8 -*-
# -----------------------------------------------------------------------------
# app.py - Command line front end for the NexStar driver
#
# Python Compatibility: Requires Python 3.7 or later
# GitHub: https://github.com/ASCOMInitiative/AlpycaDevice
#
# -----------------------------------------------------------------------------
# MIT License
#
# Copyright (c) 2022-2024 Bob Denny
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.
# -----------------------------------------------------------------------------
#
import argparse
import sys
import threading
import time
import traceback
from datetime import datetime, timezone
from typing import List, Optional

import log
from NexStarConfig import NexStarConfig, NexStarConfigError
from NexStarDevice import GotoCancelledError, GotoTimeoutError, NexStarDevice
from nexstar_serial import NexStarSerialError
from nexstar_types import Direction, SlewRate, TrackMode

# Set by main() so the last-chance handler knows whether to dump tracebacks
_verbose = False


def custom_excepthook(exc_type, exc_value, exc_traceback):
    """Last-chance exception handler

    Caution:
        Hook this only after the logger is set up!

    Makes sure an unhandled exception ends up in the log file rather than
    only on stderr. With --verbose the full traceback is logged too.

    Args:
        exc_type: Exception class
        exc_value: Exception instance
        exc_traceback: Traceback object
    """
    # Do not print exception when user cancels the program
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return

    log.logger.error(f'An uncaught {exc_type.__name__} exception occurred:')
    log.logger.error(exc_value)

    if _verbose and exc_traceback:
        format_exception = traceback.format_tb(exc_traceback)
        for line in format_exception:
            log.logger.error(repr(line))


def _direction(value: str) -> Direction:
    try:
        return Direction[value.upper()]
    except KeyError:
        raise argparse.ArgumentTypeError(f"invalid direction: {value}")


def _track_mode(value: str) -> TrackMode:
    try:
        return TrackMode[value.upper()]
    except KeyError:
        raise argparse.ArgumentTypeError(f"invalid tracking mode: {value}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='nexstar', description='Celestron NexStar mount control'
    )
    parser.add_argument('-p', '--port', help='Serial port (default: from config)')
    parser.add_argument('-c', '--config', help='Path to nexstar.toml')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Debug logging to stdout')

    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('info', help='Identify controller, model and motor firmware')

    position = subparsers.add_parser('position', help='Report current position')
    position.add_argument('--horizontal', action='store_true',
                          help='Report azimuth/altitude instead of RA/Dec')

    goto = subparsers.add_parser('goto', help='Slew to a position and wait')
    goto.add_argument('first', type=float, help='RA in hours, or azimuth in degrees')
    goto.add_argument('second', type=float, help='Dec or altitude in degrees')
    goto.add_argument('--horizontal', action='store_true',
                      help='Target is azimuth/altitude')
    goto.add_argument('--tolerance', type=float, help='Arrival tolerance in degrees')
    goto.add_argument('--timeout', type=float, help='Give up after this many seconds')

    sync = subparsers.add_parser('sync', help='Sync the mount to RA/Dec')
    sync.add_argument('ra', type=float, help='RA in hours')
    sync.add_argument('dec', type=float, help='Dec in degrees')

    move = subparsers.add_parser('move', help='Move one axis at a fixed rate')
    move.add_argument('direction', type=_direction, help='north, south, east or west')
    move.add_argument('rate', type=int, choices=range(1, 10), help='Slew rate 1-9')
    move.add_argument('--duration', type=float, default=1.0,
                      help='Seconds to move before stopping (default: 1.0)')

    pulse = subparsers.add_parser('pulse', help='Send a guiding pulse')
    pulse.add_argument('direction', type=_direction, help='north, south, east or west')
    pulse.add_argument('rate', type=int, help='Guide rate, percent of sidereal')
    pulse.add_argument('duration', type=int, help='Pulse length in centiseconds')

    track = subparsers.add_parser('track', help='Get or set the tracking mode')
    track.add_argument('mode', nargs='?', type=_track_mode,
                       help='off, alt_az, eq_north or eq_south')

    subparsers.add_parser('abort', help='Stop all motion')

    location = subparsers.add_parser('location', help='Set the observing site')
    location.add_argument('longitude', type=float, help='Degrees east')
    location.add_argument('latitude', type=float, help='Degrees north')

    set_time = subparsers.add_parser('time', help='Set the controller clock')
    set_time.add_argument('when', nargs='?',
                          help='UTC time as ISO 8601 (default: now)')
    set_time.add_argument('--utc-offset', type=float, default=0.0,
                          help='Local time zone offset in hours')

    subparsers.add_parser('hibernate', help='Put the mount into hibernation')
    subparsers.add_parser('wakeup', help='Wake the mount from hibernation')

    return parser


def _load_config(path: Optional[str]) -> Optional[NexStarConfig]:
    """Load the configuration, falling back to defaults if nexstar.toml is absent."""
    try:
        return NexStarConfig(path)
    except NexStarConfigError as ex:
        if path is not None:
            raise
        print(f"No usable configuration ({ex}), using defaults", file=sys.stderr)
        return None


def _goto(device: NexStarDevice, args, logger) -> bool:
    """Run a goto on the worker thread so Ctrl-C can cancel it cleanly."""
    cancel_event = threading.Event()
    kwargs = dict(tolerance=args.tolerance, timeout=args.timeout, cancel_event=cancel_event)

    if args.horizontal:
        future = device.start_goto_horizontal(args.first, args.second, **kwargs)
    else:
        future = device.start_goto_equatorial(args.first, args.second, **kwargs)

    while True:
        try:
            return future.result()
        except KeyboardInterrupt:
            logger.info('Goto interrupted by user')
            cancel_event.set()


def run_command(device: NexStarDevice, args, logger) -> int:
    """Execute one sub-command against a connected mount."""
    command = args.command

    if command == 'info':
        identity = device.identify()
        print(device.firmware_report(identity))
        print(f"Aligned: {device.check_aligned()}")

    elif command == 'position':
        if args.horizontal:
            az, alt = device.get_horizontal()
            print(f"Az {az:.6f}  Alt {alt:.6f}")
        else:
            ra, dec = device.get_equatorial()
            print(f"RA {ra:.6f}h  Dec {dec:.6f}")
        print(f"Slewing: {device.is_slewing()}")

    elif command == 'goto':
        try:
            arrived = _goto(device, args, logger)
        except GotoCancelledError:
            print('Goto cancelled, mount stopped')
            return 1
        except GotoTimeoutError:
            print('Goto timed out, mount stopped')
            return 1
        print('On target' if arrived else 'Goto finished off target')
        return 0 if arrived else 1

    elif command == 'sync':
        device.sync(args.ra, args.dec)

    elif command == 'move':
        device.move(args.direction, SlewRate(args.rate))
        try:
            time.sleep(args.duration)
        finally:
            device.stop(args.direction)

    elif command == 'pulse':
        device.send_pulse(args.direction, args.rate, args.duration)
        while device.get_pulse_status(args.direction):
            time.sleep(0.01)

    elif command == 'track':
        if args.mode is None:
            mode = device.get_track_mode()
            print(mode.name if isinstance(mode, TrackMode) else f"Unknown ({mode})")
        else:
            device.set_track_mode(args.mode)

    elif command == 'abort':
        device.abort()

    elif command == 'location':
        device.set_location(args.longitude, args.latitude)

    elif command == 'time':
        when = args.when or datetime.now(timezone.utc)
        device.set_datetime(when, args.utc_offset)

    elif command == 'hibernate':
        device.hibernate()

    elif command == 'wakeup':
        device.wakeup()

    return 0


# ===========
# APP STARTUP
# ===========
def main(argv: Optional[List[str]] = None) -> int:
    """Application startup"""
    global _verbose

    args = build_parser().parse_args(argv)
    _verbose = args.verbose

    try:
        config = _load_config(args.config)
    except NexStarConfigError as ex:
        print(f"Configuration error: {ex}", file=sys.stderr)
        return 2

    logger = log.init_logging(config, verbose=args.verbose)

    # -----------------------------
    # Last-Chance Exception Handler
    # -----------------------------
    sys.excepthook = custom_excepthook

    logger.info(f'==STARTUP== nexstar {args.command}. Time stamps are UTC.')

    with NexStarDevice(logger, config) as device:
        try:
            if not device.connect(args.port):
                print('Mount did not respond', file=sys.stderr)
                return 1
            return run_command(device, args, logger)
        except (NexStarSerialError, ValueError) as ex:
            logger.error(f'{args.command} failed: {ex}')
            print(f'Error: {ex}', file=sys.stderr)
            return 1


# ========================
if __name__ == '__main__':
    sys.exit(main())
# ========================
