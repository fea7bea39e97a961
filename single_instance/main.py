#!/usr/bin/env python3
"""
Demo programs for the single instance lock.

    python -m single_instance.main basic
    python -m single_instance.main param "some value"

Run the same command in two terminals: the first one becomes the primary
instance, the second one notices it and exits (in ``param`` mode after
forwarding its value to the primary).
"""
import argparse
import logging
import os
import signal
import sys
import threading
from dataclasses import replace
from typing import Callable, Optional

from .config import ConfigError, SingleInstanceCfg, load_config
from .instance_flow import SingleInstance, request
from .utils import read_line, write_line

DEFAULT_PARAMETER = "HELLO WORLD!"

_LOG_FMT = "%(asctime)s %(levelname)-8s %(message)s"

logger = logging.getLogger("single-instance-demo")


def init_logging(level: Optional[str] = None):
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=_LOG_FMT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _register_signal_handlers(stop_event: threading.Event) -> None:
    def shutdown_handler(*_a):
        logger.info("Shutdown signal received, releasing instance...")
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown_handler)
    signal.signal(signal.SIGTERM, shutdown_handler)


def wait_for_enter(stop_event: threading.Event) -> None:
    """Block until ENTER is pressed or stop_event is set."""
    def _read_stdin():
        sys.stdin.readline()
        stop_event.set()

    threading.Thread(target=_read_stdin, daemon=True, name="StdinReader").start()
    stop_event.wait()


def _run_as_primary(instance: SingleInstance, wait_for_exit: Callable[[], None]) -> int:
    print("There is no instance currently running so we can go ahead:")
    print("Doing some cool stuff, press ENTER key to stop...")
    try:
        wait_for_exit()
    finally:
        instance.release()
    print("Finished, now another instance can run.")
    return 0


def run_basic(cfg: SingleInstanceCfg, wait_for_exit: Callable[[], None]) -> int:
    instance = request(config=cfg)
    if instance is None:
        print("There is already an instance running so we close.")
        return 1
    return _run_as_primary(instance, wait_for_exit)


def run_parameter_passing(cfg: SingleInstanceCfg,
                          parameter: str,
                          wait_for_exit: Callable[[], None]) -> int:
    def send_parameter(sock):
        write_line(sock, parameter)

    def receive_parameter(sock):
        received = read_line(sock)
        print(f'Param received: "{received}"')

    instance = request(
        request_handler=send_parameter,
        response_handler=receive_parameter,
        config=cfg,
    )
    if instance is None:
        print("There is already an instance running so we close.")
        print("But we sent it the param we received.")
        return 1
    return _run_as_primary(instance, wait_for_exit)


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Single instance lock demos")
    p.add_argument(
        "-c",
        "--config",
        default=os.environ.get("SINGLE_INSTANCE_CONFIG"),
        help="Path to an INI file with a [single_instance] section",
    )
    p.add_argument("--port", type=int, default=None, help="Coordination port")
    p.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    sub = p.add_subparsers(dest="mode", required=True)
    sub.add_parser("basic", help="Plain single instance check")
    param = sub.add_parser("param", help="Forward a value to the running instance")
    param.add_argument("value", nargs="?", default=DEFAULT_PARAMETER)
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    init_logging(args.log_level)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 2
    if args.port is not None:
        if not 1 <= args.port <= 65535:
            logger.error("Invalid port: %s", args.port)
            return 2
        cfg = replace(cfg, port=args.port)

    stop_event = threading.Event()
    _register_signal_handlers(stop_event)

    def wait_for_exit():
        wait_for_enter(stop_event)

    if args.mode == "param":
        return run_parameter_passing(cfg, args.value, wait_for_exit)
    return run_basic(cfg, wait_for_exit)


if __name__ == "__main__":
    sys.exit(main())
