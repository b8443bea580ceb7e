# -*- coding: utf-8 -*-
from __future__ import annotations
import sys
import atexit

from remote_manager import APP_VERSION
from remote_manager.config_paths import get_logger
from remote_manager.lifecycle import LifecycleController, build_context
from remote_manager.system import (
    acquire_single_instance_lock,
    release_single_instance_lock,
    notify,
    notify_error,
    parse_cli_args,
    run_client_cli,
    run_headless,
    run_tray,
)

logger = get_logger(__name__)


def main(argv: list[str]) -> int:
    logger.info("Remote Manager starting up (version %s)", APP_VERSION)
    args = parse_cli_args(argv)
    logger.debug("Parsed CLI arguments: %s", args)

    # Client mode: talk to another host and exit
    if args.test or args.send:
        return run_client_cli(args)

    context = build_context(host=args.host, dry_run=args.dry_run)

    if args.show_ip:
        print(context.probe.discover())
        return 0

    # Single instance
    if not acquire_single_instance_lock():
        logger.warning("Another Remote Manager instance appears to be running; exiting")
        notify("Remote Manager is already running.")
        return 0

    controller = LifecycleController(context, notify=lambda title, message: notify(message, title),
                                     notify_error=notify_error)
    if args.fail_closed:
        logger.info("Fail-closed policy enabled: service stops when offline")
        controller.enable_fail_closed(args.grace)
    if args.dry_run:
        logger.warning("Dry-run mode: reboot/shutdown requests will only be logged")

    config = controller.initialize(port_override=args.port)
    logger.info("Settings loaded: port=%s auto_start=%s show_on_boot=%s",
                config.port, config.auto_start, config.show_on_boot)

    if args.headless:
        if not context.server.is_running:
            logger.error("Control server is not running; exiting")
            return 1
        logger.info("Running headless; press Ctrl+C to stop")
        run_headless(controller)
    else:
        logger.info("Launching system tray UI")
        try:
            run_tray(controller)
        finally:
            controller.shutdown_service()

    logger.info("Remote Manager shut down cleanly")
    return 0


if __name__ == "__main__":
    atexit.register(release_single_instance_lock)
    sys.exit(main(sys.argv))
