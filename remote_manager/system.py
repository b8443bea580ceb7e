# -*- coding: utf-8 -*-
from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime, timezone
from typing import Optional, TYPE_CHECKING

from remote_manager import APP_NAME, APP_VERSION
from remote_manager.client import COMMANDS, parse_server_target, send_command, test_connection
from remote_manager.config_paths import DEFAULT_PORT, get_config_dir, get_logger, get_logs_dir
from remote_manager.errors import BindError, ValidationError

if TYPE_CHECKING:
    import pystray
    from PIL import Image
    from remote_manager.lifecycle import LifecycleController

logger = get_logger(__name__)

ERROR_LOG_FILENAME = "RemoteManager-error.log"
LOCK_FILENAME = "RemoteManager.lock"
ICON_SIZE = 64

instance_lock_handle: Optional[object] = None
tray_icon: Optional["pystray.Icon"] = None

# ---------------- Notifications / logging ----------------
def notify(message: str, title: str = APP_NAME) -> None:
    """Show a tray balloon when the tray is up, otherwise print to the console."""
    logger.info("%s: %s", title, message)
    icon = tray_icon
    if icon is not None:
        try:
            icon.notify(message, title)
            return
        except Exception:
            logger.exception("Failed to display notification '%s': %s", title, message)
    try:
        print(f"{title}: {message}")
    except Exception:
        logger.exception("Failed to print fallback notification '%s'", title)


def write_error_log(context: str, snippet: str) -> None:
    try:
        error_path = get_logs_dir() / ERROR_LOG_FILENAME
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        with error_path.open("a", encoding="utf-8") as handle:
            handle.write(f"[{timestamp}] {context}\n{snippet}\n\n")
    except Exception:
        logger.exception("Failed to write error log entry")


def notify_error(context: str, details: str) -> None:
    snippet = (details or "").strip() or "Unknown error"
    logger.error("%s: %s", context, snippet)
    write_error_log(context, snippet)
    notify(f"{context}\n{snippet}", title=f"{APP_NAME} Error")


# ---------------- Tray ----------------
def create_icon_image() -> "Image.Image":
    """Draw the power-symbol tray icon in memory."""
    from PIL import Image, ImageDraw

    image = Image.new("RGBA", (ICON_SIZE, ICON_SIZE), (0, 0, 0, 0))
    draw = ImageDraw.Draw(image)
    draw.ellipse((2, 2, ICON_SIZE - 3, ICON_SIZE - 3), fill=(33, 150, 243, 255))
    draw.arc((16, 16, ICON_SIZE - 17, ICON_SIZE - 17), start=300, end=240, fill="white", width=5)
    draw.line((ICON_SIZE // 2, 12, ICON_SIZE // 2, ICON_SIZE // 2), fill="white", width=5)
    return image


def tray_title(controller: "LifecycleController") -> str:
    port = controller.context.server.port
    if port is None:
        return f"{APP_NAME} (stopped)"
    return f"{APP_NAME} (port {port})"


def prompt_for_port(current: int) -> Optional[int]:
    import tkinter as tk
    from tkinter import simpledialog

    root = tk.Tk()
    root.withdraw()
    try:
        return simpledialog.askinteger(
            APP_NAME, "Listening port (1-65535):",
            initialvalue=current, minvalue=1, maxvalue=65535, parent=root,
        )
    finally:
        root.destroy()


def change_port_interactive(controller: "LifecycleController", port: Optional[int]) -> bool:
    """Apply a port chosen by the operator; failures become notifications."""
    if port is None:
        return False
    try:
        config = controller.change_port(port)
    except ValidationError as exc:
        notify_error("Invalid Port", str(exc))
        return False
    except BindError:
        # already reported by the controller
        return False
    notify(f"Server running on port {config.port}")
    return True


def build_menu(controller: "LifecycleController"):
    import pystray

    def on_show_address(icon, item):
        controller.announce()

    def on_change_port(icon, item):
        if change_port_interactive(controller, prompt_for_port(controller.config.port)):
            icon.title = tray_title(controller)

    def on_toggle_autostart(icon, item):
        controller.set_auto_start(not controller.config.auto_start)

    def on_toggle_show_on_boot(icon, item):
        controller.set_show_on_boot(not controller.config.show_on_boot)

    def on_exit(icon, item):
        controller.shutdown_service()

    return pystray.Menu(
        pystray.MenuItem("Show address", on_show_address, default=True),
        pystray.MenuItem("Change port...", on_change_port),
        pystray.MenuItem("Start at login", on_toggle_autostart,
                         checked=lambda item: controller.config.auto_start),
        pystray.MenuItem("Show address at startup", on_toggle_show_on_boot,
                         checked=lambda item: controller.config.show_on_boot),
        pystray.Menu.SEPARATOR,
        pystray.MenuItem("Exit", on_exit),
    )


def run_tray(controller: "LifecycleController") -> None:
    """Block in the tray loop until the service shuts down."""
    global tray_icon
    import pystray

    icon = pystray.Icon(APP_NAME, create_icon_image(), tray_title(controller), menu=build_menu(controller))
    controller.add_exit_callback(icon.stop)
    tray_icon = icon
    try:
        icon.run()
    finally:
        tray_icon = None


def run_headless(controller: "LifecycleController") -> None:
    try:
        while not controller.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted; stopping")
        controller.shutdown_service()

# ---------------- Startup / single-instance ----------------
def _lock_file(handle) -> bool:
    """Take a non-blocking exclusive lock on the first byte of ``handle``."""
    handle.seek(0)
    try:
        if sys.platform.startswith("win"):
            import msvcrt
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl
            fcntl.lockf(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        return False
    return True


def _unlock_file(handle) -> None:
    handle.seek(0)
    if sys.platform.startswith("win"):
        import msvcrt
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        import fcntl
        fcntl.lockf(handle.fileno(), fcntl.LOCK_UN)


def acquire_single_instance_lock() -> bool:
    """Claim the per-user lock file; False means another service owns it."""
    global instance_lock_handle
    if instance_lock_handle is not None:
        return True

    lock_path = get_config_dir() / LOCK_FILENAME
    try:
        handle = open(lock_path, "a+", encoding="utf-8")
    except OSError as exc:
        logger.warning("Cannot open lock file %s: %s", lock_path, exc)
        return False

    if not _lock_file(handle):
        logger.info("%s is already running (lock held at %s)", APP_NAME, lock_path)
        handle.close()
        return False

    pid = os.getpid()
    try:
        handle.truncate(0)
        handle.write(str(pid))
        handle.flush()
    except OSError as exc:
        # lock is held either way
        logger.warning("Could not record PID %s in %s: %s", pid, lock_path, exc)
    instance_lock_handle = handle
    logger.info("Holding instance lock %s (pid %s)", lock_path, pid)
    return True


def release_single_instance_lock() -> None:
    global instance_lock_handle
    handle, instance_lock_handle = instance_lock_handle, None
    if handle is None:
        return

    try:
        _unlock_file(handle)
    except OSError:
        logger.exception("Failed to unlock %s", LOCK_FILENAME)
    finally:
        handle.close()

    lock_path = get_config_dir() / LOCK_FILENAME
    try:
        lock_path.unlink(missing_ok=True)
    except OSError:
        logger.exception("Failed to remove %s", lock_path)
    else:
        logger.info("Released instance lock %s", lock_path)

# ---------------- CLI ----------------
def _port_arg(value: str) -> int:
    try:
        port = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("port must be a number") from exc
    if port < 1 or port > 65535:
        raise argparse.ArgumentTypeError("port must be between 1 and 65535")
    return port


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog=APP_NAME, description="Remote reboot/shutdown service")
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    parser.add_argument("--port", type=_port_arg, help="Listen on PORT (saved for later runs)")
    parser.add_argument("--host", default="0.0.0.0", help="Address to bind (default: all interfaces)")
    parser.add_argument("--headless", action="store_true", help="Run without a tray icon")
    parser.add_argument("--dry-run", action="store_true", help="Log power actions instead of running them")
    parser.add_argument("--fail-closed", action="store_true",
                        help="Stop the service when no internet connection is detected")
    parser.add_argument("--grace", type=float, default=None, metavar="SECONDS",
                        help="Delay before a fail-closed shutdown (default: 5)")
    parser.add_argument("--show-ip", action="store_true", help="Print the address clients should use and exit")
    parser.add_argument("--test", metavar="HOST[:PORT]", help="Check that a Remote Manager host answers")
    parser.add_argument("--send", choices=COMMANDS, help="Send a power command to --target")
    parser.add_argument("--target", metavar="HOST[:PORT]", help=f"Host for --send (default port {DEFAULT_PORT})")
    args = parser.parse_args(argv[1:])
    if args.send and not args.target:
        parser.error("--send requires --target")
    return args


def run_client_cli(args: argparse.Namespace) -> int:
    """Handle --test / --send; returns a process exit code."""
    try:
        if args.test:
            host, port = parse_server_target(args.test)
            ok, message = test_connection(host, port)
        else:
            host, port = parse_server_target(args.target)
            ok, message = send_command(host, port, args.send)
    except ValueError as exc:
        print(f"Invalid target: {exc}", file=sys.stderr)
        return 2
    print(message, file=sys.stdout if ok else sys.stderr)
    return 0 if ok else 1
