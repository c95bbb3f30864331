#!/usr/bin/env python3
"""
guestusb - Command Line Interface

Inspect connected USB devices and manage the guest passthrough list.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from common.exceptions import (
    DuplicateDeviceError,
    GuestUSBError,
    VMControlError,
)
from common.logging_config import setup_logging
from vm_manager.core.config_store import PassthroughConfigStore
from .devices import parse_usb_id
from .manager import USBPassthroughManager

logger = logging.getLogger(__name__)

# Root hubs and host-controller internals; never useful to pass through
SYSTEM_VENDORS = {
    0x1d6b,  # Linux Foundation (virtual root hubs)
}


def build_manager(args) -> USBPassthroughManager:
    """Composition root: the one manager instance for this process."""
    store = PassthroughConfigStore(args.config)
    return USBPassthroughManager.from_config(
        store,
        domain=args.domain,
        uri=args.uri,
        usb_ids_path=args.usb_ids,
        strict_ids=not args.allow_missing_ids,
    )


def cmd_list(args, manager: USBPassthroughManager) -> int:
    """Show connected devices."""
    devices = manager.refresh()
    shown = [d for d in devices if args.all or d.vendor_id not in SYSTEM_VENDORS]

    print(f"Connected USB devices: {len(shown)}")
    for device in shown:
        name = manager.stringify_device(device)
        marker = "*" if manager.contains(device) else " "
        print(f" {marker} {name}  (bus {device.bus:03d} device {device.address:03d})")

    if any(manager.contains(d) for d in shown):
        print("\n* = in passthrough list")
    return 0


def cmd_passthrough(args, manager: USBPassthroughManager) -> int:
    """Show the passthrough list."""
    manager.refresh()
    records = manager.passthrough_devices.value

    if not records:
        print("Passthrough list is empty")
        return 0

    print(f"Passthrough devices: {len(records)}")
    for record in records:
        state = "connected" if manager.is_connected(record) else "not connected"
        print(f"  {manager.stringify_record(record)}  [{state}]")
    return 0


def cmd_add(args, manager: USBPassthroughManager) -> int:
    """Add a connected device to the passthrough list."""
    vendor_id, product_id = parse_usb_id(args.usb_id)
    manager.refresh()

    device = manager.find_connected(vendor_id, product_id)
    if device is None:
        print(f"❌ No connected device with ID {args.usb_id}")
        return 1

    manager.refresh_guest()
    try:
        record = manager.add(device)
    except DuplicateDeviceError as e:
        print(f"❌ {e.message}")
        return 1
    except VMControlError as e:
        print(f"⚠️  Saved to passthrough list, but the VM refused the device: {e.message}")
        return 2

    print(f"✅ Added {manager.stringify_record(record)}")
    return 0


def cmd_remove(args, manager: USBPassthroughManager) -> int:
    """Remove a device from the passthrough list."""
    vendor_id, product_id = parse_usb_id(args.usb_id)

    record = manager.store.find(vendor_id, product_id)
    if record is None:
        print(f"❌ {args.usb_id} is not in the passthrough list")
        return 1

    manager.refresh_guest()
    try:
        manager.remove(record)
    except VMControlError as e:
        print(f"⚠️  Removed from passthrough list, but the VM still holds the device: {e.message}")
        return 2

    print(f"✅ Removed {manager.stringify_record(record)}")
    return 0


def cmd_watch(args, manager: USBPassthroughManager) -> int:
    """Run until interrupted, keeping the guest in sync."""
    stop = threading.Event()

    def _request_stop(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop.set()

    signal.signal(signal.SIGTERM, _request_stop)
    signal.signal(signal.SIGINT, _request_stop)

    manager.passthrough_devices.subscribe(
        lambda old, new: logger.info(f"Passthrough list now has {len(new)} devices")
    )

    with manager:
        stop.wait()
    return 0


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="guestusb",
        description="USB passthrough manager for libvirt guests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  guestusb list                 # Connected devices
  guestusb passthrough          # Devices handed to the guest
  guestusb add 046d:c52b        # Pass a device through
  guestusb remove 046d:c52b     # Stop passing it through
  guestusb --domain win11 watch # Follow hotplug events
        """
    )

    parser.add_argument("-c", "--config", type=Path, default=None,
                        help="Config file (default: ~/.config/guestusb/usb-passthrough.json)")
    parser.add_argument("-d", "--domain", default=None, help="libvirt domain name")
    parser.add_argument("--uri", default=None, help="libvirt connection URI")
    parser.add_argument("--usb-ids", type=Path, default=None, help="Path to usb.ids")
    parser.add_argument("--allow-missing-ids", action="store_true",
                        help="Continue without usb.ids if it cannot be read")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", type=Path, default=None, help="Also log to this file")
    parser.add_argument("--json-logs", action="store_true", help="JSON format for the log file")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    list_parser = subparsers.add_parser("list", help="List connected USB devices")
    list_parser.add_argument("-a", "--all", action="store_true",
                             help="Include root hubs")
    list_parser.set_defaults(func=cmd_list)

    pt_parser = subparsers.add_parser("passthrough", help="Show the passthrough list")
    pt_parser.set_defaults(func=cmd_passthrough)

    add_parser = subparsers.add_parser("add", help="Add a device to the passthrough list")
    add_parser.add_argument("usb_id", help="Device ID as VID:PID")
    add_parser.set_defaults(func=cmd_add)

    remove_parser = subparsers.add_parser("remove", help="Remove a device from the passthrough list")
    remove_parser.add_argument("usb_id", help="Device ID as VID:PID")
    remove_parser.set_defaults(func=cmd_remove)

    watch_parser = subparsers.add_parser("watch", help="Keep the guest in sync until interrupted")
    watch_parser.set_defaults(func=cmd_watch)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        log_file=args.log_file,
        json_logs=args.json_logs,
    )

    if args.command is None:
        args.func = cmd_list
        args.all = False

    try:
        manager = build_manager(args)
        return args.func(args, manager)
    except ValueError as e:
        print(f"❌ {e}")
        return 1
    except GuestUSBError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"❌ {e.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
