#!/usr/bin/env python3
"""guestusb - Module entry point."""
import sys

from vm_manager.usb.cli import main

if __name__ == "__main__":
    sys.exit(main())
