"""
Pytest configuration and shared fixtures for guestusb tests.

Provides fakes for the host, the guest and the VM control channel.
"""

import os
import pytest
from unittest.mock import MagicMock, patch
from pathlib import Path
from typing import List, Set, Tuple
import sys

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from common.observable import Observable
from vm_manager.core.vm_control import VMControlClient
from vm_manager.usb.devices import DeviceStrings, LiveDevice


SAMPLE_USB_IDS = """\
#
#	List of USB ID's
#
# Syntax:
# vendor  vendor_name
#	device  device_name				<-- single tab
#		interface  interface_name		<-- two tabs

046d  Logitech
	c52b  Unifying Receiver
		0000  Receiver interface
	C077  M105 Optical Mouse
1d6b  Linux Foundation
	0002  2.0 root hub
	0003  3.0 root hub
1234  Vendor Without Products

# List of known device classes, subclasses and protocols
C 00  (Defined at Interface level)
C 01  Audio
	01  Control Device
"""


# ============ Environment Fixtures ============

@pytest.fixture
def temp_home(tmp_path: Path):
    """Provide a temporary home directory for tests."""
    old_home = os.environ.get('HOME')
    os.environ['HOME'] = str(tmp_path)

    (tmp_path / ".config/guestusb").mkdir(parents=True)

    yield tmp_path

    if old_home:
        os.environ['HOME'] = old_home
    else:
        os.environ.pop('HOME', None)


@pytest.fixture
def usb_ids_file(tmp_path: Path) -> Path:
    """A small usb.ids file."""
    path = tmp_path / "usb.ids"
    path.write_text(SAMPLE_USB_IDS)
    return path


@pytest.fixture
def usb_database(usb_ids_file):
    from vm_manager.usb.usb_ids import USBIdDatabase
    return USBIdDatabase.open(usb_ids_file)


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "config" / "usb-passthrough.json"


@pytest.fixture
def config_store(config_path):
    from vm_manager.core.config_store import PassthroughConfigStore
    return PassthroughConfigStore(config_path)


# ============ Host / Guest Fakes ============

class FakeVM(VMControlClient):
    """Records control calls and tracks what is attached."""

    def __init__(self):
        self.attached: Set[Tuple[int, int]] = set()
        self.calls: List[Tuple[str, int, int]] = []
        self.fail_on: Set[str] = set()

    def exists(self, vendor_id, product_id):
        self.calls.append(("exists", vendor_id, product_id))
        return (vendor_id, product_id) in self.attached

    def add(self, vendor_id, product_id):
        self.calls.append(("add", vendor_id, product_id))
        self._maybe_fail("attach", vendor_id, product_id)
        self.attached.add((vendor_id, product_id))

    def remove(self, vendor_id, product_id):
        self.calls.append(("remove", vendor_id, product_id))
        self._maybe_fail("detach", vendor_id, product_id)
        self.attached.discard((vendor_id, product_id))

    def count(self, operation: str) -> int:
        return sum(1 for c in self.calls if c[0] == operation)

    def _maybe_fail(self, operation, vendor_id, product_id):
        if operation in self.fail_on:
            from common.exceptions import VMControlError
            raise VMControlError(operation, f"{vendor_id:04x}:{product_id:04x}", "simulated failure")


class FakeGuest:
    """Guest online signal controlled by the test."""

    def __init__(self, online: bool = False):
        self.is_online = Observable(False)
        self._online_on_start = online
        self.started = False

    def start(self):
        self.started = True
        self.refresh()

    def stop(self):
        self.started = False

    def refresh(self):
        self.is_online.set(self._online_on_start)
        return self._online_on_start

    def go_online(self):
        self._online_on_start = True
        self.is_online.set(True)

    def go_offline(self):
        self._online_on_start = False
        self.is_online.set(False)


class FakeScanner:
    """Host device list controlled by the test."""

    def __init__(self, devices=()):
        self.devices = list(devices)
        self.scans = 0

    def scan_all(self):
        self.scans += 1
        return tuple(self.devices)


@pytest.fixture
def fake_vm():
    return FakeVM()


@pytest.fixture
def fake_guest():
    return FakeGuest()


@pytest.fixture
def online_guest():
    """Guest that is already running when the manager starts."""
    return FakeGuest(online=True)


@pytest.fixture
def logitech_receiver():
    return LiveDevice(vendor_id=0x046d, product_id=0xc52b, bus=1, address=3)


@pytest.fixture
def acme_widget():
    """A device missing from usb.ids."""
    return LiveDevice(vendor_id=0xabcd, product_id=0x1234, bus=1, address=7)


@pytest.fixture
def fake_scanner(logitech_receiver, acme_widget):
    return FakeScanner([logitech_receiver, acme_widget])


@pytest.fixture
def string_query():
    """Live fallback that knows the Acme widget's manufacturer only."""
    def query(vendor_hex, product_hex):
        if (vendor_hex, product_hex) == ("abcd", "1234"):
            return DeviceStrings(manufacturer="Acme", product=None)
        return DeviceStrings()
    return MagicMock(side_effect=query)


@pytest.fixture
def resolver(usb_database, string_query):
    from vm_manager.usb.strings import DeviceStringResolver
    return DeviceStringResolver(usb_database, string_query)


@pytest.fixture
def devices_observable(fake_scanner):
    return Observable(fake_scanner.scan_all())


@pytest.fixture
def store(config_store, resolver, fake_vm, devices_observable):
    from vm_manager.usb.passthrough import PassthroughStore
    return PassthroughStore(config_store, resolver, fake_vm, devices_observable)


# ============ Libvirt Fixtures ============

@pytest.fixture
def mock_domain():
    """Mock libvirt domain."""
    domain = MagicMock()
    domain.name.return_value = "windows"
    domain.isActive.return_value = True
    domain.state.return_value = (1, 0)  # Running
    domain.XMLDesc.return_value = "<domain><devices/></domain>"
    return domain


@pytest.fixture
def mock_connection(mock_domain):
    """Mock LibvirtConnection that always finds mock_domain."""
    connection = MagicMock()
    connection.lookup_domain.return_value = mock_domain
    connection.register_domain_event.return_value = 7
    return connection


# ============ Subprocess Fixtures ============

@pytest.fixture
def mock_subprocess():
    """Mock subprocess.run for tests."""
    with patch('subprocess.run') as mock_run:
        mock_run.return_value = MagicMock(
            returncode=0,
            stdout="",
            stderr="",
        )
        yield mock_run
