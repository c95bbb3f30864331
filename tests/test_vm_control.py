"""
Tests for the libvirt side: connection, USB hostdev control, guest state
and device XML templates.
"""

import pytest
from unittest.mock import MagicMock, patch

import libvirt

from common.exceptions import DomainNotFoundError, LibvirtConnectionError, VMControlError
from vm_manager.core.connection import LibvirtConnection
from vm_manager.core.guest_state import GuestStateMonitor
from vm_manager.core.vm_control import LibvirtUSBController, hostdev_attached
from vm_manager.templates.loader import TemplateLoader


DOMAIN_XML = """
<domain type='kvm'>
  <name>windows</name>
  <devices>
    <hostdev mode='subsystem' type='usb' managed='yes'>
      <source>
        <vendor id='0x046d'/>
        <product id='0xc52b'/>
      </source>
    </hostdev>
    <hostdev mode='subsystem' type='pci' managed='yes'>
      <source>
        <address domain='0x0000' bus='0x01' slot='0x00' function='0x0'/>
      </source>
    </hostdev>
  </devices>
</domain>
"""


def make_libvirt_error(message, code=None):
    error = libvirt.libvirtError(message)
    error.get_error_code = lambda: code
    return error


class TestHostdevAttached:
    """Tests for finding USB hostdevs in domain XML."""

    def test_found(self):
        assert hostdev_attached(DOMAIN_XML, 0x046d, 0xc52b)

    def test_other_device(self):
        assert not hostdev_attached(DOMAIN_XML, 0x046d, 0xc077)

    def test_invalid_xml(self):
        assert not hostdev_attached("<domain", 0x046d, 0xc52b)

    def test_hostdev_without_ids(self):
        xml = "<domain><devices><hostdev type='usb'><source/></hostdev></devices></domain>"
        assert not hostdev_attached(xml, 0x046d, 0xc52b)


class TestTemplateLoader:
    """Tests for device XML templates."""

    def test_render_usb_hostdev(self, temp_home):
        xml = TemplateLoader().render_usb_hostdev("046d", "c52b")

        assert "<vendor id='0x046d'/>" in xml
        assert "<product id='0xc52b'/>" in xml
        assert hostdev_attached(f"<domain><devices>{xml}</devices></domain>", 0x046d, 0xc52b)

    def test_user_override(self, temp_home):
        templates = temp_home / ".config/guestusb/templates"
        templates.mkdir(parents=True)
        (templates / "usb-hostdev.xml.j2").write_text("<custom vendor='{{ vendor_id }}'/>")

        assert TemplateLoader().render_usb_hostdev("046d", "c52b") == "<custom vendor='046d'/>"

    def test_additional_paths_first(self, temp_home, tmp_path):
        extra = tmp_path / "extra"
        extra.mkdir()
        (extra / "usb-hostdev.xml.j2").write_text("extra")

        assert TemplateLoader([extra]).render_usb_hostdev("046d", "c52b") == "extra"

    def test_missing_template(self, temp_home):
        assert TemplateLoader().render("nope.xml.j2") is None


class TestLibvirtUSBController:
    """Tests for attaching and detaching through libvirt."""

    @pytest.fixture
    def controller(self, mock_connection, temp_home):
        return LibvirtUSBController(mock_connection, "windows")

    def test_exists(self, controller, mock_domain):
        mock_domain.XMLDesc.return_value = DOMAIN_XML

        assert controller.exists(0x046d, 0xc52b)
        assert not controller.exists(0x0781, 0x5567)

    def test_exists_inactive_domain(self, controller, mock_domain):
        mock_domain.isActive.return_value = False

        assert not controller.exists(0x046d, 0xc52b)
        mock_domain.XMLDesc.assert_not_called()

    def test_add_live_only(self, controller, mock_domain):
        controller.add(0x046d, 0xc52b)

        xml, flags = mock_domain.attachDeviceFlags.call_args[0]
        assert "0x046d" in xml and "0xc52b" in xml
        assert flags == libvirt.VIR_DOMAIN_AFFECT_LIVE

    def test_remove(self, controller, mock_domain):
        controller.remove(0x046d, 0xc52b)

        xml, flags = mock_domain.detachDeviceFlags.call_args[0]
        assert "0xc52b" in xml
        assert flags == libvirt.VIR_DOMAIN_AFFECT_LIVE

    def test_add_failure_wrapped(self, controller, mock_domain):
        mock_domain.attachDeviceFlags.side_effect = make_libvirt_error("device busy")

        with pytest.raises(VMControlError) as exc_info:
            controller.add(0x046d, 0xc52b)

        assert exc_info.value.details["usb_id"] == "046d:c52b"
        assert isinstance(exc_info.value.cause, libvirt.libvirtError)

    def test_missing_domain_wrapped(self, controller, mock_connection):
        mock_connection.lookup_domain.side_effect = DomainNotFoundError("windows")

        with pytest.raises(VMControlError):
            controller.exists(0x046d, 0xc52b)


class TestGuestStateMonitor:
    """Tests for the guest online flag."""

    @pytest.fixture
    def monitor(self, mock_connection):
        return GuestStateMonitor(mock_connection, "windows")

    def test_starts_offline(self, monitor):
        assert monitor.is_online.value is False

    def test_start_registers_and_polls(self, monitor, mock_connection):
        monitor.start()

        mock_connection.register_domain_event.assert_called_once()
        assert monitor.is_online.value is True

    def test_stop_deregisters(self, monitor, mock_connection):
        monitor.start()
        monitor.stop()

        mock_connection.deregister_domain_event.assert_called_once_with(7)

    def test_refresh_shut_off(self, monitor, mock_domain):
        mock_domain.state.return_value = (libvirt.VIR_DOMAIN_SHUTOFF, 0)
        assert monitor.refresh() is False

    def test_refresh_paused_is_offline(self, monitor, mock_domain):
        mock_domain.state.return_value = (libvirt.VIR_DOMAIN_PAUSED, 0)
        assert monitor.refresh() is False

    def test_refresh_missing_domain(self, monitor, mock_connection):
        mock_connection.lookup_domain.side_effect = DomainNotFoundError("windows")
        assert monitor.refresh() is False

    def test_refresh_libvirt_error(self, monitor, mock_domain):
        mock_domain.state.side_effect = make_libvirt_error("connection reset")
        assert monitor.refresh() is False

    def test_refresh_libvirt_unreachable(self, monitor, mock_connection):
        mock_connection.lookup_domain.side_effect = LibvirtConnectionError("qemu:///system")
        monitor.is_online.set(True)

        assert monitor.refresh() is False
        assert monitor.is_online.value is False

    def test_lifecycle_events(self, monitor, mock_domain):
        seen = []
        monitor.is_online.subscribe(lambda old, new: seen.append(new))

        monitor._on_lifecycle_event(None, mock_domain, libvirt.VIR_DOMAIN_EVENT_STARTED, 0, None)
        monitor._on_lifecycle_event(None, mock_domain, libvirt.VIR_DOMAIN_EVENT_SUSPENDED, 0, None)
        monitor._on_lifecycle_event(None, mock_domain, libvirt.VIR_DOMAIN_EVENT_RESUMED, 0, None)
        monitor._on_lifecycle_event(None, mock_domain, libvirt.VIR_DOMAIN_EVENT_STOPPED, 0, None)

        assert seen == [True, False, True, False]

    def test_other_domain_ignored(self, monitor):
        other = MagicMock()
        other.name.return_value = "linux"

        monitor._on_lifecycle_event(None, other, libvirt.VIR_DOMAIN_EVENT_STARTED, 0, None)
        assert monitor.is_online.value is False

    def test_defined_event_ignored(self, monitor, mock_domain):
        monitor.is_online.set(True)
        monitor._on_lifecycle_event(None, mock_domain, libvirt.VIR_DOMAIN_EVENT_DEFINED, 0, None)
        assert monitor.is_online.value is True


class TestLibvirtConnection:
    """Tests for the connection wrapper."""

    @pytest.fixture
    def virt_conn(self, mock_domain):
        conn = MagicMock()
        conn.isAlive.return_value = 1
        conn.lookupByName.return_value = mock_domain
        conn.domainEventRegisterAny.return_value = 3
        return conn

    @pytest.fixture
    def connection(self, virt_conn):
        with patch.object(LibvirtConnection, "_start_event_loop"), \
             patch("libvirt.registerErrorHandler"), \
             patch("libvirt.open", return_value=virt_conn) as mock_open:
            connection = LibvirtConnection("qemu:///system")
            connection.mock_open = mock_open
            yield connection

    def test_connects_lazily(self, connection):
        assert not connection.is_connected
        connection.connect()
        assert connection.is_connected
        connection.mock_open.assert_called_once_with("qemu:///system")

    def test_connect_failure(self):
        with patch.object(LibvirtConnection, "_start_event_loop"), \
             patch("libvirt.registerErrorHandler"), \
             patch("libvirt.open", side_effect=make_libvirt_error("no socket")), \
             patch("time.sleep"):
            with pytest.raises(LibvirtConnectionError):
                LibvirtConnection("qemu:///system").connect()

    def test_event_loop_started_before_open(self, virt_conn):
        order = []
        with patch.object(LibvirtConnection, "_start_event_loop", side_effect=lambda: order.append("loop")), \
             patch("libvirt.registerErrorHandler"), \
             patch("libvirt.open", side_effect=lambda uri: order.append("open") or virt_conn):
            LibvirtConnection().connect()

        assert order == ["loop", "open"]

    def test_lookup_domain(self, connection, mock_domain):
        assert connection.lookup_domain("windows") is mock_domain

    def test_lookup_missing_domain(self, connection, virt_conn):
        virt_conn.lookupByName.side_effect = make_libvirt_error(
            "Domain not found", code=libvirt.VIR_ERR_NO_DOMAIN
        )

        with pytest.raises(DomainNotFoundError):
            connection.lookup_domain("windows")

    def test_lookup_other_error_propagates(self, connection, virt_conn):
        virt_conn.lookupByName.side_effect = make_libvirt_error(
            "internal error", code=libvirt.VIR_ERR_INTERNAL_ERROR
        )

        with pytest.raises(libvirt.libvirtError):
            connection.lookup_domain("windows")

    def test_register_and_deregister_events(self, connection, virt_conn):
        callback = MagicMock()

        callback_id = connection.register_domain_event(callback)
        assert callback_id == 3
        args = virt_conn.domainEventRegisterAny.call_args[0]
        assert args[1] == libvirt.VIR_DOMAIN_EVENT_ID_LIFECYCLE
        assert args[2] is callback

        connection.deregister_domain_event(callback_id)
        virt_conn.domainEventDeregisterAny.assert_called_once_with(3)

    def test_disconnect(self, connection, virt_conn):
        connection.connect()
        connection.register_domain_event(MagicMock())

        connection.disconnect()

        virt_conn.domainEventDeregisterAny.assert_called_once_with(3)
        virt_conn.close.assert_called_once()
        assert not connection.is_connected
