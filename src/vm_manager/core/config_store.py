"""
Passthrough Configuration Store

Persists the passthrough list and the connection settings as JSON.
The list is always written as a whole; there are no partial updates.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, List, Sequence, Tuple, Union

from common.exceptions import InvalidConfigError
from utils.atomic_write import atomic_write_json
from vm_manager.usb.devices import PassthroughDevice

logger = logging.getLogger(__name__)

CONFIG_ENV = "GUESTUSB_CONFIG"


def default_config_path() -> Path:
    """Config file location, overridable with $GUESTUSB_CONFIG."""
    override = os.environ.get(CONFIG_ENV)
    if override:
        return Path(override)
    return Path.home() / ".config" / "guestusb" / "usb-passthrough.json"


@dataclass
class PassthroughConfig:
    """Persisted settings."""
    domain: str = "windows"
    libvirt_uri: str = "qemu:///system"
    usb_ids_path: Optional[str] = None
    passed_through_devices: List[PassthroughDevice] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "domain": self.domain,
            "libvirt_uri": self.libvirt_uri,
            "usb_ids_path": self.usb_ids_path,
            "passed_through_devices": [d.to_dict() for d in self.passed_through_devices],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PassthroughConfig":
        """
        Create PassthroughConfig from dictionary.

        Raises:
            InvalidConfigError: If a field has the wrong shape
        """
        if not isinstance(data, dict):
            raise InvalidConfigError("<root>", type(data).__name__, "expected a JSON object")

        config = cls()
        if "domain" in data:
            config.domain = str(data["domain"])
        if "libvirt_uri" in data:
            config.libvirt_uri = str(data["libvirt_uri"])
        if data.get("usb_ids_path"):
            config.usb_ids_path = str(data["usb_ids_path"])

        devices = data.get("passed_through_devices", [])
        if not isinstance(devices, list):
            raise InvalidConfigError("passed_through_devices", devices, "expected a list")

        for entry in devices:
            try:
                config.passed_through_devices.append(PassthroughDevice.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                raise InvalidConfigError("passed_through_devices", entry, str(e)) from e

        return config


class PassthroughConfigStore:
    """
    JSON-backed config store.

    The file is read once on first access and rewritten atomically on
    every change.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else default_config_path()
        self._config: Optional[PassthroughConfig] = None
        self._lock = threading.RLock()

    @property
    def config(self) -> PassthroughConfig:
        with self._lock:
            if self._config is None:
                self._config = self.load()
            return self._config

    def load(self) -> PassthroughConfig:
        """
        Read the config file. A missing file yields the defaults.

        Raises:
            InvalidConfigError: If the file is not valid JSON or malformed
        """
        if not self.path.exists():
            logger.debug(f"No config at {self.path}, using defaults")
            return PassthroughConfig()

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise InvalidConfigError(str(self.path), "<file>", f"invalid JSON: {e}") from e

        config = PassthroughConfig.from_dict(data)
        logger.debug(
            f"Loaded config from {self.path} "
            f"({len(config.passed_through_devices)} passthrough devices)"
        )
        return config

    def save(self) -> None:
        with self._lock:
            atomic_write_json(self.path, self.config.to_dict())

    def get_passthrough_devices(self) -> Tuple[PassthroughDevice, ...]:
        with self._lock:
            return tuple(self.config.passed_through_devices)

    def set_passthrough_devices(self, devices: Sequence[PassthroughDevice]) -> None:
        """Replace the whole passthrough list and write it to disk."""
        with self._lock:
            updated = replace(self.config, passed_through_devices=list(devices))
            atomic_write_json(self.path, updated.to_dict())
            self._config = updated
