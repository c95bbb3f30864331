"""
Device XML Template Loader

Loads libvirt device XML templates, letting users override the packaged
ones from their config directory.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, List

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, StrictUndefined, Template, TemplateNotFound

logger = logging.getLogger(__name__)

USB_HOSTDEV_TEMPLATE = "usb-hostdev.xml.j2"


class TemplateLoader:
    """
    Loads device XML templates from multiple locations.

    Search order:
    1. User templates (~/.config/guestusb/templates)
    2. Packaged templates (this directory)
    """

    PACKAGE_PATH = Path(__file__).parent

    def __init__(self, additional_paths: Optional[List[Path]] = None):
        self._paths = list(additional_paths or [])
        self._paths.append(Path.home() / ".config/guestusb/templates")
        self._paths.append(self.PACKAGE_PATH)

        self._env = self._create_environment()

    def _create_environment(self) -> Environment:
        """Create Jinja2 environment with all existing template paths."""
        loaders = []

        for path in self._paths:
            if path.is_dir():
                loaders.append(FileSystemLoader(str(path)))
                logger.debug(f"Added template path: {path}")

        return Environment(
            loader=ChoiceLoader(loaders),
            autoescape=False,
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def get_template(self, name: str) -> Optional[Template]:
        """
        Get a template by name.

        Returns:
            Template object or None
        """
        try:
            return self._env.get_template(name)
        except TemplateNotFound:
            logger.warning(f"Template not found: {name}")
            return None

    def render(self, name: str, **variables) -> Optional[str]:
        """
        Render a template with variables.

        Returns:
            Rendered XML string or None if the template does not exist
        """
        template = self.get_template(name)
        if template:
            return template.render(**variables)
        return None

    def render_usb_hostdev(self, vendor_hex: str, product_hex: str) -> Optional[str]:
        """Render the <hostdev> element for a USB device."""
        return self.render(USB_HOSTDEV_TEMPLATE, vendor_id=vendor_hex, product_id=product_hex)
