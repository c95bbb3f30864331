"""
guestusb Device Templates

Provides libvirt device XML templates for USB passthrough.
"""

from .loader import TemplateLoader

__all__ = ["TemplateLoader"]
