"""
guestusb VM Manager

Keeps a libvirt guest's USB devices in sync with a persisted passthrough list.
"""
