"""Pick one simulator from a catalog snapshot.

Matching is first-match by scan order (runtime keys descending, then simctl's
device order), not best-match. The same query against the same snapshot always
returns the same device.
"""

from __future__ import annotations

from xcpilot.models import DeviceCatalog, DeviceRecord, NoBootedDevice, NoDeviceMatch

BOOTED = "booted"


def first_booted(catalog: DeviceCatalog) -> DeviceRecord:
    """Return the first available booted device, or raise NoBootedDevice."""
    for device in catalog.available_devices():
        if device.is_booted:
            return device
    raise NoBootedDevice()


def match_device(query: str, catalog: DeviceCatalog) -> DeviceRecord:
    """Return the first available device whose name contains ``query``, ignoring case."""
    needle = query.lower()
    for device in catalog.available_devices():
        if needle in device.name.lower():
            return device
    raise NoDeviceMatch(query)


def resolve_device(query: str | None, catalog: DeviceCatalog) -> DeviceRecord:
    """Resolve a user query to a single device.

    ``None``, a blank string, or ``"booted"`` select the first booted device.
    Anything else is a case-insensitive substring match on the device name.
    """
    if query is None or not query.strip() or query.strip().lower() == BOOTED:
        return first_booted(catalog)
    return match_device(query.strip(), catalog)
