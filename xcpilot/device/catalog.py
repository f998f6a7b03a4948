"""Typed decoding of ``simctl list devices -j`` output into a DeviceCatalog."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from xcpilot.models import CatalogUnavailable, DeviceCatalog, DeviceRecord, DeviceState

logger = logging.getLogger("xcpilot.catalog")

# Older Xcode releases report availability as a string instead of a bool
AVAILABLE_SENTINEL = "(available)"


class _SimctlDevice(BaseModel):
    """One entry of a runtime's device array, as simctl emits it."""

    model_config = ConfigDict(extra="ignore")

    name: str
    udid: str
    state: Any = "Shutdown"
    is_available: Any = Field(default=None, alias="isAvailable")
    availability: Any = None

    def to_record(self, runtime_key: str) -> DeviceRecord:
        try:
            state = DeviceState(self.state)
        except (TypeError, ValueError):
            # null, non-string or unrecognised states
            state = DeviceState.SHUTDOWN
        return DeviceRecord(
            name=self.name,
            identifier=self.udid,
            runtime_key=runtime_key,
            available=self.is_available is True or self.availability == AVAILABLE_SENTINEL,
            state=state,
        )


def parse_catalog(text: str) -> DeviceCatalog:
    """Parse the inventory JSON document.

    Raises CatalogUnavailable when the document is not JSON or its top-level
    shape is wrong. Device entries without a usable name or udid are skipped.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise CatalogUnavailable(f"simctl device list is not valid JSON: {e}", tool="simctl")

    if not isinstance(data, dict) or not isinstance(data.get("devices"), dict):
        raise CatalogUnavailable("simctl device list has no 'devices' mapping", tool="simctl")

    runtimes: dict[str, tuple[DeviceRecord, ...]] = {}
    seen: set[str] = set()

    for runtime_key, entries in data["devices"].items():
        if not isinstance(entries, list):
            raise CatalogUnavailable(
                f"simctl device list entry for {runtime_key} is not an array",
                tool="simctl",
            )
        records: list[DeviceRecord] = []
        for entry in entries:
            try:
                dev = _SimctlDevice.model_validate(entry)
            except ValidationError as e:
                logger.debug("Skipping device entry in %s: %s", runtime_key, e)
                continue
            if dev.udid in seen:
                logger.debug("Skipping duplicate udid %s in %s", dev.udid, runtime_key)
                continue
            seen.add(dev.udid)
            records.append(dev.to_record(runtime_key))
        runtimes[runtime_key] = tuple(records)

    return DeviceCatalog(runtimes=runtimes)
