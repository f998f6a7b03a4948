"""Key/value extraction from ``xcodebuild -showBuildSettings`` output.

The dump is human-readable text, not a serialization format::

    Build settings for action build and target MyApp:
        ACTION = build
        FULL_PRODUCT_NAME = MyApp.app
        OTHER_SWIFT_FLAGS = -D DEBUG -Xfrontend -warn-long-function-bodies=100

Lines are matched on ``" KEY = "`` and split on the first ``=`` only, so values
may themselves contain ``=``.
"""

from __future__ import annotations

from typing import Iterable

from xcpilot.models import ArtifactNotLocatable, BuildProduct

TARGET_BUILD_DIR = "TARGET_BUILD_DIR"
FULL_PRODUCT_NAME = "FULL_PRODUCT_NAME"
PRODUCT_BUNDLE_IDENTIFIER = "PRODUCT_BUNDLE_IDENTIFIER"
BUILD_DIR = "BUILD_DIR"

PRODUCT_KEYS = (TARGET_BUILD_DIR, FULL_PRODUCT_NAME, PRODUCT_BUNDLE_IDENTIFIER)


def extract_settings(dump: str, keys: Iterable[str]) -> dict[str, str]:
    """Return the first value found for each requested key.

    Keys that never appear are absent from the result.
    """
    patterns = {key: f" {key} = " for key in keys}
    found: dict[str, str] = {}

    for line in dump.splitlines():
        for key, pattern in patterns.items():
            if key in found or pattern not in line:
                continue
            found[key] = line.split("=", 1)[1].strip()
        if len(found) == len(patterns):
            break

    return found


def locate_product(settings: dict[str, str]) -> BuildProduct:
    """Build a BuildProduct from extracted settings.

    Raises ArtifactNotLocatable naming any missing key.
    """
    missing = [key for key in PRODUCT_KEYS if not settings.get(key)]
    if missing:
        raise ArtifactNotLocatable(
            "Could not determine built app path or bundle identifier "
            f"(missing {', '.join(missing)}). This usually means the selected "
            "scheme builds a framework or library rather than an application.",
            tool="xcodebuild",
        )
    return BuildProduct(
        build_dir=settings[TARGET_BUILD_DIR],
        product_name=settings[FULL_PRODUCT_NAME],
        bundle_id=settings[PRODUCT_BUNDLE_IDENTIFIER],
    )
