"""Allow ``python -m xcpilot``."""

from xcpilot.main import cli

cli()
