"""Module entrypoint for ``python -m lumenflow_core``."""

from __future__ import annotations

from lumenflow_core.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
