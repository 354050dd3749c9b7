"""Punto de entrada: python -m dosis_tool."""

from __future__ import annotations

from dosis_tool.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
