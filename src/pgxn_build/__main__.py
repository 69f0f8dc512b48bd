"""Module entrypoint for `python -m pgxn_build`."""

from __future__ import annotations

from pgxn_build.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
