"""Run the igdmap command line interface with ``python -m igdmap``."""

from __future__ import annotations

from igdmap.cli.main import main

if __name__ == "__main__":
    main()
