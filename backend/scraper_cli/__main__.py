"""Console entry point for the scraper CLI."""
from __future__ import annotations

import logging

from .app import app


def main() -> None:
    """Execute the Typer application."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app()


if __name__ == "__main__":
    main()
