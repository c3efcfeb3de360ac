"""Allow ``python -m sheet_ratios``."""

from sheet_ratios.cli import app

if __name__ == "__main__":
    app()
