"""
Entry point for running imagesync as a module: python -m imagesync
"""

from imagesync.cli.commands import app

if __name__ == "__main__":
    app()
