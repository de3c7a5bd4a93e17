"""CLI module for imagesync."""
