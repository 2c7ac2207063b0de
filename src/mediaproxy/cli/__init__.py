"""Command-line interface for mediaproxy."""
