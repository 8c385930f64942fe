"""gemportal command-line application."""
