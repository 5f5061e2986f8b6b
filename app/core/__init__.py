"""Configuration and observability helpers for the NPDI portal."""
