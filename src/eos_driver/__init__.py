"""Workflow driver for the EOS spec → tasks → execution pipeline."""

__version__ = "0.1.0"
