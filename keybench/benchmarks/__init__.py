"""
Benchmarking harness for primary-key encodings.

This package drives the mixed insert/read/update scenarios against each key
variant, repeats every run, and renders statistical summaries, CSV exports and
charts comparing the variants with a baseline.
"""

from .main import main

__all__ = ["main"]
