"""Bounded-parallel cellranger batch runner with resumable samples."""

__version__ = "0.1.0"
