"""Tubely: video ingest, fast-start remux and object storage service."""

__version__ = "0.1.0"
