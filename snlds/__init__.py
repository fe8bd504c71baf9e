"""Datasets, training configuration, run snapshots, logging helpers and visual recordings for SNLDS experiments."""

__version__ = "0.1.0"