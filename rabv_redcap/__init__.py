"""Curate rabies laboratory exports into REDCap import forms."""

__version__ = "0.3.0"
