"""Agregator CLI - background jobs and event lifecycle for the events aggregator."""

__app_name__ = "agregator"
__version__ = "0.1.0"
