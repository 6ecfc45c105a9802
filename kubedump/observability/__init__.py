"""Logging and metrics for kubedump."""
