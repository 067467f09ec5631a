"""Automation job scheduling and processing."""
