"""Batch tasks."""
