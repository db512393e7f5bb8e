"""Trace export."""
