"""Utility helpers for duckattach."""
