"""Bulk notification campaigns: fan-out, pause/resume and progress tracking."""
