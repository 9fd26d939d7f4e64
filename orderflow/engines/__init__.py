"""Lifecycle engines: work-product tracking and notifications."""
