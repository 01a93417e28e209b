"""Tests for the core module."""
