"""Tests for batch orchestration and the CLI."""
