"""Tests for the reconciliation components."""
