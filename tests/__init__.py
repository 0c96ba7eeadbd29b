"""Tests for pkgtxn."""
