"""Test doubles for the store RPC services."""
