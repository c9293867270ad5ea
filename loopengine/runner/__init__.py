"""Workspace provisioning and per-ticket locking."""
