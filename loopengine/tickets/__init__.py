"""Ticket records and their persistent store."""
