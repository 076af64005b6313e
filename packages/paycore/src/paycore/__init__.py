"""Shared infrastructure for the settlement services: settings, logging, database, Redis."""
