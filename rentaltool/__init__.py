"""Rental business management API: customers, inventory, rentals, payments."""

__version__ = "0.1.0"
