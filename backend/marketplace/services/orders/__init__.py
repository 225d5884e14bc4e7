"""Checkout splitting, order status and order queries."""
