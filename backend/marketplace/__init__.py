"""
Multi-vendor order fulfillment and payment reconciliation service.
"""
