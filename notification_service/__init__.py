"""Delivery of customer notifications requested by the fulfillment stages."""

__version__ = "0.1.0"
