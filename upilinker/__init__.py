"""Shareable UPI payment links with QR codes and a payment request history."""

__version__ = "1.0.0"
