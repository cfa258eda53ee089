"""Unit tests and testing tools for the simple_acme_renew package."""
