"""
Core modules for Provider Fallback.

This package contains the provider catalog, capacity checks, credential
lifecycle, failover selection and rate-limit handling.
"""
