"""
Services for the guild synchronizer.

This module organizes services into:
- core: Provider-agnostic HTTP plumbing (base adapter, OAuth token provider)
- sync: Discovery and enrichment tiers, adapters, aggregation and reconciliation
- notification_service: Out-of-band alerts
"""
