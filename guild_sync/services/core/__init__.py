"""
Provider-agnostic services.

- base_api_adapter: Base class for provider adapters (HTTP, rate limiting, error classification)
- auth: OAuth client-credentials token provider
"""
