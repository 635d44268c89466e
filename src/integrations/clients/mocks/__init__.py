"""
Mock integration clients.

These clients return fake (but realistic) responses without calling any external API.
They are used when:
- KOLA_API_URL is not configured (local development)
- We want to test the checkout end-to-end without external dependencies

Important:
- Mock clients must follow the SAME interface as real HTTP clients.
- Mock clients should return data shaped according to src/integrations/contracts/*

Switching to real:
Set KOLA_API_URL (or INTEGRATIONS_MODE=real); see src/integrations/clients/factory.py.
"""
