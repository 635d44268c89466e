"""
Real HTTP integration clients.

These clients talk to the brokerage backend over HTTP:
- applications API (draft, status update, documents)
- M-Pesa push-payment endpoints

Important:
- Must implement the same interfaces as the mock clients
- Must return data shaped according to src/integrations/contracts/*

Switching:
The selection of mock vs real clients happens in src/integrations/clients/factory.py only.
"""
