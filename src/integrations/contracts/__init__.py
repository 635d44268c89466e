"""
Contracts (data models).

This folder defines the shapes exchanged with the brokerage backend and the
payment gateway, plus the checkout error taxonomy:
- Application / DocumentSet models
- Payment initiation / status models and phone-number rules
- ValidationFailure, TransportFailure, PaymentRejected, ...

Both mock and real HTTP clients return these contracts; the checkout core
never handles raw response dictionaries.
"""
