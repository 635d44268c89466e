"""
Utility modules for the checkout service
"""
from .checkout_config import CheckoutConfig, load_checkout_config

__all__ = [
    'CheckoutConfig',
    'load_checkout_config',
]
