"""
Sales Order Service Clients Module

HTTP clients for the external tax calculator and the e-signature service
"""

from .tax_client import TaxCalculatorClient
from .signature_client import SignatureClient

__all__ = [
    "TaxCalculatorClient",
    "SignatureClient",
]
