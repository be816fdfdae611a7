"""
Network classification (internal library): client IP extraction and the
carrier range classifier. Only MOBILE visitors are eligible for carrier billing.
"""
from app.network.classifier import NetworkClassifier, get_classifier
from app.network.client_ip import extract_client_ip
from app.network.models import CarrierInfo, CarrierRange, Classification, NetworkType

__all__ = [
    "CarrierInfo",
    "CarrierRange",
    "Classification",
    "NetworkClassifier",
    "NetworkType",
    "extract_client_ip",
    "get_classifier",
]
