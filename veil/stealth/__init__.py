"""
Veil Protocol v1 Stealth Payments
"""

from veil.stealth.records import StealthRecord, Payment
from veil.stealth.keys import (
    StealthKeys,
    ViewCredential,
    create_stealth_record,
    derive_ephemeral_secret,
)
from veil.stealth.directory import StealthDirectory, StealthScan

__all__ = [
    "StealthRecord",
    "Payment",
    "StealthKeys",
    "ViewCredential",
    "create_stealth_record",
    "derive_ephemeral_secret",
    "StealthDirectory",
    "StealthScan",
]
