"""
parcelrate - shipping rate resolution.

Queries external parcel carriers (UPS, FedEx) concurrently and resolves an
operator's own zone-based rate table.
"""
__version__ = "1.0.0"
