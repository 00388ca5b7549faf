from parcelrate.models.shipping import ShippingZone, ShippingMethod, ShippingRate

__all__ = ["ShippingZone", "ShippingMethod", "ShippingRate"]
