from delivery.api.errors import register_delivery_exception_handlers
from delivery.api.routes import delivery_order_router, transit_shipment_router

__all__ = ["delivery_order_router", "register_delivery_exception_handlers", "transit_shipment_router"]
