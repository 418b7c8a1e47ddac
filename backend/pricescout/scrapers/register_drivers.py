"""Register every bundled storefront driver with a factory."""

import structlog

from .adapters.lazada import LazadaDriver
from .adapters.shopee import ShopeeDriver
from .adapters.zalora import ZaloraDriver
from .factory import DriverFactory

logger = structlog.get_logger(__name__)

BUNDLED_DRIVERS = (LazadaDriver, ZaloraDriver, ShopeeDriver)


def register_all_drivers(factory: DriverFactory) -> DriverFactory:
    """Register the Lazada, Zalora and Shopee drivers on ``factory``."""
    for driver_class in BUNDLED_DRIVERS:
        factory.register_driver(driver_class)
    logger.info("drivers_registered", count=len(BUNDLED_DRIVERS))
    return factory
