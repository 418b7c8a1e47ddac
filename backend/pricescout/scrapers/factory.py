"""Registry that maps platforms to driver classes and builds drivers."""

from typing import Dict, List, Type

import structlog

from pricescout.core.exceptions import UnsupportedPlatformError

from .base import BasePlatformDriver
from .platform import Platform
from .session import CrawlSessionFactory

logger = structlog.get_logger(__name__)


class DriverFactory:
    """Creates configured platform drivers.

    Every driver built here shares the same session factory, so identity
    allocation and rate limiting are common to all platforms.
    """

    def __init__(
        self,
        session_factory: CrawlSessionFactory,
        navigation_attempts: int = 2,
        retry_wait: float = 2.0,
    ):
        self.session_factory = session_factory
        self.navigation_attempts = navigation_attempts
        self.retry_wait = retry_wait
        self._driver_registry: Dict[Platform, Type[BasePlatformDriver]] = {}

    def register_driver(self, driver_class: Type[BasePlatformDriver]) -> None:
        """Register a driver class under its ``platform`` attribute.

        Raises:
            ValueError: if the class is not a BasePlatformDriver
        """
        if not issubclass(driver_class, BasePlatformDriver):
            raise ValueError(f"Driver class must inherit from BasePlatformDriver: {driver_class}")
        self._driver_registry[driver_class.platform] = driver_class
        logger.info("driver_registered", platform=driver_class.platform.value, driver=driver_class.__name__)

    def create_driver(self, platform: Platform) -> BasePlatformDriver:
        """Instantiate the driver for ``platform``.

        Raises:
            UnsupportedPlatformError: if nothing is registered for it
        """
        driver_class = self._driver_registry.get(platform)
        if driver_class is None:
            raise UnsupportedPlatformError(platform.value)
        return driver_class(
            self.session_factory,
            navigation_attempts=self.navigation_attempts,
            retry_wait=self.retry_wait,
        )

    def native_filters(self, platform: Platform) -> frozenset:
        driver_class = self._driver_registry.get(platform)
        return driver_class.native_filters if driver_class else frozenset()

    def is_registered(self, platform: Platform) -> bool:
        return platform in self._driver_registry

    def list_platforms(self) -> List[Platform]:
        return sorted(self._driver_registry, key=lambda p: p.value)
