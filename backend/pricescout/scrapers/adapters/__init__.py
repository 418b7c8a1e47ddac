"""Storefront-specific platform drivers."""

from .lazada import LazadaDriver
from .shopee import ShopeeDriver
from .zalora import ZaloraDriver

__all__ = ["LazadaDriver", "ShopeeDriver", "ZaloraDriver"]
