import logging

logger = logging.getLogger(__name__)

# Registry mapping platform type strings to platform variant instances.
# Variants are registered by the modules in ``order_webhooks.platforms``
# at import time; ``OrderWebhooksConfig.ready()`` imports all of them.
_platforms = {}


def register_platform(platform):
    """Register a :class:`StorefrontPlatform` instance under its type."""
    _platforms[platform.platform_type] = platform
    logger.debug("Registered storefront platform: %s", platform.platform_type)


def get_platform(platform_type):
    """Return the platform variant for *platform_type*, or None."""
    return _platforms.get(platform_type)
