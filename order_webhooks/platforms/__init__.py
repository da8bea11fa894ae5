"""Storefront platform variants.

Importing this package registers every variant with the router. The two
module-level helpers are what the intake pipeline calls; they never need to
know which platform they are dealing with.
"""

from ..exceptions import NormalizationError
from ..router import get_platform
from . import shopify, woocommerce, youcan  # noqa: F401
from .base import VerificationResult


def verify(platform_type, raw_body, headers, secret):
    """Verify a webhook signature for *platform_type*.

    Unknown platforms never verify.
    """
    platform = get_platform(platform_type)
    if platform is None:
        return VerificationResult(
            False, "unknown", "", f"Unknown platform: {platform_type}"
        )
    return platform.verify(raw_body, headers, secret)


def check_topic(platform_type, headers):
    """Return the delivered topic, refusing anything but order creation.

    Raises:
        NormalizationError: unknown platform or unsupported topic.
    """
    platform = get_platform(platform_type)
    if platform is None:
        raise NormalizationError(f"Unknown platform: {platform_type}")
    return platform.check_topic(headers)


def normalize(platform_type, raw_payload):
    """Turn a raw order payload into a :class:`CandidateOrder`.

    Raises:
        NormalizationError: unknown platform or invalid payload.
    """
    platform = get_platform(platform_type)
    if platform is None:
        raise NormalizationError(f"Unknown platform: {platform_type}")
    return platform.normalize(raw_payload)
