"""
Deep links of the form {scheme}://subscription/{id}.

Malformed links and unknown ids resolve to None: no exception, no navigation.
"""
import logging
from urllib.parse import urlsplit
from uuid import UUID

logger = logging.getLogger(__name__)

DEFAULT_SCHEME = "subtracker"
SUBSCRIPTION_HOST = "subscription"


def build_subscription_link(sub_id: UUID, scheme: str = DEFAULT_SCHEME) -> str:
    return f"{scheme}://{SUBSCRIPTION_HOST}/{sub_id}"


def parse_subscription_link(uri: str, scheme: str = DEFAULT_SCHEME) -> UUID | None:
    """Extract the subscription id from a deep link, or None."""
    try:
        parts = urlsplit(uri.strip())
    except (AttributeError, ValueError):
        return None
    # urlsplit lowercases the scheme
    if parts.scheme != scheme.lower() or parts.netloc != SUBSCRIPTION_HOST:
        return None

    segments = [s for s in parts.path.split("/") if s]
    if len(segments) != 1:
        return None
    try:
        return UUID(segments[0])
    except ValueError:
        logger.info("Deep link with malformed id ignored: %s", uri)
        return None


def resolve_subscription_link(store, uri: str, scheme: str = DEFAULT_SCHEME):
    """Return the subscription a link points to, if it exists."""
    sub_id = parse_subscription_link(uri, scheme)
    if sub_id is None:
        return None
    sub = store.get(sub_id)
    if sub is None:
        logger.info("Deep link to unknown subscription %s ignored", sub_id)
    return sub
