import html
import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

SUBSCRIBER_CLASS = "pr-similar-channel-desc"

SUBSCRIBER_ELEMENT_RE = re.compile(
    r"<span\b[^>]*\bclass\s*=\s*([\"'])(?:[^\"']*\s)?"
    + re.escape(SUBSCRIBER_CLASS)
    + r"(?:\s[^\"']*)?\1[^>]*>(.*?)</span>",
    re.IGNORECASE | re.DOTALL,
)
TAG_RE = re.compile(r"<[^>]+>")


def extract_subscribers(html_text: Optional[str]) -> Optional[int]:
    """Return the subscriber count shown in a similar-channel snippet.

    Best effort: any lookup or parse failure yields ``None``.
    """

    if not html_text:
        return None
    match = SUBSCRIBER_ELEMENT_RE.search(html_text)
    if not match:
        logger.debug("Subscriber element not found in HTML")
        return None
    text = html.unescape(TAG_RE.sub(" ", match.group(2)))
    tokens = text.split()
    if not tokens:
        logger.debug("No number found in subscriber text: %r", text)
        return None
    count_str = tokens[0].replace(",", "").replace(".", "")
    try:
        return int(count_str)
    except ValueError:
        logger.debug("Failed to parse subscriber count %r", count_str)
        return None
