from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tgdirectory.services.subscribers import extract_subscribers


def _snippet(text: str, css: str = "pr-similar-channel-desc") -> str:
    return (
        '<div class="pr-similar-channel">'
        '<span class="pr-similar-channel-title">Example</span>'
        f'<span class="{css}">{text}</span>'
        "</div>"
    )


def test_parses_count_with_thousands_separators():
    assert extract_subscribers(_snippet("12,345 subscribers")) == 12345


def test_parses_plain_count():
    assert extract_subscribers(_snippet("  987 subscribers")) == 987


def test_matches_element_with_extra_classes():
    html = _snippet("1,000 subscribers", css="muted pr-similar-channel-desc small")
    assert extract_subscribers(html) == 1000


def test_missing_element_returns_none():
    assert extract_subscribers('<span class="other">5 subscribers</span>') is None


def test_non_numeric_token_returns_none():
    assert extract_subscribers(_snippet("many subscribers")) is None


def test_empty_element_returns_none():
    assert extract_subscribers(_snippet("   ")) is None


def test_empty_input_returns_none():
    assert extract_subscribers(None) is None
    assert extract_subscribers("") is None
