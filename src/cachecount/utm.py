"""
UTM parameter parsing for campaign attribution.

Standard UTM Parameters:
- utm_source: Where the traffic came from (e.g., "google", "newsletter")
- utm_medium: Marketing medium (e.g., "cpc", "email", "social")
- utm_campaign: Campaign name (e.g., "spring_sale", "product_launch")
- utm_term: Paid search keywords (optional)
- utm_content: Differentiates similar content/links (optional)

On the wire to ``/collect`` they travel under short keys (us, um, uc, ut, uco).
"""

from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

# Maximum length for UTM parameter values
MAX_UTM_LENGTH = 200

# UTMParams field -> /collect query parameter
COLLECT_KEYS = {
    "source": "us",
    "medium": "um",
    "campaign": "uc",
    "term": "ut",
    "content": "uco",
}


@dataclass(frozen=True)
class UTMParams:
    """
    Extracted UTM parameters from a URL.

    All fields are optional - a URL may have some, all, or none.
    """
    source: str | None = None
    medium: str | None = None
    campaign: str | None = None
    term: str | None = None
    content: str | None = None

    @property
    def has_utm(self) -> bool:
        """Check if any UTM parameters are present."""
        return any([self.source, self.medium, self.campaign, self.term, self.content])

    def to_collect_params(self) -> dict[str, str]:
        """Short-key form used by ``/collect``, excluding empty values."""
        return {
            key: getattr(self, field)
            for field, key in COLLECT_KEYS.items()
            if getattr(self, field)
        }

    def merged_with(self, override: "UTMParams") -> "UTMParams":
        """Return a copy where values set on ``override`` win."""
        return UTMParams(**{
            field: getattr(override, field) or getattr(self, field)
            for field in COLLECT_KEYS
        })


def _clean_param(value: str | None) -> str | None:
    """
    Clean and validate a UTM parameter value.

    - Strip whitespace
    - Truncate to max length
    - Return None for empty strings
    """
    if not value:
        return None

    cleaned = value.strip()

    if len(cleaned) > MAX_UTM_LENGTH:
        cleaned = cleaned[:MAX_UTM_LENGTH]

    return cleaned if cleaned else None


def _get_first_param(params: dict, key: str) -> str | None:
    values = params.get(key, [])
    if values and values[0]:
        return _clean_param(values[0])
    return None


def parse_utm(url: str) -> UTMParams:
    """
    Extract UTM parameters from a URL's query string.

    Examples:
        >>> parse_utm("https://example.com/?utm_source=google&utm_medium=cpc")
        UTMParams(source='google', medium='cpc', campaign=None, term=None, content=None)
    """
    if not url:
        return UTMParams()

    try:
        query_params = parse_qs(urlparse(url).query, keep_blank_values=False)
    except ValueError:
        return UTMParams()

    return UTMParams(
        source=_get_first_param(query_params, "utm_source"),
        medium=_get_first_param(query_params, "utm_medium"),
        campaign=_get_first_param(query_params, "utm_campaign"),
        term=_get_first_param(query_params, "utm_term"),
        content=_get_first_param(query_params, "utm_content"),
    )
