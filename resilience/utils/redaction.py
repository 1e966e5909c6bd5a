import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


class PIIRedactor:
    """Helper class to redact PII and credentials from messages and URLs."""

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b', re.IGNORECASE)
    UUID_PATTERN = re.compile(r'\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b', re.IGNORECASE)
    # two groups: (prefix) (value); only the value is replaced
    TOKEN_PATTERN = re.compile(
        r'(\b(?:access_token|token|key|secret|password|authorization)["\']?\s*[:=]\s*["\']?(?:bearer\s+|token\s+)?)([^\s"\'&]+)',
        re.IGNORECASE,
    )
    GITHUB_TOKEN_PATTERN = re.compile(r'\b(?:gh[pousr]_[A-Za-z0-9]{20,}|github_pat_[A-Za-z0-9_]{20,})\b')
    SENSITIVE_QUERY_KEYS = frozenset({"access_token", "token", "client_secret", "key", "sig"})

    @classmethod
    def redact(cls, text: str) -> str:
        """Redact PII from text."""
        if not isinstance(text, str):
            text = str(text)

        text = cls.EMAIL_PATTERN.sub('[EMAIL_REDACTED]', text)
        text = cls.UUID_PATTERN.sub('[UUID_REDACTED]', text)
        text = cls.GITHUB_TOKEN_PATTERN.sub('[TOKEN_REDACTED]', text)
        text = cls.TOKEN_PATTERN.sub(r'\1[TOKEN_REDACTED]', text)
        return text

    @classmethod
    def redact_url(cls, url: str | None) -> str | None:
        """Drop credentials from a URL's userinfo and sensitive query parameters."""
        if not url:
            return url
        parts = urlsplit(url)
        netloc = parts.netloc.rsplit("@", 1)[-1]
        query = urlencode(
            [
                (k, "[TOKEN_REDACTED]" if k.lower() in cls.SENSITIVE_QUERY_KEYS else v)
                for k, v in parse_qsl(parts.query, keep_blank_values=True)
            ],
            safe="[]",
        )
        return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))
