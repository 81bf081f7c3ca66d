"""Redaction of sensitive fields in nested records before they leave the process."""

import json
import re
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

DEFAULT_REPLACEMENT = "********"
TRUNCATION_MARKER = "... [truncated]"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

_FORM_BODY = re.compile(r"^[^=&\s]+=[^&\s]*(?:&[^=&\s]+=[^&\s]*)*$")

# Keys containing any of these are masked even without a configured rule.
SENSITIVE_KEYWORDS: tuple[str, ...] = (
    "password",
    "secret",
    "token",
    "key",
    "credit",
    "cvv",
    "ssn",
)


class SensitiveDataMasker:
    """Masks configured fields, filters headers and truncates bodies.

    Rules are matched case-insensitively against both the leaf key and the
    dotted path of each value (``user.password``). A rule containing ``*``
    matches any run of characters in the path (``*.token`` matches
    ``auth.token`` and ``a.b.token``).

    Example:
        ```python
        masker = SensitiveDataMasker(["card.number"])
        masker.mask({"card": {"number": "4111", "brand": "visa"}})
        # {"card": {"number": "********", "brand": "visa"}}
        ```
    """

    def __init__(
        self,
        mask_fields: Iterable[str] = (),
        mask_replacement: str = DEFAULT_REPLACEMENT,
        exclude_headers: Iterable[str] = (),
    ) -> None:
        """Initialize the masker.

        Args:
            mask_fields: Field names or dotted paths to redact.
            mask_replacement: Value substituted for redacted fields.
            exclude_headers: Header names whose values are redacted by
                :meth:`filter_headers`.
        """
        self.mask_fields = tuple(f.lower() for f in mask_fields)
        self.mask_replacement = mask_replacement
        self.exclude_headers = frozenset(h.lower() for h in exclude_headers)
        self._wildcards = [
            re.compile(
                "^" + ".*".join(re.escape(part) for part in rule.split("*")) + "$",
                re.IGNORECASE,
            )
            for rule in self.mask_fields
            if "*" in rule
        ]

    def mask(self, data: Mapping[Any, Any]) -> dict[Any, Any]:
        """Return a copy of ``data`` with sensitive values replaced.

        The input is never mutated. Nested mappings are walked; lists and
        scalars are returned as they are.
        """
        return self._mask_mapping(data, "")

    def _mask_mapping(self, data: Mapping[Any, Any], parent: str) -> dict[Any, Any]:
        result: dict[Any, Any] = {}
        for key, value in data.items():
            name = str(key)
            path = f"{parent}.{name}" if parent else name
            if self.should_mask(name, path):
                result[key] = self.mask_replacement
            elif isinstance(value, Mapping):
                result[key] = self._mask_mapping(value, path)
            else:
                result[key] = value
        return result

    def should_mask(self, key: str, path: str) -> bool:
        """Return True if the value at ``path`` (leaf ``key``) must be redacted."""
        lower_key = key.lower()
        lower_path = path.lower()
        if lower_key in self.mask_fields or lower_path in self.mask_fields:
            return True
        if any(pattern.match(lower_path) for pattern in self._wildcards):
            return True
        return any(keyword in lower_key for keyword in SENSITIVE_KEYWORDS)

    def mask_json(self, text: str) -> str:
        """Mask a JSON document; text that is not a JSON object is returned as is."""
        try:
            data = json.loads(text)
        except ValueError:
            return text
        if not isinstance(data, dict):
            return text
        return json.dumps(self.mask(data), ensure_ascii=False)

    def mask_query_string(self, query: str) -> str:
        """Mask the parameters of a URL query string or form-encoded body.

        Parameter order and repeated names are preserved.
        """
        if not query:
            return query
        pairs = [
            (key, self.mask_replacement if self.should_mask(key, key) else value)
            for key, value in parse_qsl(query, keep_blank_values=True)
        ]
        return urlencode(pairs)

    def mask_url(self, url: str) -> str:
        """Mask the query component of ``url``; the rest is kept verbatim."""
        parts = urlsplit(url)
        if not parts.query:
            return url
        return urlunsplit(parts._replace(query=self.mask_query_string(parts.query)))

    def is_form_body(self, text: str, content_type: str | None = None) -> bool:
        if content_type and FORM_CONTENT_TYPE in content_type.lower():
            return True
        return bool(_FORM_BODY.match(text.strip()))

    def mask_text(self, text: str, content_type: str | None = None) -> str:
        """Mask a raw body: JSON objects by field, form bodies by parameter.

        Any other text is returned as is.
        """
        try:
            data = json.loads(text)
        except ValueError:
            if self.is_form_body(text, content_type):
                return self.mask_query_string(text.strip())
            return text
        if isinstance(data, dict):
            return json.dumps(self.mask(data), ensure_ascii=False)
        if isinstance(data, list):
            items = [self.mask(item) if isinstance(item, Mapping) else item for item in data]
            return json.dumps(items, ensure_ascii=False)
        return text

    def filter_headers(self, headers: Mapping[str, Any]) -> dict[str, Any]:
        """Redact excluded headers and flatten multi-valued ones.

        Args:
            headers: Header name to value (or list of values).

        Returns:
            New mapping; excluded headers carry the replacement string.
        """
        filtered: dict[str, Any] = {}
        for name, value in headers.items():
            if name.lower() in self.exclude_headers:
                filtered[name] = self.mask_replacement
            elif isinstance(value, (list, tuple)):
                filtered[name] = ", ".join(str(v) for v in value)
            else:
                filtered[name] = value
        return filtered

    def truncate(self, content: str, max_length: int) -> str:
        """Bound ``content`` to ``max_length`` bytes of UTF-8.

        Content within the bound is returned unchanged; longer content is cut
        and suffixed with an explicit truncation marker.
        """
        encoded = content.encode("utf-8")
        if len(encoded) <= max_length:
            return content
        head = encoded[:max_length].decode("utf-8", errors="ignore")
        return head + TRUNCATION_MARKER

    def normalize(self, data: Mapping[Any, Any], max_items: int, max_depth: int) -> dict[Any, Any]:
        """Bound a nested mapping to ``max_items`` keys per level and ``max_depth`` levels.

        Levels below ``max_depth`` collapse to ``"[depth limit]"``; dropped keys
        are counted under ``"_truncated"``.
        """
        result: dict[Any, Any] = {}
        for index, (key, value) in enumerate(data.items()):
            if index >= max_items:
                result["_truncated"] = len(data) - max_items
                break
            if isinstance(value, Mapping):
                if max_depth <= 1:
                    result[key] = "[depth limit]"
                else:
                    result[key] = self.normalize(value, max_items, max_depth - 1)
            elif isinstance(value, list) and len(value) > max_items:
                result[key] = value[:max_items]
            else:
                result[key] = value
        return result
