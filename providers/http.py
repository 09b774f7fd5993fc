from __future__ import annotations

import json
import re
from typing import Any
from urllib import request as urlrequest
from urllib.error import HTTPError, URLError

from guard import is_content_policy_violation
from pipeline.errors import ContentPolicyViolation, ProviderFailure

_BEARER = re.compile(r"Bearer\s+\S+")


def _clean_error(message: str) -> str:
    text = (message or "").replace("\n", " ")
    text = _BEARER.sub("Bearer [redacted]", text)
    return text[:300]


def post_json(
    url: str,
    payload: dict[str, Any],
    *,
    provider: str,
    secret: str = "",
    timeout_s: int = 60,
) -> dict[str, Any]:
    headers = {"Content-Type": "application/json"}
    if secret:
        headers["X-Internal-Secret"] = secret
    req = urlrequest.Request(
        url=url,
        data=json.dumps(payload).encode("utf-8"),
        method="POST",
        headers=headers,
    )
    try:
        with urlrequest.urlopen(req, timeout=max(1, timeout_s)) as resp:
            body = resp.read().decode("utf-8")
    except HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        if is_content_policy_violation(detail):
            raise ContentPolicyViolation(message=_clean_error(detail)) from exc
        raise ProviderFailure(
            message=f"{provider} error {exc.code}: {_clean_error(detail)}",
            provider=provider,
            retryable=exc.code >= 500 or exc.code == 429,
        ) from exc
    except URLError as exc:
        raise ProviderFailure(
            message=f"{provider} unreachable: {_clean_error(str(exc))}",
            provider=provider,
            retryable=True,
        ) from exc

    try:
        data = json.loads(body) if body else {}
    except ValueError as exc:
        raise ProviderFailure(
            message=f"{provider} returned invalid JSON: {_clean_error(body)}",
            provider=provider,
            retryable=True,
        ) from exc
    if not isinstance(data, dict):
        raise ProviderFailure(message=f"{provider} returned a non-object body", provider=provider)
    error_text = data.get("error")
    if error_text:
        error_text = str(error_text)
        if is_content_policy_violation(error_text):
            raise ContentPolicyViolation(message=_clean_error(error_text))
        raise ProviderFailure(message=f"{provider}: {_clean_error(error_text)}", provider=provider)
    return data
