from __future__ import annotations

from typing import Optional

import httpx

from kalshibot.core.errors import SlackError


def post_run_log(webhook_url: str, header: str, log: Optional[str] = None, client: Optional[httpx.Client] = None, timeout: float = 10.0) -> bool:
    """Post a run report to a Slack incoming webhook.

    Returns False (and sends nothing) when no webhook is configured.
    """
    if not webhook_url or not webhook_url.strip():
        return False
    text = header
    if log:
        text += "\n\n```\n" + log + "\n```"
    http = client or httpx.Client(timeout=timeout)
    try:
        resp = http.post(webhook_url.strip(), json={"text": text})
    except httpx.HTTPError as e:
        raise SlackError(f"slack webhook request failed: {e}") from e
    finally:
        if client is None:
            http.close()
    if not resp.is_success:
        raise SlackError(f"slack webhook failed: {resp.status_code} - {resp.text}")
    return True
