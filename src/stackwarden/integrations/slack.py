"""Post inventory reports to Slack via incoming webhook."""

from urllib.parse import urlparse

import requests

ALLOWED_SLACK_HOSTS = {"hooks.slack.com", "hooks.slack-gov.com"}

# Slack rejects section blocks with more text than this.
MAX_SECTION_CHARS = 3000


def _check_webhook(webhook_url: str) -> None:
    parsed = urlparse(webhook_url)
    if parsed.scheme != "https":
        raise ValueError("Slack webhook URL must use HTTPS")
    if parsed.hostname not in ALLOWED_SLACK_HOSTS:
        raise ValueError(
            f"Invalid Slack webhook host {parsed.hostname!r}: "
            f"must be one of {sorted(ALLOWED_SLACK_HOSTS)}"
        )


def build_payload(report: str, headline: str | None = None) -> dict:
    """Build the webhook body.

    With a headline the message leads with it (and uses it as the notification
    text), followed by the report in a code block truncated to fit one section.
    """
    if not headline:
        return {"text": report}
    body = report
    if len(body) > MAX_SECTION_CHARS - 6:
        body = body[: MAX_SECTION_CHARS - 7] + "…"
    return {
        "text": headline,
        "blocks": [
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*{headline}*"}},
            {"type": "section", "text": {"type": "mrkdwn", "text": f"```{body}```"}},
        ],
    }


def post_to_slack(report: str, webhook_url: str, headline: str | None = None, timeout: int = 30) -> None:
    """Post an inventory report, optionally led by a one-line health headline."""
    _check_webhook(webhook_url)
    response = requests.post(
        webhook_url,
        json=build_payload(report, headline),
        timeout=timeout,
    )
    response.raise_for_status()
