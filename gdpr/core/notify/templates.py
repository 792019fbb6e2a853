from __future__ import annotations

from dataclasses import dataclass
from string import Template
from typing import Dict, Mapping, Tuple


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    body: str


TEMPLATES: Dict[str, Tuple[str, str]] = {
    "data-breach-request": (
        "Data breach notification request",
        "A data breach notification was initiated by $requester.\n"
        "\n"
        "Nature of the breach:\n$nature\n"
        "\n"
        "Data protection officer contact:\n$office_contact\n"
        "\n"
        "Likely consequences:\n$consequences\n"
        "\n"
        "Measures taken or proposed:\n$measures\n"
        "\n"
        "To confirm and send the notification to affected users, open:\n$confirm_url\n"
        "\n"
        "If you did not request this, ignore this email. The request expires automatically.\n",
    ),
    "data-breach-notification": (
        "Important notice about your personal data",
        "$content\n"
        "\n"
        "Nature of the breach:\n$nature\n"
        "\n"
        "Data protection officer contact:\n$office_contact\n"
        "\n"
        "Likely consequences:\n$consequences\n"
        "\n"
        "Measures taken or proposed:\n$measures\n",
    ),
}


def render(template_id: str, fields: Mapping[str, str]) -> RenderedEmail:
    """
    Render a known template; unknown placeholders are left as-is.
    Raises KeyError for an unknown template id.
    """
    subject, body = TEMPLATES[str(template_id)]
    values = {str(k): str(v) for k, v in (fields or {}).items()}
    return RenderedEmail(subject=Template(subject).safe_substitute(values), body=Template(body).safe_substitute(values))
