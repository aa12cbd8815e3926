"""Per-recipient placeholder interpolation for campaign content."""

import re
from typing import Any

from conduit.domain.models import Contact

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def interpolate(template: str | None, variables: dict[str, Any]) -> str | None:
    """
    Replace ``{{name}}`` placeholders.

    Placeholders with no matching variable are left as they are, so a typo in
    the campaign shows up in the sent text instead of silently vanishing.
    """
    if template is None:
        return None

    def _replace(match: re.Match) -> str:
        value = variables.get(match.group(1))
        return match.group(0) if value is None else str(value)

    return _PLACEHOLDER.sub(_replace, template)


def extract_variables(template: str | None) -> list[str]:
    if not template:
        return []
    return list(dict.fromkeys(_PLACEHOLDER.findall(template)))


def build_contact_context(contact: Contact) -> dict[str, Any]:
    """Variables for one recipient: custom fields plus name, phone and email."""
    context: dict[str, Any] = {
        key: value
        for key, value in contact.custom_fields.items()
        if isinstance(value, (str, int, float))
    }
    context.update(
        {
            "name": contact.name,
            "nome": contact.name,
            "phone": contact.phone or "",
            "telefone": contact.phone or "",
            "email": contact.email or "",
        }
    )
    return context
