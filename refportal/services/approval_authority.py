"""
Capability resolution for the form workflow.

Authority is never decided by comparing role strings inline. Callers ask
``has_capability(user, Capability.APPROVE_FORMS)``; the answer comes from
the administrator-managed SystemConfig allow-lists, falling back to app
config when no row exists. Lists are read once per request and cached on
``flask.g``.
"""

from __future__ import annotations

import enum
import logging

from flask import current_app, g, has_app_context

from refportal.models.system_config import (
    APPROVAL_AUTHORITY_KEY,
    INTER_LAB_DISTRIBUTION_KEY,
    SystemConfig,
)

logger = logging.getLogger(__name__)


class Capability(enum.Enum):
    APPROVE_FORMS = "approve_forms"
    DISTRIBUTE_INTER_LAB = "distribute_inter_lab"


def _split(value) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return []


def _load_list(key: str, fallback_config_key: str) -> list[str]:
    cache = g.setdefault("_capability_lists", {}) if has_app_context() else {}
    if key in cache:
        return cache[key]

    row = SystemConfig.query.filter_by(key=key).first()
    if row is not None:
        values = row.as_list()
    else:
        values = _split(current_app.config.get(fallback_config_key))
    cache[key] = values
    return values


def get_approval_authority_designations() -> list[str]:
    """Designations currently allowed to approve forms."""
    return _load_list(APPROVAL_AUTHORITY_KEY, "APPROVAL_AUTHORITY_DESIGNATIONS")


def get_inter_lab_distribution_roles() -> list[str]:
    return _load_list(INTER_LAB_DISTRIBUTION_KEY, "INTER_LAB_DISTRIBUTION_ROLES")


def has_capability(user, capability: Capability) -> bool:
    """Return True if *user* holds *capability* under the current configuration."""
    if user is None:
        return False
    if capability is Capability.APPROVE_FORMS:
        return bool(user.designation) and user.designation in get_approval_authority_designations()
    if capability is Capability.DISTRIBUTE_INTER_LAB:
        return bool(user.role) and user.role in get_inter_lab_distribution_roles()
    logger.warning("Unknown capability requested: %s", capability)
    return False
