"""Filter policy evaluation.

Pure functions: no state, no I/O.  Rules are evaluated in a fixed order and
the first matching exclusion wins:

1. namespace not in a non-empty include list
2. namespace excluded
3. component excluded
4. reason excluded
5. error-level events are always forwarded
6. level not among the configured levels

Unrecognized levels (e.g. ``normal``) get no special treatment: they are
forwarded only when explicitly listed in ``min_levels``.
"""

from __future__ import annotations

from enum import StrEnum

from kubesentry.models.config import FilterPolicy
from kubesentry.models.events import RawEvent


class DropReason(StrEnum):
    """Why an event was not forwarded.  Used as a metric label."""

    NAMESPACE_NOT_INCLUDED = "namespace_not_included"
    NAMESPACE_EXCLUDED = "namespace_excluded"
    COMPONENT_EXCLUDED = "component_excluded"
    REASON_EXCLUDED = "reason_excluded"
    LEVEL = "level"


def drop_reason(event: RawEvent, policy: FilterPolicy) -> DropReason | None:
    """Return the first rule that drops *event*, or None to forward it."""
    if policy.include_namespaces and event.namespace not in policy.include_namespaces:
        return DropReason.NAMESPACE_NOT_INCLUDED
    if event.namespace in policy.exclude_namespaces:
        return DropReason.NAMESPACE_EXCLUDED
    if event.component in policy.exclude_components:
        return DropReason.COMPONENT_EXCLUDED
    if event.reason in policy.exclude_reasons:
        return DropReason.REASON_EXCLUDED
    if event.is_error:
        return None
    if event.level not in policy.min_levels:
        return DropReason.LEVEL
    return None


def should_forward(event: RawEvent, policy: FilterPolicy) -> bool:
    """True if *event* passes *policy*."""
    return drop_reason(event, policy) is None
