"""Visibility resolution and the note-override invariant guard.

Precedence, most specific first:

    1. per-note override (event_references.visibility)
    2. per-author preference (visibility_preferences with contributor_id)
    3. global preference (visibility_preferences with contributor_id NULL)
    4. the person's base visibility (people.visibility)

``removed`` is absorbing at every layer. A ``pending`` note override means
"defer to the baseline". Everything here is pure; callers load the inputs.
"""

import logging
import warnings

from app.errors import InvariantViolation
from app.models.identity import Visibility
from app.observability import INVARIANT_VIOLATIONS

logger = logging.getLogger(__name__)

PRIVACY_RANK: dict[Visibility, int] = {
    Visibility.approved: 0,
    Visibility.blurred: 1,
    Visibility.anonymized: 2,
    Visibility.pending: 2,
    Visibility.removed: 3,
}

# Outcome when preference rows could not be read.
UNAVAILABLE_FALLBACK = Visibility.anonymized


def coerce_visibility(value) -> Visibility | None:
    """Return the enum member for ``value`` or None when absent or unknown."""
    if value is None:
        return None
    if isinstance(value, Visibility):
        return value
    if isinstance(value, str):
        try:
            return Visibility(value.strip().lower())
        except ValueError:
            return None
    return None


def normalize_visibility(value) -> Visibility:
    return coerce_visibility(value) or Visibility.pending


def rank(value) -> int:
    return PRIVACY_RANK[normalize_visibility(value)]


def is_more_private_or_equal(candidate, base) -> bool:
    return rank(candidate) >= rank(base)


def is_less_private(candidate, base) -> bool:
    return not is_more_private_or_equal(candidate, base)


def most_private(*values) -> Visibility:
    known = [v for v in (coerce_visibility(value) for value in values) if v]
    if not known:
        return Visibility.pending
    return max(known, key=lambda v: PRIVACY_RANK[v])


def resolve_visibility(override, author_pref, global_pref, person_base) -> Visibility:
    override = coerce_visibility(override)
    author_pref = coerce_visibility(author_pref)
    global_pref = coerce_visibility(global_pref)
    person_base = coerce_visibility(person_base)

    if Visibility.removed in (person_base, author_pref, global_pref, override):
        return Visibility.removed
    if override is not None and override is not Visibility.pending:
        return override
    if author_pref is not None:
        return author_pref
    if global_pref is not None:
        return global_pref
    if person_base is not None:
        return person_base
    return Visibility.pending


def resolve_baseline(author_pref, global_pref, person_base) -> Visibility:
    """Effective visibility without any note-level override."""
    return resolve_visibility(None, author_pref, global_pref, person_base)


def resolve_unavailable(*known) -> Visibility:
    """Resolve when the preference layer could not be read.

    The result is never less private than ``UNAVAILABLE_FALLBACK``.
    """
    return most_private(UNAVAILABLE_FALLBACK, *known)


def resolve_most_private(reference_visibility, person_visibility) -> Visibility:
    """Legacy rank-max resolution ("most private wins").

    Deprecated: some feed renderers compared only the reference and person
    values and kept the more private one, ignoring preferences. Kept for
    consumers behind ``LEGACY_RANK_MAX_RESOLUTION`` until product confirms
    it can be removed. New code must call ``resolve_visibility``.
    """
    warnings.warn(
        "resolve_most_private is deprecated; use resolve_visibility",
        DeprecationWarning,
        stacklevel=2,
    )
    return most_private(reference_visibility, person_visibility)


# ---------------------------------------------------------------------------
# Invariant guard
# ---------------------------------------------------------------------------


def can_set_note_override(candidate, baseline) -> bool:
    candidate = normalize_visibility(candidate)
    if candidate is Visibility.pending:
        return True
    return is_more_private_or_equal(candidate, baseline)


def ensure_note_override_allowed(candidate, baseline) -> None:
    candidate = normalize_visibility(candidate)
    baseline = normalize_visibility(baseline)
    if can_set_note_override(candidate, baseline):
        return
    INVARIANT_VIOLATIONS.inc()
    logger.info(
        "Rejected note override %s below baseline %s",
        candidate.value,
        baseline.value,
    )
    raise InvariantViolation(
        "Per-note visibility can only be more private than your default "
        f"({baseline.value}).",
        details={"candidate": candidate.value, "baseline": baseline.value},
    )
