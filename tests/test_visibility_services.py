import itertools

import pytest

from app.errors import InvariantViolation
from app.models.identity import Visibility
from app.services.visibility import (
    PRIVACY_RANK,
    can_set_note_override,
    coerce_visibility,
    ensure_note_override_allowed,
    is_less_private,
    is_more_private_or_equal,
    most_private,
    normalize_visibility,
    rank,
    resolve_baseline,
    resolve_most_private,
    resolve_unavailable,
    resolve_visibility,
)

LAYER_VALUES = [None, *Visibility]


class TestNormalization:
    def test_accepts_enum_members_and_strings(self):
        assert coerce_visibility(Visibility.blurred) is Visibility.blurred
        assert coerce_visibility("blurred") is Visibility.blurred
        assert coerce_visibility(" Anonymized ") is Visibility.anonymized

    def test_unknown_and_empty_values_are_absent(self):
        assert coerce_visibility(None) is None
        assert coerce_visibility("") is None
        assert coerce_visibility("hidden") is None
        assert coerce_visibility(3) is None

    def test_normalize_defaults_to_pending(self):
        assert normalize_visibility("hidden") is Visibility.pending
        assert normalize_visibility(None) is Visibility.pending

    def test_rank_order(self):
        assert rank("approved") < rank("blurred") < rank("anonymized")
        assert rank("anonymized") == rank("pending")
        assert rank("pending") < rank("removed")
        assert rank("garbage") == PRIVACY_RANK[Visibility.pending]

    def test_comparisons(self):
        assert is_more_private_or_equal("removed", "approved")
        assert is_more_private_or_equal("pending", "anonymized")
        assert is_less_private("approved", "blurred")
        assert not is_less_private("blurred", "blurred")

    def test_most_private(self):
        assert most_private("approved", "blurred") is Visibility.blurred
        assert most_private(None, "bogus") is Visibility.pending
        assert most_private("removed", "approved") is Visibility.removed


class TestResolveVisibility:
    def test_override_wins_when_not_pending(self):
        assert (
            resolve_visibility("anonymized", "approved", "approved", "approved")
            is Visibility.anonymized
        )

    def test_pending_override_defers_to_author_pref(self):
        assert (
            resolve_visibility("pending", "blurred", "approved", "approved")
            is Visibility.blurred
        )

    def test_global_pref_when_no_author_pref(self):
        assert (
            resolve_visibility(None, None, "anonymized", "approved")
            is Visibility.anonymized
        )

    def test_person_base_when_no_preferences(self):
        assert resolve_visibility(None, None, None, "blurred") is Visibility.blurred

    def test_everything_absent_is_pending(self):
        assert resolve_visibility(None, None, None, None) is Visibility.pending

    def test_removed_is_absorbing_at_every_layer(self):
        for position in range(4):
            layers = ["approved"] * 4
            layers[position] = "removed"
            assert resolve_visibility(*layers) is Visibility.removed

    def test_unknown_strings_are_treated_as_absent(self):
        assert resolve_visibility("nope", "", None, "blurred") is Visibility.blurred

    def test_author_preference_scoped_to_author(self):
        # Base blurred, author C prefers approved, author D has nothing.
        assert resolve_visibility(None, "approved", None, "blurred") is (
            Visibility.approved
        )
        assert resolve_visibility(None, None, None, "blurred") is Visibility.blurred

    def test_result_is_always_a_member(self):
        for layers in itertools.product(LAYER_VALUES, repeat=4):
            assert isinstance(resolve_visibility(*layers), Visibility)

    def test_non_pending_override_never_less_private_than_baseline_when_allowed(
        self,
    ):
        for override, author, global_, base in itertools.product(
            LAYER_VALUES, repeat=4
        ):
            baseline = resolve_baseline(author, global_, base)
            if override is None or not can_set_note_override(override, baseline):
                continue
            effective = resolve_visibility(override, author, global_, base)
            assert rank(effective) >= rank(baseline)

    def test_baseline_ignores_override(self):
        assert resolve_baseline(None, "blurred", "approved") is Visibility.blurred


class TestResolveUnavailable:
    def test_never_less_private_than_anonymized(self):
        assert resolve_unavailable(None, "approved") is Visibility.anonymized
        assert resolve_unavailable("blurred", None) is Visibility.anonymized

    def test_keeps_stricter_known_values(self):
        assert resolve_unavailable("removed", "approved") is Visibility.removed


class TestLegacyRankMax:
    def test_emits_deprecation_warning(self):
        with pytest.deprecated_call():
            result = resolve_most_private("approved", "blurred")
        assert result is Visibility.blurred


class TestInvariantGuard:
    def test_pending_always_allowed(self):
        for baseline in Visibility:
            assert can_set_note_override("pending", baseline)

    def test_rank_comparison(self):
        for candidate, baseline in itertools.product(Visibility, repeat=2):
            if candidate is Visibility.pending:
                continue
            expected = PRIVACY_RANK[candidate] >= PRIVACY_RANK[baseline]
            assert can_set_note_override(candidate, baseline) is expected

    def test_rejection_carries_baseline(self):
        with pytest.raises(InvariantViolation) as exc:
            ensure_note_override_allowed("approved", "anonymized")
        assert exc.value.status_code == 400
        assert exc.value.details == {
            "candidate": "approved",
            "baseline": "anonymized",
        }
        assert "anonymized" in exc.value.detail

    def test_allowed_override_passes(self):
        ensure_note_override_allowed("removed", "approved")
        ensure_note_override_allowed("pending", "removed")
