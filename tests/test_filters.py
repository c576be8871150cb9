"""Tests for subscription filter predicates."""

from imagepipe.messaging.filters import AllOf, AllowListFilter, accepts, filter_from_policy


def test_allowlist_exact_membership():
    """Test that only exact allow-list values match."""
    caption = AllowListFilter("comment_type", ["Caption"])

    assert caption.matches({"comment_type": "Caption"})
    assert not caption.matches({"comment_type": "Other"})
    assert not caption.matches({"comment_type": "caption"})
    assert not caption.matches({"comment_type": "Captions"})
    assert not caption.matches({"comment_type": "Capt"})


def test_allowlist_absent_attribute_never_matches():
    """Test that messages without the attribute are rejected."""
    assert not AllowListFilter("comment_type", ["Caption"]).matches({})
    assert not AllowListFilter("comment_type", ["Caption"]).matches({"other": "Caption"})


def test_no_filter_accepts_everything():
    """Test that a missing filter always matches."""
    assert accepts(None, {})
    assert accepts(None, {"comment_type": "Other"})


def test_filter_from_policy_combines_attributes():
    """Test that every attribute of a policy must match."""
    policy = filter_from_policy({"comment_type": ["Caption", "Tag"], "source": ["web"]})

    assert isinstance(policy, AllOf)
    assert policy.matches({"comment_type": "Tag", "source": "web"})
    assert not policy.matches({"comment_type": "Tag", "source": "mobile"})
    assert not policy.matches({"comment_type": "Tag"})


def test_custom_predicate_plugs_in():
    """Test that any object with matches() works as a filter."""

    class PrefixFilter:
        def matches(self, attributes):
            return attributes.get("comment_type", "").startswith("Cap")

    assert accepts(PrefixFilter(), {"comment_type": "Caption"})
    assert not accepts(PrefixFilter(), {"comment_type": "Tag"})
