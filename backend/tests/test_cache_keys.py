"""Tests for cache key construction and pattern matching."""

from hypothesis import given, settings, strategies as st

from lms_content.cache import keys
from lms_content.cache.keys import EntityType, build_key, encode_filters, key_matches

ids = st.text(min_size=1, max_size=12)
scopes = st.one_of(st.none(), st.text(min_size=1, max_size=8))


class TestBuildKey:
    def test_layout(self):
        assert keys.course_key("c1", "t1", "o1") == "course:c1:t1:o1"
        assert keys.course_hierarchy_key("c1", "t1", "o1") == "course:hierarchy:c1:t1:o1"
        assert keys.module_lessons_key("m1", "t1", "o1") == "lesson:module:m1:t1:o1"

    def test_missing_scope_uses_placeholder(self):
        assert keys.course_key("c1", None, None) == "course:c1:@global:@global"
        assert keys.course_key("c1", "", "o1") == "course:c1:@global:o1"

    def test_segments_are_encoded(self):
        key = keys.course_key("a:b", "t*", "@global")
        assert key == "course:a%3Ab:t%2A:%40global"
        # A literal "@global" organisation never collides with the placeholder
        assert key != keys.course_key("a:b", "t*", None)

    def test_deterministic(self):
        assert build_key(EntityType.LESSON, "t", "o", "l1") == build_key(EntityType.LESSON, "t", "o", "l1")

    def test_user_progress_key(self):
        assert keys.user_progress_key("c1", "u1", "t1", "o1") == "user_progress:c1:t1:o1:u1"


class TestEncodeFilters:
    def test_order_independent(self):
        assert encode_filters({"a": 1, "b": "x"}) == encode_filters({"b": "x", "a": 1})

    def test_none_dropped_and_empty(self):
        assert encode_filters({}) == "all"
        assert encode_filters(None) == "all"
        assert encode_filters({"a": None}) == "all"
        assert encode_filters({"a": None, "b": 2}) == encode_filters({"b": 2})

    def test_tail_is_one_segment(self):
        tail = encode_filters({"query": "a:b*c", "featured": True})
        assert ":" not in tail
        assert "*" not in tail
        assert "featured=true" in tail

    def test_search_keys_differ_per_filter(self):
        first = keys.course_search_key("t1", "o1", {"query": "x", "offset": 0, "limit": 10})
        second = keys.course_search_key("t1", "o1", {"query": "x", "offset": 10, "limit": 10})
        assert first != second
        assert first.startswith("course:search:t1:o1:")


class TestKeyMatches:
    def test_trailing_wildcard_covers_extras(self):
        pattern = keys.course_hierarchy_pattern("c1", "t1", "o1")
        assert key_matches(keys.course_hierarchy_key("c1", "t1", "o1"), pattern)
        assert key_matches(keys.tracked_hierarchy_key("c1", "u1", "t1", "o1"), pattern)
        assert key_matches(keys.tracked_hierarchy_key("c1", "u1", "t1", "o1", "lesson", "m1"), pattern)

    def test_no_prefix_bleed_between_ids(self):
        pattern = keys.course_hierarchy_pattern("c1", "t1", "o1")
        assert not key_matches(keys.course_hierarchy_key("c10", "t1", "o1"), pattern)
        assert not key_matches(keys.course_key("c1", "t1", "o1"), pattern)

    def test_other_tenant_not_matched(self):
        pattern = keys.course_search_pattern("t1", "o1")
        assert key_matches(keys.course_search_key("t1", "o1", {"q": 1}), pattern)
        assert not key_matches(keys.course_search_key("t2", "o1", {"q": 1}), pattern)

    def test_user_pattern_only_covers_that_user(self):
        pattern = keys.tracked_hierarchy_user_pattern("c1", "u1", "t1", "o1")
        assert key_matches(keys.tracked_hierarchy_key("c1", "u1", "t1", "o1"), pattern)
        assert key_matches(keys.tracked_hierarchy_key("c1", "u1", "t1", "o1", "module"), pattern)
        assert not key_matches(keys.tracked_hierarchy_key("c1", "u2", "t1", "o1"), pattern)
        assert not key_matches(keys.course_hierarchy_key("c1", "t1", "o1"), pattern)

    def test_middle_wildcard_is_one_segment(self):
        assert key_matches("course:c1:t1:o1", "course:*:t1:o1")
        assert not key_matches("course:c1:t1:o1:x", "course:*:t1:o1")

    def test_module_pattern_does_not_hit_course_modules(self):
        pattern = keys.module_children_pattern("m1", "t1", "o1")
        assert not key_matches(keys.course_modules_key("m1", "t1", "o1"), pattern)


@settings(max_examples=100, deadline=None)
@given(
    entity_id=ids,
    tenant_a=scopes,
    tenant_b=scopes,
    org_a=scopes,
    org_b=scopes,
)
def test_keys_are_isolated_by_scope(entity_id, tenant_a, tenant_b, org_a, org_b):
    """Property: equal keys imply equal (normalized) tenant and organisation."""
    key_a = keys.course_key(entity_id, tenant_a, org_a)
    key_b = keys.course_key(entity_id, tenant_b, org_b)
    if key_a == key_b:
        assert (tenant_a or None) == (tenant_b or None)
        assert (org_a or None) == (org_b or None)
    assert key_matches(key_a, keys.course_key(entity_id, tenant_a, org_a))


@settings(max_examples=100, deadline=None)
@given(course_id=ids, other_id=ids, tenant=scopes, org=scopes)
def test_hierarchy_pattern_matches_only_its_course(course_id, other_id, tenant, org):
    pattern = keys.course_hierarchy_pattern(course_id, tenant, org)
    assert key_matches(keys.course_hierarchy_key(course_id, tenant, org), pattern)
    assert key_matches(keys.course_hierarchy_key(other_id, tenant, org), pattern) == (course_id == other_id)
