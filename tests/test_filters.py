"""
Tests for filter trees and join rules.
"""

import pytest

from core.errors import ConfigError
from transformer.filters import FilterSet, NodeType, build_tree
from transformer.joins import JoinDecision, JoinKind, JoinSet, format_shapes


# =========================================
# Filters
# =========================================

def test_single_regex():
    """A lone regex seed is the root."""
    tree = build_tree("errors", [{"regex": "ERROR"}])
    assert tree.type is NodeType.REGEX
    assert tree.matches("ERROR: disk full")
    assert not tree.matches("all good")


def test_regex_searches_anywhere():
    """Patterns match anywhere in the line unless anchored."""
    tree = build_tree("t", [{"re": "disk"}])
    assert tree.matches("ERROR: disk full")


def test_implicit_and_of_top_level_seeds():
    """Several top level seeds must all match."""
    tree = build_tree("t", [{"rx": "ERROR"}, {"rx": "disk"}])
    assert tree.type is NodeType.AND
    assert tree.matches("ERROR disk")
    assert not tree.matches("ERROR net")


def test_or_and_aliases():
    """any/or and all/and are interchangeable."""
    tree = build_tree("t", [{"any": [{"regex": "^a"}, {"regex": "^b"}]}])
    assert tree.matches("apple")
    assert tree.matches("banana")
    assert not tree.matches("cherry")

    tree = build_tree("t", [{"all": [{"regex": "a"}, {"regex": "b"}]}])
    assert tree.matches("ab")
    assert not tree.matches("a")


def test_not_inverts_nested_nodes():
    """not flips every node built beneath it."""
    tree = build_tree("t", [{"regex": "ERROR"}, {"not": [{"regex": "healthcheck"}]}])
    assert tree.matches("ERROR in request")
    assert not tree.matches("ERROR in healthcheck")


def test_double_not_cancels():
    """Two nested nots restore the original sense."""
    tree = build_tree("t", [{"not": [{"not": [{"regex": "x"}]}]}])
    assert tree.matches("x")
    assert not tree.matches("y")


def test_empty_filter_matches_everything():
    """A filter without seeds lets every line through."""
    tree = build_tree("t", [])
    assert tree.matches("anything")
    assert build_tree("t", None).matches("")


@pytest.mark.parametrize("seeds,message", [
    ({"regex": "x"}, "list of seeds"),
    ([{"regex": "x", "rx": "y"}], "exactly one key"),
    (["regex"], "exactly one key"),
    ([{"grep": "x"}], "unknown seed"),
    ([{"regex": 5}], "must be a string"),
    ([{"regex": "("}], "invalid regex"),
])
def test_malformed_seeds(seeds, message):
    """Malformed seeds raise ConfigError with a useful message."""
    with pytest.raises(ConfigError, match=message):
        build_tree("t", seeds)


def test_filter_set_lookup():
    """Named filters are looked up by name."""
    filters = FilterSet.from_config({
        "errors": [{"regex": "ERROR"}],
        "warnings": [{"regex": "WARN"}],
    })

    assert len(filters) == 2
    assert "errors" in filters
    assert sorted(filters) == ["errors", "warnings"]
    assert filters.is_match("warnings", "WARN low memory")
    with pytest.raises(KeyError):
        filters.is_match("missing", "x")


def test_filter_set_requires_mapping():
    """The filter object must map names to seeds."""
    with pytest.raises(ConfigError):
        FilterSet.from_config([{"regex": "x"}])


# =========================================
# Joins
# =========================================

def _decisions(rules, lines):
    handle = rules.new_handle()
    return [handle.decide(line) for line in lines]


def test_start_end_join():
    """start opens, end closes, everything between is joined."""
    rules = JoinSet.from_config({"start": [{"regex": "^BEGIN"}], "end": [{"regex": "^END"}]})
    assert rules.kind is JoinKind.START_END
    assert _decisions(rules, ["x", "BEGIN", "a", "END", "y"]) == [
        JoinDecision.PASS,
        JoinDecision.START,
        JoinDecision.CONTINUE,
        JoinDecision.FINISH,
        JoinDecision.PASS,
    ]


def test_start_while_join():
    """start opens, following lines join while they match."""
    rules = JoinSet.from_config({
        "start": [{"regex": "^Traceback"}],
        "while": [{"regex": "^\\s"}],
    })
    assert rules.kind is JoinKind.START_WHILE
    assert _decisions(rules, ["Traceback", "  frame", "  frame", "Error", "Traceback"]) == [
        JoinDecision.START,
        JoinDecision.CONTINUE,
        JoinDecision.CONTINUE,
        JoinDecision.PASS,
        JoinDecision.START,
    ]


def test_start_while_restarts_on_breaking_line():
    """The line that ends a join may open the next one."""
    rules = JoinSet.from_config({"start": [{"regex": "^S"}], "while": [{"regex": "^ "}]})
    assert _decisions(rules, ["S1", " a", "S2", " b"]) == [
        JoinDecision.START,
        JoinDecision.CONTINUE,
        JoinDecision.START,
        JoinDecision.CONTINUE,
    ]


def test_while_join():
    """while alone joins every run of matching lines."""
    rules = JoinSet.from_config({"while": [{"regex": "^>"}]})
    assert rules.kind is JoinKind.WHILE
    assert _decisions(rules, [">a", ">b", "c"]) == [
        JoinDecision.CONTINUE,
        JoinDecision.CONTINUE,
        JoinDecision.PASS,
    ]


def test_handles_are_independent():
    """Each handle keeps its own state."""
    rules = JoinSet.from_config({"start": [{"regex": "^B"}], "end": [{"regex": "^E"}]})
    first, second = rules.new_handle(), rules.new_handle()

    assert first.decide("B") is JoinDecision.START
    assert second.decide("x") is JoinDecision.PASS
    assert second.should_join("B")


@pytest.mark.parametrize("config", [
    {"start": [{"regex": "a"}]},
    {"end": [{"regex": "a"}]},
    {"start": [{"regex": "a"}], "while": [{"regex": "b"}], "end": [{"regex": "c"}]},
    {"while": [{"regex": "b"}], "end": [{"regex": "c"}]},
    {},
])
def test_invalid_join_shapes(config):
    """Only the three documented shapes are accepted."""
    with pytest.raises(ConfigError, match="Invalid join combination") as info:
        JoinSet.from_config(config)
    assert format_shapes() in str(info.value)


def test_format_shapes():
    """Valid shapes print as 0/1 triples."""
    assert format_shapes() == "[(1, 0, 1), (1, 1, 0), (0, 1, 0)]"


def test_join_rejects_unknown_keys():
    """Typos in the join object are reported."""
    with pytest.raises(ConfigError, match="unknown keys"):
        JoinSet.from_config({"start": [{"regex": "a"}], "stop": [{"regex": "b"}]})


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
