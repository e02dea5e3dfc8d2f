"""Tests for result graph encoding and decoding."""

import json

import pytest

from parallel_suite.graph import (
    GraphDecodeError,
    decode_suite,
    decycle,
    encode_suite,
    retrocycle,
)
from parallel_suite.models.result import ResultNode, TestError
from parallel_suite.testing.factories import build_file_tree


def _nested_tree() -> ResultNode:
    root = ResultNode(title="", root=True)
    module = root.add_suite(ResultNode(title="test_math.py", file="test_math.py"))
    cls = module.add_suite(ResultNode(title="TestAdd", file="test_math.py"))
    cls.add_test(ResultNode(title="test_ints", kind="test", status="passed", duration=0.1))
    cls.add_test(
        ResultNode(
            title="test_floats",
            kind="test",
            status="failed",
            duration=0.2,
            error=TestError(message="assert 0.3 == 0.30000000000000004", longrepr="E ..."),
        )
    )
    module.add_test(ResultNode(title="test_skip", kind="test", status="pending"))
    return root


class TestEncodeSuite:
    """Tests for encode_suite."""

    def test_output_is_json_serializable(self) -> None:
        """Encoded tree survives a JSON dump without recursion errors."""
        encoded = encode_suite(_nested_tree())

        assert json.loads(json.dumps(encoded)) == encoded

    def test_parents_become_references(self) -> None:
        """Each parent link is a reference to the first occurrence path."""
        encoded = encode_suite(_nested_tree())

        module = encoded["suites"][0]
        cls = module["suites"][0]
        assert module["parent"] == {"$ref": "$"}
        assert cls["parent"] == {"$ref": '$["suites"][0]'}
        assert cls["tests"][0]["parent"] == {"$ref": '$["suites"][0]["suites"][0]'}

    def test_ancestors_are_not_duplicated(self) -> None:
        """The root appears once, not once per descendant."""
        encoded = encode_suite(_nested_tree())

        assert json.dumps(encoded).count('"root": true') == 1

    def test_error_detail_is_kept(self) -> None:
        """Failure detail is serialized as a plain mapping."""
        encoded = encode_suite(_nested_tree())

        failed = encoded["suites"][0]["suites"][0]["tests"][1]
        assert failed["error"] == {
            "message": "assert 0.3 == 0.30000000000000004",
            "longrepr": "E ...",
        }


class TestDecodeSuite:
    """Tests for decode_suite."""

    def test_round_trip_restores_structure(self) -> None:
        """Titles, kinds, statuses and ordering survive the round trip."""
        decoded = decode_suite(json.loads(json.dumps(encode_suite(_nested_tree()))))

        module = decoded.suites[0]
        assert decoded.root is True
        assert module.title == "test_math.py"
        assert [t.title for t in module.suites[0].tests] == ["test_ints", "test_floats"]
        assert [t.status for t in decoded.iter_tests()] == ["pending", "passed", "failed"]
        assert module.suites[0].tests[1].error == TestError(
            message="assert 0.3 == 0.30000000000000004", longrepr="E ..."
        )

    def test_parent_references_are_identical_objects(self) -> None:
        """Every child's parent is the rebuilt ancestor itself, not a copy."""
        decoded = decode_suite(encode_suite(_nested_tree()))

        module = decoded.suites[0]
        cls = module.suites[0]
        assert module.parent is decoded
        assert cls.parent is module
        assert all(test.parent is cls for test in cls.tests)
        assert module.tests[0].parent is module

    def test_mutation_is_visible_through_parent_reference(self) -> None:
        """Changing a node through one reference shows through the other."""
        decoded = decode_suite(encode_suite(_nested_tree()))
        test = decoded.suites[0].suites[0].tests[0]

        assert test.parent is not None
        test.parent.title = "Renamed"

        assert decoded.suites[0].suites[0].title == "Renamed"
        assert test.full_title == "test_math.py Renamed test_ints"

    def test_full_title_after_round_trip(self) -> None:
        """Full titles are derived from the restored parent chain."""
        decoded = decode_suite(encode_suite(build_file_tree("a.py", passed=["works"])))

        assert decoded.suites[0].tests[0].full_title == "a.py works"

    def test_raises_for_unresolvable_reference(self) -> None:
        """A reference to a path that was never built is a decode error."""
        data = {
            "kind": "suite",
            "title": "",
            "root": True,
            "suites": [{"kind": "suite", "title": "a", "parent": {"$ref": "$[9]"}}],
        }

        with pytest.raises(GraphDecodeError, match="Unresolvable reference"):
            decode_suite(data)

    def test_raises_for_node_without_title(self) -> None:
        """Nodes must carry a title."""
        with pytest.raises(GraphDecodeError, match="Malformed node"):
            decode_suite({"kind": "suite", "root": True})

    def test_raises_for_non_suite_payload(self) -> None:
        """A payload that is not a node is rejected."""
        with pytest.raises(GraphDecodeError, match="Expected an encoded suite"):
            decode_suite([1, 2, 3])

    def test_raises_for_plain_mapping_among_suites(self) -> None:
        """Every entry of a suites list must decode to a node."""
        data = {"kind": "suite", "title": "", "root": True, "suites": [{"a": 1}]}

        with pytest.raises(GraphDecodeError, match="Expected a node in suites"):
            decode_suite(data)

    def test_raises_for_root_listed_as_its_own_child(self) -> None:
        """A reference back to an ancestor cannot be used as a child."""
        data = {"kind": "suite", "title": "", "root": True, "suites": [{"$ref": "$"}]}

        with pytest.raises(GraphDecodeError, match="is not a child of"):
            decode_suite(data)

    def test_raises_for_child_listed_under_two_suites(self) -> None:
        """A node shared between two parents is rejected."""
        data = {
            "kind": "suite",
            "title": "",
            "root": True,
            "suites": [
                {"kind": "suite", "title": "a", "parent": {"$ref": "$"}},
                {"$ref": '$["suites"][0]'},
            ],
        }

        with pytest.raises(GraphDecodeError, match="is not a child of"):
            decode_suite(data)

    def test_raises_for_top_level_suite_with_parent(self) -> None:
        """The decoded root cannot point back into itself."""
        data = {"kind": "suite", "title": "", "root": True, "parent": {"$ref": "$"}}

        with pytest.raises(GraphDecodeError, match="has a parent"):
            decode_suite(data)

    def test_decode_error_is_value_error(self) -> None:
        """Callers handling ValueError also handle decode failures."""
        with pytest.raises(ValueError):
            decode_suite({"$ref": "$"})


class TestGenericGraphs:
    """Tests for decycle/retrocycle on plain containers."""

    def test_self_reference(self) -> None:
        """A mapping containing itself round-trips to a self-referencing mapping."""
        data: dict[str, object] = {"name": "loop"}
        data["self"] = data

        encoded = decycle(data)
        decoded = retrocycle(encoded)

        assert encoded == {"name": "loop", "self": {"$ref": "$"}}
        assert decoded["self"] is decoded

    def test_shared_list_is_aliased(self) -> None:
        """A list referenced twice decodes to one shared list."""
        shared = [1, 2]
        encoded = decycle({"a": shared, "b": shared})
        decoded = retrocycle(encoded)

        assert encoded["b"] == {"$ref": '$["a"]'}
        assert decoded["a"] is decoded["b"]

    def test_equal_but_distinct_objects_are_copied(self) -> None:
        """Only identical objects become references, not equal ones."""
        encoded = decycle({"a": [1], "b": [1]})

        assert encoded == {"a": [1], "b": [1]}

    def test_scalars_pass_through(self) -> None:
        """Scalars are returned unchanged."""
        assert decycle(3) == 3
        assert retrocycle("x") == "x"
