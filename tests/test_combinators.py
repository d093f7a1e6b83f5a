"""Tests for the sequence protocols and combinator library.

Verifies that:
- Pair operations (map/filter/fold/chain/append) walk car/cdr to Nil
- protocol_for picks the protocol from structure, and rejects non-sequences
- Combinators return the representation they were given (pair chain in,
  pair chain out; Python list in, Python list out)
- Library functions auto-curry: ((add 1) 2) == (add 1 2)
- compose runs right-to-left, pipe left-to-right
- Record helpers (prop, pluck, group-by) work on host dicts
- prop reads only mapping keys and public record fields, never arbitrary
  attributes
"""

import dataclasses
import os
import sys
from types import SimpleNamespace

import pytest
from pydantic import BaseModel

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
from combinators import (
    LIBRARY,
    LIST_PROTOCOL,
    PAIR_PROTOCOL,
    arity_of,
    curry_n,
    pair_append,
    pair_chain,
    pair_elements,
    pair_filter,
    pair_fold,
    pair_map,
    protocol_for,
)
from scheme_runtime import Nil, Pair, SchemeError, Symbol, evaluate, make_list


def chain_of(*items):
    return make_list(items)


@dataclasses.dataclass
class Entry:
    name: str
    size: int
    _cache: str = "hidden"


class EntryModel(BaseModel):
    name: str


# ============================================================
# Pair operations
# ============================================================


class TestPairOperations:
    def test_elements(self):
        """pair_elements stops at Nil."""
        assert pair_elements(chain_of(1, 2, 3)) == [1, 2, 3]
        assert pair_elements(Nil) == []

    def test_map(self):
        result = pair_map(lambda x: x * 10, chain_of(1, 2))
        assert isinstance(result, Pair)
        assert list(result) == [10, 20]

    def test_filter(self):
        assert list(pair_filter(lambda x: x > 1, chain_of(1, 2, 3))) == [2, 3]

    def test_filter_uses_scheme_truth(self):
        """Only #f and '() reject; 0 keeps the element."""
        assert list(pair_filter(lambda x: x, chain_of(0, Nil, False, 4))) == [0, 4]

    def test_fold(self):
        """fold add 0 over (1 2 3 4) is 10."""
        assert pair_fold(lambda acc, x: acc + x, 0, chain_of(1, 2, 3, 4)) == 10

    def test_append(self):
        assert list(pair_append(chain_of(1), Nil, chain_of(2, 3))) == [1, 2, 3]

    def test_chain_flattens_one_level(self):
        """chain accepts callbacks returning either pair chains or lists."""
        result = pair_chain(lambda x: chain_of(x, x), chain_of(1, 2))
        assert list(result) == [1, 1, 2, 2]
        assert list(pair_chain(lambda x: [x, -x], chain_of(3))) == [3, -3]

    def test_duck_typed_pairs(self):
        """Anything with car/cdr is walked like a pair."""
        node = SimpleNamespace(car=1, cdr=SimpleNamespace(car=2, cdr=Nil))
        assert pair_elements(node) == [1, 2]


# ============================================================
# Protocol dispatch
# ============================================================


class TestProtocolDispatch:
    def test_pair_chain_gets_pair_protocol(self):
        assert protocol_for(chain_of(1)) is PAIR_PROTOCOL
        assert protocol_for(Nil) is PAIR_PROTOCOL

    def test_python_list_gets_list_protocol(self):
        assert protocol_for([1]) is LIST_PROTOCOL
        assert protocol_for((1,)) is LIST_PROTOCOL

    def test_non_sequence_rejected(self):
        with pytest.raises(SchemeError, match="expected a list"):
            protocol_for(42)

    def test_representation_preserved(self):
        """map returns a pair chain for a chain and a list for a list."""
        inc = LIBRARY["inc"]
        assert isinstance(LIBRARY["map"](inc, chain_of(1, 2)), Pair)
        assert LIBRARY["map"](inc, [1, 2]) == [2, 3]

    def test_empty_chain_stays_nil(self):
        assert LIBRARY["filter"](lambda x: True, Nil) is Nil


# ============================================================
# Currying
# ============================================================


class TestCurrying:
    def test_partial_application(self):
        """((add 5) 3) == (add 5 3)"""
        add = LIBRARY["add"]
        assert add(5)(3) == 8
        assert add(5, 3) == 8

    def test_reduce_one_argument_at_a_time(self):
        """reduce can be applied argument by argument."""
        assert LIBRARY["reduce"](LIBRARY["add"])(0)([1, 2, 3]) == 6

    def test_partial_carries_remaining_arity(self):
        """A partial application reports how many arguments remain."""
        partial = LIBRARY["reduce"](LIBRARY["add"])
        assert arity_of(partial) == 2

    def test_curry_n(self):
        f = curry_n(3, lambda a, b, c: a + b + c)
        assert f(1)(2)(3) == 6
        assert f(1, 2)(3) == 6

    def test_arity_of_python_function(self):
        """Defaults don't count toward arity."""
        assert arity_of(lambda a, b, c=1: a) == 2

    def test_arity_of_scheme_procedure(self):
        [proc] = evaluate("(lambda (a b) (+ a b))")
        assert arity_of(proc) == 2

    def test_curry_wraps_scheme_procedure(self):
        """curry works on lambdas from the interpreter."""
        [proc] = evaluate("(lambda (a b) (- a b))")
        assert LIBRARY["curry"](proc)(10)(4) == 6


# ============================================================
# Function combinators
# ============================================================


class TestFunctionCombinators:
    def test_compose_is_right_to_left(self):
        """compose(inc, double)(3) == inc(double(3)) == 7"""
        double = lambda x: x * 2
        assert LIBRARY["compose"](LIBRARY["inc"], double)(3) == 7

    def test_pipe_is_left_to_right(self):
        """pipe(inc, double)(3) == double(inc(3)) == 8"""
        double = lambda x: x * 2
        assert LIBRARY["pipe"](LIBRARY["inc"], double)(3) == 8

    def test_compose_requires_a_function(self):
        with pytest.raises(SchemeError, match="at least one"):
            LIBRARY["compose"]()

    def test_identity_and_always(self):
        assert LIBRARY["identity"](5) == 5
        assert LIBRARY["always"](7)("ignored") == 7


# ============================================================
# Sequence combinators
# ============================================================


class TestSequenceCombinators:
    def test_chain(self):
        assert LIBRARY["chain"](lambda x: [x, x], [1, 2]) == [1, 1, 2, 2]

    def test_uniq(self):
        """uniq keeps first occurrences and treats True and 1 as different."""
        assert LIBRARY["uniq"]([1, 2, 1, True, 3, 2]) == [1, 2, True, 3]

    def test_flatten(self):
        """flatten removes every level of nesting."""
        value = chain_of(1, chain_of(2, chain_of(3, 4)), [5])
        assert list(LIBRARY["flatten"](value)) == [1, 2, 3, 4, 5]

    def test_head_tail_last(self):
        seq = chain_of(1, 2, 3)
        assert LIBRARY["head"](seq) == 1
        assert list(LIBRARY["tail"](seq)) == [2, 3]
        assert LIBRARY["last"](seq) == 3
        assert LIBRARY["head"](Nil) is Nil

    def test_take_drop_nth(self):
        assert LIBRARY["take"](2, [1, 2, 3]) == [1, 2]
        assert LIBRARY["drop"](2, [1, 2, 3]) == [3]
        assert LIBRARY["nth"](5, [1]) is Nil

    def test_concat(self):
        """concat joins sequences and strings."""
        assert LIBRARY["concat"]([1], [2, 3]) == [1, 2, 3]
        assert LIBRARY["concat"]("ab", "cd") == "abcd"

    def test_zip(self):
        assert LIBRARY["zip"]([1, 2], ["a", "b"]) == [[1, "a"], [2, "b"]]

    def test_range(self):
        """range returns a pair chain, end-exclusive."""
        result = LIBRARY["range"](1, 4)
        assert isinstance(result, Pair)
        assert list(result) == [1, 2, 3]

    def test_aggregates(self):
        is_even = lambda x: x % 2 == 0
        assert LIBRARY["sum"]([1, 2, 3]) == 6
        assert LIBRARY["product"]([2, 3]) == 6
        assert LIBRARY["count"](is_even, [1, 2, 4]) == 2
        assert LIBRARY["any?"](is_even, [1, 3]) is False
        assert LIBRARY["all?"](is_even, [2, 4]) is True
        assert LIBRARY["none?"](is_even, [1]) is True
        assert LIBRARY["find"](is_even, [1, 4, 6]) == 4

    def test_is_empty(self):
        assert LIBRARY["is-empty?"](Nil) is True
        assert LIBRARY["is-empty?"]("") is True
        assert LIBRARY["is-empty?"]([0]) is False

    def test_sort_with_predicate(self):
        """sort accepts a less-than predicate."""
        assert LIBRARY["sort"](lambda a, b: a < b, [3, 1, 2]) == [1, 2, 3]

    def test_sort_with_comparison(self):
        assert LIBRARY["sort"](lambda a, b: b - a, [3, 1, 2]) == [3, 2, 1]

    def test_sort_by(self):
        assert LIBRARY["sort-by"](len, ["ccc", "a", "bb"]) == ["a", "bb", "ccc"]

    def test_sum_rejects_non_numbers(self):
        with pytest.raises(SchemeError, match="sum: expected a number"):
            LIBRARY["sum"](["a"])

    def test_divide_by_zero(self):
        with pytest.raises(SchemeError, match="division by zero"):
            LIBRARY["divide"](1, 0)


# ============================================================
# Record helpers
# ============================================================


class TestRecordHelpers:
    def test_prop_with_keyword_and_string(self):
        """prop accepts :key symbols and plain strings."""
        record = {"name": "a.txt"}
        assert LIBRARY["prop"](Symbol(":name"), record) == "a.txt"
        assert LIBRARY["prop"]("name", record) == "a.txt"

    def test_prop_missing_is_nil(self):
        assert LIBRARY["prop"]("size", {}) is Nil

    def test_pluck(self):
        records = [{"name": "a"}, {"name": "b"}]
        assert LIBRARY["pluck"]("name", records) == ["a", "b"]

    def test_group_by(self):
        """group-by keys groups by the string form of the key function."""
        records = [{"type": "file"}, {"type": "dir"}, {"type": "file"}]
        groups = LIBRARY["group-by"](lambda r: r["type"], records)
        assert list(groups) == ["file", "dir"]
        assert len(groups["file"]) == 2

    def test_prop_reads_record_fields(self):
        """Dataclass and pydantic records expose their declared public fields."""
        assert LIBRARY["prop"]("size", Entry("a.txt", 3)) == 3
        assert LIBRARY["prop"](Symbol(":name"), EntryModel(name="b.txt")) == "b.txt"

    def test_prop_ignores_other_attributes(self):
        """Methods, private fields and attributes of plain objects are not readable."""
        entry = Entry("a.txt", 3)
        assert LIBRARY["prop"]("_cache", entry) is Nil
        assert LIBRARY["prop"]("__class__", entry) is Nil
        assert LIBRARY["prop"]("model_dump", EntryModel(name="b")) is Nil
        assert LIBRARY["prop"]("name", SimpleNamespace(name="x")) is Nil
        assert LIBRARY["prop"]("__globals__", LIBRARY["inc"]) is Nil
        assert LIBRARY["prop"]("upper", "text") is Nil
