# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Call arguments: auto-borrows, by-value consumption and references flowing out of calls."""

import pytest

from borrowck.core.diagnostics import Location
from borrowck.test_helpers import check_source, kinds

EXTERNS = """
extern fn len(s: &String) -> Int;
extern fn push(s: &mut String);
extern fn both(a: &mut String, b: &String);
extern fn swap(a: &mut String, b: &mut String);
extern fn eat(s: String);
extern fn first<'a>(v: &'a String) -> &'a String;
extern fn pick<'a, 'b>(x: &'a String, y: &'b String) -> &'a String;
"""


def _check(body: str, **kwargs):
	return check_source(EXTERNS + body, **kwargs)["main"]


LEN_THEN_USE = """
fn main() {
  entry:
    declare s: String;
    declare n: Int;
    init s;
    n = call len(s);
    use s;
    return;
}
"""


def test_owned_argument_is_auto_borrowed_for_the_call():
	assert kinds(_check(LEN_THEN_USE)) == []


def test_without_auto_borrow_the_argument_is_moved():
	res = _check(LEN_THEN_USE, auto_borrow=False)
	assert kinds(res) == ["UseAfterMove"]
	assert res.diagnostics[0].location == Location("main", "entry", 4)


def test_temporary_loan_ends_when_the_call_returns():
	src = """
fn main() {
  entry:
    declare mut s: String;
    init s;
    call push(s);
    call push(s);
    write s;
    return;
}
"""
	assert kinds(_check(src)) == []


def test_mutable_auto_borrow_of_immutable_binding():
	src = """
fn main() {
  entry:
    declare s: String;
    init s;
    call push(s);
    return;
}
"""
	assert kinds(_check(src)) == ["ImmutableWrite"]


def test_same_binding_passed_to_conflicting_parameters():
	src = """
fn main() {
  entry:
    declare mut s: String;
    init s;
    call both(s, s);
    return;
}
"""
	res = _check(src)
	assert kinds(res) == ["ConflictingBorrow"]
	assert res.diagnostics[0].subject == "s"


def test_by_value_argument_is_consumed():
	src = """
fn main() {
  entry:
    declare s: String;
    init s;
    call eat(s);
    use s;
    return;
}
"""
	assert kinds(_check(src)) == ["UseAfterMove"]


def test_scalar_by_value_argument_is_copied():
	src = """
extern fn take(n: Int);
fn main() {
  entry:
    declare n: Int;
    init n;
    call take(n);
    use n;
    return;
}
"""
	assert kinds(check_source(src)["main"]) == []


def test_returned_reference_keeps_the_argument_borrowed():
	src = """
fn main() {
  entry:
    declare mut s: String;
    declare r: &String;
    init s;
    r = call first(s);
    write s;
    use r;
    return;
}
"""
	res = _check(src)
	assert kinds(res) == ["WriteWhileBorrowed"]
	diag = res.diagnostics[0]
	assert diag.location == Location("main", "entry", 4)
	assert diag.related[0].location == Location("main", "entry", 3)


def test_returned_reference_loan_ends_at_its_last_use():
	src = """
fn main() {
  entry:
    declare mut s: String;
    declare r: &String;
    init s;
    r = call first(s);
    use r;
    write s;
    return;
}
"""
	assert kinds(_check(src)) == []


@pytest.mark.parametrize(
	"clause, borrowed",
	[
		("", "a"),
		(" with 'a = b", "b"),
	],
)
def test_explicit_lifetime_bindings_choose_the_borrowed_arguments(clause, borrowed):
	src = f"""
fn main() {{
  entry:
    declare mut a: String;
    declare mut b: String;
    declare r: &String;
    init a;
    init b;
    r = call pick(a, b){clause};
    write a;
    write b;
    use r;
    return;
}}
"""
	res = _check(src)
	assert kinds(res) == ["WriteWhileBorrowed"]
	assert res.diagnostics[0].subject == borrowed


def test_shared_reference_passed_to_mutable_parameter():
	src = """
fn main() {
  entry:
    declare mut s: String;
    init s;
    r = borrow s;
    call push(r);
    return;
}
"""
	res = _check(src)
	assert kinds(res) == ["ImmutableWrite"]
	assert res.diagnostics[0].subject == "r"


def test_exclusive_reference_passed_to_mutable_parameter():
	src = """
fn main() {
  entry:
    declare mut s: String;
    init s;
    r = borrow mut s;
    call push(r);
    call push(r);
    use s;
    return;
}
"""
	assert kinds(_check(src)) == []


def test_reference_from_a_parameter_flows_through_a_call():
	src = """
fn wrap<'a>(x: &'a String) -> &'a String {
  entry:
    declare r: &String;
    r = call first(x);
    return r;
}
fn main() {
  entry:
    return;
}
"""
	results = check_source(EXTERNS + src)
	assert kinds(results["wrap"]) == []


def test_reference_through_a_call_to_the_wrong_parameter():
	src = """
fn wrap<'a, 'b>(x: &'a String, y: &'b String) -> &'b String {
  entry:
    declare r: &String;
    r = call first(x);
    return r;
}
fn main() {
  entry:
    return;
}
"""
	results = check_source(EXTERNS + src)
	assert kinds(results["wrap"]) == ["LifetimeMismatch"]


def test_functions_may_call_each_other():
	src = """
fn helper(s: &String) -> Int {
  entry:
    declare n: Int;
    n = call len(s);
    return n;
}
fn main() {
  entry:
    declare s: String;
    declare n: Int;
    init s;
    n = call helper(s);
    use s;
    return;
}
"""
	results = check_source(EXTERNS + src)
	assert kinds(results["helper"]) == []
	assert kinds(results["main"]) == []


def test_call_to_unknown_function_is_malformed():
	src = """
fn main() {
  entry:
    declare s: String;
    init s;
    call nope(s);
    return;
}
"""
	res = _check(src)
	assert kinds(res) == ["MalformedProgram"]
	assert "nope" in res.diagnostics[0].message


@pytest.mark.parametrize("callee", ["swap", "both"])
def test_one_exclusive_reference_lent_to_two_parameters(callee):
	src = f"""
fn main() {{
  entry:
    declare mut s: String;
    init s;
    r = borrow mut s;
    call {callee}(r, r);
    return;
}}
"""
	res = _check(src)
	assert kinds(res) == ["ConflictingBorrow"]
	diag = res.diagnostics[0]
	assert diag.subject == "r"
	assert diag.location == Location("main", "entry", 3)


def test_one_reference_lent_to_two_shared_parameters():
	src = """
fn main() {
  entry:
    declare mut s: String;
    init s;
    r = borrow mut s;
    call pick(r, r);
    write r;
    return;
}
"""
	assert kinds(_check(src)) == []


VARIANTS = """
variant Media { Book(String), Dvd(Int), Lost }
variant Shelf { Slot(Int, Bool), Empty }
extern fn shelve(m: Media);
extern fn stack(s: Shelf);
"""


def test_owning_variant_passed_by_value_is_moved():
	src = VARIANTS + """
fn main() {
  entry:
    declare m: Media;
    init m;
    call shelve(m);
    use m;
    return;
}
"""
	res = _check(src)
	assert kinds(res) == ["UseAfterMove"]
	assert res.diagnostics[0].subject == "m"
	assert res.diagnostics[0].location == Location("main", "entry", 3)


def test_duplicable_variant_passed_by_value_stays_usable():
	src = VARIANTS + """
fn main() {
  entry:
    declare s: Shelf;
    declare t: Shelf;
    init s;
    call stack(s);
    call stack(s);
    copy t <- s;
    use s;
    return;
}
"""
	assert kinds(_check(src)) == []
