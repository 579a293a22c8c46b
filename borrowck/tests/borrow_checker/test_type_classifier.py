# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Copy-vs-move classification."""

import pickle

import pytest

from borrowck.core.types_core import TypeTable
from borrowck.type_classifier import Copyability, TypeClassifier


def _classify(table: TypeTable, ty: int) -> Copyability:
	return TypeClassifier(table).classify(ty)


def test_scalars_and_shared_refs_are_duplicable():
	table = TypeTable()
	int_ty = table.ensure_int()
	assert _classify(table, int_ty) is Copyability.DUPLICABLE
	assert _classify(table, table.ensure_bool()) is Copyability.DUPLICABLE
	assert _classify(table, table.ensure_ref(table.ensure_string())) is Copyability.DUPLICABLE


@pytest.mark.parametrize("make", ["string", "array", "ref_mut", "unknown"])
def test_owning_builtins(make):
	table = TypeTable()
	ty = {
		"string": lambda: table.ensure_string(),
		"array": lambda: table.new_array(table.ensure_int()),
		"ref_mut": lambda: table.ensure_ref_mut(table.ensure_int()),
		"unknown": lambda: table.ensure_unknown(),
	}[make]()
	assert _classify(table, ty) is Copyability.OWNING


def test_struct_is_duplicable_only_when_all_members_are():
	table = TypeTable()
	int_ty = table.ensure_int()
	point = table.define_struct("Point", [("x", int_ty), ("y", int_ty)])
	named = table.define_struct("Named", [("id", int_ty), ("name", table.ensure_string())])
	nested = table.define_struct("Segment", [("a", point), ("b", point)])
	classifier = TypeClassifier(table)
	assert classifier.is_duplicable(point)
	assert classifier.is_duplicable(nested)
	assert not classifier.is_duplicable(named)


def test_finalizer_forces_owning():
	table = TypeTable()
	handle = table.define_struct("Handle", [("fd", table.ensure_int())], has_finalizer=True)
	holder = table.define_struct("Holder", [("h", handle)])
	classifier = TypeClassifier(table)
	assert classifier.classify(handle) is Copyability.OWNING
	assert classifier.classify(holder) is Copyability.OWNING


def test_self_containing_struct_is_owning():
	table = TypeTable()
	node = table.declare_struct("Node")
	table.define_struct("Node", [("value", table.ensure_int()), ("next", node)])
	assert _classify(table, node) is Copyability.OWNING


def test_prime_fills_the_cache_and_survives_pickling():
	table = TypeTable()
	table.ensure_int()
	table.ensure_string()
	classifier = TypeClassifier(table).prime()
	clone = pickle.loads(pickle.dumps(classifier))
	for ty in table.type_ids():
		assert clone.classify(ty) is classifier.classify(ty)


def test_variant_is_duplicable_only_when_every_payload_is():
	table = TypeTable()
	int_ty = table.ensure_int()
	shelf = table.define_variant("Shelf", [("Slot", [int_ty, table.ensure_bool()]), ("Empty", [])])
	media = table.define_variant("Media", [("Book", [table.ensure_string()]), ("Dvd", [int_ty]), ("Lost", [])])
	classifier = TypeClassifier(table)
	assert classifier.is_duplicable(shelf)
	assert classifier.classify(media) is Copyability.OWNING
	assert table.get(media).field_names == ("Book", "Dvd", "Lost")
	assert table.get(media).arm_payloads[2] == ()


def test_variant_holding_an_owning_struct_is_owning():
	table = TypeTable()
	handle = table.define_struct("Handle", [("fd", table.ensure_int())], has_finalizer=True)
	maybe = table.define_variant("MaybeHandle", [("Some", [handle]), ("None", [])])
	assert _classify(table, maybe) is Copyability.OWNING


def test_self_containing_variant_is_owning():
	table = TypeTable()
	chain = table.declare_variant("Chain")
	table.define_variant("Chain", [("Link", [table.ensure_int(), chain]), ("End", [])])
	assert _classify(table, chain) is Copyability.OWNING
