# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
import pytest


@pytest.fixture
def write_listing(tmp_path):
	"""Write a listing under tmp_path and return its path."""

	def _write(name: str, text: str):
		path = tmp_path / name
		path.write_text(text)
		return path

	return _write
