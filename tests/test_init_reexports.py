import cuensemble


def test_public_names_are_exported():
    for name in cuensemble.__all__:
        assert hasattr(cuensemble, name), name


def test_version_is_a_string():
    assert isinstance(cuensemble.__version__, str)
