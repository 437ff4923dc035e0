import pytest

from dak.UTILS.string_interpolation import EnvironmentInterpolator


def test_interpolate():
    context = {"VAR": "value", "EMPTY": ""}
    assert EnvironmentInterpolator.interpolate("${VAR}", context) == "value"
    assert EnvironmentInterpolator.interpolate("$VAR/bin", context) == "value/bin"
    assert EnvironmentInterpolator.interpolate("${UNSET:-default}", context) == "default"
    assert EnvironmentInterpolator.interpolate("${EMPTY:-default}", context) == "default"
    assert EnvironmentInterpolator.interpolate("${EMPTY-default}", context) == ""
    assert EnvironmentInterpolator.interpolate("${VAR:+alt}", context) == "alt"
    assert EnvironmentInterpolator.interpolate("${UNSET:+alt}", context) == ""
    assert EnvironmentInterpolator.interpolate("cost: $$5", context) == "cost: $5"


def test_unset_strict():
    with pytest.raises(KeyError):
        EnvironmentInterpolator.interpolate("${UNSET}", {})


def test_unset_lenient():
    assert EnvironmentInterpolator.interpolate("a${UNSET}b", {}, strict=False) == "ab"


def test_required_message():
    with pytest.raises(KeyError, match="need it"):
        EnvironmentInterpolator.interpolate("${UNSET:?need it}", {}, strict=False)
