import pytest
from deployment_watch.models import RegionConstraint
from deployment_watch.scaling import ALL_DCS, build_constraints, normalize_regions, parse_scale_args


class TestParseScaleArgs:
    """Parsing of <dc> [min] [max] arguments."""

    def test_dc_only_defaults_to_auto(self):
        assert parse_scale_args(["sfo"]) == (["sfo1"], 0, "auto")

    def test_single_number_means_exact(self):
        assert parse_scale_args(["sfo1", "3"]) == (["sfo1"], 3, 3)

    def test_min_and_max(self):
        assert parse_scale_args(["bru,sfo", "1", "5"]) == (["bru1", "sfo1"], 1, 5)

    def test_auto_min(self):
        assert parse_scale_args(["all", "auto"]) == (list(ALL_DCS), "auto", "auto")

    def test_legacy_min_applies_to_all_dcs(self):
        assert parse_scale_args(["3"]) == (list(ALL_DCS), 3, 3)
        assert parse_scale_args(["1", "auto"]) == (list(ALL_DCS), 1, "auto")
        assert parse_scale_args(["auto"]) == (list(ALL_DCS), 0, "auto")

    def test_invalid_values(self):
        with pytest.raises(ValueError, match="Invalid <min>"):
            parse_scale_args(["sfo", "many"])
        with pytest.raises(ValueError, match="Invalid <max>"):
            parse_scale_args(["sfo", "1", "-2"])
        with pytest.raises(ValueError, match="<max> argument"):
            parse_scale_args(["1", "lots"])
        with pytest.raises(ValueError, match="at most"):
            parse_scale_args(["sfo", "1", "2", "3"])
        with pytest.raises(ValueError):
            parse_scale_args([])


class TestRegions:
    """Region and DC identifier normalization."""

    def test_aliases_and_dedup(self):
        assert normalize_regions(["sfo", "sfo1", "BRU"]) == ["bru1", "sfo1"]

    def test_all_cannot_be_combined(self):
        with pytest.raises(ValueError, match="\"all\""):
            normalize_regions(["all", "sfo"])

    def test_unknown_id(self):
        with pytest.raises(ValueError, match="not a valid region"):
            normalize_regions(["mars1"])


def test_build_constraints_maps_auto():
    constraints = build_constraints(["sfo1", "bru1"], "auto", "auto")
    assert constraints == {"sfo1": RegionConstraint(0, None), "bru1": RegionConstraint(0, None)}
    assert constraints["sfo1"].to_wire() == {"min": 0, "max": "auto"}
    assert build_constraints(["sfo1"], 2, 4)["sfo1"] == RegionConstraint(2, 4)
