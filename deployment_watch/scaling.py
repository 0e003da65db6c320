"""Parsing of `<dc> [min] [max]` scale arguments into region constraints."""

import re

from .models import AUTO, RegionConstraint

# region alias -> datacenter id
REGIONS = {
    "bru": "bru1",
    "gru": "gru1",
    "iad": "iad1",
    "sfo": "sfo1",
}
ALL_DCS = tuple(sorted(REGIONS.values()))


def is_bound_argument(value):
    """A bound is a non-negative integer or "auto" """
    return value == AUTO or bool(re.fullmatch(r"\d+", value or ""))


def to_bound(value):
    return value if value == AUTO else int(value)


def normalize_regions(ids):
    """Turn region aliases, DC ids and "all" into a sorted, de-duplicated DC list"""
    ids = [i.strip().lower() for i in ids if i.strip()]
    if not ids:
        raise ValueError("No region or DC identifier given")
    if "all" in ids:
        if len(ids) > 1:
            raise ValueError("The region value \"all\" cannot be used alongside other region or dc identifiers")
        return list(ALL_DCS)

    dcs = set()
    for i in ids:
        if i in REGIONS:
            dcs.add(REGIONS[i])
        elif i in ALL_DCS:
            dcs.add(i)
        else:
            raise ValueError(f"The value \"{i}\" is not a valid region or DC identifier")
    return sorted(dcs)


def _resolve_max(minimum, maximum):
    if maximum is not None:
        return maximum
    # one bound given: "auto" means 0..auto, a number means exactly that many
    return AUTO if minimum == AUTO else minimum


def parse_scale_args(args):
    """Parse `<dc> [min] [max]` or the legacy `<min> [max]` (all DCs).

    Returns (dc_ids, min, max) where min/max are ints or "auto".
    """
    args = list(args)
    if not args:
        raise ValueError("Expected at least a <dc> argument")
    if len(args) > 3:
        raise ValueError("Expected at most <dc> [min] [max]")

    first = args[0]
    if is_bound_argument(first):
        if len(args) > 2:
            raise ValueError(f"Invalid number of arguments: expected <min> (\"{first}\") and [max]")
        minimum = to_bound(first)
        if len(args) == 2:
            if not is_bound_argument(args[1]):
                raise ValueError(f"Expected \"{args[1]}\" to be a <max> argument, but it's not numeric or \"auto\"")
            return list(ALL_DCS), minimum, to_bound(args[1])
        if minimum == AUTO:
            return list(ALL_DCS), 0, AUTO
        return list(ALL_DCS), minimum, minimum

    dc_ids = normalize_regions(first.split(","))
    if len(args) == 1:
        return dc_ids, 0, AUTO
    if not is_bound_argument(args[1]):
        raise ValueError(f"Invalid <min> parameter \"{args[1]}\". A number or \"auto\" were expected")
    minimum = to_bound(args[1])
    maximum = None
    if len(args) == 3:
        if not is_bound_argument(args[2]):
            raise ValueError(f"Invalid <max> parameter \"{args[2]}\". A number or \"auto\" were expected")
        maximum = to_bound(args[2])
    return dc_ids, minimum, _resolve_max(minimum, maximum)


def build_constraints(dc_ids, minimum, maximum):
    return {
        dc: RegionConstraint(min=0 if minimum == AUTO else minimum,
                             max=None if maximum == AUTO else maximum)
        for dc in dc_ids
    }
