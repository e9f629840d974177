"""Label-encoding scheme for tract-based propagation.

The defaults follow the FreeSurfer aparc+aseg lookup table: cortical parcels
at 1001-1035 (left) and 2001-2035 (right), cerebral white matter at 2 and 41,
and corpus callosum segments at 251-255.
"""

import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from pytractparc.errors import ConfigError, IoError

NEIGHBORHOODS = ("full", "legacy")


@dataclass(frozen=True)
class PropagationScheme:
    """Label values that drive propagation.

    Attributes:
        cortical_ranges: Closed integer intervals of cortical parcel labels.
            A fiber takes its label from the last point that falls inside
            one of them.
        white_matter_codes: Cerebral white-matter labels (left, right).
        fillable_codes: Voxel labels that may be overwritten with a
            propagated cortical label. Includes the white-matter codes.
        neighborhood: ``"full"`` for the 26-connected cube around a voxel,
            ``"legacy"`` for the 7 offsets in {-1, 0}^3 minus the origin.
    """

    cortical_ranges: tuple[tuple[int, int], ...] = ((1001, 1035), (2001, 2035))
    white_matter_codes: tuple[int, ...] = (2, 41)
    fillable_codes: frozenset[int] = field(
        default_factory=lambda: frozenset({2, 41, 251, 252, 253, 254, 255}))
    neighborhood: str = "full"

    def __post_init__(self):
        for lo, hi in self.cortical_ranges:
            if lo > hi:
                raise ConfigError(
                    f"Cortical range ({lo}, {hi}) has lower bound above upper")
        if self.neighborhood not in NEIGHBORHOODS:
            raise ConfigError(
                f"Unknown neighborhood '{self.neighborhood}', "
                f"expected one of {NEIGHBORHOODS}")

    def is_cortical(self, value: float) -> bool:
        return any(lo <= value <= hi for lo, hi in self.cortical_ranges)

    def is_fillable(self, value: float) -> bool:
        return value in self.fillable_codes


DEFAULT_SCHEME = PropagationScheme()


def scheme_from_dict(data: dict[str, Any]) -> PropagationScheme:
    """Build a scheme from a plain mapping, e.g. a parsed TOML table.

    Missing keys keep their defaults. When ``fillable_codes`` is omitted but
    ``white_matter_codes`` is given, the fillable set is the white-matter
    codes plus the default corpus callosum codes.
    """
    known = {f.name for f in fields(PropagationScheme)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown scheme keys: {sorted(unknown)}")

    kwargs: dict[str, Any] = {}
    try:
        if "cortical_ranges" in data:
            kwargs["cortical_ranges"] = tuple(
                _as_range(r) for r in data["cortical_ranges"])
        if "white_matter_codes" in data:
            kwargs["white_matter_codes"] = tuple(
                int(c) for c in data["white_matter_codes"])
        if "fillable_codes" in data:
            kwargs["fillable_codes"] = frozenset(
                int(c) for c in data["fillable_codes"])
        elif "white_matter_codes" in data:
            callosum = DEFAULT_SCHEME.fillable_codes - set(
                DEFAULT_SCHEME.white_matter_codes)
            kwargs["fillable_codes"] = frozenset(
                kwargs["white_matter_codes"]) | callosum
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Malformed scheme value: {exc}") from exc
    if "neighborhood" in data:
        kwargs["neighborhood"] = str(data["neighborhood"])
    return PropagationScheme(**kwargs)


def _as_range(value: Any) -> tuple[int, int]:
    lo, hi = value
    return int(lo), int(hi)


def load_scheme(path: str | Path) -> PropagationScheme:
    """Load a propagation scheme from a TOML file.

    Keys are read from a ``[scheme]`` table when present, else from the top
    level::

        [scheme]
        cortical_ranges = [[1001, 1035], [2001, 2035]]
        white_matter_codes = [2, 41]
        fillable_codes = [2, 41, 251, 252, 253, 254, 255]
        neighborhood = "full"
    """
    path = Path(path)
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except OSError as exc:
        raise IoError(f"Could not read scheme {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path}: {exc}") from exc
    table = data.get("scheme", data)
    if not isinstance(table, dict):
        raise ConfigError(f"{path}: [scheme] must be a table")
    try:
        return scheme_from_dict(table)
    except ConfigError as exc:
        raise ConfigError(f"{path}: {exc}") from exc
