"""
galaxysim.py
============
Force-directed 3-D layout engine for galaxy charts.

A galaxy is a fixed set of star systems (nodes) joined by symmetric
neighbour lanes.  Loading a structural description captures every system's
chart position as its *original position*; from then on the layout is
refined by a small physics simulation:

  • spring  – each lane pulls or pushes its two systems toward the lane's
              original length (the *desired distance*)
  • anti-gravity – every pair of systems repels with an inverse-square
              falloff, so the layout never collapses
  • pin     – constrained systems are pulled back toward their original
              position

Flat charts (2-D coordinates) are lifted into 3-D with z = 0; a ``jiggle``
knocks them out of the plane and the springs then settle them into a 3-D
arrangement that preserves lane lengths.

Usage (importable)
------------------
    from galaxysim import SimulationConfig, load_galaxy, read_description
    galaxy = load_galaxy(read_description("galaxy.json"), SimulationConfig())
    galaxy.jiggle(1.0)
    for _ in range(500):
        galaxy.step(0.1)

Usage (batch run with outputs, uses all defaults)
-------------------------------------------------
    python galaxysim.py galaxy.json
"""

from __future__ import annotations

import dataclasses
import enum
import json
import os
import sys
import threading
import time
from collections.abc import Iterable, Mapping
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from matplotlib.colors import to_hex, to_rgba
from scipy.spatial import cKDTree


# Separations below EPSILON have no defined direction.
EPSILON = 1e-9
# Anti-gravity softening length; keeps the repulsion finite at zero range.
SOFTENING = 1e-3
# Upper bound on anti-gravity pairs held in memory at once.
PAIR_CHUNK = 1 << 20

SYSTEM_COLOR = "#aaccff"
PINNED_COLOR = "#ff8844"

# Change-notification reasons
CHANGE_STEP      = "step"
CHANGE_JIGGLE    = "jiggle"
CHANGE_RESET     = "reset"
CHANGE_PARAMETER = "parameter"


# ---------------------------------------------------------------------------
# Configuration dataclass
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class SimulationConfig:
    """All tunable parameters for the layout simulation.

    The first block seeds a Galaxy's simulation parameters at load time;
    each of them can be changed afterwards through the matching Galaxy
    property.  The remaining fields only drive the batch runner.

    Notes on damping vs. drag
    -------------------------
    ``drag`` is a per-step multiplicative loss on *velocity* (the velocity
    kept after a step is scaled by ``1 - drag``).  ``damping`` scales only
    the *position update* taken from that velocity (a step moves a system
    by ``v * dt * (1 - damping)``), so it slows movement without bleeding
    energy out of the velocity state.
    """

    # ---- physics ----
    damping: float = 0.5
    drag: float = 0.5
    neighbour_weight: float = 1.0
    pin_weight: float = 1.0
    constraint_weight: float = 1.0     # scales spring and pin terms
    anti_gravity_strength: float = 1.0
    anti_gravity_range: float = 0.0    # <= 0: every pair repels

    # ---- reproducibility ----
    seed: int = 7

    # ---- batch run ----
    time_step: float = 0.1
    n_steps: int = 500
    jiggle_scale: float = 0.0          # 0 = start from the chart layout

    # ---- output ----
    out_dir: str = "output"
    write_gexf: bool = True            # attempt GEXF export (requires networkx)


_PARAMETER_FIELDS = (
    "damping", "drag", "neighbour_weight", "pin_weight",
    "constraint_weight", "anti_gravity_strength", "anti_gravity_range",
)


# ---------------------------------------------------------------------------
# Structural errors
# ---------------------------------------------------------------------------

class StructureViolation(enum.Enum):
    """Which structural invariant a description broke."""

    MALFORMED_RECORD       = "malformed record"
    NEIGHBOUR_OUT_OF_RANGE = "neighbour index out of range"
    ASYMMETRIC_NEIGHBOURS  = "asymmetric neighbour pair"
    SELF_NEIGHBOUR         = "system lists itself as a neighbour"


class StructureInvalid(ValueError):
    """Raised when a galaxy description violates a structural invariant.

    Attributes
    ----------
    index     : index of the offending record
    kind      : StructureViolation
    neighbour : offending neighbour index, or None when not applicable
    """

    def __init__(
        self,
        index: int,
        kind: StructureViolation,
        detail: str,
        neighbour: Optional[int] = None,
    ) -> None:
        self.index = index
        self.kind = kind
        self.neighbour = neighbour
        super().__init__(f"system {index}: {kind.value}: {detail}")


@dataclasses.dataclass
class LoadResult:
    """Either a loaded Galaxy or the StructureInvalid that prevented it."""

    galaxy: Optional["Galaxy"] = None
    error: Optional[StructureInvalid] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> "Galaxy":
        if self.error is not None:
            raise self.error
        return self.galaxy


# ---------------------------------------------------------------------------
# Description records
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class SystemRecord:
    """One system in a structural description.

    ``position`` may have two components (flat chart coordinates); it is
    lifted into 3-D with z = 0.  ``color`` accepts anything matplotlib
    understands as a colour; None derives one from the pin flag.
    """

    name: str
    position: Sequence[float]
    neighbours: Sequence[int] = ()
    constrained: bool = False
    color: Optional[Union[str, Sequence[float]]] = None


RecordLike = Union[SystemRecord, Mapping]


def _first_key(record: Mapping, keys: Tuple[str, ...], default=None):
    for key in keys:
        if key in record:
            return record[key]
    return default


def _as_record(index: int, raw: RecordLike) -> SystemRecord:
    """Normalise a SystemRecord or a plain mapping into a SystemRecord."""
    if isinstance(raw, SystemRecord):
        return raw
    if not isinstance(raw, Mapping):
        raise StructureInvalid(
            index, StructureViolation.MALFORMED_RECORD,
            f"expected a mapping or SystemRecord, got {type(raw).__name__}",
        )
    position = _first_key(raw, ("position", "coordinates"))
    if position is None:
        raise StructureInvalid(
            index, StructureViolation.MALFORMED_RECORD, "missing position",
        )
    return SystemRecord(
        name        = str(raw.get("name", f"System {index}")),
        position    = position,
        neighbours  = _first_key(raw, ("neighbours", "neighbors"), ()),
        constrained = bool(_first_key(raw, ("constrained", "pinned"), False)),
        color       = raw.get("color"),
    )


def _parse_position(index: int, position) -> np.ndarray:
    try:
        xyz = np.asarray(position, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError):
        raise StructureInvalid(
            index, StructureViolation.MALFORMED_RECORD,
            f"position {position!r} is not numeric",
        ) from None
    if len(xyz) == 2:
        xyz = np.append(xyz, 0.0)
    if len(xyz) != 3 or not np.all(np.isfinite(xyz)):
        raise StructureInvalid(
            index, StructureViolation.MALFORMED_RECORD,
            f"position {position!r} must be 2 or 3 finite numbers",
        )
    return xyz


def _parse_neighbours(index: int, neighbours) -> Tuple[int, ...]:
    """Integer neighbour indices, repeats collapsed, first-seen order kept."""
    if isinstance(neighbours, (str, bytes)) or not isinstance(neighbours, Iterable):
        raise StructureInvalid(
            index, StructureViolation.MALFORMED_RECORD,
            f"neighbours {neighbours!r} is not a list of indices",
        )
    seen: dict = {}
    for entry in neighbours:
        if isinstance(entry, (bool, np.bool_)) or not isinstance(
            entry, (int, np.integer)
        ):
            raise StructureInvalid(
                index, StructureViolation.MALFORMED_RECORD,
                f"neighbour entry {entry!r} is not an integer",
            )
        seen.setdefault(int(entry), None)
    return tuple(seen)


def _parse_color(index: int, color, constrained: bool) -> Tuple[float, ...]:
    if color is None:
        color = PINNED_COLOR if constrained else SYSTEM_COLOR
    try:
        return tuple(float(c) for c in to_rgba(color))
    except (TypeError, ValueError):
        raise StructureInvalid(
            index, StructureViolation.MALFORMED_RECORD,
            f"colour {color!r} is not recognised",
        ) from None


# ---------------------------------------------------------------------------
# Geometry helpers
# ---------------------------------------------------------------------------

def unit_vectors(delta: np.ndarray, dist: np.ndarray) -> np.ndarray:
    """Row-wise ``delta / dist``, with zero rows where ``dist < EPSILON``.

    Parameters
    ----------
    delta : ndarray, shape ``(M, 3)``
    dist  : ndarray, shape ``(M,)`` – norms of the rows of *delta*

    Returns
    -------
    ndarray of shape ``(M, 3)``.
    """
    out = np.zeros_like(delta)
    ok = dist >= EPSILON
    out[ok] = delta[ok] / dist[ok, None]
    return out


def all_pairs(n: int, chunk: int = PAIR_CHUNK) -> Iterator[np.ndarray]:
    """Every unordered index pair ``(i, j)`` with ``i < j``.

    Yields ``(P, 2)`` blocks of roughly *chunk* pairs each, so the full
    O(n²) pair list is never materialised.
    """
    rows = max(1, chunk // max(n, 1))
    cols = np.arange(n, dtype=np.int64)
    for start in range(0, n - 1, rows):
        stop = min(start + rows, n - 1)
        i = np.arange(start, stop, dtype=np.int64)
        ii, jj = np.nonzero(cols[None, :] > i[:, None])
        yield np.column_stack([i[ii], cols[jj]])


# ---------------------------------------------------------------------------
# System handle
# ---------------------------------------------------------------------------

class System:
    """Read-only view of one star system inside a Galaxy.

    The Galaxy stores all node state in its own arrays; a System only
    carries its index and reads through to them.  Vectors are returned as
    copies.
    """

    __slots__ = ("_galaxy", "_index")

    def __init__(self, galaxy: "Galaxy", index: int) -> None:
        self._galaxy = galaxy
        self._index = index

    @property
    def index(self) -> int:
        return self._index

    @property
    def name(self) -> str:
        return self._galaxy._names[self._index]

    @property
    def original_position(self) -> np.ndarray:
        return self._galaxy._original[self._index].copy()

    @property
    def position(self) -> np.ndarray:
        return self._galaxy._position[self._index].copy()

    @property
    def velocity(self) -> np.ndarray:
        return self._galaxy._velocity[self._index].copy()

    @property
    def force(self) -> np.ndarray:
        return self._galaxy._force[self._index].copy()

    @property
    def color(self) -> Tuple[float, float, float, float]:
        return tuple(float(c) for c in self._galaxy._colors[self._index])

    @property
    def constrained(self) -> bool:
        return bool(self._galaxy._constrained[self._index])

    @property
    def neighbours(self) -> Tuple["System", ...]:
        systems = self._galaxy.systems
        return tuple(systems[j] for j in self._galaxy._neighbours[self._index])

    def desired_distance_to(self, other: "System") -> float:
        return self._galaxy.desired_distance(self._index, other.index)

    def actual_distance_to(self, other: "System") -> float:
        return self._galaxy.actual_distance(self._index, other.index)

    def has_neighbour(self, other: "System") -> bool:
        return self._galaxy.has_neighbour(self._index, other.index)

    def get_color_components(self) -> Tuple[float, float, float, float]:
        """Return the RGBA display colour, each component in [0, 1]."""
        return self.color

    def __repr__(self) -> str:
        return f"System(index={self._index}, name={self.name!r})"


# ---------------------------------------------------------------------------
# Galaxy
# ---------------------------------------------------------------------------

ChangeCallback = Callable[["Galaxy", str], None]


def _parameter(name: str) -> property:
    """Simulation parameter property that notifies observers when set."""
    attr = "_" + name

    def getter(self: "Galaxy") -> float:
        return getattr(self, attr)

    def setter(self: "Galaxy", value: float) -> None:
        with self.lock:
            setattr(self, attr, float(value))
        self._notify(CHANGE_PARAMETER)

    return property(getter, setter, doc=f"Simulation parameter ``{name}``.")


class Galaxy:
    """A fixed set of star systems plus the simulation acting on them.

    Build one with :func:`load_galaxy`; the constructor expects already
    validated arrays.

    All node state lives in ``(N, 3)`` arrays indexed by system index.
    Lanes are held once each in an ``(E, 2)`` edge array with
    ``source < target``, alongside their fixed rest lengths.

    Every mutating operation holds ``lock`` while it mutates and notifies
    subscribers after it has finished.
    """

    damping               = _parameter("damping")
    drag                  = _parameter("drag")
    neighbour_weight      = _parameter("neighbour_weight")
    pin_weight            = _parameter("pin_weight")
    constraint_weight     = _parameter("constraint_weight")
    anti_gravity_strength = _parameter("anti_gravity_strength")
    anti_gravity_range    = _parameter("anti_gravity_range")

    def __init__(
        self,
        names: Sequence[str],
        positions: np.ndarray,
        neighbours: Sequence[Tuple[int, ...]],
        constrained: np.ndarray,
        colors: np.ndarray,
        cfg: Optional[SimulationConfig] = None,
    ) -> None:
        cfg = cfg or SimulationConfig()
        n = len(names)

        self._names       = list(names)
        self._original    = np.array(positions, dtype=np.float64).reshape(n, 3)
        self._original.flags.writeable = False
        self._position    = self._original.copy()
        self._velocity    = np.zeros((n, 3), dtype=np.float64)
        self._force       = np.zeros((n, 3), dtype=np.float64)
        self._constrained = np.asarray(constrained, dtype=bool).reshape(n)
        self._colors      = np.asarray(colors, dtype=np.float64).reshape(n, 4)
        self._neighbours  = [tuple(nb) for nb in neighbours]

        pairs = [(i, j) for i, nb in enumerate(self._neighbours) for j in nb if i < j]
        self._edges = np.array(pairs, dtype=np.int64).reshape(-1, 2)
        self._rest_lengths = np.linalg.norm(
            self._original[self._edges[:, 1]] - self._original[self._edges[:, 0]],
            axis=1,
        )

        for name in _PARAMETER_FIELDS:
            setattr(self, "_" + name, float(getattr(cfg, name)))

        self._rng = np.random.default_rng(cfg.seed)
        self._observers: List[ChangeCallback] = []
        self.lock = threading.RLock()
        self._systems = tuple(System(self, i) for i in range(n))

    # ------------------------------------------------------------------
    # Node access
    # ------------------------------------------------------------------

    @property
    def systems(self) -> Tuple[System, ...]:
        return self._systems

    def system_at(self, index: int) -> System:
        if not 0 <= index < len(self._systems):
            raise IndexError(
                f"system index {index} outside [0, {len(self._systems)})"
            )
        return self._systems[index]

    def __len__(self) -> int:
        return len(self._systems)

    def __iter__(self):
        return iter(self._systems)

    def __repr__(self) -> str:
        return f"Galaxy({len(self)} systems, {len(self._edges)} lanes)"

    # Bulk read surface – copies, so callers can never write back.

    @property
    def names(self) -> List[str]:
        return list(self._names)

    @property
    def positions(self) -> np.ndarray:
        return self._position.copy()

    @property
    def original_positions(self) -> np.ndarray:
        return self._original.copy()

    @property
    def velocities(self) -> np.ndarray:
        return self._velocity.copy()

    @property
    def forces(self) -> np.ndarray:
        return self._force.copy()

    @property
    def colors(self) -> np.ndarray:
        return self._colors.copy()

    @property
    def constrained(self) -> np.ndarray:
        return self._constrained.copy()

    @property
    def edges(self) -> np.ndarray:
        return self._edges.copy()

    @property
    def rest_lengths(self) -> np.ndarray:
        return self._rest_lengths.copy()

    def parameters(self) -> dict:
        """Current simulation parameters keyed by SimulationConfig field name."""
        return {name: getattr(self, name) for name in _PARAMETER_FIELDS}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def desired_distance(self, a: int, b: int) -> float:
        """Distance between the original positions of systems *a* and *b*."""
        return float(np.linalg.norm(self._original[b] - self._original[a]))

    def actual_distance(self, a: int, b: int) -> float:
        """Distance between the current positions of systems *a* and *b*."""
        return float(np.linalg.norm(self._position[b] - self._position[a]))

    def has_neighbour(self, a: int, b: int) -> bool:
        return b in self._neighbours[a]

    def edge_strain(self) -> np.ndarray:
        """Per-lane ``actual - desired`` length, in edge-array order."""
        e = self._edges
        actual = np.linalg.norm(self._position[e[:, 1]] - self._position[e[:, 0]], axis=1)
        return actual - self._rest_lengths

    def max_pin_drift(self) -> float:
        """Largest distance of any constrained system from its original position."""
        if not self._constrained.any():
            return 0.0
        drift = self._position[self._constrained] - self._original[self._constrained]
        return float(np.linalg.norm(drift, axis=1).max())

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Call ``callback(galaxy, reason)`` after every mutation.

        Returns a function that removes the subscription.
        """
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def _notify(self, reason: str) -> None:
        for callback in list(self._observers):
            callback(self, reason)

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    def _anti_gravity_pairs(self, pos: np.ndarray) -> Iterator[np.ndarray]:
        if self._anti_gravity_range > 0:
            tree = cKDTree(pos)
            pairs = tree.query_pairs(
                self._anti_gravity_range, output_type="ndarray"
            ).astype(np.int64).reshape(-1, 2)
            for start in range(0, len(pairs), PAIR_CHUNK):
                yield pairs[start:start + PAIR_CHUNK]
            return
        yield from all_pairs(len(pos), PAIR_CHUNK)

    def compute_forces(self) -> np.ndarray:
        """Total force on every system from the current positions.

        Pure with respect to the galaxy state: reads one snapshot of the
        positions and returns a new ``(N, 3)`` array.

        Terms
        -----
        spring       k_n * k_c * (L - D) * u_ij     on i, opposite on j
        anti-gravity k_a / (L² + s²) * u_ij         away from each other
        pin          k_p * k_c * (p0 - p)           constrained systems only

        where ``u_ij`` is the unit vector from i to j, ``L`` the current and
        ``D`` the original separation.
        """
        pos = self._position.copy()
        forces = np.zeros_like(pos)
        n = len(pos)
        if n == 0:
            return forces

        constraint = self._constraint_weight

        # ── Springs along lanes ──────────────────────────────────────────
        if len(self._edges) > 0:
            src = self._edges[:, 0]
            tgt = self._edges[:, 1]
            delta = pos[tgt] - pos[src]
            dist = np.linalg.norm(delta, axis=1)
            magnitude = self._neighbour_weight * constraint * (dist - self._rest_lengths)
            f = unit_vectors(delta, dist) * magnitude[:, None]
            np.add.at(forces, src, f)
            np.add.at(forces, tgt, -f)

        # ── Anti-gravity between all (or nearby) pairs ───────────────────
        if self._anti_gravity_strength != 0.0 and n > 1:
            for pairs in self._anti_gravity_pairs(pos):
                src = pairs[:, 0]
                tgt = pairs[:, 1]
                delta = pos[tgt] - pos[src]
                dist = np.linalg.norm(delta, axis=1)
                magnitude = self._anti_gravity_strength / (dist * dist + SOFTENING * SOFTENING)
                f = unit_vectors(delta, dist) * magnitude[:, None]
                np.add.at(forces, src, -f)
                np.add.at(forces, tgt, f)

        # ── Pins ─────────────────────────────────────────────────────────
        if self._constrained.any():
            pinned = self._constrained
            forces[pinned] += (
                self._pin_weight * constraint * (self._original[pinned] - pos[pinned])
            )

        return forces

    def step(self, time_step: float) -> None:
        """Advance the simulation by one step of *time_step*.

        Forces for every system are computed first from the pre-step
        positions; only then are velocities and positions integrated.
        """
        with self.lock:
            forces = self.compute_forces()
            velocity = (self._velocity + forces * time_step) * (1.0 - self._drag)
            self._position = self._position + velocity * time_step * (1.0 - self._damping)
            self._velocity = velocity
            self._force = forces
        self._notify(CHANGE_STEP)

    def jiggle(self, scale: float) -> None:
        """Displace every system by a uniform random offset in ``[-scale, scale]³``.

        Draws from the galaxy's own generator, so galaxies with the same
        seed and the same call sequence jiggle identically.
        """
        limit = abs(float(scale))
        with self.lock:
            offsets = self._rng.uniform(-limit, limit, size=self._position.shape)
            self._position = self._position + offsets
        self._notify(CHANGE_JIGGLE)

    def reset(self) -> None:
        """Return every system to its original position at rest."""
        with self.lock:
            self._position = self._original.copy()
            self._velocity = np.zeros_like(self._velocity)
            self._force = np.zeros_like(self._force)
        self._notify(CHANGE_RESET)

    def is_finite(self) -> bool:
        return bool(
            np.all(np.isfinite(self._position))
            and np.all(np.isfinite(self._velocity))
            and np.all(np.isfinite(self._force))
        )

    # ------------------------------------------------------------------
    # Exports
    # ------------------------------------------------------------------

    def debug_graphviz(self) -> str:
        """Graphviz DOT text: one node per system, one edge per lane."""
        lines = [
            "graph galaxy",
            "{",
            "\tgraph [overlap=false];",
            "\tnode [shape=point];",
            "\t",
        ]
        for i, name in enumerate(self._names):
            x, y, z = self._position[i]
            label = name.replace("\\", "\\\\").replace('"', '\\"')
            lines.append(
                f'\ts{i} [label="{label}" pos="{x:g},{y:g}" z="{z:g}"];'
            )
        lines.append("\t")
        for src, tgt in self._edges:
            lines.append(f"\ts{src} -- s{tgt};")
        lines.append("}")
        return "\n".join(lines) + "\n"

    def to_records(self) -> List[dict]:
        """Current state in the load description shape (loadable again)."""
        return [
            {
                "name":        self._names[i],
                "position":    [float(v) for v in self._position[i]],
                "neighbours":  list(self._neighbours[i]),
                "constrained": bool(self._constrained[i]),
                "color":       to_hex(self._colors[i], keep_alpha=True),
            }
            for i in range(len(self))
        ]

    def to_frames(self) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """Return ``(nodes_df, edges_df)``.

        nodes_df : id, name, x, y, z, x0, y0, z0, vx, vy, vz, fx, fy, fz,
                   constrained, color
        edges_df : source, target, desired, actual, strain
        """
        pos, orig, vel, frc = self._position, self._original, self._velocity, self._force
        nodes = pd.DataFrame({
            "id":          np.arange(len(self), dtype=np.int64),
            "name":        self._names,
            "x":  pos[:, 0],  "y":  pos[:, 1],  "z":  pos[:, 2],
            "x0": orig[:, 0], "y0": orig[:, 1], "z0": orig[:, 2],
            "vx": vel[:, 0],  "vy": vel[:, 1],  "vz": vel[:, 2],
            "fx": frc[:, 0],  "fy": frc[:, 1],  "fz": frc[:, 2],
            "constrained": self._constrained.copy(),
            "color":       [to_hex(c, keep_alpha=True) for c in self._colors],
        })
        strain = self.edge_strain()
        edges = pd.DataFrame({
            "source":  self._edges[:, 0].copy(),
            "target":  self._edges[:, 1].copy(),
            "desired": self._rest_lengths.copy(),
            "actual":  self._rest_lengths + strain,
            "strain":  strain,
        })
        return nodes, edges

    def web_viewer_data(self) -> dict:
        """Flat position/colour/lane arrays in the WebGL galaxy viewer layout."""
        return {
            "positions":  [float(v) for v in self._position.reshape(-1)],
            "colors":     [float(v) for v in self._colors[:, :3].reshape(-1)],
            "neighbours": [int(v) for v in self._edges.reshape(-1)],
        }


# ---------------------------------------------------------------------------
# Loader / validator
# ---------------------------------------------------------------------------

def load_galaxy(
    records: Iterable[RecordLike],
    cfg: Optional[SimulationConfig] = None,
) -> Galaxy:
    """Validate a structural description and build a Galaxy from it.

    Checks, in order: record shape; every neighbour index within
    ``[0, N)``; the neighbour relation is symmetric; no system lists
    itself.  The first violation raises StructureInvalid and no Galaxy is
    built.

    Parameters
    ----------
    records : ordered SystemRecords or mappings (see SystemRecord)
    cfg     : SimulationConfig supplying initial parameters and the seed

    Returns
    -------
    Galaxy
    """
    parsed = [_as_record(i, raw) for i, raw in enumerate(records)]
    n = len(parsed)

    positions   = np.zeros((n, 3), dtype=np.float64)
    colors      = np.zeros((n, 4), dtype=np.float64)
    constrained = np.zeros(n, dtype=bool)
    neighbours: List[Tuple[int, ...]] = []

    for i, rec in enumerate(parsed):
        positions[i]   = _parse_position(i, rec.position)
        constrained[i] = bool(rec.constrained)
        colors[i]      = _parse_color(i, rec.color, constrained[i])
        neighbours.append(_parse_neighbours(i, rec.neighbours))

    # (a) range
    for i, nb in enumerate(neighbours):
        for j in nb:
            if not 0 <= j < n:
                raise StructureInvalid(
                    i, StructureViolation.NEIGHBOUR_OUT_OF_RANGE,
                    f"neighbour index {j} outside [0, {n})",
                    neighbour=j,
                )

    # (b) symmetry
    neighbour_sets = [set(nb) for nb in neighbours]
    for i, nb in enumerate(neighbours):
        for j in nb:
            if i not in neighbour_sets[j]:
                raise StructureInvalid(
                    i, StructureViolation.ASYMMETRIC_NEIGHBOURS,
                    f"lists {j} as a neighbour but {j} does not list {i}",
                    neighbour=j,
                )

    # (c) self-reference
    for i, nb in enumerate(neighbours):
        if i in neighbour_sets[i]:
            raise StructureInvalid(
                i, StructureViolation.SELF_NEIGHBOUR,
                f"neighbour list {list(nb)} contains {i}",
                neighbour=i,
            )

    return Galaxy(
        names       = [rec.name for rec in parsed],
        positions   = positions,
        neighbours  = neighbours,
        constrained = constrained,
        colors      = colors,
        cfg         = cfg,
    )


def try_load_galaxy(
    records: Iterable[RecordLike],
    cfg: Optional[SimulationConfig] = None,
) -> LoadResult:
    """Like load_galaxy, but returns a LoadResult instead of raising."""
    try:
        return LoadResult(galaxy=load_galaxy(records, cfg))
    except StructureInvalid as exc:
        return LoadResult(error=exc)


def records_from_frames(nodes: pd.DataFrame, edges: pd.DataFrame) -> List[dict]:
    """Build description records from node/edge tables.

    Parameters
    ----------
    nodes : DataFrame – ``name``, ``x``, ``y`` and optionally ``z``,
            ``constrained``, ``color``; row order gives the system index
    edges : DataFrame – ``source`` and ``target``; each row is one
            undirected lane

    Returns
    -------
    list of record dicts accepted by load_galaxy.
    """
    n = len(nodes)
    adj: list[list[int]] = [[] for _ in range(n)]
    if len(edges) > 0:
        src = edges["source"].values.astype(np.int64)
        tgt = edges["target"].values.astype(np.int64)
        for s, t in zip(src, tgt):
            s, t = int(s), int(t)
            if 0 <= s < n:
                adj[s].append(t)
            if 0 <= t < n:
                adj[t].append(s)

    z = nodes["z"].values if "z" in nodes.columns else np.zeros(n)
    records = []
    for i, row in enumerate(nodes.itertuples(index=False)):
        rec = {
            "name":       str(getattr(row, "name", f"System {i}")),
            "position":   [float(row.x), float(row.y), float(z[i])],
            "neighbours": adj[i],
        }
        if "constrained" in nodes.columns:
            rec["constrained"] = bool(row.constrained)
        if "color" in nodes.columns and isinstance(row.color, str) and row.color:
            rec["color"] = row.color
        records.append(rec)
    return records


def read_description(path: str) -> List[dict]:
    """Read a galaxy description from disk.

    *path* is either a JSON file (a list of records, or an object with a
    ``systems`` list) or a directory holding ``nodes.csv`` and
    ``edges.csv`` as written by write_outputs.
    """
    if os.path.isdir(path):
        # Names such as "NA" or "" must survive the round trip.
        nodes = pd.read_csv(os.path.join(path, "nodes.csv"), keep_default_na=False)
        edges_path = os.path.join(path, "edges.csv")
        edges = (
            pd.read_csv(edges_path) if os.path.exists(edges_path)
            else pd.DataFrame(columns=["source", "target"])
        )
        return records_from_frames(nodes, edges)

    with open(path) as f:
        data = json.load(f)
    if isinstance(data, Mapping):
        if not isinstance(data.get("systems"), list):
            raise ValueError(
                f"{path}: expected a list of systems or an object with a "
                f"'systems' list, got keys {sorted(data)}"
            )
        data = data["systems"]
    if not isinstance(data, list):
        raise ValueError(
            f"{path}: expected a list of systems, got {type(data).__name__}"
        )
    return data


# ---------------------------------------------------------------------------
# Output writers
# ---------------------------------------------------------------------------

def _write_gexf(nodes: pd.DataFrame, edges: pd.DataFrame, out_dir: str) -> None:
    """Export a GEXF file for Gephi (requires networkx ≥ 2.0)."""
    try:
        import networkx as nx
    except ImportError:
        print("  networkx not found – skipping GEXF export.  "
              "Install with: pip install networkx")
        return

    G = nx.Graph()

    # Cast to plain Python types so networkx serialises cleanly
    for row in nodes.itertuples(index=False):
        G.add_node(
            int(row.id),
            label=str(row.name),
            x=float(row.x), y=float(row.y), z=float(row.z),
            constrained=bool(row.constrained),
            color=str(row.color),
        )
    for row in edges.itertuples(index=False):
        G.add_edge(
            int(row.source),
            int(row.target),
            desired=float(row.desired),
            actual=float(row.actual),
        )

    gexf_path = os.path.join(out_dir, "graph.gexf")
    nx.write_gexf(G, gexf_path)
    print(f"  Wrote {gexf_path}")


def write_outputs(galaxy: Galaxy, out_dir: str, write_gexf: bool = True) -> List[str]:
    """Write every export of *galaxy* into *out_dir* (created if absent).

    Files: nodes.csv, edges.csv, galaxy.json (description records),
    viewer.json (WebGL viewer layout), graph.dot and optionally graph.gexf.

    Returns
    -------
    list of written paths (GEXF excluded).
    """
    os.makedirs(out_dir, exist_ok=True)
    nodes, edges = galaxy.to_frames()
    written = []

    nodes_path = os.path.join(out_dir, "nodes.csv")
    edges_path = os.path.join(out_dir, "edges.csv")
    nodes.to_csv(nodes_path, index=False)
    edges.to_csv(edges_path, index=False)
    written += [nodes_path, edges_path]

    for filename, payload in (
        ("galaxy.json", {"systems": galaxy.to_records()}),
        ("viewer.json", galaxy.web_viewer_data()),
    ):
        path = os.path.join(out_dir, filename)
        with open(path, "w") as f:
            json.dump(payload, f, indent=1)
        written.append(path)

    dot_path = os.path.join(out_dir, "graph.dot")
    with open(dot_path, "w") as f:
        f.write(galaxy.debug_graphviz())
    written.append(dot_path)

    for path in written:
        print(f"Wrote {path}")

    if write_gexf:
        _write_gexf(nodes, edges, out_dir)

    return written


# ---------------------------------------------------------------------------
# Batch runner
# ---------------------------------------------------------------------------

class SimulationRunner:
    """Drives a loaded Galaxy through a fixed batch of simulation steps.

    Parameters
    ----------
    cfg : SimulationConfig
        ``jiggle_scale``, ``time_step`` and ``n_steps`` shape the run;
        ``out_dir`` and ``write_gexf`` control outputs.
    """

    def __init__(self, cfg: SimulationConfig) -> None:
        self.cfg = cfg

    def _run_checks(self, galaxy: Galaxy) -> bool:
        """Print acceptance results to stdout; True when every check passes."""
        sep = "─" * 52

        print(f"\n{sep}")
        print("  ACCEPTANCE TESTS")
        print(sep)

        ok_finite = galaxy.is_finite()
        print(f"  Finite state : {'✓' if ok_finite else '✗ FAIL'}")

        strain = np.abs(galaxy.edge_strain())
        if len(strain) == 0:
            print("  (no lanes to check)")
        else:
            print(f"  Lane strain  : mean={strain.mean():.4f}  "
                  f"median={np.median(strain):.4f}  max={strain.max():.4f}")
            print(f"    lanes={len(strain):,}")

        n_pinned = int(galaxy.constrained.sum())
        if n_pinned:
            print(f"  Pin drift    : max={galaxy.max_pin_drift():.4f}  "
                  f"({n_pinned:,} pinned systems)")

        print(sep + "\n")
        return ok_finite

    def run(self, galaxy: Galaxy) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """Jiggle (optional), step, check, and write outputs.

        Returns
        -------
        nodes_df, edges_df : see Galaxy.to_frames
        """
        cfg = self.cfg
        t_start = time.perf_counter()

        print(f"Loaded {len(galaxy):,} systems, {len(galaxy.edges):,} lanes.")

        # ── Stage A ──────────────────────────────────────────────────
        if cfg.jiggle_scale > 0:
            print(f"Stage A: jiggling (scale {cfg.jiggle_scale}) …")
            galaxy.jiggle(cfg.jiggle_scale)

        # ── Stage B ──────────────────────────────────────────────────
        print(f"Stage B: {cfg.n_steps:,} steps of dt={cfg.time_step} …")
        t0 = time.perf_counter()
        for _ in range(cfg.n_steps):
            galaxy.step(cfg.time_step)
        print(f"  Simulated in {time.perf_counter() - t0:.2f}s")

        # ── Acceptance tests ─────────────────────────────────────────
        if not self._run_checks(galaxy):
            print("WARNING: state is not finite; try a smaller time_step or "
                  "more drag. Writing outputs for inspection.")

        # ── Write outputs ─────────────────────────────────────────────
        write_outputs(galaxy, cfg.out_dir, write_gexf=cfg.write_gexf)

        elapsed = time.perf_counter() - t_start
        print(f"\nTotal time: {elapsed:.2f}s")

        return galaxy.to_frames()


# ---------------------------------------------------------------------------
# Script entry point (uses all SimulationConfig defaults)
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("usage: python galaxysim.py DESCRIPTION\n"
              "  (see python run_simulate.py --help for every option)",
              file=sys.stderr)
        sys.exit(2)
    cfg = SimulationConfig()
    SimulationRunner(cfg).run(load_galaxy(read_description(sys.argv[1]), cfg))
