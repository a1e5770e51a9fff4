"""
plot_debug.py
=============
Matplotlib sanity-check plot for the galaxy layout simulator.

Shows a 2-D projection of one simulation snapshot:
  • Neighbour lanes, uniform or coloured by strain (actual − desired length)
  • Systems coloured by their stored colour, displacement, depth, or pin flag
  • Optional ghosts at the original (load-time) positions
  • Optional force vectors

Usage
-----
    # Default: use ./output/, top-down (xy) view, stored system colours
    python plot_debug.py

    # Side view, lanes coloured by strain
    python plot_debug.py --plane xz --edge_color_by strain

    # How far has each system moved from its chart position?
    python plot_debug.py --color_by displacement --show_original

    # Force vectors from the last step
    python plot_debug.py --show_forces --force_scale 5

    # Save to PNG instead of opening an interactive window
    python plot_debug.py --save galaxy.png

    # --svg with no filename defaults to galaxy.svg
    python plot_debug.py --svg
"""

from __future__ import annotations

import argparse
import os
from typing import Optional

import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
from matplotlib.colors import LinearSegmentedColormap, TwoSlopeNorm
import numpy as np
import pandas as pd
from matplotlib.collections import LineCollection


_PLANES = {"xy": ("x", "y"), "xz": ("x", "z"), "yz": ("y", "z")}


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="plot_debug.py",
        description="Debug visualisation for the galaxy layout simulator.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    # Output location
    p.add_argument("--out_dir",  default="output",
                   help="Directory containing nodes.csv and edges.csv.")
    p.add_argument("--save",     default=None, metavar="FILE",
                   help="Save figure to FILE (png/pdf/svg) instead of displaying.")
    p.add_argument("--svg",      nargs="?", const="galaxy.svg", default=None,
                   metavar="FILE",
                   help="Save figure as SVG (vector format).  "
                        "FILE defaults to 'galaxy.svg' when omitted.  "
                        "Overrides --save when both are given.")

    # View
    p.add_argument("--plane", choices=sorted(_PLANES), default="xy",
                   help="Projection plane.")

    # Cosmetic toggles
    p.add_argument("--no_edges", action="store_true",
                   help="Skip drawing lanes.")
    p.add_argument("--color_by",
                   choices=["system", "displacement", "depth", "constrained", "none"],
                   default="system",
                   help="Node colouring scheme.")
    p.add_argument("--edge_color_by", choices=["none", "strain"], default="none",
                   help="Lane colouring scheme.")
    p.add_argument("--show_original", action="store_true",
                   help="Draw original positions with a line to the current ones.")
    p.add_argument("--show_forces", action="store_true",
                   help="Draw the force on each system from the last step.")
    p.add_argument("--force_scale", type=float, default=1.0,
                   help="Length multiplier for force vectors.")

    # Node appearance
    p.add_argument("--node_size",  type=float, default=12.0,
                   help="Scatter marker size.")
    p.add_argument("--node_color", default="#aaccff",
                   help="Uniform node colour used when --color_by none.")
    p.add_argument("--gradient_low_color",  default="#ffe8c0",
                   help="Gradient colour at low data values.")
    p.add_argument("--gradient_high_color", default="#cc2255",
                   help="Gradient colour at high data values.")

    # Edge appearance
    p.add_argument("--edge_alpha", type=float, default=0.5,
                   help="Lane line alpha (0=invisible, 1=solid).")
    p.add_argument("--edge_color", default="#2244aa",
                   help="Lane line colour (any matplotlib colour string).")
    p.add_argument("--edge_width", type=float, default=0.6,
                   help="Lane line width in points.")

    return p


# ---------------------------------------------------------------------------
# Plot
# ---------------------------------------------------------------------------

def load_frames(out_dir: str) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Read nodes.csv and edges.csv written by galaxysim.write_outputs."""
    nodes_path = os.path.join(out_dir, "nodes.csv")
    edges_path = os.path.join(out_dir, "edges.csv")

    if not os.path.exists(nodes_path):
        raise FileNotFoundError(
            f"nodes.csv not found in '{out_dir}'.  "
            "Run run_simulate.py first."
        )

    nodes = pd.read_csv(nodes_path)
    edges = pd.read_csv(edges_path) if os.path.exists(edges_path) else pd.DataFrame()
    return nodes, edges


def draw_galaxy(
    args: argparse.Namespace,
    nodes: Optional[pd.DataFrame] = None,
    edges: Optional[pd.DataFrame] = None,
) -> plt.Figure:
    """Draw one snapshot of the galaxy.

    Parameters
    ----------
    args  : parsed argparse Namespace (see build_parser)
    nodes, edges : frames as returned by Galaxy.to_frames; read from
                   ``args.out_dir`` when omitted

    Returns
    -------
    matplotlib Figure
    """
    if nodes is None:
        nodes, edges = load_frames(args.out_dir)
    if edges is None:
        edges = pd.DataFrame()

    hx, vy = _PLANES[args.plane]
    xy = nodes[[hx, vy]].values

    # ── Figure setup ─────────────────────────────────────────────────────
    fig, ax = plt.subplots(figsize=(10, 10))
    ax.set_aspect("equal", adjustable="datalim")

    BG = "#09090f"
    ax.set_facecolor(BG)
    fig.patch.set_facecolor(BG)

    # ── Original positions ────────────────────────────────────────────────
    if args.show_original and f"{hx}0" in nodes.columns:
        xy0 = nodes[[f"{hx}0", f"{vy}0"]].values
        ax.add_collection(LineCollection(
            np.stack([xy0, xy], axis=1),
            colors="#555566", linewidths=0.5, zorder=3,
        ))
        ax.scatter(xy0[:, 0], xy0[:, 1], s=args.node_size * 0.5,
                   facecolors="none", edgecolors="#555566",
                   linewidths=0.6, zorder=3)

    # ── Lanes ─────────────────────────────────────────────────────────────
    if not args.no_edges and len(edges) > 0:
        src = edges["source"].values.astype(int)
        tgt = edges["target"].values.astype(int)
        segs = np.stack([xy[src], xy[tgt]], axis=1)

        if args.edge_color_by == "strain" and "strain" in edges.columns:
            strain = edges["strain"].values
            limit = max(float(np.abs(strain).max()), 1e-9)
            lc = LineCollection(
                segs, cmap="coolwarm",
                norm=TwoSlopeNorm(vmin=-limit, vcenter=0.0, vmax=limit),
                linewidths=args.edge_width * 1.5, zorder=5,
            )
            lc.set_array(strain)
            ax.add_collection(lc)
            cbar = plt.colorbar(lc, ax=ax, pad=0.01, fraction=0.03, shrink=0.85)
            _style_colorbar(cbar, "Lane strain (actual − desired)")
        else:
            ax.add_collection(LineCollection(
                segs,
                colors=args.edge_color,
                linewidths=args.edge_width,
                alpha=args.edge_alpha,
                zorder=5,
            ))

    # ── Systems ───────────────────────────────────────────────────────────
    grad_cmap = LinearSegmentedColormap.from_list(
        "user_gradient", [args.gradient_low_color, args.gradient_high_color]
    )

    cmap   = None
    clabel = None
    color_by = args.color_by

    if color_by == "system" and "color" in nodes.columns:
        c = list(nodes["color"].values)
    elif color_by == "displacement" and "x0" in nodes.columns:
        delta = nodes[["x", "y", "z"]].values - nodes[["x0", "y0", "z0"]].values
        c, cmap, clabel = np.linalg.norm(delta, axis=1), grad_cmap, "Displacement"
    elif color_by == "depth":
        depth = ({"x", "y", "z"} - {hx, vy}).pop()
        c, cmap, clabel = nodes[depth].values, grad_cmap, f"Depth ({depth})"
    elif color_by == "constrained" and "constrained" in nodes.columns:
        c = nodes["constrained"].values.astype(float)
        cmap, clabel = "Reds", "Pinned"
    else:
        c = args.node_color

    sc = ax.scatter(
        xy[:, 0], xy[:, 1],
        c=c, cmap=cmap,
        s=args.node_size,
        alpha=0.9,
        linewidths=0,
        zorder=6,
    )
    if clabel and cmap:
        cbar = plt.colorbar(sc, ax=ax, pad=0.01, fraction=0.03, shrink=0.85)
        _style_colorbar(cbar, clabel)

    # ── Force vectors ─────────────────────────────────────────────────────
    if args.show_forces and f"f{hx}" in nodes.columns:
        ax.quiver(
            xy[:, 0], xy[:, 1],
            nodes[f"f{hx}"].values * args.force_scale,
            nodes[f"f{vy}"].values * args.force_scale,
            color="#ffcc44", angles="xy", scale_units="xy", scale=1.0,
            width=0.002, zorder=7,
        )

    ax.autoscale_view()

    # ── Decorations ───────────────────────────────────────────────────────
    title = (
        f"Galaxy  —  {len(nodes):,} systems  |  {len(edges):,} lanes  "
        f"({args.plane} plane)"
        + ("  (lanes hidden)" if args.no_edges else "")
    )
    ax.set_title(title, color="white", fontsize=11, pad=10)
    ax.set_xlabel(hx, color="#888899")
    ax.set_ylabel(vy, color="#888899")

    for spine in ax.spines.values():
        spine.set_edgecolor("#2a2a3a")
    ax.tick_params(colors="#555566", labelsize=7)

    legend_patches = []
    if not args.no_edges:
        legend_patches.append(mpatches.Patch(facecolor=args.edge_color, label="Lanes"))
    if args.show_original:
        legend_patches.append(mpatches.Patch(facecolor="#555566", label="Original positions"))
    if args.show_forces:
        legend_patches.append(mpatches.Patch(facecolor="#ffcc44", label="Forces"))
    if legend_patches:
        ax.legend(
            handles=legend_patches,
            loc="upper right",
            fontsize=8,
            facecolor="#111122",
            edgecolor="#333355",
            labelcolor="white",
        )

    return fig


def _style_colorbar(cbar, label: str) -> None:
    cbar.set_label(label, color="white", fontsize=9)
    cbar.ax.yaxis.set_tick_params(color="white", labelsize=7)
    plt.setp(plt.getp(cbar.ax.axes, "yticklabels"), color="white")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv=None) -> None:
    parser = build_parser()
    args   = parser.parse_args(argv)

    fig = draw_galaxy(args)

    if args.svg:
        fig.savefig(args.svg, format="svg", bbox_inches="tight",
                    facecolor=fig.get_facecolor())
        print(f"Saved figure to {args.svg}")
    elif args.save:
        fig.savefig(args.save, dpi=150, bbox_inches="tight",
                    facecolor=fig.get_facecolor())
        print(f"Saved figure to {args.save}")
    else:
        plt.show()


if __name__ == "__main__":
    main()
