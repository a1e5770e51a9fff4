"""
run_simulate.py
===============
CLI entrypoint for the galaxy layout simulator.

Only the input description is required; unspecified parameters fall back to
the defaults defined in ``SimulationConfig``.

Quick start
-----------
    python run_simulate.py galaxy.json

Knock a flat chart into 3-D and let it settle::

    python run_simulate.py galaxy.json \\
        --jiggle_scale 2 \\
        --n_steps 2000 \\
        --time_step 0.1 \\
        --anti_gravity_strength 0.5 \\
        --seed 7 \\
        --out_dir output

Continue from a previous run (reads output/nodes.csv and output/edges.csv)::

    python run_simulate.py output --out_dir output2

Then visualise the result::

    python plot_debug.py --out_dir output
"""

import argparse
import dataclasses
import json
import os
import sys

from galaxysim import (
    SimulationConfig,
    SimulationRunner,
    load_galaxy,
    read_description,
)


def build_parser() -> argparse.ArgumentParser:
    defaults = SimulationConfig()
    p = argparse.ArgumentParser(
        prog="run_simulate.py",
        description=(
            "Force-directed 3-D layout of a galaxy chart.\n"
            "Produces nodes.csv, edges.csv, galaxy.json, viewer.json, graph.dot "
            "and (optionally) graph.gexf in OUT_DIR."
        ),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    p.add_argument(
        "input",
        metavar="INPUT",
        help=(
            "Galaxy description: a JSON file (list of systems, or an object "
            "with a 'systems' list), or a directory holding nodes.csv and "
            "edges.csv from an earlier run."
        ),
    )

    # ── Physics parameters ────────────────────────────────────────────────
    p.add_argument(
        "--damping", type=float, default=defaults.damping,
        metavar="D",
        help="Fraction of each position update suppressed (0 = none).",
    )
    p.add_argument(
        "--drag", type=float, default=defaults.drag,
        metavar="D",
        help="Fraction of velocity lost per step (0 = frictionless).",
    )
    p.add_argument(
        "--neighbour_weight", type=float, default=defaults.neighbour_weight,
        metavar="W",
        help="Spring stiffness of neighbour lanes.",
    )
    p.add_argument(
        "--pin_weight", type=float, default=defaults.pin_weight,
        metavar="W",
        help="Stiffness pulling constrained systems to their original position.",
    )
    p.add_argument(
        "--constraint_weight", type=float, default=defaults.constraint_weight,
        metavar="W",
        help="Common multiplier on the spring and pin terms.",
    )
    p.add_argument(
        "--anti_gravity_strength", type=float, default=defaults.anti_gravity_strength,
        metavar="S",
        help="Inverse-square repulsion between every pair of systems.",
    )
    p.add_argument(
        "--anti_gravity_range", type=float, default=defaults.anti_gravity_range,
        metavar="R",
        help="Only pairs closer than R repel (<= 0: all pairs, O(N²) per step).",
    )

    # ── Run parameters ────────────────────────────────────────────────────
    p.add_argument(
        "--time_step", type=float, default=defaults.time_step,
        metavar="DT",
        help="Time increment per simulation step.",
    )
    p.add_argument(
        "--n_steps", type=int, default=defaults.n_steps,
        metavar="N",
        help="Number of simulation steps to run.",
    )
    p.add_argument(
        "--jiggle_scale", type=float, default=defaults.jiggle_scale,
        metavar="S",
        help="Random displacement applied once before stepping (0 = none).",
    )

    # ── Reproducibility ───────────────────────────────────────────────────
    p.add_argument(
        "--seed", type=int, default=defaults.seed,
        metavar="S",
        help="Random seed for reproducible jiggles.",
    )

    # ── Output ───────────────────────────────────────────────────────────
    p.add_argument(
        "--out_dir", type=str, default=defaults.out_dir,
        metavar="DIR",
        help="Directory to write output files (created if absent).",
    )
    p.add_argument(
        "--no_gexf", action="store_true",
        help="Skip GEXF export.",
    )

    return p


def config_from_args(args: argparse.Namespace) -> SimulationConfig:
    return SimulationConfig(
        damping               = args.damping,
        drag                  = args.drag,
        neighbour_weight      = args.neighbour_weight,
        pin_weight            = args.pin_weight,
        constraint_weight     = args.constraint_weight,
        anti_gravity_strength = args.anti_gravity_strength,
        anti_gravity_range    = args.anti_gravity_range,
        seed                  = args.seed,
        time_step             = args.time_step,
        n_steps               = args.n_steps,
        jiggle_scale          = args.jiggle_scale,
        out_dir               = args.out_dir,
        write_gexf            = not args.no_gexf,
    )


def main(argv=None) -> int:
    parser = build_parser()
    args   = parser.parse_args(argv)
    cfg    = config_from_args(args)

    # Print config so the user can confirm parameters before waiting
    print("Configuration")
    print("─" * 40)
    print(f"  {'input':<22} = {args.input}")
    for field in dataclasses.fields(cfg):
        print(f"  {field.name:<22} = {getattr(cfg, field.name)}")
    print()

    try:
        galaxy = load_galaxy(read_description(args.input), cfg)
    except ValueError as exc:  # includes StructureInvalid and bad JSON
        print(f"Invalid galaxy description: {exc}", file=sys.stderr)
        return 2

    SimulationRunner(cfg).run(galaxy)

    # Persist run parameters so plot_debug.py and later runs can read them
    params_path = os.path.join(cfg.out_dir, "params.json")
    params = dict(dataclasses.asdict(cfg), input=args.input)
    with open(params_path, "w") as f:
        json.dump(params, f, indent=2)
    print(f"Wrote {params_path}")

    # Remind user of next steps
    print(
        f"\nNext steps:\n"
        f"  • Debug plot : python plot_debug.py --out_dir {cfg.out_dir}\n"
        f"  • Continue   : python run_simulate.py {cfg.out_dir} --out_dir <DIR>\n"
        f"  • Gephi      : import {cfg.out_dir}/graph.gexf"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
