#!/usr/bin/env python3
"""
Headless fluid simulation runner.
Runs the simulation for a number of steps and reports performance.
"""

import argparse
import logging
import time

import numpy as np

from . import scenarios
from .core.backend import auto_select_backend, backend_info
from .simulation import SimulationContext, SimulationType, create_simulation

logger = logging.getLogger("sphfluid.headless")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SPH Fluid Simulation (Headless)")
    parser.add_argument("--variant", default="gpu",
                        choices=[t.value for t in SimulationType])
    parser.add_argument("--backend", choices=["cpu", "numba", "auto"], default="auto")
    parser.add_argument("--particles", type=int, default=8000)
    parser.add_argument("--steps", type=int, default=100, help="Number of steps to run")
    parser.add_argument("--dt", type=float, default=None, help="Time step (config default if unset)")
    parser.add_argument("--with-box", action="store_true", help="Drop a floating box into the tank")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    backend = args.backend
    if backend == "auto":
        backend = auto_select_backend(args.particles)
        logger.info("Auto-selected %s backend for %d particles", backend.upper(), args.particles)
    logger.info("\n%s", backend_info())

    overrides = dict(backend=backend)
    if args.variant == SimulationType.BRUTE_FORCE.value:
        overrides["boundary_mode"] = "clamp"
    if args.dt is not None:
        overrides["time_step"] = args.dt
    config = scenarios.create_dam_break_config(args.particles, **overrides)

    context = SimulationContext(simulation=create_simulation(args.variant, config))
    box = scenarios.create_floating_box(config) if args.with_box else None
    if box is not None:
        context.register_effector(box)

    result = context.start()
    if not result.ok:
        logger.error("Setup failed: %s (%s)", result.message, result.status.value)
        return 1

    logger.info("Running %d steps (dt=%.4g)", args.steps, config.time_step)
    step_times = []
    try:
        for step in range(args.steps):
            t0 = time.perf_counter()
            context.step()
            if box is not None:
                box.advance(config.time_step)
            step_times.append(time.perf_counter() - t0)

            if (step + 1) % 20 == 0:
                avg_time = np.mean(step_times[-20:])
                logger.info("Step %d/%d: %.1f ms/step (%.1f FPS)",
                            step + 1, args.steps, avg_time * 1000, 1.0 / avg_time)

            if not context.in_simulation:
                logger.error("Simulation disabled at step %d", step + 1)
                return 1

        stats = context.simulation.get_statistics()
        for key, value in stats.items():
            logger.info("  %s: %s", key, value)
        if box is not None:
            logger.info("  box height: %.3f, submerged fraction: %.2f", box.position[1],
                        context.last_feedback[0].submerged_fraction if context.last_feedback else 0.0)
    finally:
        context.stop()

    if step_times:
        avg_time = float(np.mean(step_times))
        logger.info("Average: %.1f ms/step (%.1f FPS), total %.1f s",
                    avg_time * 1000, 1.0 / avg_time, sum(step_times))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
