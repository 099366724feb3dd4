# main.py
"""
Main entry point for the Central Limit Theorem simulation.

This script orchestrates the entire application lifecycle:
1. Loads configuration from `config.json`.
2. Initializes the logging system.
3. Sets up the sampling engine and the viewer.
4. Runs the main loop, ticking the engine once per frame.
5. Handles clean shutdown.
"""
import logging
from utils import setup_logging, load_config
import cProfile
import pstats
import io
import time

def main():
    """
    The main function to run the simulation.
    """
    # Logging is not set up yet, so we use a print for this one error.
    try:
        config = load_config('config.json')
    except Exception as e:
        print(f"FATAL: Could not load config.json. Error: {e}")
        return

    setup_logging(config)

    logging.info("--- CLT Simulation Starting ---")

    sim_params = config.get('simulation_parameters', {})
    run_params = config.get('run_control', {})
    vis_params = config.get('visualization', {})

    from constants import FPS
    from simulation import SamplingEngine
    from visualization import Visualizer

    # --- Component Initialization ---
    # The geometry is shared: the engine aims particles with it and the
    # visualizer fits it to the window.
    engine = SamplingEngine(sim_params)
    visualizer = Visualizer(engine.geometry, vis_params)

    profiler = cProfile.Profile()

    log_throttle = run_params.get('log_throttle_steps', 600)
    max_steps = run_params.get('max_steps', 0) # 0 runs until the window closes

    running = True
    step_num = 0
    frames_drawn = 0
    last = time.perf_counter()

    profiler.enable()
    while running:
        if not visualizer.handle_events(engine):
            running = False
            break

        now = time.perf_counter()
        # Cap dt after a stall.
        dt = min(now - last, 0.05)
        last = now
        engine.tick(dt, now)
        step_num += 1

        frame = engine.next_frame()
        if frame is not None:
            visualizer.render(frame)
            frames_drawn += 1

        visualizer.clock.tick(FPS)

        # Hot loops must throttle logs
        if step_num % log_throttle == 0:
            logging.info(f"Tick {step_num}: {frames_drawn} frames drawn, state '{engine.state.value}'.")
            mean, sd = engine.distribution.mean_and_spread()
            logging.debug(
                f"Tick {step_num} | Samples: {engine.distribution.total} | "
                f"Sampling mean: {mean} | Sampling SD: {sd}"
            )

        if max_steps and step_num >= max_steps:
            logging.info(f"Reached max_steps ({max_steps}). Stopping simulation.")
            running = False
    profiler.disable()

    visualizer.close()
    logging.info("Main loop finished.")

    # --- Performance Profile Output ---
    logging.info("--- Performance Profile ---")
    s = io.StringIO()
    stats = pstats.Stats(profiler, stream=s).sort_stats('cumtime')
    stats.print_stats(20)
    logging.info(f"\n{s.getvalue()}")

    logging.info("--- CLT Simulation Shutting Down ---")


if __name__ == "__main__":
    main()
