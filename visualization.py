# visualization.py
"""
Handles the visualization of the sampling engine using Pygame.

The Visualizer plays two roles: it renders EngineSnapshot frames, and it
turns keyboard and mouse events into engine mutator calls. It never writes
to engine state directly.
"""
import logging
import math
from typing import Dict, Optional, Tuple

import numpy as np
import pygame

from constants import (
    BACKGROUND_COLOR, FULLSCREEN, UI_PANEL_WIDTH, WINDOW_HEIGHT,
    TEXT_COLOR, BAND_COLOR, TICK_COLOR, POP_FILL, POP_TOP, MID_FILL, MID_TOP,
    BOT_FILL, BOT_TOP, FLASH_COLOR, THETA_COLOR, NORMAL_FIT_COLOR,
    SAMPLE_STAT_COLOR, UI_PANEL_COLOR, MIN_SAMPLE_SIZE, MAX_SAMPLE_SIZE
)
from geometry import Geometry
from population import Generator
from sample_statistics import Statistic, label
from simulation import EngineSnapshot, SamplingEngine, SpeedMode
from utils import validate_sample_size

# --- Data Contracts ---
#
# class Visualizer:
#   - __init__(self, geometry: Geometry, vis_params: Optional[dict] = None):
#     - Inputs:
#       - geometry: The Geometry shared with the engine. Its layout is
#         fitted to the window here.
#       - vis_params: "plot_width", "sample_size", "show_param_line",
#         "show_normal_fit".
#     - Side Effects: Initializes Pygame and creates a display surface.
#
#   - render(self, snapshot: EngineSnapshot) -> None:
#     - Side Effects: Draws one frame. Reads only from the snapshot.
#
#   - handle_events(self, engine: SamplingEngine) -> bool:
#     - Outputs: False if the user has quit, True otherwise.
#     - Side Effects: Calls engine mutators for control events.

GENERATOR_KEYS = {
    pygame.K_1: Generator.NORMAL,
    pygame.K_2: Generator.UNIFORM,
    pygame.K_3: Generator.BIMODAL,
    pygame.K_4: Generator.LOGNORMAL,
}

STATISTIC_KEYS = {
    pygame.K_m: Statistic.MEAN,
    pygame.K_d: Statistic.MEDIAN,
    pygame.K_s: Statistic.SD,
    pygame.K_p: Statistic.PROPORTION,
}


def normal_pdf(x: np.ndarray, mu: float, sigma: float) -> np.ndarray:
    if sigma <= 1e-12:
        return np.zeros_like(x)
    return np.exp(-0.5 * ((x - mu) / sigma) ** 2) / (sigma * math.sqrt(2 * math.pi))


class Visualizer:
    """
    Renders engine snapshots and maps user input onto engine mutators.
    """
    def __init__(self, geometry: Geometry, vis_params: Optional[dict] = None):
        pygame.init()
        pygame.font.init()

        vis_params = vis_params if vis_params is not None else {}
        plot_w = int(vis_params.get('plot_width', 960))

        if FULLSCREEN:
            display_info = pygame.display.Info()
            width, height = display_info.current_w, display_info.current_h
            self.screen = pygame.display.set_mode((width, height), pygame.FULLSCREEN)
            plot_w = width - UI_PANEL_WIDTH
        else:
            width, height = plot_w + UI_PANEL_WIDTH, WINDOW_HEIGHT
            self.screen = pygame.display.set_mode((width, height))

        self.geometry = geometry
        self.geometry.layout_from_viewport(plot_w, height)
        self.plot_w = plot_w
        self.height = height

        pygame.display.set_caption("Central Limit Theorem")
        self.clock = pygame.time.Clock()

        try:
            self.font_title = pygame.font.SysFont("Segoe UI", 18, bold=True)
            self.font_main = pygame.font.SysFont("Segoe UI", 14)
            self.font_main_bold = pygame.font.SysFont("Segoe UI", 14, bold=True)
        except pygame.error:
            logging.warning("Segoe UI font not found, falling back to default sans-serif.")
            self.font_title = pygame.font.SysFont(None, 22, bold=True)
            self.font_main = pygame.font.SysFont(None, 18)
            self.font_main_bold = pygame.font.SysFont(None, 18, bold=True)

        # UI-owned controls
        self.sample_size = int(vis_params.get('sample_size', 30))
        self.show_param_line = bool(vis_params.get('show_param_line', True))
        self.show_normal_fit = bool(vis_params.get('show_normal_fit', False))
        self.status_message = ""

        self.param_box_color = (225, 228, 232)
        self.param_box_spacing = 4
        self.text_color_key = (71, 85, 105)

        logging.info(f"Visualizer initialized with Pygame display ({width}x{height}).")

    # --- Input ---

    def handle_events(self, engine: SamplingEngine) -> bool:
        """Processes pending Pygame events. Returns False when the user quits."""
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                logging.info("Quit event received. Shutting down visualizer.")
                return False

            if event.type == pygame.KEYDOWN:
                if event.key == pygame.K_ESCAPE:
                    logging.info("ESC key pressed. Shutting down visualizer.")
                    return False
                self._handle_key(event.key, engine)

            if event.type == pygame.MOUSEBUTTONDOWN and event.button in (1, 3):
                x, y = event.pos
                if x < self.plot_w and self.geometry.in_population(y):
                    col = self.geometry.x_to_col(x)
                    delta = 1 if event.button == 1 else -1
                    weight = engine.modify_population(col, delta)
                    logging.info(f"Population bin {col} edited by user. New weight: {weight}.")
        return True

    def _handle_key(self, key: int, engine: SamplingEngine) -> None:
        self.status_message = ""
        if key == pygame.K_SPACE:
            if self._sample_size_ok():
                engine.draw_sample(self.sample_size)
        elif key == pygame.K_g:
            if not engine.gather():
                self.status_message = "Nothing to gather"
        elif key == pygame.K_r:
            if self._sample_size_ok():
                engine.repeat(self.sample_size, 10)
        elif key == pygame.K_t:
            if self._sample_size_ok():
                engine.repeat(self.sample_size, 1000)
        elif key == pygame.K_c:
            engine.clear_tray()
        elif key == pygame.K_x:
            engine.reset()
        elif key in GENERATOR_KEYS:
            engine.set_generator(GENERATOR_KEYS[key])
        elif key in STATISTIC_KEYS:
            engine.set_statistic(STATISTIC_KEYS[key])
        elif key == pygame.K_f:
            fast = engine.speed is SpeedMode.NORMAL
            engine.set_speed(SpeedMode.FAST if fast else SpeedMode.NORMAL)
        elif key == pygame.K_n:
            self.show_normal_fit = not self.show_normal_fit
            engine.request_redraw()
        elif key == pygame.K_l:
            self.show_param_line = not self.show_param_line
            engine.request_redraw()
        elif key in (pygame.K_UP, pygame.K_DOWN):
            step = 1 if key == pygame.K_UP else -1
            self.sample_size = int(np.clip(self.sample_size + step, MIN_SAMPLE_SIZE, MAX_SAMPLE_SIZE))
            engine.request_redraw()
        elif key in (pygame.K_LEFT, pygame.K_RIGHT):
            step = 0.05 if key == pygame.K_RIGHT else -0.05
            engine.set_threshold(round(engine.threshold + step, 2))
        elif key == pygame.K_PERIOD:
            engine.set_seed(engine.seed + 1)

    def _sample_size_ok(self) -> bool:
        ok, message = validate_sample_size(self.sample_size)
        if not ok:
            self.status_message = message
            logging.warning(message)
        return ok

    # --- Rendering ---

    def render(self, snapshot: EngineSnapshot) -> None:
        """Draws one frame from a snapshot."""
        g = snapshot.geometry
        self.screen.fill(BACKGROUND_COLOR)

        self._draw_tray(g.y_top, g.h_top, "Population")
        self._draw_tray(g.y_mid, g.h_mid, "Sample")
        self._draw_tray(g.y_bot, g.h_bot, f"Sampling distribution of {label(snapshot.statistic)}")

        # 1. Stacks
        self._draw_stacks(snapshot.population, g.cols, g.col_left, g.box, g.top_base, g.box_top_y, POP_FILL, POP_TOP)
        self._draw_stacks(snapshot.tray, g.cols, g.col_left, g.box, g.mid_base, g.box_mid_y, MID_FILL, MID_TOP)
        self._draw_stacks(snapshot.distribution, g.stat_bins, g.stat_bin_left, g.stat_bin_width(),
                          g.bot_base, g.box_bot_y, BOT_FILL, BOT_TOP)

        # 2. Source flashes
        for f in snapshot.flashes:
            rect = pygame.Rect(int(g.col_left(f.col)), int(f.y - g.box_top_y / 2),
                               int(math.ceil(g.box)), int(math.ceil(g.box_top_y)))
            pygame.draw.rect(self.screen, FLASH_COLOR, rect)

        # 3. Particles in flight
        self._draw_particles(snapshot.sample_particles, g.box, g.box_mid_y, MID_FILL)
        self._draw_particles(snapshot.gather_particles, g.box, g.box_mid_y, MID_TOP)
        self._draw_particles(snapshot.stat_particles, g.stat_bin_width(), g.box_bot_y, BOT_FILL)

        # 4. Marker lines
        self._draw_lines(snapshot)
        if self.show_normal_fit:
            self._draw_normal_fit(snapshot)

        # 5. Side panel
        self._draw_panel(snapshot)

        pygame.display.flip()

    def _draw_tray(self, y: float, h: float, title: str) -> None:
        g = self.geometry
        pygame.draw.rect(self.screen, BAND_COLOR, pygame.Rect(0, int(y), self.plot_w, int(h)))
        text_surf = self.font_title.render(title, True, TEXT_COLOR)
        self.screen.blit(text_surf, (g.grid_x0, int(y) + 6))
        for t in range(11):
            x = round(g.grid_x0 + g.grid_w * t / 10)
            pygame.draw.rect(self.screen, TICK_COLOR, pygame.Rect(x, int(y + h - 12), 1, 8))

    def _draw_stacks(self, counts, n_bins, left_of, width, base, box_h, fill, top) -> None:
        for b in range(n_bins):
            stack = int(counts[b])
            if not stack:
                continue
            x = int(left_of(b))
            for r in range(stack):
                y = base - r * box_h - box_h / 2
                color = top if r == stack - 1 else fill
                rect = pygame.Rect(x, int(y - box_h / 2), max(1, int(math.ceil(width)) - 1), max(1, int(math.ceil(box_h))))
                pygame.draw.rect(self.screen, color, rect)

    def _draw_particles(self, positions: np.ndarray, width: float, box_h: float, color) -> None:
        w = max(1, int(math.ceil(width)) - 1)
        h = max(1, int(math.ceil(box_h)))
        for x, y in positions:
            pygame.draw.rect(self.screen, color, pygame.Rect(int(x - width / 2), int(y - box_h / 2), w, h))

    def _draw_lines(self, snapshot: EngineSnapshot) -> None:
        g = snapshot.geometry
        lines = snapshot.lines
        if self.show_param_line and lines.parameter is not None:
            x = int(g.value_to_x(lines.parameter, snapshot.domain))
            pygame.draw.line(self.screen, THETA_COLOR, (x, int(g.y_top)), (x, int(g.y_bot + g.h_bot)), 2)
        if lines.sample_stat is not None:
            x = int(g.value_to_x(lines.sample_stat, snapshot.domain))
            pygame.draw.line(self.screen, SAMPLE_STAT_COLOR, (x, int(g.y_mid)), (x, int(g.y_mid + g.h_mid)), 2)
        if lines.sampling_mean is not None:
            x = int(g.value_to_x(lines.sampling_mean, snapshot.domain))
            pygame.draw.line(self.screen, BOT_TOP, (x, int(g.y_bot)), (x, int(g.y_bot + g.h_bot)), 1)

    def _draw_normal_fit(self, snapshot: EngineSnapshot) -> None:
        """Overlays N(mean, sd) of the sampling distribution, scaled to its stack heights."""
        lines = snapshot.lines
        if lines.sampling_mean is None or not lines.sampling_sd:
            return
        g = snapshot.geometry
        dom = snapshot.domain
        bin_width = dom.width / g.stat_bins
        xs = np.linspace(dom.min, dom.max, 200)
        expected = normal_pdf(xs, lines.sampling_mean, lines.sampling_sd) * snapshot.samples_collected * bin_width
        points = [
            (int(g.value_to_x(v, dom)), int(g.bot_base + g.box_bot_y / 2 - c * g.box_bot_y))
            for v, c in zip(xs, expected)
        ]
        pygame.draw.lines(self.screen, NORMAL_FIT_COLOR, False, points, 2)

    def _draw_panel(self, snapshot: EngineSnapshot) -> None:
        """Renders engine parameters in a list of individual boxes."""
        panel_x = self.plot_w
        pygame.draw.rect(self.screen, UI_PANEL_COLOR, pygame.Rect(panel_x, 0, UI_PANEL_WIDTH, self.height))

        s = snapshot.summary
        mean, sd = snapshot.lines.sampling_mean, snapshot.lines.sampling_sd
        entries: Dict[str, str] = {
            "Population": snapshot.generator.value if snapshot.generator else "custom",
            "Statistic": snapshot.statistic.value,
            "Sample Size": str(self.sample_size),
            "Threshold": f"{snapshot.threshold:.2f}",
            "Speed": snapshot.speed.value,
            "State": snapshot.state.value,
            "Pop. Mean (μ)": f"{s.mean:.3f}",
            "Pop. SD (σ)": f"{s.sd:.3f}",
            "Pop. Median": f"{s.median:.3f}",
            "Pop. Prop. > t": f"{s.proportion:.3f}",
            "Samples": str(snapshot.samples_collected),
            "Sampling Mean": "-" if mean is None else f"{mean:.4f}",
            "Sampling SD": "-" if sd is None else f"{sd:.4f}",
            "Queued Draws": str(snapshot.pending_draws),
        }
        if self.status_message:
            entries["Note"] = self.status_message

        box_v_padding = 6
        line_height = self.font_main.get_linesize()
        panel_width = UI_PANEL_WIDTH - 40
        key_max_width = panel_width / 2 - box_v_padding
        key_column_right_x = panel_x + 20 + box_v_padding + key_max_width
        value_column_left_x = key_column_right_x + 12
        current_y = 16

        for key, value in entries.items():
            key_surfs = self._render_text_wrapped(key, self.font_main_bold, key_max_width, self.text_color_key)
            value_surfs = self._render_text_wrapped(value, self.font_main, key_max_width, TEXT_COLOR)
            num_lines = max(len(key_surfs), len(value_surfs))
            box_height = num_lines * line_height + box_v_padding * 2

            box_rect = pygame.Rect(panel_x + 20, current_y, panel_width, box_height)
            pygame.draw.rect(self.screen, self.param_box_color, box_rect, border_radius=6)

            line_y = current_y + box_v_padding
            for surf in key_surfs:
                self.screen.blit(surf, surf.get_rect(topright=(key_column_right_x, line_y)))
                line_y += line_height
            line_y = current_y + box_v_padding
            for surf in value_surfs:
                self.screen.blit(surf, surf.get_rect(topleft=(value_column_left_x, line_y)))
                line_y += line_height

            current_y += box_height + self.param_box_spacing

        help_lines = [
            "Space draw  G gather  R x10  T x1000",
            "C clear tray  X reset  . next seed",
            "1-4 population  M/D/S/P statistic",
            "Up/Down n  Left/Right threshold",
            "F speed  N normal fit  L parameter",
            "Click +1, right click -1",
        ]
        current_y += 10
        for text in help_lines:
            surf = self.font_main.render(text, True, self.text_color_key)
            self.screen.blit(surf, (panel_x + 20, current_y))
            current_y += line_height

    def _render_text_wrapped(
        self, text: str, font: pygame.font.Font, max_width: float, color: Tuple[int, int, int]
    ) -> list:
        """
        Renders text, wrapping it to a new line if it exceeds max_width.
        Returns a list of rendered surfaces, one for each line.
        """
        words = text.split(' ')
        lines = []
        current_line = ""

        for word in words:
            test_line = f"{current_line} {word}".strip()
            if font.size(test_line)[0] <= max_width:
                current_line = test_line
            else:
                lines.append(current_line)
                current_line = word

        lines.append(current_line)
        return [font.render(line, True, color) for line in lines if line]

    def close(self):
        """Shuts down Pygame."""
        pygame.font.quit()
        pygame.quit()
