# geometry.py
"""
Maps values and bins to screen positions.

The same Geometry instance is used by the engine, to aim particles, and by
the renderer, to draw stacks, so a particle always lands exactly on the box
the renderer draws for it. Screen y grows downward; each tray's "base" is
the y of the bottom row of boxes.
"""
import math
from typing import Tuple

import numpy as np

from constants import (
    TOP_UNITS, MID_UNITS, BOT_UNITS, PLOT_PADDING, MIN_BOX, MARGIN_Y,
    TRAY_HEADROOM, GATHER_POINT_OFFSET
)
from sample_statistics import StatDomain
from utils import clamp

# --- Data Contracts ---
#
# value_to_bin(value, lo, hi, bins) -> int:
#   - Outputs: clamp(floor(clamp((value - lo) / (hi - lo), 0, 1) * bins), 0, bins - 1)
#
# class Geometry:
#   - __init__(self, cols: int, stat_bins: int, plot_w: int = 960, canvas_h: int = 920)
#   - layout_from_viewport(self, plot_w: int, canvas_h: int) -> None:
#     - Side Effects: Recomputes box size, grid origin and tray heights.
#   - update_stack_scales(self, max_pop: int, max_tray: int, max_dist: int) -> None:
#     - Side Effects: Shrinks the per-tray box height so the tallest stack
#       still fits below the tray headroom. Never grows past the box width.


def value_to_bin(value: float, lo: float, hi: float, bins: int) -> int:
    """Resolves a value in [lo, hi] to one of `bins` equal-width bins."""
    x01 = clamp((value - lo) / (hi - lo), 0.0, 1.0)
    return clamp(int(math.floor(x01 * bins)), 0, bins - 1)


class Geometry:
    """
    Tray layout and value-to-pixel mapping.
    """
    def __init__(self, cols: int, stat_bins: int, plot_w: int = 960, canvas_h: int = 920):
        self.cols = cols
        self.stat_bins = stat_bins
        self.margin_y = MARGIN_Y
        self.box_top_y = float(MIN_BOX)
        self.box_mid_y = float(MIN_BOX)
        self.box_bot_y = float(MIN_BOX)
        self.layout_from_viewport(plot_w, canvas_h)

    def reset_geometry(self, plot_w: int, box: int, top_h: float, mid_h: float, bot_h: float) -> None:
        self.plot_w = plot_w
        self.box = max(MIN_BOX, box)
        self.grid_w = self.box * self.cols
        self.grid_x0 = (plot_w - self.grid_w) // 2
        self.h_top = top_h
        self.h_mid = mid_h
        self.h_bot = bot_h
        self.box_top_y = self.box_mid_y = self.box_bot_y = float(self.box)

    def layout_from_viewport(self, plot_w: int, canvas_h: int) -> None:
        """Fits the three trays into a plot area, keeping boxes square."""
        total_units = TOP_UNITS + MID_UNITS + BOT_UNITS
        inner_w = max(200, plot_w - 2 * PLOT_PADDING)
        from_width = max(MIN_BOX, inner_w // self.cols)
        from_height = max(MIN_BOX, (canvas_h - 2 * 16) // total_units)
        box = min(from_width, from_height)
        self.reset_geometry(plot_w, box, TOP_UNITS * box, MID_UNITS * box, BOT_UNITS * box)

    # --- Tray extents ---

    @property
    def y_top(self) -> float:
        return self.margin_y

    @property
    def y_mid(self) -> float:
        return self.margin_y + self.h_top

    @property
    def y_bot(self) -> float:
        return self.margin_y + self.h_top + self.h_mid

    @property
    def total_height(self) -> float:
        return self.h_top + self.h_mid + self.h_bot + 2 * self.margin_y

    @property
    def top_base(self) -> float:
        return self.y_top + self.h_top - 8

    @property
    def mid_base(self) -> float:
        return self.y_mid + self.h_mid - 16

    @property
    def bot_base(self) -> float:
        return self.y_bot + self.h_bot - 8

    def update_stack_scales(self, max_pop: int, max_tray: int, max_dist: int) -> None:
        def scale(max_count, tray_h):
            need = max_count * self.box
            return min(1.0, (tray_h - TRAY_HEADROOM) / need) if need > 0 else 1.0

        self.box_top_y = self.box * scale(max_pop, self.h_top)
        self.box_mid_y = self.box * scale(max_tray, self.h_mid)
        self.box_bot_y = self.box * scale(max_dist, self.h_bot)

    # --- Horizontal mapping ---

    def col_left(self, col: int) -> float:
        return self.grid_x0 + col * self.box

    def col_center(self, col: int) -> float:
        return self.grid_x0 + col * self.box + self.box / 2

    def stat_bin_width(self) -> float:
        return self.grid_w / self.stat_bins

    def stat_bin_left(self, b: int) -> float:
        return self.grid_x0 + b * self.stat_bin_width()

    def stat_bin_center(self, b: int) -> float:
        return self.grid_x0 + (b + 0.5) * self.stat_bin_width()

    def value_to_x(self, value: float, domain: StatDomain) -> float:
        proportion = clamp((value - domain.min) / domain.width, 0.0, 1.0)
        return self.grid_x0 + proportion * self.grid_w

    def x_to_col(self, x: float) -> int:
        return clamp(int(math.floor((x - self.grid_x0) / self.box)), 0, self.cols - 1)

    def in_population(self, y: float) -> bool:
        return y <= self.margin_y + self.h_top

    # --- Stack slots ---

    def population_stack_top(self, count: int) -> float:
        """The y a particle leaves from when drawn from a stack of `count` boxes."""
        if count > 0:
            return self.top_base - (count - 1) * self.box_top_y - self.box_top_y / 2
        return self.y_top + self.box_top_y * 2

    def tray_slot_y(self, level: int) -> float:
        return self.mid_base - level * self.box_mid_y - self.box_mid_y / 2

    def distribution_slot_y(self, level: int) -> float:
        return self.bot_base - level * self.box_bot_y - self.box_bot_y / 2

    def gather_point(self, stat_bin: int) -> Tuple[float, float]:
        """The shared convergence point above one sampling-distribution bin."""
        return self.stat_bin_center(stat_bin), self.y_bot - GATHER_POINT_OFFSET

    def tray_positions(self, tray_counts: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Centres of every landed box in the sample tray, column by column."""
        xs, ys = [], []
        for col in np.nonzero(tray_counts)[0]:
            for r in range(int(tray_counts[col])):
                xs.append(self.col_center(int(col)))
                ys.append(self.tray_slot_y(r))
        return np.array(xs, dtype=np.float64), np.array(ys, dtype=np.float64)
