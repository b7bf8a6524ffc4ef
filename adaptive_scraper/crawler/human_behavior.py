"""
Human-like interaction noise for automation pages.

Issues randomized pointer, scroll, keyboard and tab-visibility events on a
leased page to look less like a script:
- Mouse paths follow Bezier curves with acceleration/deceleration
- Scrolls use an ease-out animation
- Tab visibility flips hidden -> visible with a random dwell

Everything here is best effort. No method raises: failures are logged at
debug level and the caller carries on.
"""

from __future__ import annotations

import asyncio
import math
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import yaml

from adaptive_scraper.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = get_logger(__name__)


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class MouseConfig:
    """Mouse movement parameters."""

    min_points: int = 3
    max_points: int = 5
    edge_margin: int = 100  # pixels kept clear of the viewport edge
    min_steps: int = 5
    max_steps: int = 15
    control_point_variance: float = 60.0
    num_control_points: int = 2
    acceleration_ratio: float = 0.2
    deceleration_ratio: float = 0.3
    pause_min_ms: float = 100.0
    pause_max_ms: float = 500.0


@dataclass
class ScrollConfig:
    """Scroll gesture parameters."""

    min_amount: int = 50
    max_amount: int = 300
    animation_steps: int = 8
    animation_duration_ms: float = 400.0
    ease_out_power: float = 3.0
    settle_min_ms: float = 500.0
    settle_max_ms: float = 1500.0


@dataclass
class HumanBehaviorConfig:
    """Complete human behavior configuration."""

    mouse: MouseConfig = field(default_factory=MouseConfig)
    scroll: ScrollConfig = field(default_factory=ScrollConfig)

    keys: tuple[str, ...] = ("Tab", "Escape", " ")
    key_hold_min_ms: float = 50.0
    key_hold_max_ms: float = 150.0

    visibility_dwell_min_ms: float = 2000.0
    visibility_dwell_max_ms: float = 8000.0

    action_gap_min_ms: float = 1000.0
    action_gap_max_ms: float = 3000.0

    think_time_min_ms: float = 3000.0
    think_time_max_ms: float = 8000.0

    @classmethod
    def from_yaml(cls, path: str | Path) -> HumanBehaviorConfig:
        """Load configuration from a YAML file.

        Unknown keys are ignored; a missing or broken file yields defaults.
        """
        path = Path(path)
        if not path.exists():
            logger.warning("Human behavior config not found, using defaults", path=str(path))
            return cls()

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error("Failed to load human behavior config", path=str(path), error=str(e))
            return cls()

        mouse = data.pop("mouse", {}) or {}
        scroll = data.pop("scroll", {}) or {}
        top_level = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if "keys" in top_level:
            top_level["keys"] = tuple(top_level["keys"])
        return cls(
            mouse=MouseConfig(**{k: v for k, v in mouse.items() if k in MouseConfig.__dataclass_fields__}),
            scroll=ScrollConfig(
                **{k: v for k, v in scroll.items() if k in ScrollConfig.__dataclass_fields__}
            ),
            **top_level,
        )


# =============================================================================
# Mouse Trajectory
# =============================================================================


class MouseTrajectory:
    """Generates curved mouse paths with natural speed changes."""

    def __init__(self, config: MouseConfig | None = None):
        self._config = config or MouseConfig()

    def generate_path(
        self,
        start: tuple[float, float],
        end: tuple[float, float],
        steps: int | None = None,
    ) -> list[tuple[float, float, float]]:
        """Generate a path between two points.

        Args:
            start: Starting (x, y).
            end: Target (x, y).
            steps: Number of segments; random within config bounds if None.

        Returns:
            List of (x, y, delay_ms). The last point is exactly ``end``.
        """
        distance = math.dist(start, end)
        if distance < 1:
            return [(end[0], end[1], 0.0)]

        if steps is None:
            steps = random.randint(self._config.min_steps, self._config.max_steps)
        controls = self._control_points(start, end)
        per_step_ms = random.uniform(8.0, 20.0)

        path: list[tuple[float, float, float]] = []
        for i in range(1, steps + 1):
            t = i / steps
            x, y = self._bezier_point(t, controls)
            path.append((x, y, per_step_ms / self._speed_factor(t)))
        path[-1] = (end[0], end[1], path[-1][2])
        return path

    def _control_points(
        self,
        start: tuple[float, float],
        end: tuple[float, float],
    ) -> list[tuple[float, float]]:
        points = [start]
        angle = math.atan2(end[1] - start[1], end[0] - start[0]) + math.pi / 2
        count = self._config.num_control_points
        for i in range(count):
            t = (i + 1) / (count + 1)
            offset = random.uniform(-self._config.control_point_variance, self._config.control_point_variance)
            points.append(
                (
                    start[0] + t * (end[0] - start[0]) + offset * math.cos(angle),
                    start[1] + t * (end[1] - start[1]) + offset * math.sin(angle),
                )
            )
        points.append(end)
        return points

    @staticmethod
    def _bezier_point(t: float, points: list[tuple[float, float]]) -> tuple[float, float]:
        """Evaluate a Bezier curve at t (de Casteljau)."""
        while len(points) > 1:
            points = [
                ((1 - t) * a[0] + t * b[0], (1 - t) * a[1] + t * b[1])
                for a, b in zip(points, points[1:], strict=False)
            ]
        return points[0]

    def _speed_factor(self, t: float) -> float:
        accel = self._config.acceleration_ratio
        decel = self._config.deceleration_ratio
        if t < accel:
            return 0.3 + 0.7 * (t / accel) ** 0.5
        if t > 1 - decel:
            return 1.0 - 0.7 * ((t - (1 - decel)) / decel) ** 2
        return 1.0


def ease_out_offsets(amount: int, steps: int, power: float) -> list[int]:
    """Split a scroll distance into ease-out increments that sum to ``amount``."""
    positions = [round(amount * (1 - (1 - i / steps) ** power)) for i in range(1, steps + 1)]
    deltas = []
    previous = 0
    for position in positions:
        deltas.append(position - previous)
        previous = position
    return deltas


# =============================================================================
# Simulator
# =============================================================================

_SET_VISIBILITY_JS = """
(hidden) => {
    Object.defineProperty(document, 'hidden', { value: hidden, configurable: true });
    Object.defineProperty(document, 'visibilityState', {
        value: hidden ? 'hidden' : 'visible',
        configurable: true,
    });
    document.dispatchEvent(new Event('visibilitychange'));
}
"""


def _ms(low: float, high: float) -> float:
    return random.uniform(low, high) / 1000


class HumanBehaviorSimulator:
    """Best-effort human interaction noise on a Playwright page."""

    def __init__(self, config: HumanBehaviorConfig | None = None):
        self._config = config or HumanBehaviorConfig()
        self._mouse = MouseTrajectory(self._config.mouse)
        self._position: tuple[float, float] = (0.0, 0.0)

    @classmethod
    def from_config_file(cls, path: str | Path) -> HumanBehaviorSimulator:
        return cls(HumanBehaviorConfig.from_yaml(path))

    def _viewport(self, page: Page) -> tuple[int, int]:
        size = page.viewport_size or {}
        return int(size.get("width") or 1280), int(size.get("height") or 720)

    async def move_mouse(
        self,
        page: Page,
        start: tuple[float, float],
        end: tuple[float, float],
    ) -> None:
        """Move the pointer along a curved path."""
        try:
            for x, y, delay_ms in self._mouse.generate_path(start, end):
                await page.mouse.move(x, y)
                if delay_ms > 0:
                    await asyncio.sleep(delay_ms / 1000)
            self._position = end
        except Exception as e:
            logger.debug("Mouse movement failed", error=str(e))

    async def random_mouse_movement(self, page: Page) -> None:
        """Wander through 3-5 random points inside the viewport margins."""
        try:
            cfg = self._config.mouse
            width, height = self._viewport(page)
            margin = min(cfg.edge_margin, width // 4, height // 4)
            for _ in range(random.randint(cfg.min_points, cfg.max_points)):
                target = (
                    float(random.randint(margin, width - margin)),
                    float(random.randint(margin, height - margin)),
                )
                await self.move_mouse(page, self._position, target)
                await asyncio.sleep(_ms(cfg.pause_min_ms, cfg.pause_max_ms))
        except Exception as e:
            logger.debug("Random mouse movement failed", error=str(e))

    async def move_to_element(self, page: Page, selector: str) -> bool:
        """Move the pointer onto an element.

        Returns:
            True if the element was found and reached.
        """
        try:
            element = await page.query_selector(selector)
            if element is None:
                return False
            box = await element.bounding_box()
            if not box:
                return False
            target = (
                box["x"] + box["width"] * random.uniform(0.3, 0.7),
                box["y"] + box["height"] * random.uniform(0.3, 0.7),
            )
            await self.move_mouse(page, self._position, target)
            return True
        except Exception as e:
            logger.debug("Move to element failed", selector=selector[:80], error=str(e))
            return False

    async def random_scroll(self, page: Page) -> None:
        """Scroll up or down by 50-300 px with an ease-out animation."""
        try:
            cfg = self._config.scroll
            amount = random.randint(cfg.min_amount, cfg.max_amount) * random.choice((1, -1))
            step_delay = cfg.animation_duration_ms / cfg.animation_steps / 1000
            for delta in ease_out_offsets(amount, cfg.animation_steps, cfg.ease_out_power):
                if delta:
                    await page.evaluate("(dy) => window.scrollBy(0, dy)", delta)
                await asyncio.sleep(step_delay)
            await asyncio.sleep(_ms(cfg.settle_min_ms, cfg.settle_max_ms))
        except Exception as e:
            logger.debug("Random scroll failed", error=str(e))

    async def random_keyboard(self, page: Page) -> None:
        """Press and release a harmless key (Tab, Escape or Space)."""
        try:
            key = random.choice(self._config.keys)
            await page.keyboard.down(key)
            await asyncio.sleep(_ms(self._config.key_hold_min_ms, self._config.key_hold_max_ms))
            await page.keyboard.up(key)
        except Exception as e:
            logger.debug("Random keyboard activity failed", error=str(e))

    async def simulate_tab_visibility(self, page: Page) -> None:
        """Pretend the user switched to another tab and came back."""
        try:
            await page.evaluate(_SET_VISIBILITY_JS, True)
            await asyncio.sleep(
                _ms(self._config.visibility_dwell_min_ms, self._config.visibility_dwell_max_ms)
            )
        except Exception as e:
            logger.debug("Tab visibility simulation failed", error=str(e))
        finally:
            try:
                await page.evaluate(_SET_VISIBILITY_JS, False)
            except Exception as e:
                logger.debug("Restoring tab visibility failed", error=str(e))

    async def perform_random_actions(self, page: Page, count: int = 3) -> None:
        """Run ``count`` randomly chosen behaviors with pauses in between."""
        actions: list[Callable[[Page], Awaitable[None]]] = [
            self.random_mouse_movement,
            self.random_scroll,
            self.random_keyboard,
            self.simulate_tab_visibility,
        ]
        for _ in range(count):
            await random.choice(actions)(page)
            await asyncio.sleep(_ms(self._config.action_gap_min_ms, self._config.action_gap_max_ms))

    async def think(self) -> None:
        """Pause as if reading (3-8 s by default)."""
        await asyncio.sleep(_ms(self._config.think_time_min_ms, self._config.think_time_max_ms))

    async def random_delay(self, min_ms: float = 500.0, max_ms: float = 2000.0) -> None:
        await asyncio.sleep(_ms(min_ms, max_ms))


# =============================================================================
# Global Instance
# =============================================================================

_simulator: HumanBehaviorSimulator | None = None


def get_human_behavior_simulator(config_path: str | Path | None = None) -> HumanBehaviorSimulator:
    """Get or create the shared simulator.

    Args:
        config_path: Optional YAML file (only used on first creation).
    """
    global _simulator
    if _simulator is None:
        if config_path is not None:
            _simulator = HumanBehaviorSimulator.from_config_file(config_path)
        else:
            _simulator = HumanBehaviorSimulator()
    return _simulator


def reset_human_behavior_simulator() -> None:
    """Reset the shared simulator (for testing)."""
    global _simulator
    _simulator = None
