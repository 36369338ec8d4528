from __future__ import annotations

from typing import Dict, Optional, Tuple

from .models import Signal, LONG


class StrategyModule:
    """A signal family with its own stop/target rule."""

    name = ""

    def levels(self, side: str, entry: float, signal: Signal, risk) -> Tuple[float, float]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def __eq__(self, other) -> bool:
        return type(self) is type(other)

    def __hash__(self) -> int:
        return hash(self.name)

    @staticmethod
    def _anchored_stop(side: str, entry: float, anchor_low: float, anchor_high: float, buffer_frac: float) -> float:
        buf = abs(entry) * float(buffer_frac)
        if side == LONG:
            return min(anchor_low, entry) - buf
        return max(anchor_high, entry) + buf

    @staticmethod
    def _multiple_target(side: str, entry: float, stop: float, multiple: float) -> float:
        if side == LONG:
            return entry + multiple * (entry - stop)
        return entry - multiple * (stop - entry)

    def _fixed_levels(self, side: str, entry: float, risk) -> Optional[Tuple[float, float]]:
        stop_dist = getattr(risk, "fixed_stop_distance", None)
        if not stop_dist:
            return None
        target_dist = getattr(risk, "fixed_target_distance", None) or (float(risk.reward_multiple) * stop_dist)
        if side == LONG:
            return entry - stop_dist, entry + target_dist
        return entry + stop_dist, entry - target_dist


class MeanReversion(StrategyModule):
    """Fade a band extreme back towards the band middle."""

    name = "mean_reversion"

    def levels(self, side: str, entry: float, signal: Signal, risk) -> Tuple[float, float]:
        stop = self._anchored_stop(side, entry, signal.anchor_low, signal.anchor_high, risk.stop_buffer_frac)
        if signal.band_mid is not None:
            return stop, signal.band_mid
        return stop, self._multiple_target(side, entry, stop, 1.0)


class Continuation(StrategyModule):
    name = "continuation"

    def levels(self, side: str, entry: float, signal: Signal, risk) -> Tuple[float, float]:
        fixed = self._fixed_levels(side, entry, risk)
        if fixed is not None:
            return fixed
        stop = self._anchored_stop(side, entry, signal.anchor_low, signal.anchor_high, risk.stop_buffer_frac)
        return stop, self._multiple_target(side, entry, stop, float(risk.reward_multiple))


class StructurePullback(StrategyModule):
    """Re-entry on a retracement after a structure break.

    The stop sits beyond the pivot the broken leg started from.
    """

    name = "structure_pullback"

    def levels(self, side: str, entry: float, signal: Signal, risk) -> Tuple[float, float]:
        fixed = self._fixed_levels(side, entry, risk)
        if fixed is not None:
            return fixed
        ev = signal.structure_ref
        low, high = signal.anchor_low, signal.anchor_high
        if ev is not None:
            low = high = ev.leg_start.price
        stop = self._anchored_stop(side, entry, low, high, risk.stop_buffer_frac)
        return stop, self._multiple_target(side, entry, stop, float(risk.reward_multiple))


MEAN_REVERSION = MeanReversion()
CONTINUATION = Continuation()
STRUCTURE_PULLBACK = StructurePullback()

MODULES: Dict[str, StrategyModule] = {
    m.name: m for m in (MEAN_REVERSION, CONTINUATION, STRUCTURE_PULLBACK)
}
