"""Montage clip selection.

Reduces a week's pool of scored clips to a duration-bounded subset.

Two modes are supported:

- ``flat`` (default): keep everything when it fits; otherwise drop clips the
  scorer flagged as redundant, then the lowest-scoring clips, until the pool
  fits under the maximum duration.
- ``per_source``: pick at most one segment per source video, lowering a
  score threshold step by step until the minimum duration is reached.

Both return clips in capture order so the montage reads as a timeline.
Everything here is pure; no I/O.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional, Sequence

from app.config import settings
from app.models.clip import weighted_score

logger = logging.getLogger(__name__)

# Stop filling once within this many seconds of the maximum
FILL_TOLERANCE_SEC = 0.25

PHASE_REDUNDANCY = "redundancy"
PHASE_SCORE = "score"


@dataclass(frozen=True)
class SelectionConstraints:
    """Duration band and long-clip penalty for one selection run."""
    min_duration: float = 0.0
    max_duration: float = 90.0
    long_clip_threshold: float = 12.0
    duration_penalty: float = 0.9

    @classmethod
    def from_settings(cls, config=None) -> "SelectionConstraints":
        config = config or settings
        return cls(
            min_duration=config.montage_min_duration_sec,
            max_duration=config.montage_max_duration_sec,
            long_clip_threshold=config.long_clip_threshold_sec,
            duration_penalty=config.long_clip_penalty,
        )


@dataclass
class ScoredCandidate:
    """A clip paired with its ranking score for one selection run."""
    clip: Any
    index: int  # Position in the input pool
    base_score: float
    duration_penalty: float = 1.0

    @property
    def composite_score(self) -> float:
        return self.base_score * self.duration_penalty

    @property
    def duration_sec(self) -> float:
        return self.clip.end_sec - self.clip.start_sec

    @property
    def clip_id(self):
        return self.clip.id

    def __repr__(self):
        return (
            f"ScoredCandidate(id={self.clip_id}, idx={self.index}, "
            f"score={self.composite_score:.3f}, dur={self.duration_sec:.2f}s)"
        )


@dataclass
class PruneDecision:
    """Records why a clip was dropped from the pool."""
    clip_id: Any
    index: int
    phase: str  # "redundancy" or "score"
    reason: str
    duration_after: float

    def to_dict(self) -> dict:
        return {
            "clip_id": self.clip_id,
            "index": self.index,
            "phase": self.phase,
            "reason": self.reason,
            "duration_after": self.duration_after,
        }


@dataclass
class Selection:
    """Chosen clips in timeline order."""
    candidates: List[ScoredCandidate] = field(default_factory=list)
    total_duration_sec: float = 0.0
    mode: str = "flat"
    decisions: List[PruneDecision] = field(default_factory=list)
    meets_minimum: bool = True
    threshold: Optional[float] = None  # per_source mode only

    @property
    def clips(self) -> List[Any]:
        return [c.clip for c in self.candidates]

    @property
    def removed_ids(self) -> List[Any]:
        return [d.clip_id for d in self.decisions]

    def __len__(self):
        return len(self.candidates)


def score_candidates(clips: Sequence[Any], constraints: SelectionConstraints) -> List[ScoredCandidate]:
    """Attach a composite score to every clip, penalizing long ones."""
    scored = []
    for index, clip in enumerate(clips):
        duration = clip.end_sec - clip.start_sec
        penalty = constraints.duration_penalty if duration > constraints.long_clip_threshold else 1.0
        scored.append(ScoredCandidate(
            clip=clip,
            index=index,
            base_score=weighted_score(clip.relevance, clip.quality, clip.confidence),
            duration_penalty=penalty,
        ))
    return scored


def _id_key(candidate: ScoredCandidate):
    clip_id = candidate.clip_id
    return (clip_id is None, clip_id if clip_id is not None else 0, candidate.index)


def _timeline_key(candidate: ScoredCandidate):
    captured_at = getattr(candidate.clip, "captured_at", None) or datetime.min
    return (captured_at,) + _id_key(candidate)


def _ascending_score_key(candidate: ScoredCandidate):
    return (candidate.composite_score,) + _id_key(candidate)


def in_timeline_order(candidates: Iterable[ScoredCandidate]) -> List[ScoredCandidate]:
    """Sort candidates by capture time, ties broken by clip ID."""
    return sorted(candidates, key=_timeline_key)


def select_montage(
    clips: Sequence[Any],
    constraints: SelectionConstraints,
    redundant_indices: Iterable[int] = (),
) -> Selection:
    """
    Select clips for a montage from a flat pool.

    Args:
        clips: Scored clips; anything with id, start_sec, end_sec, relevance,
            quality, confidence and captured_at
        constraints: Duration band and long-clip penalty
        redundant_indices: Positions in ``clips`` flagged as redundant, most
            redundant first

    Returns:
        Selection in capture order. The last remaining clip is never
        removed, so a single over-long clip is still selected.
    """
    candidates = score_candidates(clips, constraints)
    if not candidates:
        return Selection(mode="flat", meets_minimum=constraints.min_duration <= 0)

    alive = [True] * len(candidates)
    remaining = len(candidates)
    current = sum(c.duration_sec for c in candidates)
    decisions: List[PruneDecision] = []

    def remove(candidate: ScoredCandidate, phase: str, reason: str):
        nonlocal remaining, current
        alive[candidate.index] = False
        remaining -= 1
        current -= candidate.duration_sec
        decisions.append(PruneDecision(
            clip_id=candidate.clip_id,
            index=candidate.index,
            phase=phase,
            reason=reason,
            duration_after=current,
        ))
        logger.debug(f"{phase} prune: removed clip {candidate.clip_id}. New duration: {current:.2f}s")

    if current > constraints.max_duration:
        logger.info(
            f"Pool of {len(candidates)} clips is {current:.2f}s, "
            f"over the {constraints.max_duration:.2f}s budget; pruning"
        )

        # Phase A: scorer-flagged redundancy, in the scorer's priority order
        for index in redundant_indices:
            if current <= constraints.max_duration or remaining <= 1:
                break
            if isinstance(index, bool) or not isinstance(index, int):
                continue
            if index < 0 or index >= len(candidates) or not alive[index]:
                continue
            remove(candidates[index], PHASE_REDUNDANCY, "Flagged as redundant")

        # Phase B: lowest composite score first
        if current > constraints.max_duration:
            survivors = sorted(
                (c for c in candidates if alive[c.index]),
                key=_ascending_score_key,
            )
            for candidate in survivors:
                if current <= constraints.max_duration or remaining <= 1:
                    break
                remove(
                    candidate,
                    PHASE_SCORE,
                    f"Lowest remaining score {candidate.composite_score:.3f}",
                )

    selected = in_timeline_order(c for c in candidates if alive[c.index])
    total = sum(c.duration_sec for c in selected)

    logger.info(
        f"Selected {len(selected)}/{len(candidates)} clips, {total:.2f}s "
        f"({len(decisions)} removed)"
    )

    return Selection(
        candidates=selected,
        total_duration_sec=total,
        mode="flat",
        decisions=decisions,
        meets_minimum=total >= constraints.min_duration,
    )


def _threshold_steps(start: float, step: float, floor: float) -> List[float]:
    """Thresholds from start down to floor, inclusive."""
    if start <= floor:
        return [floor]
    if step <= 0:
        return [start, floor]

    thresholds = []
    current = start
    while current > floor + 1e-9:
        thresholds.append(round(current, 6))
        current -= step
    thresholds.append(floor)
    return thresholds


def _fill_per_source(
    ranked: Sequence[ScoredCandidate],
    threshold: float,
    max_duration: float,
    source_key: Callable[[Any], Any],
) -> List[ScoredCandidate]:
    chosen = []
    total = 0.0
    used_sources = set()

    for candidate in ranked:
        source = source_key(candidate.clip)
        if source in used_sources:
            continue
        if candidate.composite_score < threshold:
            continue
        if total + candidate.duration_sec > max_duration:
            continue

        chosen.append(candidate)
        total += candidate.duration_sec
        used_sources.add(source)

        if total >= max_duration - FILL_TOLERANCE_SEC:
            break

    return chosen


def select_per_source(
    clips: Sequence[Any],
    constraints: SelectionConstraints,
    source_key: Callable[[Any], Any] = lambda clip: clip.source_url,
    start_threshold: Optional[float] = None,
    threshold_step: Optional[float] = None,
    floor_threshold: Optional[float] = None,
) -> Selection:
    """
    Pick the best segment per source video under a lowering score threshold.

    Each attempt starts from scratch. The first attempt whose total reaches
    ``constraints.min_duration`` wins; if none does, the longest attempt is
    returned.
    """
    start_threshold = settings.per_source_start_threshold if start_threshold is None else start_threshold
    threshold_step = settings.per_source_threshold_step if threshold_step is None else threshold_step
    floor_threshold = settings.per_source_floor_threshold if floor_threshold is None else floor_threshold

    candidates = score_candidates(clips, constraints)
    if not candidates:
        return Selection(mode="per_source", meets_minimum=constraints.min_duration <= 0)

    ranked = sorted(candidates, key=lambda c: (-c.composite_score,) + _id_key(c))

    best: Optional[List[ScoredCandidate]] = None
    best_total = -1.0
    best_threshold = None

    for threshold in _threshold_steps(start_threshold, threshold_step, floor_threshold):
        chosen = _fill_per_source(ranked, threshold, constraints.max_duration, source_key)
        total = sum(c.duration_sec for c in chosen)
        logger.debug(f"Threshold {threshold:.2f}: {len(chosen)} clips, {total:.2f}s")

        if total > best_total:
            best, best_total, best_threshold = chosen, total, threshold

        if total >= constraints.min_duration:
            break

    selected = in_timeline_order(best or [])
    total = sum(c.duration_sec for c in selected)

    logger.info(
        f"Per-source selection: {len(selected)} clips, {total:.2f}s at threshold {best_threshold}"
    )

    return Selection(
        candidates=selected,
        total_duration_sec=total,
        mode="per_source",
        meets_minimum=total >= constraints.min_duration,
        threshold=best_threshold,
    )
