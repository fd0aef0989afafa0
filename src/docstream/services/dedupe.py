"""Overlap stripping for redelivered stream fragments.

Some generation backends occasionally resend the tail of what they already
sent. ``overlap_length`` finds how much of an incoming fragment is already the
suffix of the buffer so the caller can drop it before appending.

This is a heuristic: a legitimately repeated phrase at a fragment boundary
("the the") is indistinguishable from a redelivery. ``min_overlap`` is the
knob that trades false positives against missed duplicates.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DedupePolicy:
    window: int = 100
    min_overlap: int = 4
    enabled: bool = True


DEFAULT_POLICY = DedupePolicy()
DISABLED = DedupePolicy(enabled=False)


def overlap_length(existing: str, fragment: str, policy: DedupePolicy = DEFAULT_POLICY) -> int:
    """Return how many leading characters of ``fragment`` to strip.

    Only the last ``policy.window`` characters of ``existing`` are compared, so
    the cost is bounded regardless of buffer size. The longest overlap wins.
    """

    if not policy.enabled or not existing or not fragment:
        return 0
    tail = existing[-policy.window:]
    longest = min(len(tail), len(fragment))
    for size in range(longest, policy.min_overlap - 1, -1):
        if size <= 0:
            break
        if tail.endswith(fragment[:size]):
            return size
    return 0


def strip_overlap(existing: str, fragment: str, policy: DedupePolicy = DEFAULT_POLICY) -> str:
    return fragment[overlap_length(existing, fragment, policy):]
