"""Generic product names shown to payment providers instead of real titles."""

import random
from typing import Optional, Sequence

GENERIC_PRODUCT_NAMES = (
    "Personal Development Ebook",
    "Financial Freedom Ebook",
    "Digital Marketing Guide",
    "Health & Wellness Ebook",
    "Productivity Masterclass",
    "Mindfulness & Meditation Guide",
    "Entrepreneurship Blueprint",
    "Wellness Program",
    "Success Coaching",
    "Executive Mentoring",
    "Learning Resources",
    "Online Course Access",
    "Premium Content Subscription",
    "Digital Asset Package",
)

_rng = random.SystemRandom()


def pick_product_name(
    real_title: Optional[str] = None,
    pool: Sequence[str] = GENERIC_PRODUCT_NAMES,
) -> str:
    """Pick a name from the pool that never equals the real title."""
    excluded = (real_title or "").strip().lower()
    candidates = [name for name in pool if name.strip().lower() != excluded]
    if not candidates:
        raise ValueError("No generic product name available for this title")
    return _rng.choice(candidates)
