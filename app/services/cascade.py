"""
Strategic cascade calculator - pure functions, no DB access.

Turns a plan's objectives and cascade ratios into target counts per entity
kind, then compares them with current counts to produce gaps, coverage
percentages and a generation priority order.

    targets = compute_targets(objectives, cascade_config, current)
    gaps = compute_gaps(current, targets["global"])

Kinds are always reported in the order of ENTITY_KINDS; that order is also
the tie-breaker when two kinds have the same gap.
"""

from app.models.strategy import DEFAULT_CASCADE_CONFIG

ENTITY_KINDS = ("challenges", "pilots", "campaigns", "events")

REMAINDER_POLICIES = {"floor", "distribute"}


def resolve_cascade_config(cascade_config: dict | None) -> dict:
    """Merge caller ratios over the defaults. Unknown keys are ignored."""
    resolved = dict(DEFAULT_CASCADE_CONFIG)
    for key, value in (cascade_config or {}).items():
        if key in resolved and value is not None:
            resolved[key] = value
    return resolved


def objective_count(objectives) -> int:
    """Number of objectives, floored at 1 so ratios always have a bucket."""
    return max(1, len(objectives or []))


def split_evenly(total: int, buckets: int, policy: str = "floor") -> list[int]:
    """Split an integer total across N buckets.

    ``floor``: every bucket gets ``total // buckets``; the remainder is dropped.
    ``distribute``: the remainder goes one unit each to the first buckets,
    so the shares always sum back to ``total``.
    """
    buckets = max(1, buckets)
    share, remainder = divmod(total, buckets)
    if policy != "distribute":
        return [share] * buckets
    return [share + (1 if i < remainder else 0) for i in range(buckets)]


def _empty_counts() -> dict:
    return {kind: 0 for kind in ENTITY_KINDS}


def compute_targets(
    objectives: list | None,
    cascade_config: dict | None,
    current: dict | None,
    *,
    remainder_policy: str = "floor",
) -> dict:
    """Compute global and per-objective cascade targets.

    Pilot demand is derived from challenges that already exist
    (``current["challenges"] * pilots_per_challenge``), not from the
    challenge target.

    Returns:
        {
            "objective_count": int,
            "cascade_config": {...resolved ratios...},
            "global": {kind: target},
            "per_objective": [
                {"objective_id", "title_en", "title_ar", "weight",
                 "current": {kind: n}, "target": {kind: n}},
            ],
        }
    """
    ratios = resolve_cascade_config(cascade_config)
    current = {**_empty_counts(), **(current or {})}
    objectives = list(objectives or [])
    count = objective_count(objectives)

    global_targets = {
        "challenges": count * ratios["challenges_per_objective"],
        "pilots": current["challenges"] * ratios["pilots_per_challenge"],
        "campaigns": count * ratios["campaigns_per_objective"],
        "events": count * ratios["events_per_objective"],
    }

    shares = {
        kind: split_evenly(current[kind], count, remainder_policy)
        for kind in ENTITY_KINDS
    }

    per_objective = []
    for index, obj in enumerate(objectives):
        obj_current = {kind: shares[kind][index] for kind in ENTITY_KINDS}
        per_objective.append({
            "objective_id": obj.get("id") or f"objective-{index + 1}",
            "title_en": obj.get("title_en", ""),
            "title_ar": obj.get("title_ar", ""),
            "weight": obj.get("weight", 0) or 0,
            "current": obj_current,
            "target": {
                "challenges": ratios["challenges_per_objective"],
                "pilots": obj_current["challenges"] * ratios["pilots_per_challenge"],
                "campaigns": ratios["campaigns_per_objective"],
                "events": ratios["events_per_objective"],
            },
        })

    return {
        "objective_count": count,
        "cascade_config": ratios,
        "global": global_targets,
        "per_objective": per_objective,
    }


def coverage_pct(current: int, target: int) -> int:
    """Current as a percentage of target; 100 when nothing is required."""
    if target <= 0:
        return 100
    # integer half-up rounding: 12.5 -> 13
    return (200 * current + target) // (2 * target)


def blended_coverage_pct(current: dict, target: dict) -> int:
    """One percentage across all kinds: sum(current) / sum(target)."""
    total_target = sum(target.get(kind, 0) for kind in ENTITY_KINDS)
    total_current = sum(current.get(kind, 0) for kind in ENTITY_KINDS)
    return coverage_pct(total_current, total_target)


def overall_coverage_pct(current: dict, target: dict) -> int:
    """Share of required units already satisfied; surplus in one kind does not offset another."""
    total_target = sum(target.get(kind, 0) for kind in ENTITY_KINDS)
    satisfied = sum(min(current.get(kind, 0), target.get(kind, 0)) for kind in ENTITY_KINDS)
    return coverage_pct(satisfied, total_target)


def compute_gaps(current: dict, target: dict) -> dict:
    """Compare current and target counts.

    Returns:
        {
            "quantity_gaps": {kind: max(0, target - current)},
            "coverage_pct": {kind: pct},
            "priority_order": [kinds with gap > 0, largest gap first],
        }
    """
    gaps = {}
    coverage = {}
    for kind in ENTITY_KINDS:
        cur = current.get(kind, 0)
        tgt = target.get(kind, 0)
        gaps[kind] = max(0, tgt - cur)
        coverage[kind] = coverage_pct(cur, tgt)

    # sorted() is stable, so equal gaps keep ENTITY_KINDS order
    priority_order = sorted(
        (kind for kind in ENTITY_KINDS if gaps[kind] > 0),
        key=lambda kind: gaps[kind],
        reverse=True,
    )
    return {
        "quantity_gaps": gaps,
        "coverage_pct": coverage,
        "priority_order": priority_order,
    }
