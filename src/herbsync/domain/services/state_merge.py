"""Three-way merge of provider state written by more than one process.

``base`` is the stored snapshot this process last synchronized with, ``mine``
is the live in-memory state and ``theirs`` is what storage holds now.

- Counters and quota usage are additive: my increments since ``base`` are
  added onto ``theirs``.
- The breaker and alerting memory are replaced, not summed: if this process
  did not change them since ``base`` it adopts ``theirs``, otherwise its own
  value wins.
"""

from __future__ import annotations

from herbsync.domain.value_objects import ProviderState, QuotaUsage


def _used_in(quotas: list[QuotaUsage], window_seconds: float, window_index: int) -> int:
    for quota in quotas:
        if quota.window_seconds == window_seconds and quota.window_index == window_index:
            return quota.used
    return 0


def merge_quotas(
    base: list[QuotaUsage], mine: list[QuotaUsage], theirs: list[QuotaUsage]
) -> list[QuotaUsage]:
    """Sum usage in each of my current windows; older windows count as empty."""
    merged = []
    for quota in mine:
        used = (
            _used_in(theirs, quota.window_seconds, quota.window_index)
            + quota.used
            - _used_in(base, quota.window_seconds, quota.window_index)
        )
        merged.append(quota.model_copy(update={"used": max(0, used)}))
    return merged


def merge_counters(
    base: dict[str, int | float],
    mine: dict[str, int | float],
    theirs: dict[str, int | float],
) -> dict[str, int | float]:
    merged: dict[str, int | float] = {}
    for key in mine.keys() | theirs.keys():
        merged[key] = max(0, theirs.get(key, 0) + mine.get(key, 0) - base.get(key, 0))
    return merged


def merge_provider_state(
    base: ProviderState, mine: ProviderState, theirs: ProviderState | None
) -> ProviderState:
    """Combine my unsaved changes with whatever other writers stored.

    Args:
        base: Stored state this process last loaded or saved
        mine: Current in-memory state
        theirs: Stored state right now, None if nothing was ever saved

    Returns:
        State to write back, carrying ``theirs.version``
    """
    if theirs is None:
        return mine.model_copy(update={"version": 0})

    circuit = theirs.circuit if mine.circuit == base.circuit else mine.circuit
    if mine.alerting is None or mine.alerting == base.alerting:
        alerting = theirs.alerting
    else:
        alerting = mine.alerting

    return ProviderState(
        provider_id=mine.provider_id,
        circuit=circuit,
        quotas=merge_quotas(base.quotas, mine.quotas, theirs.quotas),
        stats=merge_counters(base.stats, mine.stats, theirs.stats),
        alerting=alerting,
        version=theirs.version,
        updated_at=theirs.updated_at,
    )


__all__ = ["merge_counters", "merge_provider_state", "merge_quotas"]
