"""Fold per-environment outcomes into the release gate report."""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from compat_matrix.constants import REPORT_SCHEMA_VERSION
from compat_matrix.domain.models import Outcome, Report


def aggregate(
    outcomes: Iterable[Outcome],
    *,
    release_version: str | None = None,
    started_at: datetime | None = None,
    finished_at: datetime | None = None,
) -> Report:
    """Build a ``Report``; outcomes must already be in declaration order.

    Overall status is ``passed`` iff every outcome passed, so an empty matrix
    passes. Duplicate environment ids are rejected.
    """

    ordered = tuple(outcomes)
    seen: set[str] = set()
    for outcome in ordered:
        if outcome.environment_id in seen:
            raise ValueError(f"duplicate outcome for environment {outcome.environment_id!r}")
        seen.add(outcome.environment_id)
    return Report(
        outcomes=ordered,
        release_version=release_version,
        started_at=started_at,
        finished_at=finished_at,
    )


def outcome_records(report: Report) -> list[dict[str, object]]:
    """One record per outcome, then a trailing summary record."""

    records: list[dict[str, object]] = [
        {"record": "outcome", "schema_version": REPORT_SCHEMA_VERSION, **outcome.to_dict()}
        for outcome in report.outcomes
    ]
    summary = report.to_dict()
    summary.pop("outcomes")
    records.append({"record": "summary", "schema_version": REPORT_SCHEMA_VERSION, **summary})
    return records


def write_outcome_records(report: Report, path: str | Path) -> Path:
    """Write the report as JSON lines and return the written path."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    lines = [json.dumps(record, sort_keys=True) for record in outcome_records(report)]
    target.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return target


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


__all__ = ["aggregate", "outcome_records", "utc_now", "write_outcome_records"]
