"""Write guard for reports.

Intake content is frozen once a report exists; only status and
classification-tracking fields change afterwards. Status moves along a
per-type lifecycle loaded from YAML, and hotline QA along its own table.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel

from casegraph.core.config import ReportConfig
from casegraph.core.errors import ValidationError
from casegraph.reports.models import QaStatus, ReportStatus, ReportType

_DEFAULT_TRANSITIONS_PATH = Path(__file__).resolve().parent / "config" / "report_transitions.yml"

IMMUTABLE_FIELDS = frozenset(
    {
        "type",
        "source_channel",
        "details",
        "summary",
        "category_id",
        "severity",
        "reporter_type",
        "reporter_name",
        "reporter_email",
        "reporter_phone",
        "location_name",
        "location_city",
        "location_country",
        "custom_fields",
        "reference_number",
        "created_at",
        "created_by",
    }
)

MUTABLE_FIELDS = frozenset(
    {
        "status",
        "qa_status",
        "qa_notes",
        "qa_rejection_reason",
        "assigned_to",
        "language_detected",
        "language_confirmed",
        "ai_summary",
        "ai_risk_score",
    }
)


class StatusLifecycle(BaseModel):
    """Allowed status moves for one family of report types."""

    name: str
    initial: ReportStatus
    transitions: dict[ReportStatus, list[ReportStatus]]

    def allows(self, current: ReportStatus, new: ReportStatus) -> bool:
        return new in self.transitions.get(current, [])


class ImmutabilityGuard:
    """Validates report updates against the frozen field set and lifecycles."""

    def __init__(
        self,
        default_language: str = "en",
        transitions_path: str | Path | None = None,
    ) -> None:
        self._default_language = default_language
        self._transitions_path = (
            Path(transitions_path) if transitions_path else _DEFAULT_TRANSITIONS_PATH
        )
        self._lifecycles: dict[ReportType, StatusLifecycle] = {}
        self._qa: dict[QaStatus, list[QaStatus]] = {}
        self._load_config()

    @classmethod
    def from_config(cls, config: ReportConfig) -> ImmutabilityGuard:
        return cls(config.default_language, config.transitions_path)

    def _load_config(self) -> None:
        with open(self._transitions_path) as fh:
            raw = yaml.safe_load(fh) or {}

        lifecycles: dict[str, StatusLifecycle] = {}
        for name, data in raw.get("lifecycles", {}).items():
            lifecycles[name] = StatusLifecycle(
                name=name,
                initial=data["initial"],
                transitions=data.get("transitions", {}),
            )

        for report_type, lifecycle_name in raw.get("types", {}).items():
            if lifecycle_name not in lifecycles:
                raise ValueError(
                    f"Report type {report_type!r} refers to unknown lifecycle {lifecycle_name!r}"
                )
            self._lifecycles[ReportType(report_type)] = lifecycles[lifecycle_name]

        missing = [t.value for t in ReportType if t not in self._lifecycles]
        if missing:
            raise ValueError(f"No status lifecycle configured for: {', '.join(missing)}")

        self._qa = {
            QaStatus(current): [QaStatus(s) for s in allowed]
            for current, allowed in raw.get("qa", {}).items()
        }

    @property
    def default_language(self) -> str:
        return self._default_language

    def check_update(self, changes: dict[str, Any]) -> None:
        """Reject any change touching an immutable or unknown field.

        The error names every offending field, not just the first.
        """
        frozen = sorted(IMMUTABLE_FIELDS & changes.keys())
        if frozen:
            raise ValidationError(
                f"Report intake fields cannot be modified after creation: {', '.join(frozen)}",
                fields=frozen,
            )
        unknown = sorted(changes.keys() - MUTABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Unknown report fields: {', '.join(unknown)}", fields=unknown
            )

    def lifecycle_for(self, report_type: ReportType) -> StatusLifecycle:
        return self._lifecycles[ReportType(report_type)]

    def initial_status(self, report_type: ReportType) -> ReportStatus:
        return self.lifecycle_for(report_type).initial

    def check_transition(
        self, report_type: ReportType, current: ReportStatus | str, new: ReportStatus | str
    ) -> ReportStatus:
        try:
            target = ReportStatus(new)
        except ValueError:
            raise ValidationError(f"Unknown report status {new!r}", fields=["status"])
        lifecycle = self.lifecycle_for(report_type)
        if not lifecycle.allows(ReportStatus(current), target):
            allowed = [s.value for s in lifecycle.transitions.get(ReportStatus(current), [])]
            raise ValidationError(
                f"{ReportType(report_type).value} report cannot move from {current} to "
                f"{target.value} (allowed: {', '.join(allowed) or 'none'})",
                fields=["status"],
            )
        return target

    def check_qa_transition(self, current: QaStatus | str, new: QaStatus | str) -> QaStatus:
        try:
            target = QaStatus(new)
        except ValueError:
            raise ValidationError(f"Unknown QA status {new!r}", fields=["qa_status"])
        if target not in self._qa.get(QaStatus(current), []):
            raise ValidationError(
                f"QA review cannot move from {current} to {target.value}",
                fields=["qa_status"],
            )
        return target

    def effective_language(self, confirmed: str | None, detected: str | None) -> str:
        return confirmed or detected or self._default_language
