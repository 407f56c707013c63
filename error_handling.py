"""Error taxonomy for the embedding pipeline and actionable guidance for the CLI."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional


class HistoLearnError(ValueError):
    """Base class for every caller-visible pipeline failure."""


class InvalidInputTypeError(HistoLearnError, TypeError):
    """Raised when an argument is not a FeatureLabelSet / TrainedPipeline."""


class MalformedFeatureDataError(HistoLearnError):
    """Raised for empty, non-numeric, missing or infinite feature values."""


class MalformedLabelDataError(HistoLearnError):
    """Raised when labels have the wrong shape, type or length."""


class MissingRequiredLabelError(HistoLearnError):
    """Raised when a stage that needs labels receives an unlabelled set."""


class UnsupportedMethodError(HistoLearnError):
    """Raised for reduction or classifier tags outside the supported set."""


class InvalidDimensionError(HistoLearnError):
    """Raised when a requested dimension is out of range for the data."""


class InvalidParameterError(HistoLearnError):
    """Raised for out-of-range run settings such as the train fraction."""


@dataclass
class ErrorRecord:
    """Captured pipeline error along with suggested guidance."""

    title: str
    message: str
    guidance: str
    timestamp: datetime
    kind: str = "HistoLearnError"
    details: Optional[str] = None

    @property
    def formatted_message(self) -> str:
        """Return a formatted message including actionable guidance."""

        guidance_block = f"Guidance: {self.guidance}" if self.guidance else ""
        detail_block = f"\nDetails: {self.details}" if self.details else ""
        parts = [self.message]
        if guidance_block:
            parts.append("\n\n" + guidance_block)
        if detail_block:
            parts.append(detail_block)
        return "".join(parts)


class ErrorManager:
    """Maintain structured error records for reporting back to the user."""

    def __init__(self, *, max_entries: int = 100) -> None:
        self.max_entries = max_entries
        self._records: List[ErrorRecord] = []
        self._log_path: Optional[Path] = None

    def set_log_path(self, log_path: Path) -> None:
        """Associate an application log path for troubleshooting guidance."""

        self._log_path = log_path

    def register_error(
        self,
        title: str,
        message: str,
        *,
        kind: str = "HistoLearnError",
        details: Optional[str] = None,
        hints: Optional[Iterable[str]] = None,
    ) -> ErrorRecord:
        """Capture an error and derive helpful remediation steps."""

        normalized = f"{title} {message}".lower()
        suggestions: List[str] = list(hints or [])

        if "csv" in normalized or "file" in normalized:
            suggestions.append(
                "Confirm the file is a readable CSV/TSV and that --sep and --no-header match its layout."
            )
        if "label" in normalized:
            suggestions.append(
                "Supply exactly one label per feature row, as a vector or a single-column table."
            )
        if "na values" in normalized or "inf" in normalized or "numeric" in normalized:
            suggestions.append(
                "Remove or impute missing and infinite entries and drop non-numeric feature columns."
            )
        if "dimension" in normalized or "component" in normalized:
            suggestions.append(
                "Request no more components than there are feature columns (visualisation accepts 2 to 10)."
            )
        if "fraction" in normalized:
            suggestions.append("Choose a train fraction strictly between 0 and 1 that leaves rows on both sides.")
        if "unsupported" in normalized or "method" in normalized:
            suggestions.append("Use 'pca' for reduction and 'knn' or 'logistic' for the classifier.")
        if "model" in normalized or "train" in normalized:
            suggestions.append(
                "Verify training parameters and ensure the dataset contains at least two labelled classes."
            )
        if not suggestions:
            suggestions.append("Review the input values and retry the operation.")

        if self._log_path is not None:
            suggestions.append(f"Check the application log at '{self._log_path}' for details.")

        guidance = " ".join(suggestions)
        record = ErrorRecord(
            title=title,
            message=message,
            guidance=guidance,
            kind=kind,
            details=details,
            timestamp=datetime.now(timezone.utc),
        )
        self._records.append(record)
        self._records = self._records[-self.max_entries :]
        return record

    def register_exception(self, title: str, exc: BaseException) -> ErrorRecord:
        """Capture an exception raised by one of the pipeline operations."""

        return self.register_error(title, str(exc), kind=type(exc).__name__)

    def get_recent(self) -> List[ErrorRecord]:
        """Return a copy of the captured error records."""

        return list(self._records)

    def clear(self) -> None:
        """Forget all captured errors."""

        self._records.clear()


__all__ = [
    "ErrorManager",
    "ErrorRecord",
    "HistoLearnError",
    "InvalidDimensionError",
    "InvalidInputTypeError",
    "InvalidParameterError",
    "MalformedFeatureDataError",
    "MalformedLabelDataError",
    "MissingRequiredLabelError",
    "UnsupportedMethodError",
]
