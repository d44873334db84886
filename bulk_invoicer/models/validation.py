from __future__ import annotations

from dataclasses import dataclass, field

"""Row validation result models.

ValidationError instances are collected, never raised one by one; the
ValidationReport is what the session host shows the user.
"""

__all__ = [
    "ValidationError",
    "ValidationReport",
]


@dataclass(frozen=True)
class ValidationError:
    row_index: int  # 1-based sheet row
    field: str  # canonical field name
    message: str

    def render(self) -> str:
        return f"Row {self.row_index}: {self.field}: {self.message}"


@dataclass(frozen=True)
class ValidationReport:
    valid: bool
    errors: tuple[ValidationError, ...] = ()
    shown_errors: tuple[ValidationError, ...] = ()
    truncated_count: int = 0
    checked_rows: int = 0

    @classmethod
    def build(cls, errors: list[ValidationError], checked_rows: int, shown_limit: int = 5) -> ValidationReport:
        shown = tuple(errors[:shown_limit])
        return cls(
            valid=not errors,
            errors=tuple(errors),
            shown_errors=shown,
            truncated_count=max(0, len(errors) - len(shown)),
            checked_rows=checked_rows,
        )

    def render(self) -> str:
        """User-facing text: first few errors plus '...and N more.'"""
        if self.valid:
            return f"{self.checked_rows} rows validated"
        lines = [e.render() for e in self.shown_errors]
        if self.truncated_count:
            lines.append(f"...and {self.truncated_count} more.")
        return "\n".join(lines)
