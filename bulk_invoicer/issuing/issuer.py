from __future__ import annotations

from abc import ABC, abstractmethod

from ..models.groups import IssuedDocument, SynthesizedDocument

"""DocumentIssuer boundary.

The remote API that creates and numbers the legal billing document lives
outside this package. Implementations translate their failures into the two
EmissionError kinds: transient (network / 5xx, safe to retry the same group)
and permanent (rejected by the issuer, must go back to the user).
"""

__all__ = [
    "EmissionError",
    "TransientEmissionError",
    "PermanentEmissionError",
    "DocumentIssuer",
]


class EmissionError(Exception):
    transient: bool = False

    def __init__(self, message: str, group_label: str | None = None) -> None:
        self.group_label = group_label
        super().__init__(message)


class TransientEmissionError(EmissionError):
    transient = True


class PermanentEmissionError(EmissionError):
    transient = False


class DocumentIssuer(ABC):
    @abstractmethod
    def issue(self, document: SynthesizedDocument, counterparty_ref: str | None) -> IssuedDocument:
        """Create the legal document; raise TransientEmissionError / PermanentEmissionError."""
