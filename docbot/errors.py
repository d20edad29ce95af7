from __future__ import annotations


class CollaboratorError(RuntimeError):
    """Raised when an outbound collaborator (LINE, recognition, sheet) fails."""

    def __init__(self, collaborator: str, message: str) -> None:
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator
        self.message = message
