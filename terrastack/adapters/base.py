"""
Runner base — the contract between the pipeline and terraform.

The pipeline only talks to terraform through this interface. A runner
takes a RunRequest and returns a Receipt; it never raises. Turning a
failed receipt into an error is the pipeline's job.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from terrastack.core.models.receipt import Receipt, RunRequest


class Runner(ABC):
    """Abstract base class for runners.

    To create a new runner:
        1. Subclass Runner
        2. Implement name, is_available, run
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The runner identifier (e.g., 'terraform', 'mock')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the underlying tool can be started. Never raises."""

    @abstractmethod
    def run(self, request: RunRequest) -> Receipt:
        """Run the request and return a receipt.

        MUST never raise exceptions. All failures are captured
        in the Receipt with status='failed'.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
