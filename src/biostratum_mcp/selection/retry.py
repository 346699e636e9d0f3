"""
Two-strike retry protocol for model-produced selections.
"""

import enum
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from biostratum_mcp.mcp.errors import SelectionValidationError
from biostratum_mcp.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

GenerateFn = Callable[[str], Awaitable[str]]
ValidatorFn = Callable[[str], T]
FeedbackPromptFn = Callable[[str, str], str]
NotifyFn = Callable[[str], Awaitable[None]]


class RetryState(str, enum.Enum):
    """States of the selection retry protocol."""

    INITIAL = "initial"
    RETRYING = "retrying"

    def __str__(self) -> str:
        return self.value


@dataclass
class RetryOutcome(Generic[T]):
    """Result of running the retry protocol."""

    selection: Optional[T]
    """The validated selection, or None when both attempts failed."""

    attempts: int
    """Number of model responses that were validated (1 or 2)."""

    fallback_message: Optional[str] = None
    """User-facing message delivered when no valid selection was obtained."""

    error: Optional[str] = None
    """The last validation error, if any."""

    @property
    def succeeded(self) -> bool:
        return self.selection is not None


class SelectionRetryProtocol(Generic[T]):
    """
    Validates a model response and allows exactly one corrective retry.

    On a first failure the model gets a feedback prompt with the original
    response, the error and the live catalog. On a second failure the caller's
    fallback message is delivered and no selection is returned.
    """

    def __init__(
        self,
        generate: GenerateFn,
        validator: ValidatorFn,
        feedback_prompt: FeedbackPromptFn,
        fallback_message: str,
        notify: Optional[NotifyFn] = None,
    ):
        self.generate = generate
        self.validator = validator
        self.feedback_prompt = feedback_prompt
        self.fallback_message = fallback_message
        self.notify = notify
        self.state = RetryState.INITIAL

    async def run(self, initial_response: str) -> RetryOutcome[T]:
        self.state = RetryState.INITIAL
        response = initial_response
        attempts = 0

        while True:
            attempts += 1
            try:
                selection = self.validator(response)
                logger.debug(f"Selection validated on attempt {attempts}")
                return RetryOutcome(selection=selection, attempts=attempts)
            except SelectionValidationError as e:
                error_message = str(e)

            if self.state == RetryState.RETRYING:
                logger.warning(f"Selection still invalid after retry: {error_message}")
                if self.notify is not None:
                    await self.notify(self.fallback_message)
                return RetryOutcome(
                    selection=None,
                    attempts=attempts,
                    fallback_message=self.fallback_message,
                    error=error_message,
                )

            logger.info(f"Selection invalid, asking the model to correct it: {error_message}")
            self.state = RetryState.RETRYING
            prompt = self.feedback_prompt(response, error_message)
            response = await self.generate(prompt)


async def with_model_retry(
    initial_response: str,
    generate: GenerateFn,
    validator: ValidatorFn,
    feedback_prompt: FeedbackPromptFn,
    fallback_message: str,
    notify: Optional[NotifyFn] = None,
) -> RetryOutcome:
    """Run the selection retry protocol once for ``initial_response``."""
    protocol = SelectionRetryProtocol(
        generate=generate,
        validator=validator,
        feedback_prompt=feedback_prompt,
        fallback_message=fallback_message,
        notify=notify,
    )
    return await protocol.run(initial_response)
