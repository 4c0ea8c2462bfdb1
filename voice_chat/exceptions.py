"""Exceptions raised by providers and the conversation path."""


class ProviderError(Exception):
    """A provider could not be created or initialized (missing key, binary or device)."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class SubmissionError(Exception):
    """The conversation service failed to answer a message."""

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)
