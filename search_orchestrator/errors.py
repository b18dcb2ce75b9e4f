class SearchOrchestratorError(Exception):
    """Base class for errors raised by the orchestration layer."""


class JobNotFoundError(SearchOrchestratorError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f'Job {job_id} not found')
        self.job_id = job_id


class InvalidJobStateError(SearchOrchestratorError):
    pass


class InvalidSearchConfigError(SearchOrchestratorError):
    pass


class ProviderError(SearchOrchestratorError):
    """A collaborator call failed (transport error, bad status or malformed payload)."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f'{provider}: {message}')
        self.provider = provider


class JobTimeoutError(SearchOrchestratorError):
    pass
