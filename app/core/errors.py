from __future__ import annotations


class PlatformError(Exception):
    """Base class for errors raised by the generation and deployment core."""


class StageContractError(PlatformError):
    """A pipeline stage returned output that does not satisfy its contract."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"[{stage}] {message}")
        self.stage = stage
        self.detail = message


class LLMError(PlatformError):
    pass


class CommandNotAllowedError(PlatformError):
    pass


class ContractDeploymentError(PlatformError):
    """On-chain contract deployment failed; nothing was uploaded."""


class JobNotFoundError(PlatformError):
    pass
