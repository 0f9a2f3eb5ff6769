from __future__ import annotations


class StorageError(RuntimeError):
    pass


class StorageConfigError(StorageError):
    """Storage is misconfigured (missing token, missing or blank key material)."""


class PayloadIntegrityError(StorageError):
    """An encrypted payload is malformed or failed authentication."""


class StorageProviderError(StorageError):
    """A backend answered with a non-success HTTP status."""

    def __init__(
        self,
        *,
        provider: str,
        status_code: int,
        message: str,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.message = message
        self.body = body

    @property
    def is_entity_too_large(self) -> bool:
        return self.status_code == 413
