"""
Exception hierarchy for the AppSync transformer.

Every failure in the schema-to-infrastructure pipeline is fatal to the
synthesis call that raised it; nothing in this package retries.
"""

from typing import Any, Dict, Optional


class AppSyncTransformerError(Exception):
    """
    Base exception class for all transformer errors.

    Carries a human-readable message, optional context and the underlying
    exception, if any.
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            result += f" (context: {context_str})"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigValidationError(AppSyncTransformerError):
    """Raised when construct or transform configuration is invalid."""

    pass


class SchemaValidationError(AppSyncTransformerError):
    """Raised when the input schema cannot be parsed or validated."""

    pass


class InvalidAuthConfigError(AppSyncTransformerError):
    """Raised when the authorization modes cannot form a valid auth config."""

    pass


class MalformedSlotKeyError(AppSyncTransformerError):
    """Raised when a user-defined slot key cannot be parsed."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(
            f"Malformed function slot key '{key}': {reason}",
            context={"key": key},
        )
        self.key = key
        self.reason = reason


class TransformError(AppSyncTransformerError):
    """Raised when a transformer plugin fails; names the failing plugin."""

    def __init__(
        self,
        plugin_name: str,
        message: str,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            f"Transformer '{plugin_name}' failed: {message}",
            context={"plugin": plugin_name},
            cause=cause,
        )
        self.plugin_name = plugin_name


class AssetWriteError(AppSyncTransformerError):
    """Raised when generated assets cannot be persisted."""

    def __init__(
        self, path: str, message: str, cause: Optional[BaseException] = None
    ) -> None:
        super().__init__(message, context={"path": path}, cause=cause)
        self.path = path


class ExportMappingError(AppSyncTransformerError):
    """Raised when a generated resource has no counterpart in the included template."""

    def __init__(
        self,
        stack_name: str,
        logical_id: str,
        message: str,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            message,
            context={"stack": stack_name, "logical_id": logical_id},
            cause=cause,
        )
        self.stack_name = stack_name
        self.logical_id = logical_id
