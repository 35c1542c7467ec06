"""Custom exceptions for swarm manager."""


class SwarmManagerError(Exception):
    """Base exception for all swarm manager errors."""

    def __init__(self, message: str, details: str = None):
        """Initialize the exception.

        Args:
            message: Main error message
            details: Additional details or suggestions
        """
        self.message = message
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message.

        Returns:
            Formatted error message with details
        """
        if self.details:
            return f"{self.message}\n\nDetails: {self.details}"
        return self.message


class DockerError(SwarmManagerError):
    """Exception raised when the Docker runtime is unavailable or a command fails."""

    pass


class StateStoreError(SwarmManagerError):
    """Exception raised for shared cluster state record (DynamoDB) errors."""

    pass


class SecretStoreError(SwarmManagerError):
    """Exception raised for external secret store (Secrets Manager) errors."""

    pass


class CertificateError(SwarmManagerError):
    """Exception raised when certificate material cannot be generated or read."""

    pass


class BootstrapError(SwarmManagerError):
    """Exception raised when cluster initialization fails."""

    pass


class JoinTimeoutError(SwarmManagerError):
    """Exception raised when a node could not join before its deadline."""

    pass


class LeadershipError(SwarmManagerError):
    """Exception raised when a leader-only task runs on a node that cannot lead."""

    pass


class LockError(SwarmManagerError):
    """Exception raised when the host-local lock cannot be acquired."""

    pass


class ValidationError(SwarmManagerError):
    """Exception raised for validation errors."""

    pass


class ConfigurationError(SwarmManagerError):
    """Exception raised for configuration errors."""

    pass
