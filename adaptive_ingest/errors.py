class IngestError(RuntimeError):
    pass


class CapabilityError(IngestError):
    pass


class StoreError(IngestError):
    """Raised by the store for any rejected write or statement."""


class SchemaInferenceError(IngestError):
    pass


class ValidationError(SchemaInferenceError):
    """An inferred mapping broke the fixed-catalog contract."""


REDACTION_OPEN = "[generated-ddl]"
REDACTION_CLOSE = "[/generated-ddl]"


def redact_statement(statement: str) -> str:
    return f"{REDACTION_OPEN}{statement}{REDACTION_CLOSE}"


class MaterializationError(IngestError):
    def __init__(self, message: str, *, statement: str, definition: str | None = None) -> None:
        super().__init__(message)
        self.statement = statement
        self.definition = definition

    def __str__(self) -> str:
        return f"{self.args[0]} (statement: {redact_statement(self.statement)})"


class LoadError(IngestError):
    def __init__(self, message: str, *, committed: int, total: int, failed_at_index: int) -> None:
        super().__init__(message)
        self.committed = committed
        self.total = total
        self.failed_at_index = failed_at_index
