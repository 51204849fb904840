class BridgeIngestionError(Exception):
    """Base class for every error raised by the ingestion pipeline."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class IndexUnavailable(BridgeIngestionError):
    """The CollecTor index could not be fetched or did not match the expected schema."""


class FetchFailed(BridgeIngestionError):
    """A single document could not be retrieved."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class ParseError(BridgeIngestionError):
    pass


class HeaderMissing(ParseError):
    """The first non-empty line is not a bridge-pool-assignment header."""


class HeaderMalformed(ParseError):
    """The header keyword is present but its timestamp does not parse."""


class SchemaError(BridgeIngestionError):
    """The destination tables or indexes could not be created."""


class TransactionError(BridgeIngestionError):
    """Writing one document failed and its transaction was rolled back."""
