"""Exception hierarchy used throughout the server."""

from __future__ import annotations

from typing import Any


class ServerError(Exception):
    """Base class of every error the server reports."""

    kind = "ERR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message

    def redis_error_message(self, cmd: str) -> str:
        """Return the text sent to a client whose command `cmd` failed."""
        return f"Internal Error in {cmd}: {self}"

    def is_fatal(self) -> bool:
        """Whether the error should end the client connection."""
        return False

    def with_trace(self) -> str:
        """Render the error together with the chain of its causes."""
        text = str(self)
        causes = []
        cause = self.__cause__
        while cause is not None:
            causes.append(f"  {cause}")
            cause = cause.__cause__
        if causes:
            text += "\nCaused by:\n" + "\n".join(causes)
        return text


class ContextError(ServerError):
    """Wraps another error with a description of what was being done."""

    def __init__(self, context: str, cause: BaseException) -> None:
        super().__init__(context)
        self.cause = cause
        self.__cause__ = cause

    def is_fatal(self) -> bool:
        return True


def with_context(error: BaseException, context: str) -> ContextError:
    """Wrap `error` in a ContextError carrying `context`."""
    return ContextError(context, error)


class ProtocolError(ServerError):
    """Malformed data on the wire."""


class UnknownTypeSpecifierError(ProtocolError):
    def __init__(self, specifier: int) -> None:
        super().__init__(f"Unknown type specifier {chr(specifier)!r} ({specifier})")
        self.specifier = specifier


class InvalidCrLfTerminatorError(ProtocolError):
    def __init__(self, first: int, second: int) -> None:
        super().__init__(
            f"Invalid CR LF terminator {chr(first)!r}, {chr(second)!r} ({first}, {second})"
        )
        self.first = first
        self.second = second


class UnexpectedCommandTypeError(ServerError):
    def __init__(self, value: Any) -> None:
        super().__init__(f"Unexpected type when parsing command {value!r}")
        self.value = value


class UnimplementedError(ServerError):
    def __init__(self) -> None:
        super().__init__("Not yet implemented")


class UnimplementedCommandError(ServerError):
    def __init__(self, command: str) -> None:
        super().__init__(f"Unimplemented command '{command}'")
        self.command = command


class MissingArgumentError(ServerError):
    def __init__(self, command: str, argument: str) -> None:
        super().__init__(f"Missing argument {argument} in {command} command")
        self.command = command
        self.argument = argument


class UnexpectedArgumentError(ServerError):
    def __init__(self, argument: str) -> None:
        super().__init__(f"Unexpected argument '{argument}'")
        self.argument = argument


class RdbParseError(ServerError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Parse error {detail}")
        self.detail = detail


class UnsupportedRdbVersionError(ServerError):
    def __init__(self, version: int) -> None:
        super().__init__(f"Unsupported RDB version: {version}")
        self.version = version


class ExpectedOtherTypeError(ServerError):
    def __init__(self, expected: str) -> None:
        super().__init__(f"Expected '{expected}', but got something else")
        self.expected = expected


class ItemIdParseError(ServerError):
    """A stream item id could not be parsed."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Failed to parse item id: {reason}")
        self.reason = reason


class InsertionError(ServerError):
    """An item could not be inserted into a stream."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Failed to insert into stream: {reason}")
        self.reason = reason


class IdNotGreaterError(InsertionError):
    def __init__(self, highest: Any) -> None:
        super().__init__("New entry has to have ID higher than the latest one ")
        self.highest = highest

    def redis_error_message(self, cmd: str) -> str:
        return (
            f"The ID specified in {cmd} is equal or smaller than the target stream top item"
        )


class IdTooLowError(InsertionError):
    def __init__(self) -> None:
        super().__init__("Item ID must be greater than 0-0")

    def redis_error_message(self, cmd: str) -> str:
        return f"The ID specified in {cmd} must be greater than 0-0"


class UnexpectedReplyError(ServerError):
    def __init__(self, reply: Any, expected: str) -> None:
        super().__init__(f"Received unexpected reply: {reply!r}, expected: {expected}")
        self.reply = reply
        self.expected = expected


class InvalidPsyncReplyError(ServerError):
    def __init__(self, reply: str) -> None:
        super().__init__(f"Invalid PSYNC reply format: {reply}")
        self.reply = reply