# prompter/errors.py

class PrompterError(Exception):
    """Base class for every failure the workbench reports to a caller."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SynthesisError(PrompterError):
    pass


class DerivationError(PrompterError):
    pass


class StreamError(PrompterError):
    """Chat stream failure. Converted to a terminal turn, never raised to callers."""
    pass


class ChatBusyError(PrompterError):
    """A chat send was issued while another one is still streaming."""
    pass


class PollFetchError(PrompterError):
    """
    Initial poll fetch failure.
    `category` is one of "malformed", "empty", "generic"; `hint` is the
    short diagnostic text shown next to the retry action.
    """

    def __init__(self, message: str, category: str = "generic", hint: str = ""):
        super().__init__(message)
        self.category = category
        self.hint = hint
