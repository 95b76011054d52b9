from store_rpc_stress.command import CommandSpec


class StressException(Exception):
    """Superclass for an exception generated from the stress harness code."""


class FatalException(StressException):
    """An exception indicating that we need to stop the stress run immediately."""


class CommandFailed(StressException):
    """
    An exception raised when one iteration of a command failed.

    The underlying error is available as `__cause__`.
    """


class UnexpectedSuccess(StressException):
    """An RPC call that we expected to fail completed successfully."""


class ServerStartTimeout(FatalException):
    """A server process did not report itself ready in time."""


def stress_command(name, setup):
    """
    Decorator: Marks a coroutine function as the repeatable step of
    a stress command called `name`, initialized once by `setup`.
    """

    def decorate(func):
        func.stress_command = CommandSpec(name, setup, func)
        return func

    return decorate
