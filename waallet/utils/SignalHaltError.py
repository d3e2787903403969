import logging
from asyncio import Task
from asyncio.events import AbstractEventLoop
from signal import Signals
from sys import stderr
from typing import Callable

# credits : https://stackoverflow.com/a/68732870


class SignalHaltError(SystemExit):
    def __init__(self, signal_enum: Signals):
        self.signal_enum = signal_enum
        print(repr(self), file=stderr)
        super().__init__(self.exit_code)

    @property
    def exit_code(self) -> int:
        return self.signal_enum.value

    def __repr__(self) -> str:
        return f"\nExited due to {self.signal_enum.name}"


def immediate_exit(
    signal_enum: Signals,
    loop: AbstractEventLoop,
    tasks: list[Task],
    on_exit: list[Callable[[], None]],
) -> None:
    """Stop the wallet on SIGINT/SIGTERM.

    ``on_exit`` callbacks run before the background tasks are cancelled,
    so parked authorizations are rejected and pool waiters get a
    cancellation error instead of hanging.
    """
    for callback in on_exit:
        try:
            callback()
        except Exception as excp:
            logging.warning(f"Shutdown callback failed: {excp}")
    for task in tasks:
        task.cancel()
    loop.stop()
    raise SignalHaltError(signal_enum=signal_enum)
