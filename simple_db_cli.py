"""
Command-line front end for the in-memory store.

Reads one command per line from stdin and writes results to stdout until
END or end of input. Logging goes to stderr.
"""

from typing import Dict, Iterable, List, TextIO
import logging
import os
import sys

from simple_db import (
    BeginCommand, Command, CommitCommand, EndCommand, GetCommand,
    InvalidCommandError, NumEqualToCommand, RollbackCommand, SetCommand,
    SimpleDatabase, UnsetCommand,
)


logger = logging.getLogger(__name__)

INPUT_ERROR_MESSAGE = "Please enter a valid input. Note that input is case sensitive."
LOG_LEVEL_ENV = "SIMPLE_DB_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "WARNING"

_NO_ARG_COMMANDS: Dict[str, Command] = {
    "END": EndCommand(),
    "BEGIN": BeginCommand(),
    "ROLLBACK": RollbackCommand(),
    "COMMIT": CommitCommand(),
}

_ONE_ARG_COMMANDS = {
    "GET": GetCommand,
    "UNSET": UnsetCommand,
    "NUMEQUALTO": NumEqualToCommand,
}


def tokenize(line: str) -> List[str]:
    """Split on single spaces, dropping trailing empty tokens"""
    tokens = line.rstrip("\r\n").split(" ")
    while tokens and tokens[-1] == "":
        tokens.pop()
    return tokens


def parse_command(line: str) -> Command:
    """Turn a line of input into a command, raising InvalidCommandError if malformed"""
    tokens = tokenize(line)
    if len(tokens) == 1 and tokens[0] in _NO_ARG_COMMANDS:
        return _NO_ARG_COMMANDS[tokens[0]]
    if len(tokens) == 2 and tokens[0] in _ONE_ARG_COMMANDS:
        return _ONE_ARG_COMMANDS[tokens[0]](tokens[1])
    if len(tokens) == 3 and tokens[0] == "SET":
        return SetCommand(tokens[1], tokens[2])
    raise InvalidCommandError(f"Invalid input: {line.rstrip()!r}")


def run(db: SimpleDatabase, lines: Iterable[str], out: TextIO) -> None:
    """Feed lines to the database until END or the input runs out"""
    for line in lines:
        try:
            command = parse_command(line)
        except InvalidCommandError as e:
            logger.warning("%s", e)
            print(INPUT_ERROR_MESSAGE, file=out)
            continue

        if isinstance(command, EndCommand):
            logger.debug("END received")
            return

        output = db.execute(command)
        if output is not None:
            print(output, file=out)


def setup_logging() -> None:
    level = os.environ.get(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL).upper()
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> int:
    setup_logging()
    try:
        run(SimpleDatabase(), sys.stdin, sys.stdout)
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
