"""Tests for command library."""

import pytest

from kube_rollout.command import Command, run
from kube_rollout.exceptions import ApplyError, CommandException


async def test_command() -> None:
    """Test stdout parsing of a command."""
    result = await run(Command(["echo", "Hello"]))
    assert result == "Hello\n"


async def test_command_stdin() -> None:
    """Test passing input to a command."""
    result = await run(Command(["cat"]), stdin=b"kind: Pod\n")
    assert result == "kind: Pod\n"


async def test_failed_command() -> None:
    """Test a failing command."""
    with pytest.raises(CommandException, match="return code 1"):
        await run(Command(["/bin/false"]))


async def test_failed_command_exception_type() -> None:
    """Test the command raises the exception type it was created with."""
    with pytest.raises(ApplyError, match="return code 1"):
        await run(Command(["/bin/false"], exc=ApplyError))


async def test_command_timeout() -> None:
    """Test a command that runs longer than its timeout."""
    with pytest.raises(CommandException, match="timed out"):
        await run(Command(["sleep", "5"], timeout=0.1))


async def test_command_not_found() -> None:
    """Test a command whose binary does not exist."""
    with pytest.raises(CommandException, match="could not be started"):
        await run(Command(["kube-rollout-does-not-exist"]))
