"""Backend definitions and discovery of installed agent launchers."""

import shutil
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class Backend:
    """An external agent CLI and the flags that make it run unattended."""

    name: str
    role: str
    command: str
    subcommand: tuple[str, ...] = ()
    flags: tuple[str, ...] = ()
    model_flag: str = "-m"
    # Flag that must immediately precede the task text, if any
    prompt_flag: str | None = None

    def argv(self, description: str, model: str | None = None) -> list[str]:
        """Build the argument vector; the task text is always last."""
        cmd = [self.command, *self.subcommand, *self.flags]
        if model:
            cmd += [self.model_flag, model]
        if self.prompt_flag:
            cmd.append(self.prompt_flag)
        cmd.append(description)
        return cmd


GEMINI = Backend(
    name="gemini",
    role="Creative/Fast",
    command="gemini",
    flags=("--yolo", "-o", "text"),
)

CODEX = Backend(
    name="codex",
    role="Senior",
    command="codex",
    subcommand=("exec",),
    flags=("-s", "danger-full-access", "--skip-git-repo-check"),
)

QWEN = Backend(
    name="qwen",
    role="Research",
    command="qwen",
    flags=("--yolo",),
)

CLAUDE = Backend(
    name="claude",
    role="Architect",
    command="claude",
    flags=("--dangerously-skip-permissions",),
    model_flag="--model",
    prompt_flag="-p",
)

# Canonical registry order
BACKENDS: tuple[Backend, ...] = (GEMINI, CODEX, QWEN, CLAUDE)

_BY_NAME = {b.name: b for b in BACKENDS}


class BackendUnavailableError(Exception):
    """Raised when no agent backend is installed on this host."""


def get_backend(name: str) -> Backend:
    backend = _BY_NAME.get(name.strip().lower())
    if backend is None:
        raise ValueError(
            f"Unknown backend: {name!r}. Use one of {', '.join(_BY_NAME)}."
        )
    return backend


def available_backends(
    which: Callable[[str], str | None] | None = None,
) -> tuple[Backend, ...]:
    """Return the installed backends in canonical order. May be empty."""
    which = which or shutil.which
    return tuple(b for b in BACKENDS if which(b.command))
