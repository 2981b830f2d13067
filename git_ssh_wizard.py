#!/usr/bin/env python3
"""
Git SSH Wizard: git identity, SSH key & SSH commit signing

A terminal wizard that walks through:
  1. Git identity (user.name / user.email), globally or for one repo
  2. ed25519 SSH key generation + ssh-agent registration
  3. Commit signing with that SSH key
  4. What to paste into GitHub afterwards

Usage:
    git-ssh-wizard [-v] [--key-path PATH]
    python3 git_ssh_wizard.py
"""

import argparse
import enum
import logging
import shutil
import subprocess
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.padding import Padding
from rich.panel import Panel
from rich.prompt import Confirm, InvalidResponse, Prompt
from rich.table import Table
from rich.text import Text

__version__ = "0.1.0"

console = Console()
LOG = logging.getLogger("git_ssh_wizard")


# ─── Paths & Constants ───────────────────────────────────────────────────────
SSH_DIR         = Path.home() / ".ssh"
DEFAULT_SSH_KEY = SSH_DIR / "id_ed25519"

GITHUB_KEYS_URL   = "https://github.com/settings/keys"
GITHUB_EMAILS_URL = "https://github.com/settings/emails"
NOREPLY_EXAMPLE   = "number+user@users.noreply.github.com"

AGENT_HINT = 'eval "$(ssh-agent -s)"'

SUCCESS_STYLE = "green"
WARNING_STYLE = "bold yellow"
ERROR_STYLE   = "red"
INFO_STYLE    = "bold blue"


# ─── Errors ──────────────────────────────────────────────────────────────────
class WizardError(Exception):
    """Base class for every failure the wizard reports to the user."""


class ValidationError(WizardError):
    """An answer in the form was rejected."""


class AbortError(WizardError):
    """The user cancelled the form."""


class CommandError(WizardError):
    """An external command exited non-zero or could not be started."""

    def __init__(self, message, cmd=None, returncode=None, stderr=""):
        self.cmd = list(cmd or [])
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        detail = message
        if self.cmd:
            detail += f"\n  command: {' '.join(self.cmd)}"
        if self.stderr:
            detail += f"\n  {self.stderr}"
        super().__init__(detail)


# ─── Configuration ───────────────────────────────────────────────────────────
class GitScope(enum.Enum):
    GLOBAL = "global"
    LOCAL = "local"

    @property
    def flag(self):
        return f"--{self.value}"


@dataclass(frozen=True)
class WizardConfig:
    """Answers collected by the form. Built once, then only read."""

    git_scope: GitScope
    username: str
    email: str
    skip_ssh: bool
    ssh_key_path: Path
    enable_signing: bool

    def __post_init__(self):
        if not str(self.ssh_key_path).strip():
            raise ValidationError("SSH key path must not be empty")

    @property
    def public_key_path(self):
        return Path(f"{self.ssh_key_path}.pub")

    @property
    def wants_key(self):
        return not self.skip_ssh or self.enable_signing


def validate_username(value):
    if not value:
        raise ValidationError("Username required")
    return value


def validate_email(value):
    # Requires only an "@" and a "."; not full address grammar.
    if "@" not in value or "." not in value:
        raise ValidationError("Not a valid email address")
    return value


def validate_key_path(value):
    if not value.strip():
        raise ValidationError("SSH key path required")
    return value


# ─── Logging ─────────────────────────────────────────────────────────────────
def configure_logging(verbosity):
    """
    Send log records to stderr through rich.

    verbosity == 0 -> WARNING
    verbosity == 1 -> INFO
    verbosity >= 2 -> DEBUG
    """
    if verbosity <= 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        markup=False,
    )
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )


# ─── Output Helpers ──────────────────────────────────────────────────────────
def ok(msg):
    console.print(f"  [{SUCCESS_STYLE}]✓[/] [{SUCCESS_STYLE}]{msg}[/]")


def info(msg):
    console.print(f"  [{INFO_STYLE}]›[/] {msg}")


def warn(msg):
    console.print(f"  [{WARNING_STYLE}]![/] [{WARNING_STYLE}]{msg}[/]")


def fail(msg):
    console.print(f"  [{ERROR_STYLE}]✗[/] {msg}")


def dim(msg):
    console.print(f"  [dim]{msg}[/]")


def fatal(err):
    """Print the banner for an error that ends the run."""
    console.print()
    console.print(Panel(
        Text(str(err)),
        title=f"[{ERROR_STYLE}] ! Fatal Error ! [/]",
        title_align="left",
        border_style=ERROR_STYLE,
        box=box.HEAVY,
        padding=(0, 2),
    ))


# ─── Shell Helpers ───────────────────────────────────────────────────────────
def _reattach_stdin():
    # Piped through `curl | python3`, stdin is the script itself and is
    # exhausted before the first prompt. Read answers from the terminal.
    if sys.stdin is not None and sys.stdin.isatty():
        return
    try:
        sys.stdin = open("/dev/tty", "r")
    except OSError:
        LOG.debug("No controlling terminal; keeping the original stdin")


@contextmanager
def attached_terminal():
    """
    Hand the terminal to a child process for the duration of the block.

    Yields the keyword arguments for subprocess.run that connect the
    child's stdin/stdout/stderr to ours, so ssh-keygen can ask for its
    passphrase directly.
    """
    console.file.flush()
    LOG.debug("Attaching terminal to child process")
    try:
        yield {"stdin": sys.stdin, "stdout": sys.stdout, "stderr": sys.stderr}
    finally:
        sys.stdout.flush()
        sys.stderr.flush()
        LOG.debug("Terminal detached")


def run_command(cmd, interactive=False):
    """
    Run one external command and return the CompletedProcess.

    Non-interactive commands have their output captured. Raises
    CommandError when the command cannot start or exits non-zero.
    """
    LOG.debug("Running: %s", " ".join(cmd))
    try:
        if interactive:
            with attached_terminal() as streams:
                result = subprocess.run(cmd, check=False, **streams)
        else:
            result = subprocess.run(
                cmd, capture_output=True, text=True, check=False,
            )
    except OSError as exc:
        raise CommandError(f"Could not start {cmd[0]}: {exc}", cmd) from exc

    if result.returncode != 0:
        stderr = result.stderr if isinstance(result.stderr, str) else ""
        LOG.debug("%s exited %s: %s", cmd[0], result.returncode, stderr)
        raise CommandError(
            f"{cmd[0]} exited with status {result.returncode}",
            cmd, result.returncode, stderr,
        )
    return result


def current_git_value(scope, key):
    """Return the current value of a git setting, or "" when unset."""
    try:
        result = run_command(["git", "config", scope.flag, "--get", key])
    except CommandError:
        return ""
    return result.stdout.strip()


# ═════════════════════════════════════════════════════════════════════════════
#  Welcome & Preflight
# ═════════════════════════════════════════════════════════════════════════════
def welcome():
    console.print(Panel(
        "[bold bright_cyan]Git SSH Wizard[/]\n"
        "[white]Git identity, SSH key and commit signing[/]",
        box=box.DOUBLE, border_style="bright_blue", padding=(0, 2),
    ))
    dim("Answer a few questions; nothing is changed until you confirm.")
    console.print()


def preflight():
    if shutil.which("git") is None:
        fail("Git not found")
        raise CommandError("Git not found on PATH. Install git and re-run.")
    version = run_command(["git", "--version"]).stdout.strip()
    ok(f"Git installed  ({version})")


# ═════════════════════════════════════════════════════════════════════════════
#  Prompter
# ═════════════════════════════════════════════════════════════════════════════
class ValidatedPrompt(Prompt):
    """A rich Prompt that re-asks when the validator raises ValidationError."""

    def __init__(self, prompt="", *, validator=None, **kwargs):
        super().__init__(prompt, **kwargs)
        self.validator = validator

    def __call__(self, *, default=..., stream=None):
        # An unusable default (e.g. a malformed existing git setting) is not
        # offered, so Enter cannot accept it.
        if default is not ... and self.validator is not None:
            try:
                self.validator(default)
            except ValidationError:
                LOG.debug("Dropping invalid default %r", default)
                default = ...
        return super().__call__(default=default, stream=stream)

    def process_response(self, value):
        value = super().process_response(value)
        if self.validator is not None:
            try:
                value = self.validator(value)
            except ValidationError as exc:
                raise InvalidResponse(f"[{ERROR_STYLE}]{exc}[/]") from exc
        return value


def ask(question, hint="", choices=None, default=..., validator=None):
    """Ask one question of the form and return the answer."""
    if hint:
        dim(hint)
    prompt = ValidatedPrompt(
        f"  [bold]{question}[/]",
        console=console,
        choices=choices,
        validator=validator,
    )
    answer = prompt(default=default)
    console.print()
    return answer


def review(config):
    table = Table(box=box.SIMPLE, padding=(0, 2), show_header=False)
    table.add_column(style="dim")
    table.add_column(style="white")
    table.add_row("git scope", config.git_scope.value)
    table.add_row("user.name", Text(config.username))
    table.add_row("user.email", Text(config.email))
    table.add_row("SSH key", "skip" if config.skip_ssh else "create")
    if config.wants_key:
        table.add_row("key file", Text(str(config.ssh_key_path)))
    table.add_row("signing", "ssh" if config.enable_signing else "none")
    console.print(Padding(table, (0, 4)))


def collect_config(default_key_path=None):
    """
    Run the form and return a WizardConfig.

    Raises AbortError if the user cancels or declines the review.
    """
    key_default = str(default_key_path or DEFAULT_SSH_KEY)
    try:
        scope = GitScope(ask(
            "How do you want to set up git?",
            hint="global applies across the system, local to the current repository only",
            choices=[s.value for s in GitScope],
            default=GitScope.GLOBAL.value,
        ))

        existing_name = current_git_value(scope, "user.name")
        existing_email = current_git_value(scope, "user.email")

        username = ask(
            "Username to display for commits?",
            hint="Using the one associated with your account is recommended",
            default=existing_name or ...,
            validator=validate_username,
        )
        email = ask(
            "Email used for commits?",
            hint=f"For GitHub, your no-reply address ({NOREPLY_EXAMPLE}) "
                 f"is listed at {GITHUB_EMAILS_URL}",
            default=existing_email or ...,
            validator=validate_email,
        )
        skip_ssh = ask(
            "Create & set up an SSH key?",
            hint="SSH is the preferred way to connect to git servers",
            choices=["create", "skip"],
            default="create",
        ) == "skip"
        key_path = ask(
            "File in which to save the SSH key?",
            default=key_default,
            validator=validate_key_path,
        )
        enable_signing = ask(
            "Preferred commit signing?",
            hint="Not required, but good practice",
            choices=["none", "ssh"],
            default="none",
        ) == "ssh"

        config = WizardConfig(
            git_scope=scope,
            username=username,
            email=email,
            skip_ssh=skip_ssh,
            ssh_key_path=Path(key_path),
            enable_signing=enable_signing,
        )

        review(config)
        if not Confirm.ask("  [bold]Apply these settings?[/]",
                           default=True, console=console):
            raise AbortError("Setup cancelled, nothing was changed")
    except (KeyboardInterrupt, EOFError) as exc:
        raise AbortError("Setup cancelled, nothing was changed") from exc

    LOG.info("Collected configuration: %s", config)
    return config


# ═════════════════════════════════════════════════════════════════════════════
#  Git configuration
# ═════════════════════════════════════════════════════════════════════════════
def identity_settings(config):
    return [
        ("user.name", config.username, "Successfully set git username"),
        ("user.email", config.email, "Successfully set git email"),
    ]


def signing_settings(config):
    return [
        ("gpg.format", "ssh", "Successfully set git signing type"),
        ("user.signingkey", str(config.ssh_key_path),
         "Successfully set git signing key"),
        ("commit.gpgsign", "true",
         "Successfully set git to sign commits by default"),
    ]


def apply_git_config(scope, settings):
    """Write each (key, value, message) in order; stop at the first failure."""
    for key, value, message in settings:
        run_command(["git", "config", scope.flag, key, value])
        ok(message)


def setup_git(config):
    apply_git_config(config.git_scope, identity_settings(config))


# ═════════════════════════════════════════════════════════════════════════════
#  SSH key
# ═════════════════════════════════════════════════════════════════════════════
def generate_ssh_key(config):
    key_path = config.ssh_key_path
    key_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    info("Generating ed25519 key...")
    dim("ssh-keygen may ask for a passphrase (recommended, but Enter skips it)")
    try:
        run_command(
            ["ssh-keygen", "-t", "ed25519", "-f", str(key_path),
             "-C", config.email],
            interactive=True,
        )
    except CommandError as exc:
        raise CommandError(
            "Failed while generating SSH key", exc.cmd, exc.returncode,
        ) from exc
    ok("Successfully generated ssh key")


def register_with_agent(key_path):
    try:
        run_command(["ssh-add", str(key_path)])
    except CommandError as exc:
        LOG.info("ssh-add failed: %s", exc)
        warn("Failed to add SSH key using `ssh-add`")
        dim("This can happen if the key is already added. If it isn't, try "
            f"running `ssh-add {key_path}`")
        return False
    ok("Key added to ssh-agent")
    return True


def setup_ssh(config):
    """Generate the key and register it. Returns True once a key exists."""
    generate_ssh_key(config)
    register_with_agent(config.ssh_key_path)
    return True


# ═════════════════════════════════════════════════════════════════════════════
#  Commit signing
# ═════════════════════════════════════════════════════════════════════════════
def setup_signing(config, key_generated=False):
    if not key_generated:
        generate_ssh_key(config)
    apply_git_config(config.git_scope, signing_settings(config))


# ═════════════════════════════════════════════════════════════════════════════
#  Summary
# ═════════════════════════════════════════════════════════════════════════════
def read_public_key(config):
    """Return the public key text exactly as written to disk."""
    path = config.public_key_path
    try:
        return path.read_text()
    except UnicodeDecodeError as exc:
        raise OSError(f"Public key {path} is not valid text: {exc}") from exc


def almost_done(config, public_key):
    console.print()
    console.print("Almost Done!", style=INFO_STYLE)
    console.print(
        f"If you're using GitHub, navigate to `{GITHUB_KEYS_URL}` and press "
        "`New SSH key`",
        markup=False,
    )
    if not config.skip_ssh:
        console.print(
            "For SSH, set `Key type` to `Authentication Key`", markup=False,
        )
    if config.enable_signing:
        console.print(
            "For signing, set `Key type` to `Signing Key`", markup=False,
        )
    console.print(
        "GitHub needs a separate entry per key type, but your machine can "
        "use the same key for both",
        markup=False,
    )
    console.print()
    console.print("Key:")
    console.print(
        public_key,
        style=INFO_STYLE,
        markup=False,
        highlight=False,
        emoji=False,
        soft_wrap=True,
        end="" if public_key.endswith("\n") else "\n",
    )
    console.print()
    console.print(
        "To avoid re-typing your passphrase on every push, start `ssh-agent` "
        "from your shell profile:",
        markup=False,
    )
    console.print(AGENT_HINT, style=INFO_STYLE, markup=False, highlight=False,
                  emoji=False)


def finished():
    ok("Finished!")


# ═════════════════════════════════════════════════════════════════════════════
#  Main
# ═════════════════════════════════════════════════════════════════════════════
def run_wizard(config):
    """Apply a collected configuration, then print the summary."""
    setup_git(config)

    key_generated = False
    if not config.skip_ssh:
        key_generated = setup_ssh(config)

    if config.enable_signing:
        setup_signing(config, key_generated)

    if config.wants_key:
        almost_done(config, read_public_key(config))
    else:
        finished()


def build_arg_parser():
    parser = argparse.ArgumentParser(
        prog="git-ssh-wizard",
        description="Set up your git identity, an SSH key and SSH commit signing.",
    )
    parser.add_argument(
        "--key-path",
        type=Path,
        default=None,
        help=f"Default offered for the SSH key file (default: {DEFAULT_SSH_KEY}).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v for info, -vv for debug).",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def main(argv=None):
    args = build_arg_parser().parse_args(argv)
    configure_logging(args.verbose)
    _reattach_stdin()

    try:
        welcome()
        preflight()
        config = collect_config(args.key_path)
        run_wizard(config)
    except AbortError as e:
        fatal(e)
        sys.exit(130)
    except KeyboardInterrupt:
        console.print("\n\n  [dim]Cancelled. Run again whenever you're ready.[/]\n")
        sys.exit(130)
    except (WizardError, OSError) as e:
        LOG.debug("Aborting", exc_info=True)
        fatal(e)
        sys.exit(1)


if __name__ == "__main__":
    main()
