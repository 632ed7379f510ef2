"""Group verification: project-defined checks classified into error kinds."""

from __future__ import annotations

import re
import shlex
import subprocess
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable

from lifecycle.constants import DEFAULT_VERIFICATION_TIMEOUT, DIAGNOSTIC_TAIL_LINES, ErrorClass
from lifecycle.exceptions import ConfigurationError
from lifecycle.logging import get_logger
from lifecycle.types import Group, VerificationOutcome

logger = get_logger("verifier")


@runtime_checkable
class Verifier(Protocol):
    """Runs the check a group references and classifies failures."""

    def check(self, group: Group, artifacts: Sequence[str]) -> VerificationOutcome: ...


# ============================================================================
# Stack profiles
# ============================================================================


@dataclass(frozen=True)
class StackProfile:
    """Build commands for one language/build-tool stack."""

    name: str
    file_extension: str
    commands: dict[str, str] = field(default_factory=dict)  # reference -> command

    def command_for(self, reference: str) -> str | None:
        return self.commands.get(reference)


def _profile(name: str, ext: str, compile_: str, build: str, test: str, coverage: str) -> StackProfile:
    return StackProfile(name, ext, {"compile": compile_, "build": build, "test": test, "coverage": coverage})


STACK_PROFILES: dict[str, StackProfile] = {
    p.name: p
    for p in (
        _profile("java-maven", ".java", "mvn compile -q", "mvn package -DskipTests", "mvn verify",
                 "mvn verify jacoco:report"),
        _profile("java-gradle", ".java", "gradle compileJava -q", "gradle build -x test", "gradle test",
                 "gradle test jacocoTestReport"),
        _profile("kotlin", ".kt", "gradle compileKotlin -q", "gradle build -x test", "gradle test",
                 "gradle test jacocoTestReport"),
        _profile("typescript", ".ts", "npx --no-install tsc --noEmit", "npm run build", "npm test",
                 "npm test -- --coverage"),
        _profile("python", ".py", "python3 -m compileall -q .", "pip install -e .", "pytest", "pytest --cov"),
        _profile("go", ".go", "go build ./...", "go build ./...", "go test ./...",
                 "go test -coverprofile=coverage.out ./..."),
        _profile("rust", ".rs", "cargo check", "cargo build", "cargo test", "cargo tarpaulin"),
        _profile("csharp", ".cs", "dotnet build --no-restore -q", "dotnet build", "dotnet test",
                 'dotnet test --collect:"XPlat Code Coverage"'),
    )
}


def _with_wrapper(profile: StackProfile, root: Path, tool: str, wrapper: str) -> StackProfile:
    """Prefer the project's build wrapper (./mvnw, ./gradlew) when it is executable."""
    wrapper_path = root / wrapper
    if not wrapper_path.is_file():
        return profile
    commands = {
        ref: f"./{wrapper}{cmd[len(tool):]}" if cmd.startswith(tool + " ") else cmd
        for ref, cmd in profile.commands.items()
    }
    return StackProfile(profile.name, profile.file_extension, commands)


def detect_stack(project_root: str | Path) -> StackProfile | None:
    """Pick a stack from the marker files at the project root.

    Returns:
        The matching StackProfile, or None when no marker is present
    """
    root = Path(project_root)

    if (root / "pom.xml").is_file():
        return _with_wrapper(STACK_PROFILES["java-maven"], root, "mvn", "mvnw")

    if (root / "build.gradle").is_file() or (root / "build.gradle.kts").is_file():
        has_kotlin = any(root.glob("src/**/*.kt"))
        name = "kotlin" if has_kotlin else "java-gradle"
        return _with_wrapper(STACK_PROFILES[name], root, "gradle", "gradlew")

    if (root / "tsconfig.json").is_file():
        return STACK_PROFILES["typescript"]
    if (root / "go.mod").is_file():
        return STACK_PROFILES["go"]
    if (root / "Cargo.toml").is_file():
        return STACK_PROFILES["rust"]
    if any(root.glob("*.sln")) or any(root.glob("*.csproj")):
        return STACK_PROFILES["csharp"]
    if (root / "pyproject.toml").is_file() or (root / "setup.py").is_file():
        return STACK_PROFILES["python"]
    return None


# ============================================================================
# Output classification
# ============================================================================

# Package-manager resolution failures: an external package cannot be fetched
_EXTERNAL_DEPENDENCY_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"no required module provides package",
        r"cannot find package",
        r"could not resolve (?:dependency|dependencies|artifact)",
        r"could not find artifact",
        r"no matching distribution found",
        r"no matching package named",
        r"unable to resolve dependency tree",
        r"\bNU1101\b",
    )
]

# Unresolved names in source; group 1 is the name as the tool printed it
_UNRESOLVED_PATTERNS = [
    re.compile(r"No module named '([\w.]+)'"),
    re.compile(r"Cannot find module '([^']+)'"),
    re.compile(r"package ([\w.]+) does not exist"),
    re.compile(r"error CS0246: The type or namespace name '(\w+)'"),
    re.compile(r"unresolved import `([^`]+)`"),
    re.compile(r"could not import ([\w./-]+)"),
    re.compile(r"Unresolved reference:? '?(\w+)"),
]

_PATTERNS: list[tuple[ErrorClass, re.Pattern[str]]] = [
    (ErrorClass.BUILD_INFRA, re.compile(p, re.IGNORECASE))
    for p in (
        r"command not found",
        r"could not resolve host",
        r"connection (?:refused|reset|timed out)",
        r"no space left on device",
        r"out of memory",
        r"daemon (?:disappeared|could not be started)",
        r"permission denied",
    )
] + [
    (ErrorClass.TEST_FAILURE, re.compile(p))
    for p in (
        r"\bFAILED\b",
        r"\b\d+ failed\b",
        r"AssertionError",
        r"--- FAIL",
        r"(?i)tests? failed",
        r"(?i)failing tests?",
    )
] + [(ErrorClass.COMPILE, pattern) for pattern in _UNRESOLVED_PATTERNS] + [
    (ErrorClass.COMPILE, re.compile(p, re.IGNORECASE))
    for p in (
        r"syntaxerror",
        r"error TS\d+",
        r"error CS\d+",
        r"error\[E\d+\]",
        r"compilation (?:failed|error)",
        r"cannot find symbol",
        r"\berror:",
    )
]

_INFRA_EXIT_CODES = {126, 127}

_SOURCE_SUFFIX = re.compile(r"\.(?:[cm]?[jt]sx?|py|go|rs|kt|java|cs)$")


def classify_output(output: str, reference: str = "compile", exit_code: int | None = None) -> ErrorClass:
    """Classify failed check output.

    Only a package the build tool could not fetch is a missing dependency
    here. An unresolved import is a compile error; ``VerifierGate`` upgrades
    it when the name belongs to an already committed group. After that come
    infrastructure, test failures and compile errors. Unrecognised output
    falls back to the kind of check that ran.
    """
    if exit_code in _INFRA_EXIT_CODES:
        return ErrorClass.BUILD_INFRA
    if any(pattern.search(output) for pattern in _EXTERNAL_DEPENDENCY_PATTERNS):
        return ErrorClass.MISSING_DEPENDENCY
    for error_class, pattern in _PATTERNS:
        if pattern.search(output):
            return error_class
    return ErrorClass.TEST_FAILURE if reference in ("test", "coverage") else ErrorClass.COMPILE


def unresolved_references(output: str) -> list[str]:
    """Names the check output reports as unresolved, in order of appearance."""
    found: list[tuple[int, str]] = []
    for pattern in _UNRESOLVED_PATTERNS:
        found.extend((m.start(), m.group(1)) for m in pattern.finditer(output))
    names: list[str] = []
    for _, name in sorted(found):
        if name not in names:
            names.append(name)
    return names


def _reference_paths(name: str) -> list[str]:
    """Path forms of an import name: the whole path, then shorter suffixes."""
    ref = re.sub(r"^(?:\.{1,2}/)+", "", name.strip())
    ref = re.sub(r"^(?:crate|self|super)::", "", ref).replace("::", "/")
    ref = _SOURCE_SUFFIX.sub("", ref)
    if "/" not in ref:
        ref = ref.replace(".", "/")
    parts = [p for p in ref.split("/") if p]
    return ["/".join(parts[i:]) for i in range(max(1, len(parts) - 1))] if parts else []


def match_reference(name: str, artifacts: Iterable[str]) -> str | None:
    """The artifact an unresolved name refers to, by module path or package directory."""
    candidates = _reference_paths(name)
    for artifact in sorted(artifacts):
        path = PurePosixPath(artifact)
        keys = (_SOURCE_SUFFIX.sub("", path.as_posix()), path.parent.as_posix())
        for candidate in candidates:
            if any(key == candidate or key.endswith(f"/{candidate}") for key in keys):
                return artifact
    return None


def tail(output: str, lines: int = DIAGNOSTIC_TAIL_LINES) -> str:
    return "\n".join(output.strip().splitlines()[-lines:])


def attribute_targets(output: str, candidates: Iterable[str]) -> list[str]:
    """Candidate paths that the check output mentions."""
    return sorted({c for c in candidates if c and c in output})


# ============================================================================
# Verifiers
# ============================================================================


class CommandVerifier:
    """Run a group's check command in the project root.

    The command for a group comes from ``commands[group.verification]`` when
    configured, otherwise from the stack profile.
    """

    def __init__(
        self,
        project_root: str | Path = ".",
        commands: dict[str, str] | None = None,
        stack: StackProfile | None = None,
        timeout: int = DEFAULT_VERIFICATION_TIMEOUT,
    ) -> None:
        self.project_root = Path(project_root)
        self.commands = dict(commands or {})
        self.stack = stack if stack is not None else detect_stack(self.project_root)
        self.timeout = timeout

    def resolve_command(self, reference: str) -> str:
        """Command for a verification reference.

        Raises:
            ConfigurationError: If neither configuration nor the stack defines one
        """
        command = self.commands.get(reference) or (self.stack.command_for(reference) if self.stack else None)
        if not command:
            raise ConfigurationError(
                f"No verification command for '{reference}'",
                {"stack": self.stack.name if self.stack else None, "configured": sorted(self.commands)},
            )
        return command

    def check(self, group: Group, artifacts: Sequence[str]) -> VerificationOutcome:
        """Run the group's check command.

        Raises:
            ConfigurationError: If no command is defined for the group's check
        """
        start_time = time.time()
        command = self.resolve_command(group.verification)

        logger.info(f"Verifying group {group.index}: {command}", extra={"group": group.index})

        try:
            result = subprocess.run(
                shlex.split(command),
                cwd=self.project_root,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            return VerificationOutcome(
                passed=False,
                error_class=ErrorClass.BUILD_INFRA,
                diagnostics=f"command not found: {e.filename or command}",
                command=command,
                duration_ms=int((time.time() - start_time) * 1000),
            )
        except subprocess.TimeoutExpired:
            return VerificationOutcome(
                passed=False,
                error_class=ErrorClass.BUILD_INFRA,
                diagnostics=f"verification timed out after {self.timeout}s",
                command=command,
                duration_ms=int((time.time() - start_time) * 1000),
            )

        duration_ms = int((time.time() - start_time) * 1000)
        if result.returncode == 0:
            return VerificationOutcome(passed=True, command=command, duration_ms=duration_ms)

        output = f"{result.stdout}\n{result.stderr}"
        return VerificationOutcome(
            passed=False,
            error_class=classify_output(output, group.verification, result.returncode),
            failed_targets=attribute_targets(output, artifacts),
            unresolved=unresolved_references(output),
            diagnostics=tail(output),
            command=command,
            duration_ms=duration_ms,
        )


class VerifierGate:
    """Invoke a Verifier once per group and normalize what it reports.

    A verifier that raises is reported as a build-infrastructure failure,
    except for a ConfigurationError, which propagates. A compile or test
    failure naming something an earlier group committed is a missing
    dependency.
    """

    def __init__(self, verifier: Verifier) -> None:
        self._verifier = verifier

    def run(
        self,
        group: Group,
        artifacts: Sequence[str],
        committed: Iterable[str] = (),
    ) -> VerificationOutcome:
        """Verify a group.

        Args:
            group: Group to verify
            artifacts: Artifacts produced by the group
            committed: Artifacts of the groups committed before it

        Raises:
            ConfigurationError: If the verifier has no check for the group
        """
        start_time = time.time()
        try:
            outcome = self._verifier.check(group, artifacts)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Verifier error on group {group.index}: {e}", extra={"group": group.index})
            outcome = VerificationOutcome(
                passed=False,
                error_class=ErrorClass.BUILD_INFRA,
                diagnostics=f"verifier error: {e}",
                duration_ms=int((time.time() - start_time) * 1000),
            )

        if not outcome.passed and outcome.error_class is None:
            outcome.error_class = ErrorClass.COMPILE

        if outcome.error_class in (ErrorClass.COMPILE, ErrorClass.TEST_FAILURE):
            self._check_committed(group, outcome, committed)

        if outcome.passed:
            logger.info(f"Group {group.index} verification passed", extra={"group": group.index})
        else:
            logger.warning(
                f"Group {group.index} verification failed ({outcome.error_class.value})",
                extra={"group": group.index},
            )
        return outcome

    @staticmethod
    def _check_committed(group: Group, outcome: VerificationOutcome, committed: Iterable[str]) -> None:
        committed = list(committed)
        if not committed:
            return
        for name in outcome.unresolved:
            artifact = match_reference(name, committed)
            if artifact is None:
                continue
            outcome.error_class = ErrorClass.MISSING_DEPENDENCY
            outcome.diagnostics = f"'{name}' is provided by committed artifact {artifact}\n{outcome.diagnostics}"
            logger.warning(
                f"Group {group.index} cannot resolve '{name}' from committed {artifact}",
                extra={"group": group.index},
            )
            return
