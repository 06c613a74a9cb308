"""
Thin wrappers around the npm command line.

Each method formats the npm arguments for one command, runs it through a
ProcessExecutor and turns an unsuccessful exit into NpmCommandError.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from npmkit.core.exceptions import NpmCommandError, SpawnError
from npmkit.core.executor import ExecutionRequest, ExecutionResult, ProcessExecutor

logger = logging.getLogger(__name__)

# npm installs routinely outlast the executor's generic default
DEFAULT_NPM_TIMEOUT = 600.0

PathLike = Union[str, Path]


class NpmClient:
    """
    Handle for one npm executable.

    Args:
        npm_path: npm executable (name on PATH or absolute path)
        executor: Executor used to run npm
        working_dir: Default project directory
        timeout: Seconds allowed per npm command

    Example:
        >>> client = NpmClient()
        >>> client.install(["lodash"], working_dir="my-app")
        >>> client.list_packages(working_dir="my-app")
        {'lodash': '4.17.21'}
    """

    def __init__(
        self,
        npm_path: PathLike = "npm",
        executor: Optional[ProcessExecutor] = None,
        working_dir: Optional[PathLike] = None,
        timeout: Optional[float] = DEFAULT_NPM_TIMEOUT,
    ):
        self.npm_path = str(npm_path)
        self.executor = executor or ProcessExecutor()
        self.working_dir = Path(working_dir) if working_dir else None
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"NpmClient(npm_path={self.npm_path!r})"

    def run(
        self,
        operation: str,
        args: Sequence[str],
        working_dir: Optional[PathLike] = None,
        package: str = "",
        check: bool = True,
    ) -> ExecutionResult:
        """
        Run npm with arbitrary arguments.

        Raises:
            NpmCommandError: If check is set and npm did not succeed
            SpawnError: If npm cannot be started
        """
        request = ExecutionRequest(
            self.npm_path,
            args,
            working_dir=working_dir or self.working_dir,
            timeout=self.timeout,
        )
        result = self.executor.run(request)
        if check and not result.success:
            raise NpmCommandError(
                operation,
                result.exit_code,
                stdout=result.stdout or "",
                stderr=result.stderr or result.error or "",
                package=package,
            )
        return result

    def is_available(self) -> bool:
        try:
            return self.run("version", ["--version"], check=False).success
        except SpawnError:
            return False

    def version(self) -> str:
        return self.run("version", ["--version"]).stdout.strip()

    def init(
        self, working_dir: Optional[PathLike] = None, scope: Optional[str] = None
    ) -> None:
        """Create a package.json with npm's defaults."""
        args = ["init", "--yes"]
        if scope:
            args.append(f"--scope={scope}")
        self.run("init", args, working_dir=working_dir)

    def install(
        self,
        packages: Sequence[str] = (),
        working_dir: Optional[PathLike] = None,
        save_dev: bool = False,
        save_exact: bool = False,
        global_install: bool = False,
        extra_args: Sequence[str] = (),
    ) -> ExecutionResult:
        """Install the given packages, or every manifest dependency if none."""
        args = ["install", *packages]
        if save_dev:
            args.append("--save-dev")
        if save_exact:
            args.append("--save-exact")
        if global_install:
            args.append("--global")
        args.extend(extra_args)
        return self.run(
            "install", args, working_dir=working_dir, package=" ".join(packages)
        )

    def uninstall(
        self,
        packages: Sequence[str],
        working_dir: Optional[PathLike] = None,
        global_install: bool = False,
    ) -> ExecutionResult:
        args = ["uninstall", *packages]
        if global_install:
            args.append("--global")
        return self.run(
            "uninstall", args, working_dir=working_dir, package=" ".join(packages)
        )

    def update(
        self, packages: Sequence[str] = (), working_dir: Optional[PathLike] = None
    ) -> ExecutionResult:
        return self.run(
            "update",
            ["update", *packages],
            working_dir=working_dir,
            package=" ".join(packages),
        )

    def list_packages(
        self,
        working_dir: Optional[PathLike] = None,
        global_install: bool = False,
        depth: int = 0,
    ) -> Dict[str, str]:
        """
        Installed top-level packages as {name: version}.

        npm ls exits with 1 when the tree has problems (missing or extraneous
        packages) while still printing the tree, so its JSON is used
        whenever it parses.
        """
        args = ["ls", "--json", f"--depth={depth}"]
        if global_install:
            args.append("--global")
        result = self.run("ls", args, working_dir=working_dir, check=False)

        try:
            tree = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            tree = None
        if not isinstance(tree, dict):
            raise NpmCommandError(
                "ls", result.exit_code, result.stdout or "", result.stderr or ""
            )

        return {
            name: info.get("version", "")
            for name, info in (tree.get("dependencies") or {}).items()
        }

    def run_script(
        self,
        script: str,
        working_dir: Optional[PathLike] = None,
        args: Sequence[str] = (),
    ) -> ExecutionResult:
        """Run a package.json script (npm run <script> -- <args>)."""
        npm_args = ["run", script]
        if args:
            npm_args += ["--", *args]
        return self.run("run", npm_args, working_dir=working_dir, package=script)

    def publish(
        self,
        working_dir: Optional[PathLike] = None,
        tag: Optional[str] = None,
        access: Optional[str] = None,
        dry_run: bool = False,
    ) -> ExecutionResult:
        args = ["publish"]
        if tag:
            args.append(f"--tag={tag}")
        if access:
            args.append(f"--access={access}")
        if dry_run:
            args.append("--dry-run")
        return self.run("publish", args, working_dir=working_dir)

    def view(self, package: str, field: Optional[str] = None) -> Any:
        """Registry metadata of a package (npm view --json)."""
        args = ["view", package]
        if field:
            args.append(field)
        args.append("--json")
        result = self.run("view", args, package=package)
        try:
            return json.loads(result.stdout or "null")
        except json.JSONDecodeError as e:
            raise NpmCommandError(
                "view", result.exit_code, result.stdout, f"invalid JSON: {e}", package
            ) from e

    def search(self, query: str, limit: int = 20) -> List[Dict[str, Any]]:
        result = self.run(
            "search", ["search", query, "--json", f"--searchlimit={limit}"]
        )
        try:
            matches = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            raise NpmCommandError(
                "search", result.exit_code, result.stdout, f"invalid JSON: {e}"
            ) from e
        return matches if isinstance(matches, list) else []
