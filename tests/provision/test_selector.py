"""
Unit tests for the installation strategy selector.

Strategy steps run the current Python interpreter, so success and
failure are real process exits rather than mocks.
"""

import sys
from unittest.mock import MagicMock

import pytest
import requests
import responses

from npmkit.core.exceptions import StrategyExhaustedError
from npmkit.core.executor import ExecutorConfig, ProcessExecutor
from npmkit.provision.nodejs import NodeDistribution
from npmkit.provision.portable import PortableVersionManager
from npmkit.provision.selector import InstallationSelector, SelectorState
from npmkit.provision.strategy import (
    ARTIFACT_PLACEHOLDER,
    InstallerArtifact,
    InstallMethod,
    InstallStrategy,
    StrategyStep,
    manual_strategy,
    portable_strategy,
)

PY = sys.executable
MIRROR = "https://mirror.test/dist"
INSTALLER_URL = "https://mirror.test/installers/node-setup.bin"


def exit_step(code: int, description: str = "step") -> StrategyStep:
    return StrategyStep(description, PY, ("-c", f"import sys; sys.exit({code})"))


def artifact_check_step() -> StrategyStep:
    """Succeeds only if the downloaded artifact path exists."""
    code = "import os, sys; sys.exit(0 if os.path.isfile(sys.argv[1]) else 5)"
    return StrategyStep("run installer", PY, ("-c", code, ARTIFACT_PLACEHOLDER))


def failing_package_manager() -> InstallStrategy:
    return InstallStrategy(
        InstallMethod.PACKAGE_MANAGER,
        "fake-pm",
        steps=(exit_step(0, "check"), exit_step(100, "install")),
    )


def working_installer() -> InstallStrategy:
    return InstallStrategy(
        InstallMethod.OFFICIAL_INSTALLER,
        "fake-installer",
        steps=(artifact_check_step(), exit_step(0, "verify npm")),
        artifact=InstallerArtifact(INSTALLER_URL, "node-setup.bin"),
    )


@pytest.fixture
def detector():
    fake = MagicMock()
    fake.is_available.return_value = False
    return fake


@pytest.fixture
def selector(linux_platform, detector):
    return InstallationSelector(
        executor=ProcessExecutor(ExecutorConfig(kill_grace_period=1)),
        platform=linux_platform,
        distribution=NodeDistribution(MIRROR),
        detector=detector,
        step_timeout=60,
    )


class TestProvision:
    """Test the attempt-and-record loop."""

    @responses.activate
    def test_falls_through_to_next_strategy(self, selector):
        """Test a failing package manager is followed by the installer."""
        responses.add(responses.GET, INSTALLER_URL, body=b"installer")

        result = selector.provision(
            strategies=[failing_package_manager(), working_installer()], force=True
        )

        assert result.state == SelectorState.SUCCESS
        assert result.success
        assert result.strategy.name == "fake-installer"
        assert len(result.attempts) == 2

        first, second = result.attempts
        assert first.success is False
        assert [s.exit_code for s in first.steps] == [0, 100]
        assert "install" in first.error
        assert second.success is True
        assert [s.exit_code for s in second.steps] == [0, 0]
        assert selector.state == SelectorState.SUCCESS

    def test_stops_at_first_success(self, selector):
        ok = InstallStrategy(InstallMethod.PACKAGE_MANAGER, "ok", (exit_step(0),))
        never = InstallStrategy(InstallMethod.PACKAGE_MANAGER, "never", (exit_step(0),))

        result = selector.provision(strategies=[ok, never], force=True)

        assert [a.strategy.name for a in result.attempts] == ["ok"]

    def test_exhausted(self, selector, linux_platform):
        """Test every failure is recorded when nothing works."""
        strategies = [failing_package_manager(), manual_strategy(linux_platform)]

        with pytest.raises(StrategyExhaustedError) as exc_info:
            selector.provision(strategies=strategies, force=True)

        attempts = exc_info.value.attempts
        assert [a.strategy.name for a in attempts] == ["fake-pm", "manual"]
        assert not any(a.success for a in attempts)
        assert "nodejs.org" in attempts[1].error
        assert "fake-pm" in str(exc_info.value)
        assert selector.state == SelectorState.EXHAUSTED

    def test_empty_plan_is_exhausted(self, selector):
        with pytest.raises(StrategyExhaustedError):
            selector.provision(strategies=[], force=True)

    def test_already_installed(self, selector, detector):
        """Test nothing is attempted when npm is already available."""
        detector.is_available.return_value = True
        detector.find_npm.return_value = "/usr/bin/npm"

        result = selector.provision(strategies=[failing_package_manager()])

        assert result.success
        assert result.already_installed
        assert result.attempts == []
        assert result.npm_path == "/usr/bin/npm"

    def test_force_ignores_existing_npm(self, selector, detector):
        detector.is_available.return_value = True
        ok = InstallStrategy(InstallMethod.PACKAGE_MANAGER, "ok", (exit_step(0),))

        result = selector.provision(strategies=[ok], force=True)

        assert not result.already_installed
        assert result.strategy.name == "ok"
        detector.is_available.assert_not_called()

    def test_method_filter(self, selector):
        ok = InstallStrategy(InstallMethod.PACKAGE_MANAGER, "pm", (exit_step(0),))
        result = selector.provision(
            strategies=[failing_package_manager(), ok],
            method="package_manager",
            force=True,
        )
        assert result.strategy.name == "pm"

        with pytest.raises(StrategyExhaustedError):
            selector.provision(strategies=[ok], method="portable", force=True)


class TestAttempt:
    """Test single strategy attempts."""

    def test_missing_command_is_recorded(self, selector):
        """Test a step whose program does not exist fails the attempt cleanly."""
        strategy = InstallStrategy(
            InstallMethod.PACKAGE_MANAGER,
            "ghost",
            (StrategyStep("check", "npmkit-no-such-command-xyz", ("--version",)),),
        )

        attempt = selector.attempt(strategy)

        assert attempt.success is False
        assert attempt.steps[0].exit_code is None
        assert attempt.steps[0].command == ("npmkit-no-such-command-xyz", "--version")

    def test_accepted_exit_codes(self, selector):
        step = StrategyStep(
            "install",
            PY,
            ("-c", "import sys; sys.exit(3)"),
            accept_exit_codes={0, 3},
        )
        attempt = selector.attempt(
            InstallStrategy(InstallMethod.OFFICIAL_INSTALLER, "msi", (step,))
        )
        assert attempt.success is True

    def test_step_timeout(self, selector):
        step = StrategyStep(
            "hang", PY, ("-c", "import time; time.sleep(30)"), timeout=0.5
        )
        attempt = selector.attempt(
            InstallStrategy(InstallMethod.PACKAGE_MANAGER, "slow", (step,))
        )
        assert attempt.success is False
        assert "timed out" in attempt.error

    def test_strategy_without_steps(self, selector):
        attempt = selector.attempt(
            InstallStrategy(InstallMethod.PACKAGE_MANAGER, "empty")
        )
        assert attempt.success is False

    @responses.activate
    def test_artifact_download_failure(self, selector):
        responses.add(responses.GET, INSTALLER_URL, status=404)
        attempt = selector.attempt(working_installer())
        assert attempt.success is False
        assert "HTTP 404" in attempt.error
        assert attempt.steps == []

    def test_portable_without_manager(self, selector):
        attempt = selector.attempt(portable_strategy("20.11.0"))
        assert attempt.success is False
        assert "portable" in attempt.error

    def test_summary(self, selector):
        attempt = selector.attempt(failing_package_manager())
        summary = attempt.summary()
        assert summary.startswith("package_manager:fake-pm: failed")
        assert "exit 100" in summary


class TestPortableStrategy:
    """Test the portable strategy against a served release."""

    def test_portable_install(
        self, portable_root, linux_platform, detector, node_tarball, make_shasums
    ):
        archive = "node-v20.11.0-linux-x64.tar.xz"
        manager = PortableVersionManager(
            root_dir=portable_root,
            platform=linux_platform,
            distribution=NodeDistribution(MIRROR),
        )
        selector = InstallationSelector(
            platform=linux_platform,
            portable_manager=manager,
            detector=detector,
        )

        with responses.RequestsMock() as mock:
            mock.add(responses.GET, f"{MIRROR}/v20.11.0/{archive}", body=node_tarball)
            mock.add(
                responses.GET,
                f"{MIRROR}/v20.11.0/SHASUMS256.txt",
                body=make_shasums({archive: node_tarball}),
            )
            result = selector.provision(
                strategies=[portable_strategy("20.11.0")], force=True
            )

        assert result.strategy.method == InstallMethod.PORTABLE
        assert result.npm_path == manager.get_record("20.11.0").npm_path
        assert result.attempts[0].install_record is not None

    def test_transport_failure_falls_through(
        self, portable_root, linux_platform, detector, node_tarball, make_shasums
    ):
        """Test an unexpected requests error still ends in an exhausted trail."""
        archive = "node-v20.11.0-linux-x64.tar.xz"
        manager = PortableVersionManager(
            root_dir=portable_root,
            platform=linux_platform,
            distribution=NodeDistribution(MIRROR),
        )
        selector = InstallationSelector(
            platform=linux_platform, portable_manager=manager, detector=detector
        )
        strategies = [portable_strategy("20.11.0"), manual_strategy(linux_platform)]

        with responses.RequestsMock() as mock:
            mock.add(
                responses.GET,
                f"{MIRROR}/v20.11.0/{archive}",
                body=requests.exceptions.TooManyRedirects("redirect loop"),
            )
            mock.add(
                responses.GET,
                f"{MIRROR}/v20.11.0/SHASUMS256.txt",
                body=make_shasums({archive: node_tarball}),
            )
            with pytest.raises(StrategyExhaustedError) as exc_info:
                selector.provision(strategies=strategies, force=True)

        attempts = exc_info.value.attempts
        assert [a.strategy.name for a in attempts] == ["portable", "manual"]
        assert "redirect loop" in attempts[0].error
        assert not manager.is_installed("20.11.0")
        assert selector.state == SelectorState.EXHAUSTED


class TestPlan:
    """Test plan() on a fixed platform."""

    def test_plan_with_version(self, selector):
        plan = selector.plan(version="v20.11.0")
        assert [str(s) for s in plan] == ["package_manager:apt-get", "manual:manual"]
        assert plan[-1].version == "20.11.0"

    @responses.activate
    def test_plan_resolves_latest_for_installers(self, detector, macos_platform):
        responses.add(
            responses.GET,
            f"{MIRROR}/index.json",
            json=[{"version": "v20.11.0", "lts": "Iron"}],
        )
        selector = InstallationSelector(
            platform=macos_platform,
            distribution=NodeDistribution(MIRROR),
            detector=detector,
        )

        plan = selector.plan()

        installer = [s for s in plan if s.method == InstallMethod.OFFICIAL_INSTALLER]
        assert installer[0].version == "20.11.0"

    @responses.activate
    def test_plan_without_index(self, detector, macos_platform):
        """Test an unreachable release index drops only the installer."""
        responses.add(responses.GET, f"{MIRROR}/index.json", status=503)
        selector = InstallationSelector(
            platform=macos_platform,
            distribution=NodeDistribution(MIRROR),
            detector=detector,
        )

        plan = selector.plan()

        assert [s.method for s in plan] == [
            InstallMethod.PACKAGE_MANAGER,
            InstallMethod.PACKAGE_MANAGER,
            InstallMethod.MANUAL,
        ]

    def test_plan_method_filter(self, selector):
        plan = selector.plan(version="20.11.0", method=InstallMethod.MANUAL)
        assert [s.name for s in plan] == ["manual"]
