"""Unit tests for VaultProvisioner and RunningInstance."""

import asyncio

import pytest
from fakes import READY_LINE, FakeRuntime

from vaultfixture.errors import (
    CleanupError,
    ConfigurationError,
    InitCommandFailedError,
    ReadinessTimeoutError,
    RuntimeAdapterError,
)
from vaultfixture.interfaces import ExecResult
from vaultfixture.lifecycle import VaultProvisioner, init_command_argv, provision
from vaultfixture.options import (
    InstanceConfig,
    build_config,
    with_init_command,
    with_readiness_timeout,
    with_token,
)

SCENARIO_COMMANDS = (
    "secrets enable transit",
    "write -f transit/keys/my-key",
    "kv put secret/test1 foo1=bar1",
)


class TestProvision:
    """Tests for the happy path."""

    @pytest.fixture
    def provisioner(self, fake_runtime: FakeRuntime) -> VaultProvisioner:
        return VaultProvisioner(fake_runtime)

    async def test_empty_init_commands(
        self,
        provisioner: VaultProvisioner,
        fake_runtime: FakeRuntime,
        base_config: InstanceConfig,
    ) -> None:
        """Provision with no init commands returns a reachable instance."""
        instance = await provisioner.provision(base_config)

        assert instance.http_host_address == "http://localhost:49153"
        assert instance.token == "root-token"
        assert fake_runtime.operations() == ["create", "start", "logs", "mapped_address"]
        assert fake_runtime.executed == []

    async def test_steps_run_in_order(
        self,
        provisioner: VaultProvisioner,
        fake_runtime: FakeRuntime,
        base_config: InstanceConfig,
    ) -> None:
        """Readiness gates init commands, which run before address resolution."""
        config = build_config(with_init_command(*SCENARIO_COMMANDS), base=base_config)

        await provisioner.provision(config)

        assert fake_runtime.operations() == [
            "create",
            "start",
            "logs",
            "exec",
            "exec",
            "exec",
            "mapped_address",
        ]
        assert fake_runtime.executed == [init_command_argv(c) for c in SCENARIO_COMMANDS]

    async def test_token_seeded_in_environment(
        self,
        provisioner: VaultProvisioner,
        fake_runtime: FakeRuntime,
        base_config: InstanceConfig,
    ) -> None:
        """The root token is passed at container creation, not set afterwards."""
        await provisioner.provision(build_config(with_token("s3cret"), base=base_config))

        assert "VAULT_DEV_ROOT_TOKEN_ID=s3cret" in fake_runtime.created_env
        assert "VAULT_TOKEN=s3cret" in fake_runtime.created_env

    async def test_log_stream_closed_after_ready(
        self,
        provisioner: VaultProvisioner,
        fake_runtime: FakeRuntime,
        base_config: InstanceConfig,
    ) -> None:
        """The follow-logs stream is released once readiness is confirmed."""
        fake_runtime.hang_after_logs = True

        await provisioner.provision(base_config)

        assert fake_runtime.logs_closed is True

    async def test_concurrent_provisions_are_independent(
        self,
        provisioner: VaultProvisioner,
        fake_runtime: FakeRuntime,
        base_config: InstanceConfig,
    ) -> None:
        """Concurrent provisions each get their own container."""
        first, second = await asyncio.gather(
            provisioner.provision(base_config),
            provisioner.provision(base_config),
        )

        assert first.handle.id != second.handle.id

    async def test_module_level_provision(
        self,
        fake_runtime: FakeRuntime,
        base_config: InstanceConfig,
    ) -> None:
        """provision() folds options over the base config."""
        instance = await provision(
            with_init_command("kv put secret/test1 foo1=bar1"),
            runtime=fake_runtime,
            base=base_config,
        )

        assert fake_runtime.executed == [["/bin/sh", "-c", "vault kv put secret/test1 foo1=bar1"]]
        await instance.terminate()


class TestProvisionFailures:
    """Tests for failure handling and cleanup."""

    @pytest.fixture
    def provisioner(self, fake_runtime: FakeRuntime) -> VaultProvisioner:
        return VaultProvisioner(fake_runtime)

    async def test_failing_command_stops_sequence(
        self,
        provisioner: VaultProvisioner,
        fake_runtime: FakeRuntime,
        base_config: InstanceConfig,
    ) -> None:
        """Commands after a failure never run and the container is terminated."""
        fake_runtime.exec_results["vault write -f transit/keys/my-key"] = ExecResult(
            exit_code=2, output="permission denied"
        )
        config = build_config(with_init_command(*SCENARIO_COMMANDS), base=base_config)

        with pytest.raises(InitCommandFailedError) as exc_info:
            await provisioner.provision(config)

        error = exc_info.value
        assert error.index == 1
        assert error.command == "write -f transit/keys/my-key"
        assert error.exit_code == 2
        assert error.output == "permission denied"
        assert fake_runtime.executed == [init_command_argv(c) for c in SCENARIO_COMMANDS[:2]]
        assert fake_runtime.operations()[-1] == "terminate"
        assert "mapped_address" not in fake_runtime.operations()

    async def test_readiness_timeout_terminates(
        self,
        provisioner: VaultProvisioner,
        fake_runtime: FakeRuntime,
        base_config: InstanceConfig,
    ) -> None:
        """A missing readiness marker terminates the container."""
        fake_runtime.log_lines = ["==> Vault server configuration:"]
        fake_runtime.hang_after_logs = True
        config = build_config(with_readiness_timeout(0.05), base=base_config)

        with pytest.raises(ReadinessTimeoutError):
            await provisioner.provision(config)

        assert fake_runtime.operations()[-1] == "terminate"
        assert fake_runtime.executed == []

    async def test_create_failure_does_not_terminate(
        self,
        provisioner: VaultProvisioner,
        fake_runtime: FakeRuntime,
        base_config: InstanceConfig,
    ) -> None:
        """Nothing is released when no container was created."""
        fake_runtime.failures["create"] = RuntimeAdapterError("no such image", stage="create")

        with pytest.raises(RuntimeAdapterError):
            await provisioner.provision(base_config)

        assert "terminate" not in fake_runtime.operations()

    async def test_start_failure_propagates_verbatim(
        self,
        provisioner: VaultProvisioner,
        fake_runtime: FakeRuntime,
        base_config: InstanceConfig,
    ) -> None:
        """Runtime errors reach the caller unchanged, after cleanup."""
        original = RuntimeAdapterError("port already allocated", stage="start")
        fake_runtime.failures["start"] = original

        with pytest.raises(RuntimeAdapterError) as exc_info:
            await provisioner.provision(base_config)

        assert exc_info.value is original
        assert fake_runtime.operations() == ["create", "start", "terminate"]

    async def test_cleanup_failure_does_not_mask_error(
        self,
        provisioner: VaultProvisioner,
        fake_runtime: FakeRuntime,
        base_config: InstanceConfig,
    ) -> None:
        """A failed cleanup is attached to the original error."""
        fake_runtime.exec_results["vault secrets enable transit"] = ExecResult(
            exit_code=1, output="path is already in use"
        )
        fake_runtime.failures["terminate"] = RuntimeAdapterError("daemon gone", stage="terminate")
        config = build_config(with_init_command("secrets enable transit"), base=base_config)

        with pytest.raises(InitCommandFailedError) as exc_info:
            await provisioner.provision(config)

        cleanup_error = exc_info.value.cleanup_error
        assert isinstance(cleanup_error, CleanupError)
        assert "daemon gone" in cleanup_error.message
        assert any("daemon gone" in note for note in exc_info.value.__notes__)

    async def test_invalid_config_creates_nothing(
        self,
        provisioner: VaultProvisioner,
        fake_runtime: FakeRuntime,
        base_config: InstanceConfig,
    ) -> None:
        """Configuration errors are raised before any container exists."""
        config = base_config.model_copy(update={"image": ""})

        with pytest.raises(ConfigurationError) as exc_info:
            await provisioner.provision(config)

        assert exc_info.value.field == "image"
        assert fake_runtime.calls == []

    async def test_cancellation_terminates(
        self,
        provisioner: VaultProvisioner,
        fake_runtime: FakeRuntime,
        base_config: InstanceConfig,
    ) -> None:
        """Cancelling during the readiness wait cleans up and re-raises."""
        fake_runtime.log_lines = []
        fake_runtime.hang_after_logs = True
        config = build_config(with_readiness_timeout(30), base=base_config)

        task = asyncio.create_task(provisioner.provision(config))
        while "logs" not in fake_runtime.operations():
            await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert fake_runtime.operations()[-1] == "terminate"
        assert fake_runtime.logs_closed is True


class TestValidate:
    """Tests for VaultProvisioner.validate."""

    @pytest.mark.parametrize(
        "update,field",
        [
            ({"image": "  "}, "image"),
            ({"token": "", "init_commands": ("secrets enable transit",)}, "token"),
            ({"init_commands": ("kv put secret/a b=c", " ")}, "init_commands"),
            ({"api_port": 0}, "api_port"),
            ({"readiness_timeout": 0}, "readiness_timeout"),
            ({"readiness_occurrences": 0}, "readiness_occurrences"),
            ({"readiness_pattern": "("}, "readiness_pattern"),
        ],
    )
    def test_rejects(
        self,
        fake_runtime: FakeRuntime,
        base_config: InstanceConfig,
        update: dict,
        field: str,
    ) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            VaultProvisioner(fake_runtime).validate(base_config.model_copy(update=update))

        assert exc_info.value.field == field

    def test_empty_token_allowed_without_commands(
        self, fake_runtime: FakeRuntime, base_config: InstanceConfig
    ) -> None:
        VaultProvisioner(fake_runtime).validate(base_config.model_copy(update={"token": ""}))


class TestRunningInstance:
    """Tests for RunningInstance."""

    async def test_terminate_is_idempotent(
        self, fake_runtime: FakeRuntime, base_config: InstanceConfig
    ) -> None:
        instance = await VaultProvisioner(fake_runtime).provision(base_config)

        await instance.terminate()
        await instance.terminate()

        assert fake_runtime.operations().count("terminate") == 1
        assert instance.terminated is True

    async def test_concurrent_terminate(
        self, fake_runtime: FakeRuntime, base_config: InstanceConfig
    ) -> None:
        instance = await VaultProvisioner(fake_runtime).provision(base_config)

        await asyncio.gather(instance.terminate(), instance.terminate(), instance.terminate())

        assert fake_runtime.operations().count("terminate") == 1

    async def test_terminate_failure_raises_once(
        self, fake_runtime: FakeRuntime, base_config: InstanceConfig
    ) -> None:
        """A failed terminate reports CleanupError; a second call is a no-op."""
        instance = await VaultProvisioner(fake_runtime).provision(base_config)
        fake_runtime.failures["terminate"] = RuntimeAdapterError("boom", stage="terminate")

        with pytest.raises(CleanupError):
            await instance.terminate()
        await instance.terminate()

        assert fake_runtime.operations().count("terminate") == 1

    async def test_context_manager_terminates(
        self, fake_runtime: FakeRuntime, base_config: InstanceConfig
    ) -> None:
        async with await VaultProvisioner(fake_runtime).provision(base_config) as instance:
            result = await instance.exec(["vault", "status"])
            assert result.ok

        assert fake_runtime.containers[instance.handle.id] == "removed"

    async def test_exec_after_terminate_raises(
        self, fake_runtime: FakeRuntime, base_config: InstanceConfig
    ) -> None:
        instance = await VaultProvisioner(fake_runtime).provision(base_config)
        await instance.terminate()

        with pytest.raises(RuntimeAdapterError):
            await instance.exec(["vault", "status"])

    async def test_injected_runtime_not_closed(
        self, fake_runtime: FakeRuntime, base_config: InstanceConfig
    ) -> None:
        """A caller-supplied runtime stays open after terminate."""
        instance = await VaultProvisioner(fake_runtime).provision(base_config)

        await instance.terminate()

        assert fake_runtime.closed is False


class TestOwnedRuntime:
    """Tests for provisioners that open their own runtime."""

    @pytest.fixture
    def opened(self, monkeypatch: pytest.MonkeyPatch) -> list[FakeRuntime]:
        """Runtimes opened by VaultProvisioner(), in creation order."""
        runtimes: list[FakeRuntime] = []

        def open_runtime() -> FakeRuntime:
            runtime = FakeRuntime()
            runtimes.append(runtime)
            return runtime

        monkeypatch.setattr("vaultfixture.lifecycle.DockerRuntime", open_runtime)
        return runtimes

    async def test_each_provision_opens_its_own_runtime(
        self, opened: list[FakeRuntime], base_config: InstanceConfig
    ) -> None:
        provisioner = VaultProvisioner()

        first = await provisioner.provision(base_config)
        second = await provisioner.provision(base_config)

        assert len(opened) == 2
        await first.terminate()
        assert [runtime.closed for runtime in opened] == [True, False]
        await second.terminate()
        assert opened[1].closed is True

    async def test_failed_provision_keeps_concurrent_one_running(
        self,
        opened: list[FakeRuntime],
        monkeypatch: pytest.MonkeyPatch,
        base_config: InstanceConfig,
    ) -> None:
        """A failing provision closes only the runtime it opened."""
        gate = asyncio.Event()
        failing_cmd = "secrets enable no-such-engine"
        slow_cmd = "kv put secret/test1 foo1=bar1"

        def scripted() -> FakeRuntime:
            runtime = FakeRuntime()
            runtime.exec_results[f"vault {failing_cmd}"] = ExecResult(
                exit_code=2, output="no handler"
            )
            runtime.exec_gates[f"vault {slow_cmd}"] = gate
            opened.append(runtime)
            return runtime

        monkeypatch.setattr("vaultfixture.lifecycle.DockerRuntime", scripted)
        provisioner = VaultProvisioner()
        slow = asyncio.create_task(
            provisioner.provision(build_config(with_init_command(slow_cmd), base=base_config))
        )
        failing = asyncio.create_task(
            provisioner.provision(build_config(with_init_command(failing_cmd), base=base_config))
        )

        with pytest.raises(InitCommandFailedError):
            await failing
        gate.set()
        instance = await slow

        slow_runtime, failing_runtime = opened
        assert failing_runtime.closed is True
        assert slow_runtime.closed is False
        assert slow_runtime.executed == [init_command_argv(slow_cmd)]
        await instance.terminate()
        assert slow_runtime.closed is True

    async def test_create_failure_closes_opened_runtime(
        self,
        opened: list[FakeRuntime],
        monkeypatch: pytest.MonkeyPatch,
        base_config: InstanceConfig,
    ) -> None:
        def failing_create() -> FakeRuntime:
            runtime = FakeRuntime()
            runtime.failures["create"] = RuntimeAdapterError("daemon down", stage="create")
            opened.append(runtime)
            return runtime

        monkeypatch.setattr("vaultfixture.lifecycle.DockerRuntime", failing_create)

        with pytest.raises(RuntimeAdapterError):
            await VaultProvisioner().provision(base_config)

        assert opened[0].closed is True


def test_ready_line_matches_default_pattern() -> None:
    """The fixture's ready line is what the default settings look for."""
    from vaultfixture.config import VaultConfig

    assert VaultConfig().readiness_pattern == READY_LINE
