"""
Tests for the build step runner and its helpers.
"""

from pathlib import Path

import pytest

from pkgcache.adapters.base import ExecutionContext
from pkgcache.adapters.mock import MockAdapter
from pkgcache.adapters.registry import AdapterRegistry, default_registry
from pkgcache.core.errors import ToolError
from pkgcache.core.models.action import Receipt
from pkgcache.core.models.package import BuildStep
from pkgcache.core.services.builder import (
    Builder,
    scan_configure_logs,
    write_cmake_toolchain_file,
)


def sh(script: str, **kwargs) -> BuildStep:
    return BuildStep(command=["sh", "-c", script, "sh"], **kwargs)


@pytest.fixture
def builder() -> Builder:
    return Builder(default_registry(), jobs=4, env={"PKG_ENV": "from-manifest"}, stream=False)


class TestBuilder:
    def test_steps_run_in_build_dir_in_order(self, builder: Builder, tmp_path: Path):
        builder.run_steps("p-1", [sh("echo one >> log"), sh("echo two >> log")], tmp_path)
        assert (tmp_path / "log").read_text() == "one\ntwo\n"

    def test_parallel_step_gets_jobs(self, builder: Builder, tmp_path: Path):
        builder.run_step("p-1", sh('echo "$@" > args', parallel=True), tmp_path)
        assert (tmp_path / "args").read_text().strip() == "-j4"

    def test_env_merged(self, builder: Builder, tmp_path: Path):
        step = sh('echo "$PKG_ENV $STEP_ENV" > env', env={"STEP_ENV": "from-step"})
        builder.run_step("p-1", step, tmp_path)
        assert (tmp_path / "env").read_text().strip() == "from-manifest from-step"

    def test_failure_stops_sequence(self, builder: Builder, tmp_path: Path):
        with pytest.raises(ToolError) as exc_info:
            builder.run_steps("p-1", [sh("exit 3", name="make"), sh("touch after")], tmp_path)
        assert exc_info.value.return_code == 3
        assert exc_info.value.exit_code == 3
        assert "make" in str(exc_info.value)
        assert not (tmp_path / "after").exists()

    def test_configure_failure_collects_diagnostics(self, builder: Builder, tmp_path: Path):
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "config.log").write_text(
            "checking for gcc... yes\n"
            "conftest.c:(.text+0x5): undefined reference to `deflate'\n"
            "gcc: error: unrecognized command-line option '-mfoo'\n"
        )
        with pytest.raises(ToolError) as exc_info:
            builder.run_step("p-1", sh("exit 1", name="configure", configure=True), tmp_path)
        diagnostics = exc_info.value.diagnostics
        assert len(diagnostics) == 2
        assert "undefined reference" in diagnostics[0]

    def test_non_configure_failure_has_no_diagnostics(self, builder: Builder, tmp_path: Path):
        (tmp_path / "config.log").write_text("undefined reference to `x'\n")
        with pytest.raises(ToolError) as exc_info:
            builder.run_step("p-1", sh("exit 1"), tmp_path)
        assert exc_info.value.diagnostics == []

    def test_jobs_default_to_cpu_count(self, monkeypatch):
        monkeypatch.setattr("os.cpu_count", lambda: 7)
        assert Builder(AdapterRegistry()).jobs == 7

    def test_uninstall_failure_is_not_fatal(self, builder: Builder, tmp_path: Path):
        receipt = builder.run_uninstall("p-1", ["sh", "-c", "exit 2"], tmp_path)
        assert receipt.failed


class TestScanConfigureLogs:
    def test_matches_each_pattern(self, tmp_path: Path):
        (tmp_path / "config.log").write_text(
            "fine\nld: can't load library 'libz.so'\nundefined reference to `x'\n"
        )
        hits = scan_configure_logs(tmp_path)
        assert len(hits) == 2
        assert hits[0].startswith(str(tmp_path / "config.log"))

    def test_no_logs(self, tmp_path: Path):
        assert scan_configure_logs(tmp_path) == []


class TestCheckStatic:
    def test_reports_binaries_with_needed_entries(self, tmp_path: Path):
        def readelf(context: ExecutionContext) -> Receipt:
            binary = Path(context.params["command"][-1]).name
            output = " 0x0000000000000001 (NEEDED)  Shared library: [libc.so.6]" if binary == "dyn" else "There is no dynamic section in this file."
            return Receipt.success(adapter="shell", action_id=context.action.id, output=output)

        shell = MockAdapter("shell")
        shell.set_response("check-static:dyn", readelf)
        shell.set_response("check-static:static", readelf)
        registry = AdapterRegistry()
        registry.register(shell)

        dynamic = Builder(registry, jobs=1).check_static([tmp_path / "static", tmp_path / "dyn"])
        assert dynamic == [tmp_path / "dyn"]
        assert shell.call_log[0].params["command"][:2] == ["readelf", "-d"]


class TestFinalize:
    @pytest.fixture
    def shell(self) -> MockAdapter:
        return MockAdapter("shell")

    @pytest.fixture
    def finalizer(self, shell: MockAdapter) -> Builder:
        registry = AdapterRegistry()
        registry.register(shell)
        return Builder(registry, jobs=1)

    @pytest.fixture
    def binaries(self, tmp_path: Path) -> Path:
        (tmp_path / "bin").mkdir()
        for name in ("transmission-daemon", "transmission-remote.static"):
            (tmp_path / "bin" / name).write_text("elf")
        return tmp_path

    def test_strips_checks_and_links(self, finalizer: Builder, shell: MockAdapter, binaries: Path):
        links = finalizer.finalize(
            "t-4.0",
            [Path("bin/transmission-daemon"), Path("bin/transmission-remote.static")],
            binaries,
            cross_prefix="arm-linux-musleabi-",
        )

        strip = shell.call_log[0].params["command"]
        assert strip[:2] == ["arm-linux-musleabi-strip", "-v"]
        assert strip[2:] == [str(binaries / "bin" / "transmission-daemon"), str(binaries / "bin" / "transmission-remote.static")]
        assert shell.call_log[1].params["command"][0] == "arm-linux-musleabi-readelf"

        link = binaries / "bin" / "transmission-daemon.static"
        assert links == [link]
        assert link.is_symlink()
        assert str(link.readlink()) == "transmission-daemon"

    def test_existing_link_is_replaced(self, finalizer: Builder, binaries: Path):
        link = binaries / "bin" / "transmission-daemon.static"
        link.symlink_to("stale")
        finalizer.finalize("t-4.0", [Path("bin/transmission-daemon")], binaries)
        assert str(link.readlink()) == "transmission-daemon"

    def test_dynamic_binary_fails_without_links(self, finalizer: Builder, shell: MockAdapter, binaries: Path):
        shell.set_response(
            "check-static:transmission-daemon",
            Receipt.success(adapter="shell", action_id="x", output=" 0x1 (NEEDED)  Shared library: [libc.so]"),
        )
        with pytest.raises(ToolError, match="not statically linked") as exc_info:
            finalizer.finalize("t-4.0", [Path("bin/transmission-daemon")], binaries)
        assert exc_info.value.diagnostics == [str(binaries / "bin" / "transmission-daemon")]
        assert not (binaries / "bin" / "transmission-daemon.static").exists()

    def test_strip_failure(self, finalizer: Builder, shell: MockAdapter, binaries: Path):
        shell.set_failure("t-4.0:strip", "strip: bad file", return_code=4)
        with pytest.raises(ToolError) as exc_info:
            finalizer.finalize("t-4.0", [Path("bin/transmission-daemon")], binaries)
        assert exc_info.value.return_code == 4

    def test_missing_binary(self, finalizer: Builder, shell: MockAdapter, tmp_path: Path):
        with pytest.raises(ToolError, match="not found"):
            finalizer.finalize("t-4.0", [Path("bin/absent")], tmp_path)
        assert shell.call_count == 0


class TestCmakeToolchainFile:
    def test_contents(self, tmp_path: Path):
        path = write_cmake_toolchain_file(
            tmp_path / "arm-musl.toolchain.cmake", "arm-linux-musleabi", Path("/opt/sysroot"), Path("/opt/arm")
        )
        text = path.read_text()
        assert "set(CMAKE_SYSTEM_NAME Linux)" in text
        assert "set(CMAKE_SYSTEM_PROCESSOR arm)" in text
        assert "set(CMAKE_C_COMPILER arm-linux-musleabi-gcc)" in text
        assert "set(CMAKE_STRIP arm-linux-musleabi-strip)" in text
        assert 'set(CMAKE_SYSROOT "/opt/sysroot")' in text
        assert 'set(CMAKE_FIND_ROOT_PATH "/opt/arm")' in text
        assert "set(CMAKE_FIND_ROOT_PATH_MODE_PROGRAM NEVER)" in text
        assert "set(CMAKE_TRY_COMPILE_TARGET_TYPE STATIC_LIBRARY)" in text
        assert "set(CMAKE_CXX_STANDARD 17)" in text

    def test_processor_override(self, tmp_path: Path):
        path = write_cmake_toolchain_file(tmp_path / "t.cmake", "aarch64-linux-musl", Path("/s"), Path("/p"), processor="arm64")
        assert "set(CMAKE_SYSTEM_PROCESSOR arm64)" in path.read_text()
