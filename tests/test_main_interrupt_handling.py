from __future__ import annotations

import altwatch.__main__ as main_module
from altwatch.core.exceptions import AuthenticationFailedError, ConfigError


class _FakeRunner:
    def __init__(self, error: BaseException | None) -> None:
        self.error = error
        self.calls = 0

    def __enter__(self):
        return self

    def __exit__(self, _exc_type, _exc, _traceback):
        return False

    def get_loop(self):
        return object()

    def run(self, coro):
        self.calls += 1
        coro.close()
        if self.error is not None:
            raise self.error


def _patch(monkeypatch, runner: _FakeRunner) -> list[str | None]:
    filenames: list[str | None] = []

    async def _fake_main(config_filename: str | None = None) -> None:
        filenames.append(config_filename)

    def _make_runner() -> _FakeRunner:
        return runner

    monkeypatch.setattr(main_module.asyncio, "Runner", _make_runner)
    monkeypatch.setattr(main_module, "install_global_exception_hooks", lambda: None)
    monkeypatch.setattr(
        main_module,
        "register_asyncio_exception_handler",
        lambda _loop: None,
    )
    monkeypatch.setattr(main_module.altwatch.entrypoint, "main", _fake_main)
    return filenames


def test_main_returns_zero_on_clean_exit(monkeypatch) -> None:
    runner = _FakeRunner(None)
    _patch(monkeypatch, runner)

    assert main_module.main(["custom.yaml"]) == 0
    assert runner.calls == 1


def test_main_suppresses_keyboard_interrupt(monkeypatch) -> None:
    runner = _FakeRunner(KeyboardInterrupt())
    _patch(monkeypatch, runner)

    assert main_module.main([]) == 0


def test_main_reports_configuration_errors(monkeypatch) -> None:
    _patch(monkeypatch, _FakeRunner(ConfigError("Missing required config value")))

    assert main_module.main([]) == main_module.EXIT_CONFIG_ERROR


def test_main_reports_rejected_credentials(monkeypatch) -> None:
    _patch(monkeypatch, _FakeRunner(AuthenticationFailedError("401")))

    assert main_module.main([]) == main_module.EXIT_AUTH_FAILED
