import asyncio
import sys
import types

import pytest

import pyeval.pyeval_bridge as bridge_mod
from pyeval import Evaluator, EvaluatorConfig
from pyeval.pyeval_bridge import BridgeState
from pyeval.pyeval_errors import BridgeLoadFailure, ExecutionFailure, ResolutionFailure
from pyeval.pyeval_host import Host

URLS = ("https://assets.test/gpu.js", "https://assets.test/torch.js")
CONFIG = EvaluatorConfig(script_urls=URLS, adapter_url="https://assets.test/bridge.py")


class FakeTensor:
    def __init__(self, data, requires_grad=False):
        self.data = data
        self.requires_grad = requires_grad


class FakeLibrary:
    Tensor = FakeTensor


class RecordingDocument:
    def __init__(self, host):
        self.host = host
        self.loaded = []
        self.fail_once = False

    async def append_script(self, url):
        await asyncio.sleep(0)
        if self.fail_once:
            self.fail_once = False
            raise OSError("network error")
        self.loaded.append(url)
        if url == URLS[-1]:
            self.host.globals["torch"] = FakeLibrary


class RecordingHost(Host):
    def __init__(self):
        super().__init__()
        self.outputs = []
        self.document = RecordingDocument(self)

    def send_output(self, text):
        self.outputs.append(text)


class FakeInstaller:
    def __init__(self, monkeypatch=None, fail=False):
        self.monkeypatch = monkeypatch
        self.fail = fail
        self.prepared = 0
        self.calls = []

    async def prepare(self):
        self.prepared += 1

    async def install(self, packages):
        self.calls.append(list(packages))
        if self.fail:
            raise ResolutionFailure(packages, "no matching distribution")
        for name in packages:
            mod = types.ModuleType(name)
            mod.VALUE = f"{name} installed"
            self.monkeypatch.setitem(sys.modules, name, mod)


@pytest.fixture
def adapter_fetch(monkeypatch):
    calls = []

    async def fake_fetch(url, *, timeout=None):
        calls.append(url)
        return "torch = js_torch\n"

    monkeypatch.setattr(bridge_mod, "fetch_text", fake_fetch)
    return calls


def make_evaluator(installer=None):
    host = RecordingHost()
    return Evaluator(host, CONFIG, installer=installer or FakeInstaller()), host


@pytest.mark.asyncio
async def test_prints_are_forwarded_before_completion():
    ev, host = make_evaluator()
    await ev.evaluate_chunk('print("a"); print("b")')
    assert host.outputs == ["a\n", "b\n"]


@pytest.mark.asyncio
async def test_output_is_forwarded_while_chunk_is_still_running():
    ev, host = make_evaluator()
    rt = await ev.runtime()
    seen = []

    async def checkpoint():
        seen.append(list(host.outputs))

    rt.set_global("checkpoint", checkpoint)
    await ev.evaluate_chunk('print("first")\nawait checkpoint()\nprint("second")')
    assert seen == [["first\n"]]
    assert host.outputs == ["first\n", "second\n"]


@pytest.mark.asyncio
async def test_final_value_is_forwarded_once():
    ev, host = make_evaluator()
    value = await ev.evaluate_chunk("x = [1, 2]\nx")
    assert value == [1, 2]
    assert host.outputs == ["[1, 2]"]


@pytest.mark.asyncio
async def test_chunk_without_imports_skips_resolution():
    installer = FakeInstaller()
    ev, _ = make_evaluator(installer)
    await ev.evaluate_chunk("y = 3")
    assert installer.calls == []
    assert installer.prepared == 1


@pytest.mark.asyncio
async def test_runtime_is_constructed_once_under_concurrency():
    installer = FakeInstaller()
    ev, host = make_evaluator(installer)
    await asyncio.gather(*(ev.evaluate_chunk(f"print({i})") for i in range(3)))
    assert installer.prepared == 1
    assert sorted(host.outputs) == ["0\n", "1\n", "2\n"]


@pytest.mark.asyncio
async def test_missing_package_is_installed_before_execution(monkeypatch):
    installer = FakeInstaller(monkeypatch)
    ev, host = make_evaluator(installer)
    await ev.evaluate_chunk("import pyeval_fake_pkg_one as p\nprint(p.VALUE)")
    assert installer.calls == [["pyeval_fake_pkg_one"]]
    assert host.outputs == ["pyeval_fake_pkg_one installed\n"]


@pytest.mark.asyncio
async def test_failed_install_prevents_execution():
    installer = FakeInstaller(fail=True)
    ev, host = make_evaluator(installer)
    with pytest.raises(ResolutionFailure):
        await ev.evaluate_chunk('print("should not run")\nimport pyeval_fake_pkg_two')
    assert host.outputs == []


@pytest.mark.asyncio
async def test_heavy_import_bootstraps_once_for_back_to_back_chunks(adapter_fetch):
    installer = FakeInstaller()
    ev, host = make_evaluator(installer)
    await ev.evaluate_chunk("import torch\nt1 = torch.Tensor([1])")
    await ev.evaluate_chunk("import torch\nt2 = torch.Tensor([2])\nt2.data")
    assert ev.bridge_state is BridgeState.READY
    assert ev.bridge.attempts == 1
    assert host.document.loaded == list(URLS)
    assert adapter_fetch == [CONFIG.adapter_url]
    assert installer.calls == []
    assert host.outputs == ["[2]"]


@pytest.mark.asyncio
async def test_concurrent_heavy_chunks_share_the_bootstrap(adapter_fetch):
    ev, host = make_evaluator()
    await asyncio.gather(
        ev.evaluate_chunk("import torch\na = 1"),
        ev.evaluate_chunk("import torch\nb = 2"),
    )
    assert ev.bridge.attempts == 1
    assert host.document.loaded == list(URLS)


@pytest.mark.asyncio
async def test_bridge_failure_fails_chunk_and_next_chunk_retries(adapter_fetch):
    ev, host = make_evaluator()
    host.document.fail_once = True
    with pytest.raises(BridgeLoadFailure):
        await ev.evaluate_chunk('import torch\nprint("unreached")')
    assert ev.bridge_state is BridgeState.FAILED
    assert host.outputs == []

    await ev.evaluate_chunk('import torch\nprint("reached")')
    assert ev.bridge_state is BridgeState.READY
    assert ev.bridge.attempts == 2
    assert host.outputs == ["reached\n"]


@pytest.mark.asyncio
async def test_execution_errors_are_wrapped_with_original():
    ev, _ = make_evaluator()
    with pytest.raises(ExecutionFailure) as ei:
        await ev.evaluate_chunk("1 / 0")
    assert isinstance(ei.value.original, ZeroDivisionError)
    assert ei.value.__cause__ is ei.value.original
    assert "ZeroDivisionError" in str(ei.value)


@pytest.mark.asyncio
async def test_handle_chunk_reports_syntax_errors():
    ev, _ = make_evaluator()
    res = await ev.handle_chunk("def f(:\n    pass")
    assert res.status == "error"
    assert isinstance(res.error, ExecutionFailure)
    assert res.format_error().startswith("Error on line 1")


@pytest.mark.asyncio
async def test_handle_chunk_success():
    ev, _ = make_evaluator()
    res = await ev.handle_chunk("6 * 7")
    assert res.status == "success" and res.value == 42
    assert res.format_error() == ""


@pytest.mark.asyncio
async def test_state_persists_until_close():
    installer = FakeInstaller()
    ev, _ = make_evaluator(installer)
    await ev.evaluate_chunk("counter = 1")
    assert await ev.evaluate_chunk("counter + 1") == 2
    ev.close()
    with pytest.raises(ExecutionFailure):
        await ev.evaluate_chunk("counter")
    assert installer.prepared == 2
    assert ev.bridge_state is BridgeState.UNLOADED


@pytest.mark.asyncio
async def test_runtime_construction_failure_is_retried():
    class FlakyInstaller(FakeInstaller):
        async def prepare(self):
            self.prepared += 1
            if self.prepared == 1:
                raise OSError("installer unavailable")

    installer = FlakyInstaller()
    ev, _ = make_evaluator(installer)
    with pytest.raises(OSError):
        await ev.evaluate_chunk("1")
    assert await ev.evaluate_chunk("1") == 1
    assert installer.prepared == 2


@pytest.mark.asyncio
async def test_system_exit_in_chunk_is_an_execution_failure():
    ev, host = make_evaluator()
    res = await ev.handle_chunk('print("leaving")\nraise SystemExit(3)')
    assert res.status == "error"
    assert isinstance(res.error, ExecutionFailure)
    assert isinstance(res.error.original, SystemExit)
    assert "SystemExit: 3" in res.error_message
    assert host.outputs == ["leaving\n"]

    with pytest.raises(ExecutionFailure):
        await ev.evaluate_chunk("import sys\nsys.exit(1)")
    # The session keeps working afterwards.
    assert await ev.evaluate_chunk("2 + 2") == 4


@pytest.mark.asyncio
async def test_concurrent_chunks_install_a_missing_root_once(monkeypatch):
    class SlowInstaller(FakeInstaller):
        async def install(self, packages):
            await asyncio.sleep(0.05)
            await super().install(packages)

    installer = SlowInstaller(monkeypatch)
    ev, host = make_evaluator(installer)
    await asyncio.gather(
        ev.evaluate_chunk("import pyeval_fake_pkg_three"),
        ev.evaluate_chunk("import pyeval_fake_pkg_three\nprint('second')"),
    )
    assert installer.calls == [["pyeval_fake_pkg_three"]]
    assert host.outputs == ["second\n"]


@pytest.mark.asyncio
async def test_handle_chunk_reports_runtime_construction_errors():
    class BrokenInstaller(FakeInstaller):
        async def prepare(self):
            raise OSError("installer unavailable")

    ev, _ = make_evaluator(BrokenInstaller())
    res = await ev.handle_chunk("1")
    assert res.status == "error"
    assert isinstance(res.error, OSError)
    assert res.format_error() == "OSError: installer unavailable"
