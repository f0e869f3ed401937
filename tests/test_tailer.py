import asyncio
import shutil
import sys

import pytest

from tailstats.config import LogParserConfig
from tailstats.tailer import handle_line, start_tailing, tail_command

HEAD = '1.2.3.4 - - [10/Oct/2020:13:55:36 -0700] "GET {path} HTTP/1.1" {status} 512 "https://example.com/page" "UA"'


def _line(path, status=200):
    return HEAD.format(path=path, status=status)


class Recorder:
    def __init__(self):
        self.calls = []

    def log_request(self, path, referrer, size, timestamp):
        self.calls.append((path, referrer, size, timestamp))


class Exploding:
    def log_request(self, path, referrer, size, timestamp):
        raise RuntimeError("stats backend down")


async def _wait_for(pred, timeout=10.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not pred():
        if loop.time() > deadline:
            raise AssertionError("timed out waiting for tailer")
        await asyncio.sleep(0.02)


async def _stop(tailer):
    tailer.task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await tailer.task


def _python(script):
    return [sys.executable, "-c", script]


# ----------------------------
# handle_line
# ----------------------------
def test_handle_line_reports_accepted_request():
    rec = Recorder()
    assert handle_line(_line("/user/repo/main/file.js?x=1"), rec)
    assert rec.calls == [("/user/repo/main/file.js", "https://example.com/page", 512, 1602363336000)]


def test_handle_line_drops_rejected_and_malformed():
    rec = Recorder()
    assert not handle_line(_line("/user/repo/main/file.js", status=403), rec)
    assert not handle_line(_line("/favicon.ico"), rec)
    assert not handle_line("not a log line", rec)
    assert rec.calls == []


def test_handle_line_survives_collector_errors():
    assert handle_line(_line("/user/repo/main/file.js"), Exploding()) is False


def test_tail_command():
    assert tail_command("/var/log/access.log", 25) == ["tail", "-F", "-n", "25", "/var/log/access.log"]


def test_handle_line_never_raises(monkeypatch):
    from tailstats import tailer

    def broken_accept(req, ignore_paths, mirror_hosts):
        raise RuntimeError("filter bug")

    monkeypatch.setattr(tailer, "accept", broken_accept)
    rec = Recorder()
    assert handle_line(_line("/user/repo/main/file.js"), rec) is False
    assert rec.calls == []


# ----------------------------
# start_tailing / TailProcess
# ----------------------------
def test_disabled_without_log_file(tmp_path):
    async def main():
        rec = Recorder()
        assert start_tailing(LogParserConfig(log_path=None), rec) is None
        assert start_tailing(LogParserConfig(log_path=str(tmp_path / "missing.log")), rec) is None

    asyncio.run(main())


def test_spawn_failure_disables_for_good(tmp_path):
    log = tmp_path / "access.log"
    log.write_text("")
    spawned = []

    def command(path, scrollback):
        spawned.append(scrollback)
        return [str(tmp_path / "no-such-tail")]

    async def main():
        tailer = start_tailing(LogParserConfig(log_path=str(log)), Recorder(), command=command)
        assert tailer is not None
        await asyncio.wait_for(tailer.task, timeout=10)
        assert tailer.enabled is False
        assert spawned == [0]

    asyncio.run(main())


def test_respawn_after_exit_drops_scrollback_and_overflow(tmp_path):
    log = tmp_path / "access.log"
    log.write_text("")
    spawned = []

    first = "\n".join([
        _line("/user/repo/main/a.js"),
        _line("/favicon.ico"),
        _line("/user/repo/main/a.js", status=403),
        "",
    ]) + _line("/partial/line/never/sent.js")
    second = "\n" + _line("/user/repo/main/b.js") + "\n"

    def command(path, scrollback):
        spawned.append((path, scrollback))
        if len(spawned) == 1:
            script = f"import sys; sys.stdout.write({first!r}); sys.stdout.flush()"
        else:
            script = f"import sys, time; sys.stdout.write({second!r}); sys.stdout.flush(); time.sleep(30)"
        return _python(script)

    async def main():
        rec = Recorder()
        tailer = start_tailing(LogParserConfig(log_path=str(log), scrollback=50), rec, command=command)
        await _wait_for(lambda: len(rec.calls) >= 2)
        assert tailer.enabled is True
        assert tailer.respawns == 1
        await _stop(tailer)
        return rec

    rec = asyncio.run(main())
    assert spawned[0] == (str(log), 50)
    assert spawned[1] == (str(log), 0)
    assert [c[0] for c in rec.calls] == ["/user/repo/main/a.js", "/user/repo/main/b.js"]


def test_multibyte_characters_split_across_reads(tmp_path):
    log = tmp_path / "access.log"
    log.write_text("")
    line = _line("/user/repo/main/café.js") + "\n"
    data = line.encode("utf-8")
    cut = data.index("é".encode("utf-8")) + 1

    script = (
        "import sys, time\n"
        f"sys.stdout.buffer.write({data[:cut]!r}); sys.stdout.flush(); time.sleep(0.3)\n"
        f"sys.stdout.buffer.write({data[cut:]!r}); sys.stdout.flush(); time.sleep(30)\n"
    )

    async def main():
        rec = Recorder()
        tailer = start_tailing(LogParserConfig(log_path=str(log)), rec, command=lambda p, n: _python(script))
        await _wait_for(lambda: rec.calls)
        await _stop(tailer)
        return rec

    rec = asyncio.run(main())
    assert rec.calls[0][0] == "/user/repo/main/café.js"


@pytest.mark.skipif(shutil.which("tail") is None, reason="needs tail")
def test_real_tail_follows_file(tmp_path):
    log = tmp_path / "access.log"
    log.write_text("\n".join([
        _line("/user/repo/main/old.js"),
        _line("/user/repo/main/recent.js"),
        "",
    ]))

    async def main():
        rec = Recorder()
        tailer = start_tailing(LogParserConfig(log_path=str(log), scrollback=1), rec)
        await _wait_for(lambda: len(rec.calls) >= 1)
        with open(log, "a", encoding="utf-8") as f:
            f.write(_line("/user/repo/main/new.js") + "\n")
        await _wait_for(lambda: len(rec.calls) >= 2)
        await _stop(tailer)
        return rec

    rec = asyncio.run(main())
    assert [c[0] for c in rec.calls] == ["/user/repo/main/recent.js", "/user/repo/main/new.js"]


def test_huge_byte_count_does_not_stop_the_tail(tmp_path):
    log = tmp_path / "access.log"
    log.write_text("")
    huge = _line("/user/repo/main/a.js").replace(" 512 ", " " + "9" * 5000 + " ")
    data = huge + "\n" + _line("/user/repo/main/b.js") + "\n"
    script = f"import sys, time; sys.stdout.write({data!r}); sys.stdout.flush(); time.sleep(30)"

    async def main():
        rec = Recorder()
        tailer = start_tailing(LogParserConfig(log_path=str(log)), rec, command=lambda p, n: _python(script))
        await _wait_for(lambda: len(rec.calls) >= 2)
        assert not tailer.task.done()
        assert tailer.enabled is True
        await _stop(tailer)
        return rec

    rec = asyncio.run(main())
    assert [(c[0], c[2]) for c in rec.calls] == [("/user/repo/main/a.js", 0), ("/user/repo/main/b.js", 512)]


def test_restart_respawns_running_child_without_scrollback(tmp_path):
    log = tmp_path / "access.log"
    log.write_text("")
    spawned = []

    def command(path, scrollback):
        spawned.append(scrollback)
        line = _line(f"/user/repo/main/{len(spawned)}.js") + "\n"
        return _python(f"import sys, time; sys.stdout.write({line!r}); sys.stdout.flush(); time.sleep(30)")

    async def main():
        rec = Recorder()
        tailer = start_tailing(LogParserConfig(log_path=str(log), scrollback=5), rec, command=command)
        await _wait_for(lambda: len(rec.calls) >= 1)
        assert tailer.respawns == 0

        tailer.restart()
        await _wait_for(lambda: len(rec.calls) >= 2)
        assert tailer.respawns == 1
        assert tailer.enabled is True
        await _stop(tailer)
        return rec

    rec = asyncio.run(main())
    assert spawned == [5, 0]
    assert [c[0] for c in rec.calls] == ["/user/repo/main/1.js", "/user/repo/main/2.js"]
