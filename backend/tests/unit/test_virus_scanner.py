import asyncio
import struct

import pytest

from eventsphere.uploads.exceptions import ScannerUnavailableError
from eventsphere.uploads.scanner import (
    ClamdClient,
    ScanDaemonError,
    ScannerState,
    ScanResult,
    VirusScanner,
    parse_instream_reply,
)

EICAR = rb"X5O!P%@AP[4\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*"


class FakeDaemon:
    def __init__(self, *, ping_error: Exception | None = None, scan_error: Exception | None = None) -> None:
        self.ping_error = ping_error
        self.scan_error = scan_error
        self.scanned: list[bytes] = []

    async def ping(self) -> None:
        if self.ping_error:
            raise self.ping_error

    async def scan(self, payload: bytes) -> ScanResult:
        if self.scan_error:
            raise self.scan_error
        self.scanned.append(payload)
        if EICAR in payload:
            return ScanResult(infected=True, signatures=("Eicar-Test-Signature",))
        return ScanResult(infected=False)


async def _fake_clamd(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    command = await reader.readuntil(b"\0")
    if command == b"zPING\0":
        writer.write(b"PONG\0")
    elif command == b"zINSTREAM\0":
        data = b""
        while True:
            (length,) = struct.unpack("!L", await reader.readexactly(4))
            if length == 0:
                break
            data += await reader.readexactly(length)
        reply = b"stream: Eicar-Test-Signature FOUND\0" if EICAR in data else b"stream: OK\0"
        writer.write(reply)
    else:
        writer.write(b"UNKNOWN COMMAND\0")
    await writer.drain()
    writer.close()


@pytest.mark.asyncio
async def test_disabled_scanner_passes_eicar_as_clean():
    scanner = VirusScanner(FakeDaemon(), enabled=False, fail_closed=False)
    result = await scanner.scan(EICAR, "eicar.jpg")
    assert not result.infected
    assert scanner.state is ScannerState.DISABLED
    assert scanner.status()["enabled"] is False


@pytest.mark.asyncio
async def test_ready_scanner_reports_infection():
    daemon = FakeDaemon()
    scanner = VirusScanner(daemon, enabled=True, fail_closed=True)
    assert await scanner.initialize() is ScannerState.READY
    result = await scanner.scan(b"prefix" + EICAR, "eicar.jpg")
    assert result.infected
    assert result.signatures == ("Eicar-Test-Signature",)
    assert scanner.status() == {"state": "ready", "initialized": True, "enabled": True, "available": True}


@pytest.mark.asyncio
async def test_production_init_failure_is_fatal():
    scanner = VirusScanner(FakeDaemon(ping_error=ScanDaemonError("refused")), enabled=True, fail_closed=True)
    with pytest.raises(ScannerUnavailableError):
        await scanner.initialize()
    assert scanner.state is ScannerState.UNAVAILABLE
    with pytest.raises(ScannerUnavailableError):
        await scanner.scan(b"data", "a.png")


@pytest.mark.asyncio
async def test_non_production_init_failure_soft_fails():
    scanner = VirusScanner(FakeDaemon(ping_error=ConnectionRefusedError()), enabled=True, fail_closed=False)
    assert await scanner.initialize() is ScannerState.DISABLED
    assert not (await scanner.scan(EICAR, "eicar.jpg")).infected


@pytest.mark.asyncio
async def test_scan_failure_rejects_in_production_and_passes_elsewhere():
    strict = VirusScanner(FakeDaemon(scan_error=ScanDaemonError("boom")), enabled=True, fail_closed=True)
    await strict.initialize()
    with pytest.raises(ScannerUnavailableError):
        await strict.scan(b"data", "a.png")

    lenient = VirusScanner(FakeDaemon(scan_error=ScanDaemonError("boom")), enabled=True, fail_closed=False)
    await lenient.initialize()
    assert not (await lenient.scan(b"data", "a.png")).infected


@pytest.mark.asyncio
async def test_scan_timeout_counts_as_failure():
    class SlowDaemon(FakeDaemon):
        async def scan(self, payload: bytes) -> ScanResult:
            await asyncio.sleep(1)
            return ScanResult(infected=False)

    scanner = VirusScanner(SlowDaemon(), enabled=True, fail_closed=True, timeout=0.01)
    await scanner.initialize()
    with pytest.raises(ScannerUnavailableError):
        await scanner.scan(b"data", "a.png")


@pytest.mark.asyncio
async def test_initialize_runs_once():
    daemon = FakeDaemon()
    scanner = VirusScanner(daemon, enabled=True, fail_closed=True)
    states = await asyncio.gather(scanner.initialize(), scanner.initialize())
    assert states == [ScannerState.READY, ScannerState.READY]


def test_parse_instream_reply():
    assert not parse_instream_reply("stream: OK").infected
    found = parse_instream_reply("stream: Win.Test.EICAR_HDB-1 FOUND")
    assert found.infected and found.signatures == ("Win.Test.EICAR_HDB-1",)
    with pytest.raises(ScanDaemonError):
        parse_instream_reply("INSTREAM size limit exceeded. ERROR")


@pytest.mark.asyncio
async def test_clamd_client_speaks_instream_protocol():
    server = await asyncio.start_server(_fake_clamd, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        client = ClamdClient("127.0.0.1", port, timeout=2.0, max_concurrency=2)
        await client.ping()
        assert not (await client.scan(b"\x89PNG" * 50_000)).infected
        infected = await client.scan(b"junk" + EICAR)
        assert infected.infected
        assert infected.signatures == ("Eicar-Test-Signature",)
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_clamd_client_unreachable_raises_daemon_error():
    server = await asyncio.start_server(_fake_clamd, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()
    client = ClamdClient("127.0.0.1", port, timeout=1.0, max_concurrency=1)
    with pytest.raises(ScanDaemonError):
        await client.ping()
