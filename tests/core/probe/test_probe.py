from functools import (
    partial,
)
import socket

import pytest
import trio

from conntest.cli import (
    main,
    parse_args,
)
from conntest.config import (
    build_probe_config,
)
from conntest.probe import (
    run_probe,
)


def find_free_port():
    # A port that is free for both TCP and UDP on the loopback interface.
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as tcp_sock:
        tcp_sock.bind(("127.0.0.1", 0))
        port = tcp_sock.getsockname()[1]
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as udp_sock:
        udp_sock.bind(("127.0.0.1", port))
    return port


@pytest.mark.trio
async def test_two_instances_see_each_other(output, datagram_config):
    port = find_free_port()
    server_config = build_probe_config(
        "server", listens=[f"tcp:{port}", f"udp:{port}"], timeout=10
    )
    client_config = build_probe_config(
        "client",
        connects=[f"tcp://127.0.0.1:{port}", f"udp://127.0.0.1:{port}"],
        timeout=10,
    )

    async with trio.open_nursery() as nursery:
        nursery.start_soon(
            partial(run_probe, server_config, output, datagram_config=datagram_config)
        )
        # Give the listeners time to bind before dialing.
        await trio.sleep(0.2)
        nursery.start_soon(
            partial(run_probe, client_config, output, datagram_config=datagram_config)
        )
        await output.wait_for(lambda o: len(o.connections) == 4)
        nursery.cancel_scope.cancel()

    seen = sorted((name, peer, proto) for name, peer, proto, _ in output.connections)
    assert seen == [
        ("client", "server", "tcp"),
        ("client", "server", "udp"),
        ("server", "client", "tcp"),
        ("server", "client", "udp"),
    ]


@pytest.mark.trio
async def test_probe_returns_after_timeout(output, datagram_config):
    config = build_probe_config("solo", listens=["udp:0", "tcp:0"], timeout=0.2)
    with trio.fail_after(5):
        await run_probe(config, output, datagram_config=datagram_config)
    assert output.errors == []


def test_parse_args():
    config = parse_args(
        [
            "--name",
            "a",
            "--listen",
            "tcp:1234",
            "--listen",
            "udp:1234",
            "--connect",
            "udp://127.0.0.1:4321?monitor-bandwidth",
            "--timeout",
            "2.5",
        ]
    )
    assert config.name == "a"
    assert len(config.listens) == 2
    assert config.connects[0].monitor_bandwidth.enabled
    assert config.timeout == 2.5


@pytest.mark.parametrize(
    "argv",
    [
        [],
        ["--name", "a"],
        ["--name", "a", "--listen", "tcp"],
        ["--name", "a", "--connect", "udp://host.example:1"],
        ["--name", "a", "--listen", "tcp:1", "--timeout", "-1"],
    ],
)
def test_parse_args_rejects(argv, capsys):
    with pytest.raises(SystemExit) as excinfo:
        parse_args(argv)
    assert excinfo.value.code == 2


def test_main_runs_until_timeout(monkeypatch):
    monkeypatch.setattr("conntest.cli.setup_logging", lambda: None)
    assert main(["--name", "a", "--listen", "udp:0", "--timeout", "0.1"]) == 0
