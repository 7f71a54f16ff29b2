import subprocess
import unittest
from collections import namedtuple
from unittest.mock import MagicMock, patch

import psutil

from portkeeper.core.models import ProcessMetadata
from portkeeper.core.port_scanner import (
    LsofPortScanner, PsutilPortScanner, RawListener, create_scanner, parse_lsof_output,
)

Addr = namedtuple("Addr", ["ip", "port"])
Conn = namedtuple("Conn", ["laddr", "status", "pid"])


def fake_resolver():
    resolver = MagicMock()
    resolver.cache_size = 0
    resolver.resolve.side_effect = lambda pid, cache=None: ProcessMetadata(
        name=f"proc{pid}", command=f"proc{pid} --serve", user="alice")
    return resolver


class TestPsutilPortScanner(unittest.TestCase):
    def setUp(self):
        self.resolver = fake_resolver()
        self.scanner = PsutilPortScanner(self.resolver)

    @patch("portkeeper.core.port_scanner.psutil.net_connections")
    def test_only_listen_sockets(self, mock_conns):
        mock_conns.return_value = [
            Conn(Addr("0.0.0.0", 8080), psutil.CONN_LISTEN, 10),
            Conn(Addr("10.0.0.2", 50000), psutil.CONN_ESTABLISHED, 10),
            Conn(Addr("127.0.0.1", 22), psutil.CONN_LISTEN, None),
        ]
        records = self.scanner.scan()
        self.assertEqual([r.port for r in records], [8080])
        self.assertEqual(records[0].process_name, "proc10")
        self.assertEqual(records[0].address, "0.0.0.0")
        mock_conns.assert_called_once_with(kind='tcp')

    @patch("portkeeper.core.port_scanner.psutil.net_connections")
    def test_dedupes_dual_stack_and_sorts(self, mock_conns):
        mock_conns.return_value = [
            Conn(Addr("::", 5432), psutil.CONN_LISTEN, 30),
            Conn(Addr("0.0.0.0", 5432), psutil.CONN_LISTEN, 30),
            Conn(Addr("0.0.0.0", 80), psutil.CONN_LISTEN, 20),
            Conn(Addr("127.0.0.1", 3000), psutil.CONN_LISTEN, 10),
            Conn(Addr("::1", 3000), psutil.CONN_LISTEN, 11),
        ]
        records = self.scanner.scan()
        keys = [r.key for r in records]
        self.assertEqual(len(keys), len(set(keys)))
        self.assertEqual([r.port for r in records], [80, 3000, 3000, 5432])
        self.assertEqual(records[-1].address, "::")
        self.assertTrue(all(r.is_active and r.pid > 0 for r in records))

    @patch("portkeeper.core.port_scanner.psutil.net_connections")
    def test_resolves_each_pid_per_scan(self, mock_conns):
        mock_conns.return_value = [
            Conn(Addr("0.0.0.0", 8000), psutil.CONN_LISTEN, 10),
            Conn(Addr("0.0.0.0", 8001), psutil.CONN_LISTEN, 10),
        ]
        self.scanner.scan()
        self.scanner.scan()

        caches = [c.args[1] for c in self.resolver.resolve.call_args_list]
        self.assertEqual(len(caches), 4)
        self.assertIs(caches[0], caches[1])
        self.assertIsNot(caches[0], caches[2])
        self.resolver.clear_cache.assert_not_called()

    @patch("portkeeper.core.port_scanner.psutil.net_connections")
    def test_failed_result_survives_later_scan(self, mock_conns):
        mock_conns.side_effect = [
            psutil.AccessDenied(),
            [Conn(Addr("0.0.0.0", 3000), psutil.CONN_LISTEN, 10)],
        ]
        failed = self.scanner.scan_result()
        succeeded = self.scanner.scan_result()

        self.assertTrue(failed.failed)
        self.assertEqual(failed.records, [])
        self.assertIn("net_connections", failed.error)
        self.assertFalse(succeeded.failed)
        self.assertEqual([r.port for r in succeeded.records], [3000])
        self.assertIsNone(self.scanner.last_error)

    @patch("portkeeper.core.port_scanner.psutil.net_connections")
    def test_os_failure_returns_empty(self, mock_conns):
        mock_conns.side_effect = psutil.AccessDenied()
        self.assertEqual(self.scanner.scan(), [])
        self.assertIsNotNone(self.scanner.last_error)

        mock_conns.side_effect = None
        mock_conns.return_value = []
        self.scanner.scan()
        self.assertIsNone(self.scanner.last_error)

    @patch("portkeeper.core.port_scanner.psutil.net_connections")
    def test_row_failure_skips_row(self, mock_conns):
        mock_conns.return_value = [
            Conn(Addr("0.0.0.0", 8000), psutil.CONN_LISTEN, 10),
            Conn(Addr("0.0.0.0", 9000), psutil.CONN_LISTEN, 20),
        ]

        def resolve(pid, cache=None):
            if pid == 10:
                raise psutil.AccessDenied(pid)
            return ProcessMetadata(name="ok", command="ok", user="bob")

        self.resolver.resolve.side_effect = resolve
        records = self.scanner.scan()
        self.assertEqual([r.port for r in records], [9000])

    @patch("portkeeper.core.port_scanner.psutil.net_connections")
    def test_find_by_port_rescans(self, mock_conns):
        mock_conns.return_value = [
            Conn(Addr("0.0.0.0", 8000), psutil.CONN_LISTEN, 10),
            Conn(Addr("0.0.0.0", 9000), psutil.CONN_LISTEN, 20),
        ]
        self.assertEqual([r.pid for r in self.scanner.find_by_port(9000)], [20])
        self.assertTrue(self.scanner.is_port_in_use(8000))
        self.assertFalse(self.scanner.is_port_in_use(1234))
        self.assertEqual(mock_conns.call_count, 3)


LSOF_OUTPUT = """\
COMMAND     PID   USER   FD   TYPE             DEVICE SIZE/OFF NODE NAME
rapportd    512  alice    9u  IPv4 0x1234567890abcdef      0t0  TCP *:49152 (LISTEN)
node       4242  alice   23u  IPv6 0x1234567890abcde0      0t0  TCP [::1]:3000 (LISTEN)
node       4242  alice   24u  IPv4 0x1234567890abcde1      0t0  TCP 127.0.0.1:3000 (LISTEN)
postgres    900  alice    7u  IPv6 0x1234567890abcde2      0t0  TCP [::]:5432 (LISTEN)
garbage line
"""


class TestLsofParsing(unittest.TestCase):
    def test_parse(self):
        listeners = parse_lsof_output(LSOF_OUTPUT)
        self.assertEqual(listeners[0], RawListener("*", 49152, 512, "rapportd"))
        self.assertEqual(listeners[1], RawListener("::1", 3000, 4242, "node"))
        self.assertEqual(listeners[2].address, "127.0.0.1")
        self.assertEqual(listeners[3], RawListener("::", 5432, 900, "postgres"))
        self.assertEqual(len(listeners), 4)


class TestLsofPortScanner(unittest.TestCase):
    def setUp(self):
        self.resolver = fake_resolver()
        self.scanner = LsofPortScanner(self.resolver)

    @patch("portkeeper.core.port_scanner.subprocess.run")
    def test_scan(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess([], 0, stdout=LSOF_OUTPUT, stderr="")
        records = self.scanner.scan()
        self.assertEqual([r.port for r in records], [3000, 5432, 49152])
        self.assertEqual(records[0].pid, 4242)

    @patch("portkeeper.core.port_scanner.subprocess.run")
    def test_process_hint_used_when_unresolved(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess([], 0, stdout=LSOF_OUTPUT, stderr="")
        self.resolver.resolve.side_effect = None
        self.resolver.resolve.return_value = ProcessMetadata.unknown()
        records = self.scanner.scan()
        self.assertEqual(records[0].process_name, "node")

    @patch("portkeeper.core.port_scanner.subprocess.run")
    def test_no_listeners_is_not_an_error(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess([], 1, stdout="", stderr="")
        self.assertEqual(self.scanner.scan(), [])
        self.assertIsNone(self.scanner.last_error)

    @patch("portkeeper.core.port_scanner.subprocess.run")
    def test_missing_lsof(self, mock_run):
        mock_run.side_effect = FileNotFoundError("lsof")
        self.assertEqual(self.scanner.scan(), [])
        self.assertIn("lsof", self.scanner.last_error)

    @patch("portkeeper.core.port_scanner.subprocess.run")
    def test_lsof_error_status(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess([], 2, stdout="", stderr="bad option")
        self.assertEqual(self.scanner.scan(), [])
        self.assertIn("bad option", self.scanner.last_error)


class TestCreateScanner(unittest.TestCase):
    def test_platform_selection(self):
        with patch("portkeeper.core.port_scanner.sys.platform", "darwin"):
            self.assertIsInstance(create_scanner(), LsofPortScanner)
        with patch("portkeeper.core.port_scanner.sys.platform", "linux"):
            self.assertIsInstance(create_scanner(), PsutilPortScanner)


if __name__ == "__main__":
    unittest.main()
