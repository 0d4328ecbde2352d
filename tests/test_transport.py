import asyncio
import json
import unittest
from unittest import mock

from multi_llm_mcp.errors import (
    ConnectionClosedError,
    RemoteError,
    RequestTimeoutError,
    TransportConnectionError,
)
from multi_llm_mcp.mcp.transport import PROTOCOL_VERSION, SessionState, StdioSession

from tests._fakes import FakeProcess, wait_until

_SPAWN = "multi_llm_mcp.mcp.transport.asyncio.create_subprocess_exec"


def _reply(request_id: int, result: object) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


class StdioSessionTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.process = FakeProcess()
        patcher = mock.patch(_SPAWN, new=mock.AsyncMock(return_value=self.process))
        self.spawn = patcher.start()
        self.addCleanup(patcher.stop)
        self.session = StdioSession(
            "fake-server", ["--stdio"], {"TOKEN": "x"}, name="fake", request_timeout_s=1.0
        )

    async def asyncTearDown(self) -> None:
        await self.session.disconnect()

    async def _connect(self) -> None:
        await self.session.connect()
        # the rest of the test answers requests by hand
        self.process.responder = None

    async def test_connect_performs_handshake(self) -> None:
        await self.session.connect()

        self.assertEqual(self.session.state, SessionState.CONNECTED)
        init, initialized = self.process.stdin.messages
        self.assertEqual(init["jsonrpc"], "2.0")
        self.assertEqual(init["method"], "initialize")
        self.assertEqual(init["params"]["protocolVersion"], PROTOCOL_VERSION)
        self.assertIn("clientInfo", init["params"])
        self.assertIn("capabilities", init["params"])
        self.assertEqual(initialized["method"], "notifications/initialized")
        self.assertNotIn("id", initialized)
        self.assertEqual(self.session.server_info, {"name": "fake", "version": "1.0"})

        args, kwargs = self.spawn.call_args
        self.assertEqual(args, ("fake-server", "--stdio"))
        self.assertEqual(kwargs["env"]["TOKEN"], "x")

    async def test_connect_is_idempotent(self) -> None:
        await self.session.connect()
        await self.session.connect()
        self.assertEqual(self.spawn.await_count, 1)

    async def test_spawn_failure_raises_connection_error(self) -> None:
        self.spawn.side_effect = FileNotFoundError("no such file")
        with self.assertRaises(TransportConnectionError):
            await self.session.connect()
        self.assertEqual(self.session.state, SessionState.FAILED)

    async def test_handshake_timeout_raises_connection_error(self) -> None:
        self.process.responder = None
        self.session.startup_timeout_s = 0.05
        with self.assertRaises(TransportConnectionError) as ctx:
            await self.session.connect()
        self.assertIsInstance(ctx.exception.__cause__, RequestTimeoutError)
        self.assertEqual(self.session.state, SessionState.FAILED)
        self.assertTrue(self.process.terminated)

    async def test_handshake_error_response_raises_connection_error(self) -> None:
        def refuse(message: dict) -> dict:
            return {"jsonrpc": "2.0", "id": message["id"], "error": {"message": "go away"}}

        self.process.responder = refuse
        with self.assertRaises(TransportConnectionError) as ctx:
            await self.session.connect()
        self.assertIsInstance(ctx.exception.__cause__, RemoteError)

    async def test_request_before_connect_fails_fast(self) -> None:
        with self.assertRaises(TransportConnectionError):
            await self.session.send_request("tools/list")
        self.spawn.assert_not_awaited()

    async def test_responses_are_matched_by_id_not_arrival_order(self) -> None:
        await self._connect()
        tasks = [
            asyncio.create_task(self.session.send_request("echo", {"n": n})) for n in range(3)
        ]
        await wait_until(lambda: len(self.session.pending_ids) == 3)

        sent = {m["id"]: m["params"]["n"] for m in self.process.requests if m["method"] == "echo"}
        for request_id in sorted(sent, reverse=True):
            self.process.send(_reply(request_id, {"n": sent[request_id]}))

        results = await asyncio.gather(*tasks)
        self.assertEqual(results, [{"n": 0}, {"n": 1}, {"n": 2}])
        self.assertEqual(self.session.pending_ids, [])

    async def test_request_ids_are_monotonic(self) -> None:
        await self._connect()
        tasks = [asyncio.create_task(self.session.send_request("ping")) for _ in range(2)]
        await wait_until(lambda: len(self.session.pending_ids) == 2)
        ids = [m["id"] for m in self.process.requests]
        self.assertEqual(ids, sorted(set(ids)))
        for request_id in self.session.pending_ids:
            self.process.send(_reply(request_id, {}))
        await asyncio.gather(*tasks)

    async def test_messages_split_and_batched_across_chunks(self) -> None:
        await self._connect()
        first = asyncio.create_task(self.session.send_request("a"))
        second = asyncio.create_task(self.session.send_request("b"))
        await wait_until(lambda: len(self.session.pending_ids) == 2)
        id_a, id_b = self.session.pending_ids

        line_a = (json.dumps(_reply(id_a, "A")) + "\n").encode()
        line_b = (json.dumps(_reply(id_b, "B")) + "\n").encode()
        self.process.feed_raw(line_a[:7])
        await asyncio.sleep(0.01)
        self.assertFalse(first.done())
        self.process.feed_raw(line_a[7:] + line_b)

        self.assertEqual(await first, "A")
        self.assertEqual(await second, "B")

    async def test_malformed_segment_is_logged_and_skipped(self) -> None:
        await self._connect()
        task = asyncio.create_task(self.session.send_request("ping"))
        await wait_until(lambda: len(self.session.pending_ids) == 1)
        (request_id,) = self.session.pending_ids

        with self.assertLogs("multi_llm_mcp.mcp.transport", level="WARNING") as logs:
            self.process.feed_raw(b"this is not json\n[1, 2]\n")
            self.process.send(_reply(request_id, "pong"))
            self.assertEqual(await task, "pong")
        self.assertEqual(len(logs.records), 2)

    async def test_server_initiated_messages_are_ignored(self) -> None:
        await self._connect()
        task = asyncio.create_task(self.session.send_request("ping"))
        await wait_until(lambda: len(self.session.pending_ids) == 1)
        (request_id,) = self.session.pending_ids

        # a server request reusing our id must not settle our call
        self.process.send({"jsonrpc": "2.0", "id": request_id, "method": "roots/list"})
        self.process.send({"jsonrpc": "2.0", "method": "notifications/progress", "params": {}})
        await asyncio.sleep(0.01)
        self.assertFalse(task.done())

        self.process.send(_reply(request_id, "pong"))
        self.assertEqual(await task, "pong")

    async def test_remote_error_is_raised(self) -> None:
        await self._connect()
        task = asyncio.create_task(self.session.send_request("tools/call", {"name": "x"}))
        await wait_until(lambda: len(self.session.pending_ids) == 1)
        (request_id,) = self.session.pending_ids
        self.process.send(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "error": {"code": -32602, "message": "bad params", "data": {"field": "name"}},
            }
        )
        with self.assertRaises(RemoteError) as ctx:
            await task
        self.assertEqual(ctx.exception.code, -32602)
        self.assertEqual(ctx.exception.data, {"field": "name"})
        self.assertIn("bad params", str(ctx.exception))

    async def test_timeout_removes_pending_and_drops_late_response(self) -> None:
        await self._connect()
        self.session.request_timeout_s = 0.05

        with self.assertRaises(RequestTimeoutError) as ctx:
            await self.session.send_request("slow")
        self.assertEqual(ctx.exception.method, "slow")
        self.assertEqual(self.session.pending_ids, [])
        late_id = self.process.requests[-1]["id"]

        self.process.send(_reply(late_id, "too late"))
        await asyncio.sleep(0.01)
        self.assertEqual(self.session.state, SessionState.CONNECTED)

        self.session.request_timeout_s = 1.0
        task = asyncio.create_task(self.session.send_request("fast"))
        await wait_until(lambda: len(self.session.pending_ids) == 1)
        (request_id,) = self.session.pending_ids
        self.assertNotEqual(request_id, late_id)
        self.process.send(_reply(request_id, "on time"))
        self.assertEqual(await task, "on time")

    async def test_timeout_only_rejects_its_own_request(self) -> None:
        await self._connect()
        self.session.request_timeout_s = 0.05
        doomed = asyncio.create_task(self.session.send_request("slow"))
        await wait_until(lambda: len(self.session.pending_ids) == 1)
        self.session.request_timeout_s = 5.0
        survivor = asyncio.create_task(self.session.send_request("fast"))
        await wait_until(lambda: len(self.session.pending_ids) == 2)
        survivor_id = self.session.pending_ids[-1]

        with self.assertRaises(RequestTimeoutError):
            await doomed
        self.process.send(_reply(survivor_id, "ok"))
        self.assertEqual(await survivor, "ok")

    async def test_disconnect_rejects_all_outstanding_requests(self) -> None:
        await self._connect()
        tasks = [asyncio.create_task(self.session.send_request("wait")) for _ in range(3)]
        await wait_until(lambda: len(self.session.pending_ids) == 3)

        await self.session.disconnect()

        results = await asyncio.gather(*tasks, return_exceptions=True)
        self.assertTrue(all(isinstance(r, ConnectionClosedError) for r in results), results)
        self.assertEqual(self.session.state, SessionState.DISCONNECTED)
        self.assertTrue(self.process.terminated)
        self.assertEqual(self.session.pending_ids, [])

        await self.session.disconnect()
        with self.assertRaises(TransportConnectionError):
            await self.session.send_request("wait")

    async def test_process_exit_fails_session(self) -> None:
        await self._connect()
        task = asyncio.create_task(self.session.send_request("wait"))
        await wait_until(lambda: len(self.session.pending_ids) == 1)

        with self.assertLogs("multi_llm_mcp.mcp.transport", level="ERROR"):
            self.process.exit(1)
            with self.assertRaises(ConnectionClosedError):
                await task
        self.assertEqual(self.session.state, SessionState.FAILED)

        with self.assertRaises(TransportConnectionError):
            await self.session.send_request("again")

    async def test_oversized_stderr_line_keeps_draining(self) -> None:
        await self._connect()

        with self.assertLogs("multi_llm_mcp.mcp.transport", level="DEBUG") as logs:
            self.process.stderr.feed_data(b"x" * 100_000 + b"\nafter the long line\n")
            await wait_until(
                lambda: any("after the long line" in r.getMessage() for r in logs.records)
            )

        task = asyncio.create_task(self.session.send_request("ping"))
        await wait_until(lambda: len(self.session.pending_ids) == 1)
        (request_id,) = self.session.pending_ids
        self.process.send(_reply(request_id, "pong"))
        self.assertEqual(await task, "pong")

    async def test_cancelled_request_frees_its_slot(self) -> None:
        await self._connect()
        task = asyncio.create_task(self.session.send_request("wait"))
        await wait_until(lambda: len(self.session.pending_ids) == 1)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.assertEqual(self.session.pending_ids, [])


if __name__ == "__main__":
    unittest.main()
