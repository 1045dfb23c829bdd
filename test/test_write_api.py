import time
import unittest

import patch_path

from mock_server import HttpServer, closed_port

import questdb.ingress as qi

from membench.client import Client, ClientConfig
from membench.errors import WriteApiClosedError, is_unreachable
from membench.point import Point, WritePrecision
from membench.write_api import WriteApi, WriteOptions, WriteType


def _point(i):
    return (Point('cpu')
        .tag('host', f'h{i}')
        .field('load', 1.5)
        .field('cores', i)
        .at(1_700_000_000_000_000_000 + i))


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestWriteOptions(unittest.TestCase):
    def test_defaults(self):
        opts = WriteOptions()
        self.assertIs(opts.write_type, WriteType.BATCHING)
        self.assertEqual(opts.batch_size, 1000)
        self.assertEqual(opts.flush_interval, 1000)
        self.assertEqual(opts.max_queue_size, 0)

    def test_write_type_by_value(self):
        opts = WriteOptions(write_type='immediate')
        self.assertIs(opts.write_type, WriteType.IMMEDIATE)

    def test_invalid(self):
        with self.assertRaisesRegex(ValueError, 'batch_size'):
            WriteOptions(batch_size=0)
        with self.assertRaisesRegex(ValueError, 'flush_interval'):
            WriteOptions(flush_interval=0)
        with self.assertRaisesRegex(ValueError, 'max_queue_size'):
            WriteOptions(max_queue_size=-1)

    def test_repr(self):
        self.assertEqual(
            repr(WriteOptions(batch_size=5)),
            "WriteOptions(write_type='batching', batch_size=5, "
            "flush_interval=1000, max_queue_size=0)")


class TestWriteApi(unittest.TestCase):
    def _client(self, server, **kwargs):
        kwargs.setdefault('bucket', '')
        return Client(ClientConfig(
            url=server.url, retry_timeout=0, **kwargs))

    def test_batches_by_size(self):
        with HttpServer() as server:
            client = self._client(server)
            api = client.create_write_api(WriteOptions(batch_size=10))
            for i in range(25):
                api.write(_point(i))
            client.close()
            self.assertEqual(len(server.lines), 25)
            self.assertEqual(
                [len(body.splitlines()) for body in server.requests],
                [10, 10, 5])
            self.assertEqual(api.written, 25)
            self.assertEqual(api.batches, 3)
            self.assertEqual(api.dropped, 0)

    def test_line_format(self):
        with HttpServer() as server:
            client = self._client(server)
            api = client.create_write_api()
            api.write(_point(4))
            client.close()
            self.assertEqual(
                server.lines,
                [b'cpu,host=h4 load=1.5,cores=4i 1700000000000000004'])

    def test_bucket_names_table(self):
        with HttpServer() as server:
            client = self._client(server, bucket='sensor_data')
            api = client.create_write_api()
            api.write(_point(1))
            client.close()
            self.assertTrue(server.lines[0].startswith(b'sensor_data,host=h1 '))

    def test_server_timestamp(self):
        with HttpServer() as server:
            client = self._client(server)
            api = client.create_write_api()
            api.write(Point('cpu').field('x', 42))
            client.close()
            self.assertEqual(server.lines, [b'cpu x=42i'])

    def test_precision(self):
        with HttpServer() as server:
            client = self._client(server)
            api = client.create_write_api()
            api.write(Point('cpu').field('x', 1).at(2, WritePrecision.SECOND))
            client.close()
            self.assertEqual(server.lines, [b'cpu x=1i 2000000000'])

    def test_flush_interval(self):
        with HttpServer() as server:
            client = self._client(server)
            api = client.create_write_api(
                WriteOptions(batch_size=1000, flush_interval=50))
            api.write([_point(i) for i in range(3)])
            self.assertTrue(_wait_for(lambda: len(server.lines) == 3))
            self.assertEqual(len(server.requests), 1)
            client.close()

    def test_explicit_flush(self):
        with HttpServer() as server:
            client = self._client(server)
            api = client.create_write_api(
                WriteOptions(batch_size=1000, flush_interval=60_000))
            for i in range(4):
                api.write(_point(i))
            api.flush()
            self.assertEqual(len(server.requests), 1)
            self.assertEqual(len(server.lines), 4)
            self.assertEqual(api.pending, 0)
            client.close()
            self.assertEqual(len(server.requests), 1)

    def test_immediate(self):
        with HttpServer() as server:
            client = self._client(server)
            api = client.create_write_api(
                WriteOptions(write_type=WriteType.IMMEDIATE))
            for i in range(3):
                api.write(_point(i))
            self.assertEqual(len(server.requests), 3)
            self.assertEqual(api.written, 3)
            client.close()

    def test_bounded_queue(self):
        with HttpServer() as server:
            client = self._client(server)
            api = client.create_write_api(
                WriteOptions(batch_size=5, max_queue_size=2))
            for i in range(20):
                api.write(_point(i))
            client.close()
            self.assertEqual(len(server.lines), 20)
            self.assertEqual(api.written, 20)

    def test_close_idempotent(self):
        with HttpServer() as server:
            client = self._client(server)
            api = client.create_write_api()
            api.write(_point(0))
            api.close()
            api.close()
            self.assertTrue(api.closed)
            client.close()
            client.close()
            self.assertEqual(len(server.lines), 1)

    def test_write_after_close(self):
        with HttpServer() as server:
            client = self._client(server)
            api = client.create_write_api()
            client.close()
            with self.assertRaises(WriteApiClosedError):
                api.write(_point(0))
            with self.assertRaisesRegex(RuntimeError, 'Client is closed'):
                client.create_write_api()

    def test_server_error(self):
        with HttpServer() as server:
            server.responses.append(
                (0, 500, 'text/plain', b'Internal Server Error'))
            client = self._client(server)
            api = client.create_write_api()
            api.write(_point(0))
            with self.assertRaisesRegex(qi.IngressError, 'Could not flush'):
                api.flush()
            with self.assertRaisesRegex(qi.IngressError, 'Could not flush'):
                api.write(_point(1))
            self.assertEqual(api.written, 0)
            self.assertEqual(api.dropped, 1)
            with self.assertRaises(qi.IngressError):
                client.close()
            client.close()

    def test_invalid_point(self):
        with HttpServer() as server:
            client = self._client(server)
            api = client.create_write_api()
            api.write(Point('cpu').tag('host', 'a'))
            with self.assertRaisesRegex(ValueError, 'no fields'):
                api.flush()
            with self.assertRaises(ValueError):
                client.close()
            self.assertEqual(server.requests, [])

    def test_invalid_point_immediate(self):
        with HttpServer() as server:
            client = self._client(server)
            api = client.create_write_api(
                WriteOptions(write_type=WriteType.IMMEDIATE))
            with self.assertRaisesRegex(ValueError, 'no fields'):
                api.write(Point('cpu'))
            client.close()

    def test_token(self):
        with HttpServer() as server:
            client = self._client(server, token='Yogi')
            api = client.create_write_api()
            api.write(_point(0))
            client.close()
            auth = [
                value
                for headers in server.headers
                for key, value in headers.items()
                if key.lower() == 'authorization']
            self.assertIn('Bearer Yogi', auth)

    def test_bad_tag_type_batching(self):
        with HttpServer() as server:
            client = self._client(server)
            api = client.create_write_api()
            api.write([
                Point('cpu').tag('host', 5).field('x', 1),
                _point(1)])
            with self.assertRaisesRegex(ValueError, 'must be a str'):
                client.close()
            self.assertTrue(api.closed)
            self.assertEqual(api.dropped, 2)
            self.assertEqual(api.written, 0)
            self.assertEqual(server.requests, [])
            client.close()

    def test_bad_field_type_immediate(self):
        with HttpServer() as server:
            client = self._client(server)
            api = client.create_write_api(
                WriteOptions(write_type=WriteType.IMMEDIATE))
            with self.assertRaisesRegex(ValueError, 'not list'):
                api.write(Point('cpu').field('x', [1, 2]))
            client.close()
            self.assertEqual(server.requests, [])

    def test_failed_flush_drains_bounded_queue(self):
        with HttpServer() as server:
            server.responses.append(
                (300, 500, 'text/plain', b'Internal Server Error'))
            client = self._client(server)
            api = client.create_write_api(
                WriteOptions(batch_size=1, max_queue_size=2))
            api.write([_point(i) for i in range(10)])
            with self.assertRaisesRegex(qi.IngressError, 'Could not flush'):
                client.close()
            self.assertEqual(api.written, 0)
            self.assertEqual(api.dropped, 10)
            self.assertEqual(len(server.requests), 1)

    def test_unreachable(self):
        port = closed_port()
        client = Client(ClientConfig(
            url=f'http://127.0.0.1:{port}', retry_timeout=0))
        with self.assertRaises(Exception) as cm:
            api = client.create_write_api()
            api.write(_point(0))
            client.close()
        self.assertTrue(is_unreachable(cm.exception), repr(cm.exception))
        client.close()


class FailingBuffer:
    def __init__(self, error):
        self.error = error

    def row(self, table_name, **kwargs):
        raise self.error

    def clear(self):
        pass


class FakeSender:
    def __init__(self, buffer_error=None, new_buffer_error=None):
        self.buffer_error = buffer_error
        self.new_buffer_error = new_buffer_error
        self.flushed = []

    def new_buffer(self):
        if self.new_buffer_error is not None:
            raise self.new_buffer_error
        return FailingBuffer(self.buffer_error)

    def flush(self, buffer):
        self.flushed.append(buffer)


class TestWriteApiWorkerFailures(unittest.TestCase):
    def test_unexpected_serialization_error(self):
        sender = FakeSender(buffer_error=TypeError('Expected str, got int'))
        api = WriteApi(sender, WriteOptions(batch_size=10))
        api.write(Point('cpu').field('x', 1))
        with self.assertRaisesRegex(TypeError, 'Expected str'):
            api.close()
        self.assertEqual(api.dropped, 1)
        self.assertEqual(sender.flushed, [])
        api.close()

    def test_worker_died(self):
        sender = FakeSender(new_buffer_error=RuntimeError('no buffer'))
        api = WriteApi(sender, WriteOptions(batch_size=10))
        with self.assertRaisesRegex(RuntimeError, 'no buffer'):
            api.flush()
        with self.assertRaisesRegex(RuntimeError, 'no buffer'):
            api.close()
        api.close()


if __name__ == '__main__':
    unittest.main()
