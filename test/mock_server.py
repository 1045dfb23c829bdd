import socket
import http.server as hs
import threading
import time

SETTINGS_WITH_PROTOCOL_VERSION_V1 = '{"config":{"release.type":"OSS","release.version":"[DEVELOPMENT]","line.proto.support.versions":[1],"ilp.proto.transports":["tcp","http"],"posthog.enabled":false,"posthog.api.key":null,"cairo.max.file.name.length":127},"preferences.version":0,"preferences":{}}'


def closed_port():
    """A local port that nothing listens on."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(('127.0.0.1', 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


class HttpServer:
    """
    ILP/HTTP endpoint recording every ``POST /write`` body.

    Text protocol (v1) only, so bodies are plain newline-separated lines.
    """

    def __init__(self, settings=SETTINGS_WITH_PROTOCOL_VERSION_V1, delay_seconds=0):
        self.delay_seconds = delay_seconds
        self.requests = []
        self.responses = []
        self.headers = []
        self.settings = settings
        self._lock = threading.Lock()
        self._stop_event = None
        self._http_server = None
        self._http_server_thread = None

    def _serve(self):
        self._http_server.serve_forever()
        self._stop_event.set()

    @property
    def lines(self):
        with self._lock:
            requests = list(self.requests)
        return [
            line
            for body in requests
            for line in body.split(b'\n')
            if line]

    def create_handler(self):
        delay_seconds = self.delay_seconds
        lock = self._lock
        requests = self.requests
        headers = self.headers
        responses = self.responses
        server_settings = self.settings.encode('utf-8')

        class IlpHttpHandler(hs.BaseHTTPRequestHandler):
            def log_message(self, format, *args):
                pass

            def do_GET(self):
                try:
                    time.sleep(delay_seconds)
                    with lock:
                        headers.append(dict(self.headers.items()))
                    if self.path == '/settings':
                        response_data = server_settings
                        self.send_response(200)
                        self.send_header('Content-Type', 'application/json')
                        self.send_header('Content-Length', len(response_data))
                        self.end_headers()
                        self.wfile.write(response_data)
                        self.wfile.flush()
                    else:
                        self.send_error(404, "Endpoint not found")
                except BrokenPipeError:
                    pass

            def do_POST(self):
                time.sleep(delay_seconds)

                try:
                    content_length = int(self.headers['Content-Length'])
                    body = self.rfile.read(content_length)
                    with lock:
                        headers.append(dict(self.headers.items()))
                        requests.append(body)
                        try:
                            wait_ms, code, content_type, body = responses.pop(0)
                        except IndexError:
                            wait_ms, code, content_type, body = 0, 200, None, None
                    time.sleep(wait_ms / 1000)
                    self.send_response(code)
                    if content_type:
                        self.send_header('Content-Type', content_type)
                    self.send_header('Content-Length', len(body) if body else 0)
                    self.end_headers()
                    if body:
                        self.wfile.write(body)
                except BrokenPipeError:
                    pass

        return IlpHttpHandler

    def __enter__(self):
        self._stop_event = threading.Event()
        handler_class = self.create_handler()
        self._http_server = hs.ThreadingHTTPServer(
            ('127.0.0.1', 0), handler_class, bind_and_activate=True)
        self._http_server_thread = threading.Thread(target=self._serve, daemon=True)
        self._http_server_thread.start()
        return self

    def __exit__(self, _ex_type, _ex_value, _ex_tb):
        self._http_server.shutdown()
        self._http_server.server_close()
        self._stop_event.set()

    @property
    def port(self):
        return self._http_server.server_port

    @property
    def url(self):
        return f'http://127.0.0.1:{self.port}'
