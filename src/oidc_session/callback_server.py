"""
Loopback HTTP receiver for the authorization redirect.

用于接收授权重定向的本地 HTTP 服务器。
"""

import threading
import time
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import parse_qs, urlparse

SUCCESS_PAGE = b"""
<html>
<body>
    <h1>Authorization complete</h1>
    <p>You can close this window and return to the terminal.</p>
    <script>setTimeout(() => window.close(), 2000);</script>
</body>
</html>
"""


class CallbackHandler(BaseHTTPRequestHandler):
    """记录重定向请求的完整路径，供登录流程解析。"""

    def __init__(self, request, client_address, server, callback_data, callback_path):
        self.callback_data = callback_data
        self.callback_path = callback_path
        super().__init__(request, client_address, server)

    def do_GET(self):
        parsed = urlparse(self.path)
        if parsed.path != self.callback_path:
            self.send_response(404)
            self.end_headers()
            return

        query_params = parse_qs(parsed.query)
        # 错误也交给调用方解析，这里只负责给浏览器一个结果页面
        self.callback_data["redirect_uri"] = f"http://{self.headers.get('Host', 'localhost')}{self.path}"
        status = 400 if "error" in query_params else 200
        self.send_response(status)
        self.send_header("Content-type", "text/html")
        self.end_headers()
        if status == 200:
            self.wfile.write(SUCCESS_PAGE)
        else:
            error = query_params["error"][0]
            self.wfile.write(f"<html><body><h1>Authorization failed</h1><p>{error}</p></body></html>".encode())

    def log_message(self, format, *args):
        # 不向终端打印访问日志
        pass


class CallbackServer:
    """在后台线程中运行的回调服务器。"""

    def __init__(self, redirect_uri: str):
        parsed = urlparse(redirect_uri)
        if parsed.scheme != "http" or parsed.hostname not in ("localhost", "127.0.0.1"):
            raise ValueError(f"redirect_uri must be an http loopback URI to receive callbacks: {redirect_uri}")
        self.host = parsed.hostname
        self.port = parsed.port if parsed.port is not None else 80
        self.callback_path = parsed.path or "/"
        self.server: HTTPServer | None = None
        self.thread: threading.Thread | None = None
        self.callback_data: dict[str, str | None] = {"redirect_uri": None}

    def _create_handler_with_data(self):
        callback_data = self.callback_data
        callback_path = self.callback_path

        class DataCallbackHandler(CallbackHandler):
            def __init__(self, request, client_address, server):
                super().__init__(request, client_address, server, callback_data, callback_path)

        return DataCallbackHandler

    def start(self):
        self.server = HTTPServer((self.host, self.port), self._create_handler_with_data())
        # 端口为 0 时使用系统分配的端口
        self.port = self.server.server_address[1]
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()

    def stop(self):
        if self.server:
            self.server.shutdown()
            self.server.server_close()
        if self.thread:
            self.thread.join(timeout=1)

    def wait_for_callback(self, timeout: float = 300) -> str:
        """阻塞等待重定向到达，返回完整的重定向 URI；超时抛出 TimeoutError。"""
        start_time = time.time()
        while time.time() - start_time < timeout:
            redirect_uri = self.callback_data["redirect_uri"]
            if redirect_uri:
                return redirect_uri
            time.sleep(0.1)
        raise TimeoutError("Timed out waiting for the authorization redirect")
