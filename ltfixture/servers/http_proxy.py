#!/usr/bin/env python3
"""
HTTP proxy for the proxy tests.

Plain requests (absolute URI in the request line) are forwarded with
requests; CONNECT opens a raw tunnel, which is what the engine uses for
peer connections through an HTTP proxy.

Usage:
    python -m ltfixture.servers.http_proxy --port 8080
    python -m ltfixture.servers.http_proxy --port 8080 --username testuser --password testpass
"""
import argparse
import base64
import socket
import sys
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import requests

from . import relay

HOP_BY_HOP = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

# never pick up HTTP(S)_PROXY from the environment, we are the proxy
_session = requests.Session()
_session.trust_env = False


class ProxyHandler(BaseHTTPRequestHandler):
    credentials = None  # expected "user:pass", None disables auth

    def log_message(self, format, *args):
        print(f"[{self.address_string()}] {format % args}")

    def authorized(self) -> bool:
        if self.credentials is None:
            return True
        auth = self.headers.get("Proxy-Authorization", "")
        scheme, _, value = auth.partition(" ")
        if scheme.lower() == "basic":
            try:
                if base64.b64decode(value).decode() == self.credentials:
                    return True
            except ValueError:
                pass
        self.send_response(407)
        self.send_header("Proxy-Authenticate", 'Basic realm="ltfixture"')
        self.send_header("Content-Length", "0")
        self.end_headers()
        return False

    def do_CONNECT(self):
        if not self.authorized():
            return
        host, _, port = self.path.rpartition(":")
        try:
            upstream = socket.create_connection((host, int(port)), timeout=10)
        except (OSError, ValueError) as e:
            self.send_error(502, f"connect to {self.path} failed: {e}")
            return

        self.send_response(200, "Connection established")
        self.end_headers()
        with upstream:
            upstream.settimeout(None)
            relay(self.connection, upstream)
        self.close_connection = True

    def forward(self):
        if not self.authorized():
            return
        if not self.path.startswith("http://"):
            self.send_error(400, "proxy requests need an absolute http:// URI")
            return

        length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(length) if length else None
        headers = {k: v for k, v in self.headers.items() if k.lower() not in HOP_BY_HOP}
        try:
            r = _session.request(
                self.command,
                self.path,
                headers=headers,
                data=body,
                allow_redirects=False,
                stream=True,
                timeout=30,
            )
        except requests.RequestException as e:
            self.send_error(502, str(e))
            return

        with r:
            content = r.raw.read(decode_content=False)
        self.send_response(r.status_code, r.reason)
        for key, value in r.headers.items():
            if key.lower() not in HOP_BY_HOP and key.lower() != "content-length":
                self.send_header(key, value)
        self.send_header("Content-Length", str(len(content)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(content)

    do_GET = forward
    do_HEAD = forward
    do_POST = forward
    do_PUT = forward
    do_DELETE = forward


def main() -> int:
    parser = argparse.ArgumentParser(description="HTTP test proxy")
    parser.add_argument("--port", type=int, required=True)
    parser.add_argument("--bind", default="127.0.0.1")
    parser.add_argument("--username")
    parser.add_argument("--password")
    args = parser.parse_args()

    if args.username is not None:
        ProxyHandler.credentials = f"{args.username}:{args.password or ''}"

    server = ThreadingHTTPServer((args.bind, args.port), ProxyHandler)
    server.daemon_threads = True
    print(f"HTTP proxy on {args.bind}:{args.port}", flush=True)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
