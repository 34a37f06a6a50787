#!/usr/bin/env python3
"""
Web server for web seed and tracker tests.

Serves files below --root (Range requests supported) and answers
/announce like a tracker with no peers.

Usage:
    python -m ltfixture.servers.web_server --port 8000 --root /tmp/seed
    python -m ltfixture.servers.web_server --port 8000 --chunked --keepalive --min-interval 5
    python -m ltfixture.servers.web_server --port 8443 --ssl --certfile server.pem
"""
import argparse
import os
import re
import ssl
import sys
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional
from urllib.parse import unquote, urlsplit

CHUNK_SIZE = 16 * 1024


def bencode_announce(interval: int) -> bytes:
    return b"d8:intervali%de12:min intervali%de5:peers0:e" % (interval, interval)


def resolve(root: str, url_path: str) -> Optional[str]:
    """Filesystem path for `url_path` below `root`, None if it escapes root."""
    root = os.path.abspath(root)
    full_path = os.path.normpath(os.path.join(root, url_path.lstrip("/")))
    if os.path.commonpath([root, full_path]) != root:
        return None
    return full_path


class WebHandler(BaseHTTPRequestHandler):
    root = "."
    chunked = False
    keepalive = False
    min_interval = 30

    def log_message(self, format, *args):
        print(f"[{self.address_string()}] {format % args}")

    def do_GET(self):
        self.serve(head_only=False)

    def do_HEAD(self):
        self.serve(head_only=True)

    def serve(self, head_only: bool):
        path = unquote(urlsplit(self.path).path)
        if path == "/announce":
            self.send_body(200, bencode_announce(self.min_interval), "text/plain", head_only)
            return

        full_path = resolve(self.root, path)
        if full_path is None or not os.path.isfile(full_path):
            self.send_body(404, b"not found", "text/plain", head_only)
            return

        with open(full_path, "rb") as f:
            data = f.read()

        status = 200
        content_range = None
        m = re.match(r"bytes=(\d*)-(\d*)$", self.headers.get("Range", ""))
        if m and (m.group(1) or m.group(2)):
            if m.group(1):
                start = int(m.group(1))
                end = int(m.group(2)) if m.group(2) else len(data) - 1
            else:
                start = max(0, len(data) - int(m.group(2)))
                end = len(data) - 1
            end = min(end, len(data) - 1)
            if start > end:
                self.send_response(416)
                self.send_header("Content-Range", f"bytes */{len(data)}")
                self.send_header("Content-Length", "0")
                self.end_headers()
                return
            status = 206
            content_range = f"bytes {start}-{end}/{len(data)}"
            data = data[start:end + 1]

        extra = {"Accept-Ranges": "bytes"}
        if content_range:
            extra["Content-Range"] = content_range
        self.send_body(status, data, "application/octet-stream", head_only, extra)

    def send_body(self, status, data, content_type, head_only, extra=None):
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        for key, value in (extra or {}).items():
            self.send_header(key, value)
        if not self.keepalive:
            self.send_header("Connection", "close")
            self.close_connection = True
        if self.chunked:
            self.send_header("Transfer-Encoding", "chunked")
        else:
            self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        if head_only:
            return

        if not self.chunked:
            self.wfile.write(data)
            return
        for offset in range(0, len(data), CHUNK_SIZE):
            chunk = data[offset:offset + CHUNK_SIZE]
            self.wfile.write(b"%x\r\n%s\r\n" % (len(chunk), chunk))
        self.wfile.write(b"0\r\n\r\n")


def main() -> int:
    parser = argparse.ArgumentParser(description="Test web server / tracker")
    parser.add_argument("--port", type=int, required=True)
    parser.add_argument("--bind", default="127.0.0.1")
    parser.add_argument("--root", default=os.getcwd())
    parser.add_argument("--ssl", action="store_true")
    parser.add_argument("--certfile", help="PEM file with certificate and key")
    parser.add_argument("--chunked", action="store_true", help="chunked transfer encoding")
    parser.add_argument("--keepalive", action="store_true")
    parser.add_argument("--min-interval", type=int, default=30, help="tracker announce interval")
    args = parser.parse_args()

    if args.ssl and not args.certfile:
        print("--ssl requires --certfile", file=sys.stderr)
        return 1

    WebHandler.root = os.path.abspath(args.root)
    WebHandler.chunked = args.chunked
    WebHandler.keepalive = args.keepalive
    WebHandler.min_interval = args.min_interval
    # chunked encoding and persistent connections need HTTP/1.1
    if args.keepalive or args.chunked:
        WebHandler.protocol_version = "HTTP/1.1"

    server = ThreadingHTTPServer((args.bind, args.port), WebHandler)
    server.daemon_threads = True
    if args.ssl:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(args.certfile)
        server.socket = context.wrap_socket(server.socket, server_side=True)

    scheme = "https" if args.ssl else "http"
    print(f"web server on {scheme}://{args.bind}:{args.port} serving {WebHandler.root}", flush=True)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
