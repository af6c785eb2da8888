#!/usr/bin/env python3
import argparse
import socket
import ssl
import sys

HOST = "127.0.0.1"
BUFFER_SIZE = 4096

def make_client_context() -> ssl.SSLContext:
    # listener certs are self-signed, nothing to verify against
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx

def send_text(host: str, port: int, text: str, tls: bool = False, encoding: str = "utf-8") -> int:
    """Connect, send text, close. Return the number of bytes sent."""
    data = text.encode(encoding)
    with socket.create_connection((host, port)) as raw:
        sock = make_client_context().wrap_socket(raw, server_hostname=host) if tls else raw
        with sock:
            print(f"[SEND] {len(data)} bytes to {host}:{port}")
            if data:
                sock.sendall(data)
            sock.shutdown(socket.SHUT_WR)
            drain(sock)
    return len(data)

def drain(sock: socket.socket) -> None:
    """Read and discard until the listener closes its end."""
    while True:
        try:
            if not sock.recv(BUFFER_SIZE):
                return
        except OSError:
            return

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Send text to a one-shot listener and close.")
    p.add_argument("port", type=int, help="Port printed by the listener")
    p.add_argument("text", nargs="?", default=None, help="Text to send (default: read stdin)")
    p.add_argument("--host", default=HOST, help=f"Listener address (default: {HOST})")
    p.add_argument("--tls", action="store_true", help="Connect over TLS")
    return p.parse_args(argv)

def main(argv=None):
    args = parse_args(argv)
    text = args.text if args.text is not None else sys.stdin.read()
    try:
        send_text(args.host, args.port, text, tls=args.tls)
    except OSError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        sys.exit(1)

if __name__ == "__main__":
    main()
