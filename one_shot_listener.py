#!/usr/bin/env python3
import argparse
import json
import os
import socket
import ssl
import sys
import tempfile

from OpenSSL import crypto
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

CONFIG_PATH = Path(__file__).with_name("config.json")

LISTEN_HOST = "127.0.0.1"   # loopback only
LISTEN_PORT = 0             # OS picks an ephemeral port
BUFFER_SIZE = 4096

def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    path = Path(path) if path else CONFIG_PATH
    defaults = {
        "listen_host": LISTEN_HOST,
        "listen_port": LISTEN_PORT,
        "encoding": "utf-8",
        "buffer_size": BUFFER_SIZE,
        "tls": False,
        "cert_hostname": "localhost",
    }
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = json.load(f)
        if cfg is None:
            cfg = {}
        if not isinstance(cfg, dict):
            raise ValueError(f"expected a JSON object, got {type(cfg).__name__}")
        defaults.update(cfg)
    except FileNotFoundError:
        print(f"[CONFIG] {path} not found; using defaults.")
    except Exception as e:
        print(f"[CONFIG] Failed to load {path}: {e}. Using defaults.")

    size = defaults.get("buffer_size")
    if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
        print(f"[CONFIG] Invalid buffer_size {size!r}; using {BUFFER_SIZE}.")
        defaults["buffer_size"] = BUFFER_SIZE
    return defaults

# ---- TLS (optional) ----
def gen_self_signed_cert(hostname: str, certs_dir: Path) -> Tuple[str, str]:
    """Write a fresh key and self-signed cert for hostname into certs_dir; return (cert_path, key_path)."""
    certs_dir = Path(certs_dir)
    base = hostname.replace(":", "_")
    cert_path = certs_dir / f"{base}.crt.pem"
    key_path = certs_dir / f"{base}.key.pem"

    key = crypto.PKey()
    key.generate_key(crypto.TYPE_RSA, 2048)

    cert = crypto.X509()
    cert.get_subject().CN = hostname
    cert.set_serial_number(int.from_bytes(os.urandom(16), "big") >> 1)
    cert.gmtime_adj_notBefore(0)
    cert.gmtime_adj_notAfter(365 * 5 * 24 * 3600)  # 5 years
    cert.set_issuer(cert.get_subject())
    cert.set_pubkey(key)
    cert.sign(key, "sha256")

    with open(cert_path, "wb") as f:
        f.write(crypto.dump_certificate(crypto.FILETYPE_PEM, cert))
    with open(key_path, "wb") as f:
        f.write(crypto.dump_privatekey(crypto.FILETYPE_PEM, key))

    print(f"[TLS] Generated self-signed cert for {hostname}")
    return str(cert_path), str(key_path)

def make_server_context(config: Dict[str, Any]) -> ssl.SSLContext:
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    # PEM files only live until the chain is loaded
    with tempfile.TemporaryDirectory(prefix="one-shot-tls-") as tmp:
        certfile, keyfile = gen_self_signed_cert(config.get("cert_hostname", "localhost"), tmp)
        ctx.load_cert_chain(certfile, keyfile)
    return ctx

# ---- listener core ----
def bind_listener(host: str = LISTEN_HOST, port: int = LISTEN_PORT) -> socket.socket:
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        listener.bind((host, port))
        listener.listen(1)
    except OSError:
        listener.close()
        raise
    return listener

def accept_one(listener: socket.socket, tls_context: Optional[ssl.SSLContext] = None):
    """Block until one client connects. The TLS handshake, if any, happens here."""
    conn, addr = listener.accept()
    if tls_context is None:
        return conn, addr
    try:
        return tls_context.wrap_socket(conn, server_side=True), addr
    except OSError:
        conn.close()
        raise

def read_all(conn: socket.socket, encoding: str = "utf-8", buffer_size: int = BUFFER_SIZE) -> str:
    """
    Read until EOF. A failing read ends the stream; whatever arrived before it is kept.
    Bytes that do not decode cleanly yield "".
    """
    chunks = []
    while True:
        try:
            buf = conn.recv(buffer_size)
        except OSError:
            break
        if not buf:
            break
        chunks.append(buf)
    try:
        return b"".join(chunks).decode(encoding)
    except UnicodeDecodeError:
        return ""

def serve_one(listener: socket.socket, config: Dict[str, Any]) -> str:
    tls_context = make_server_context(config) if config.get("tls") else None
    conn, addr = accept_one(listener, tls_context)
    with conn:
        print(f"Connection received {addr[0]}:{addr[1]} is sending data.")
        text = read_all(conn, config.get("encoding", "utf-8"), int(config.get("buffer_size", BUFFER_SIZE)))
        print(f"{addr[0]}:{addr[1]} says {text}")
    return text

def run(config: Dict[str, Any]) -> str:
    host = config.get("listen_host", LISTEN_HOST)
    port = int(config.get("listen_port", LISTEN_PORT))
    with bind_listener(host, port) as listener:
        local_host, local_port = listener.getsockname()[:2]
        print(f"Listening on {local_host}:{local_port}, access this port to enable the program.")
        return serve_one(listener, config)

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Accept one TCP connection on loopback and print what the peer sends.")
    p.add_argument("-c", "--config", default=None, help=f"Path to JSON config (default: {CONFIG_PATH.name})")
    p.add_argument("--host", default=None, help=f"Address to bind (default: {LISTEN_HOST})")
    p.add_argument("--port", type=int, default=None, help="Port to bind (default: 0, OS-assigned)")
    p.add_argument("--tls", action="store_true", help="Wrap the connection in TLS with a self-signed cert")
    return p.parse_args(argv)

def main(argv=None):
    args = parse_args(argv)
    config = load_config(args.config)
    if args.host is not None:
        config["listen_host"] = args.host
    if args.port is not None:
        config["listen_port"] = args.port
    if args.tls:
        config["tls"] = True
    print("[CONFIG] Effective:", json.dumps({
        "listen_host": config.get("listen_host"),
        "listen_port": config.get("listen_port"),
        "encoding": config.get("encoding"),
        "tls": bool(config.get("tls")),
    }, ensure_ascii=False))

    try:
        run(config)
    except OSError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        sys.exit(1)

if __name__ == "__main__":
    main()
