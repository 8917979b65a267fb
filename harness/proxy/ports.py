import os
import socket


def get_free_port(host: str = "127.0.0.1") -> int:
    """Ask the OS for a port that is free right now. Another process may take it before we bind it"""

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


def is_port_free(port: int, host: str = "127.0.0.1") -> bool:
    """True if nothing listens on the port. Connections in TIME_WAIT do not count"""

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        if os.name != "nt":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False

    return True
