import time

from .. import config

__all__ = ["log"]


def log(component: str, msg: str) -> None:
    path = config.LOG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
    entry = f"{timestamp} [{component}] {msg}\n"
    with path.open("a") as f:
        f.write(entry)
