import os
import tempfile

from enforcex import Enforcer, FilePolicySource, HotReloader
from enforcex.storage import atomic_write

HERE = os.path.dirname(os.path.abspath(__file__))


def main() -> None:
    fd, path = tempfile.mkstemp(suffix=".csv")
    os.close(fd)

    try:
        atomic_write(path, "p, reader, /docs/:id, GET\ng, bob, reader\n")
        e = Enforcer.from_files(os.path.join(HERE, "models", "rbac_model.conf"), path)
        mgr = HotReloader(e, poll_interval=None)

        print("first:", e.enforce("bob", "/docs/1", "GET"))  # True

        atomic_write(path, "p, reader, /docs/:id, GET\n")
        mgr.poll_once()

        print("after:", e.enforce("bob", "/docs/1", "GET"))  # False
    finally:
        try:
            os.remove(path)
        except PermissionError:
            pass


if __name__ == "__main__":
    main()
