"""python -m record_store 用。"""

from __future__ import annotations

from record_store.entrypoint import main

if __name__ == "__main__":
    raise SystemExit(main())
