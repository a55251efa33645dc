"""Entry point for the chain-deployer CLI."""

from __future__ import annotations

import sys
from typing import List, Optional

from .cli import EXIT_INTERRUPTED, run_cli


def app_main(argv: Optional[List[str]] = None) -> None:
    try:
        exit_code = run_cli(argv)
    except KeyboardInterrupt:
        # deploy 子命令自行处理中断并打印状态；这里兜底其他子命令
        print("\n⚠️  Interrupted", file=sys.stderr)
        exit_code = EXIT_INTERRUPTED
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    app_main()
