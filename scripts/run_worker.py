from __future__ import annotations

from arq import run_worker

from pushrelay.workers.dispatch_worker import WorkerSettings


if __name__ == "__main__":
    # Equivalent to `arq pushrelay.workers.dispatch_worker.WorkerSettings`.
    run_worker(WorkerSettings)  # type: ignore[arg-type]
