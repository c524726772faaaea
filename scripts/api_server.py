from __future__ import annotations

import argparse

import uvicorn


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve the PushRelay HTTP API.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=3000)
    return parser


if __name__ == "__main__":
    args = _build_parser().parse_args()
    uvicorn.run("pushrelay.apps.api.main:app", host=args.host, port=args.port)
