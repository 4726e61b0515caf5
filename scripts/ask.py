#!/usr/bin/env python3
"""Ask a running AskLLM gateway a question from the command line."""
from __future__ import annotations

import argparse
import os
import sys
from typing import List

import requests

DEFAULT_BASE_URL = os.getenv("ASKLLM_BASE_URL", "http://localhost:8080")


def ask(base_url: str, query: str, timeout: float = 90.0) -> requests.Response:
    return requests.get(f"{base_url.rstrip('/')}/", params={"q": query}, timeout=timeout)


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Send a question to the AskLLM gateway and print the answer.")
    parser.add_argument("words", nargs="+", help="Question to ask; words are joined with spaces.")
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL, help="Base URL of the gateway (default: %(default)s).")
    parser.add_argument("--timeout", type=float, default=90.0, help="Seconds to wait for an answer (default: %(default)s).")

    args = parser.parse_args(argv)
    query = " ".join(args.words).strip()
    if not query:
        parser.error("the question must not be empty")

    try:
        response = ask(args.base_url, query, timeout=args.timeout)
    except requests.RequestException as exc:
        print(f"HTTP error while contacting {args.base_url}: {exc}", file=sys.stderr)
        return 1

    if not response.ok:
        print(response.text, file=sys.stderr)
        return 1

    print(response.text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
