#!/usr/bin/env python3
"""Concurrent replay test against a running sandbox verifier.

Sends signed requests in parallel and re-sends a share of them with the same
headers. Every original must be accepted and every replay rejected.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import time

import aiohttp

from saccolink.signer import RequestSigner


async def _send(
    session: aiohttp.ClientSession,
    url: str,
    headers: dict[str, str],
    sem: asyncio.Semaphore,
    latencies: list[float],
) -> int:
    async with sem:
        start = time.perf_counter()
        try:
            async with session.get(url, headers=headers) as resp:
                await resp.text()
                return resp.status
        except aiohttp.ClientError:
            return 599
        finally:
            latencies.append(time.perf_counter() - start)


async def run_load_test(
    base_url: str,
    path: str,
    requests: int,
    replays: int,
    concurrency: int,
    signer: RequestSigner,
    timeout: aiohttp.ClientTimeout,
) -> dict[str, object]:
    signed = [signer.build_auth_headers(signer.new_request("GET", path)) for _ in range(requests)]
    # Replays race their originals on purpose
    batch = [(headers, False) for headers in signed]
    batch += [(signed[i % requests], True) for i in range(replays)]

    sem = asyncio.Semaphore(concurrency)
    latencies: list[float] = []
    url = f"{base_url.rstrip('/')}{path}"

    async with aiohttp.ClientSession(timeout=timeout) as session:
        start = time.perf_counter()
        statuses = await asyncio.gather(
            *(_send(session, url, headers, sem, latencies) for headers, _ in batch)
        )
        total = time.perf_counter() - start

    # Per nonce exactly one send may succeed, whichever arrived first
    accepted_per_nonce: dict[str, int] = {}
    network_errors = 0
    for (headers, _), status in zip(batch, statuses):
        if status == 599:
            network_errors += 1
        elif status == 200:
            nonce = headers["x-auth-nonce"]
            accepted_per_nonce[nonce] = accepted_per_nonce.get(nonce, 0) + 1

    double_accepts = sum(1 for count in accepted_per_nonce.values() if count > 1)
    latencies_sorted = sorted(latencies)
    p50 = latencies_sorted[int(0.50 * len(latencies_sorted)) - 1] if latencies_sorted else 0.0
    p95 = latencies_sorted[int(0.95 * len(latencies_sorted)) - 1] if latencies_sorted else 0.0
    return {
        "requests": requests,
        "replays": replays,
        "concurrency": concurrency,
        "total_seconds": round(total, 3),
        "p50_ms": round(p50 * 1000, 2),
        "p95_ms": round(p95 * 1000, 2),
        "accepted_nonces": len(accepted_per_nonce),
        "double_accepts": double_accepts,
        "network_errors": network_errors,
    }


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--base-url", default="http://127.0.0.1:8089")
    parser.add_argument("--path", default="/wallets")
    parser.add_argument("--requests", type=int, default=100)
    parser.add_argument("--replays", type=int, default=100)
    parser.add_argument("--concurrency", type=int, default=20)
    parser.add_argument("--secret", required=True, help="Secret shared with the sandbox")
    parser.add_argument("--timeout", type=float, default=10.0)
    args = parser.parse_args()

    summary = asyncio.run(
        run_load_test(
            base_url=args.base_url,
            path=args.path,
            requests=args.requests,
            replays=args.replays,
            concurrency=args.concurrency,
            signer=RequestSigner(args.secret),
            timeout=aiohttp.ClientTimeout(total=args.timeout),
        )
    )

    print(json.dumps(summary, indent=2))
    if summary["double_accepts"] or summary["accepted_nonces"] != args.requests:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
