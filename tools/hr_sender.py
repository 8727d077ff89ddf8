#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Heart-rate sender: pretends to be a heart-rate bridge talking to OBS.

Connects to the bridge's telemetry listener, does the Hello / Identify
handshake and then pushes SetInputSettings requests for the heart-rate input,
printing every RequestResponse.

Usage:
  python tools/hr_sender.py --values 120,95,95,105
  python tools/hr_sender.py --walk --start 90 --delay 1
  python tools/hr_sender.py --csv recording.csv --column bpm
"""

import os
import csv
import json
import random
import asyncio
import argparse
import itertools

import websockets

OBS_URL    = os.getenv("PULSE_OBS_URL", "ws://127.0.0.1:4456")
INPUT_NAME = os.getenv("PULSE_HR_INPUT", "heartrate")

DELAY_SEC = 1.0


def values_from_list(text: str):
    return [v.strip() for v in text.split(",") if v.strip()]

def values_from_csv(path: str, column: str):
    with open(path, "r", encoding="utf-8", newline="") as f:
        for row in csv.DictReader(f):
            val = (row.get(column) or "").strip()
            if val:
                yield val

def random_walk(start: int, low: int = 50, high: int = 160):
    hr = start
    while True:
        yield str(hr)
        hr = max(low, min(high, hr + random.randint(-4, 4)))


async def send_all(url: str, input_name: str, values, delay: float):
    async with websockets.connect(url) as ws:
        hello = json.loads(await ws.recv())
        print(f"[hr_sender] hello: {hello.get('d')}")
        await ws.send(json.dumps({"op": 1, "d": {"rpcVersion": 1}}))
        identified = json.loads(await ws.recv())
        print(f"[hr_sender] identified: {identified.get('d')}")

        for n, text in enumerate(values, start=1):
            req = {
                "op": 6,
                "d": {
                    "requestType": "SetInputSettings",
                    "requestId": f"hr-{n}",
                    "requestData": {"inputName": input_name, "inputSettings": {"text": text}},
                },
            }
            await ws.send(json.dumps(req))
            reply = json.loads(await ws.recv())
            status = reply.get("d", {}).get("requestStatus", {})
            print(f"[hr_sender] HR {text!r:>6} → {reply.get('d', {}).get('requestId')} "
                  f"result={status.get('result')} code={status.get('code')}")
            await asyncio.sleep(delay)


def main():
    ap = argparse.ArgumentParser(description="Send heart-rate samples over the OBS-WebSocket protocol")
    ap.add_argument("--url", default=OBS_URL, help="Bridge telemetry URL (default: %(default)s)")
    ap.add_argument("--input-name", default=INPUT_NAME, help="Heart-rate input name")
    ap.add_argument("--delay", type=float, default=DELAY_SEC, help="Seconds between samples")
    src = ap.add_mutually_exclusive_group()
    src.add_argument("--values", default="120,95,95,105", help="Comma separated samples")
    src.add_argument("--csv", default=None, help="CSV file to replay")
    src.add_argument("--walk", action="store_true", help="Endless random walk")
    ap.add_argument("--column", default="bpm", help="CSV column holding the heart rate")
    ap.add_argument("--start", type=int, default=90, help="Random walk start value")
    ap.add_argument("--loop", action="store_true", help="Repeat the list/CSV forever")
    args = ap.parse_args()

    if args.walk:
        values = random_walk(args.start)
    elif args.csv:
        values = list(values_from_csv(args.csv, args.column))
    else:
        values = values_from_list(args.values)
    if args.loop and not args.walk:
        values = itertools.cycle(values)

    try:
        asyncio.run(send_all(args.url, args.input_name, values, args.delay))
    except KeyboardInterrupt:
        print("\n[hr_sender] stopping")
    except (OSError, websockets.exceptions.WebSocketException) as e:
        print(f"[hr_sender] connection error: {e}")


if __name__ == "__main__":
    main()
